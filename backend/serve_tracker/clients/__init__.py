"""
Serve Tracker Backend — Remote Clients
========================================

What:  Protocols for the remote collaborators (document store, object
       store, mail function) and their hosted-backend REST implementations.
"""

from serve_tracker.clients.base import (
    DocumentList,
    DocumentStore,
    MailExecutor,
    ObjectStore,
    Query,
)

__all__ = ["DocumentList", "DocumentStore", "MailExecutor", "ObjectStore", "Query"]
