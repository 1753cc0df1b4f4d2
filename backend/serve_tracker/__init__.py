"""
Serve Tracker Backend — Application Package Initializer
========================================================

What: Marks the `serve_tracker` directory as a Python package.
Who:  Used implicitly by Python's import system and explicitly by pytest and uvicorn.

Architecture Note:
    The backend is the write path for serve attempts: a field agent's
    submission flows through media preparation, evidence upload, record
    persistence (with a local fallback) and notification dispatch.

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │     Services (Pipeline Stages)      │  ← media, evidence, persistence,
    │                                     │    notification, sync
    ├─────────────────────────────────────┤
    │   Clients (Remote Collaborators)    │  ← document store, object store,
    │                                     │    mail function, messaging API
    ├─────────────────────────────────────┤
    │   Models & Schemas / Local Cache    │  ← SQLAlchemy ORM + Pydantic
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
