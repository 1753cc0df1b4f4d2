"""
Serve Tracker Backend — Remote Collaborator Interfaces
========================================================

What:  Typed protocols for the three remote collaborators the pipeline uses.
How:   Services depend on these protocols only; `clients/appwrite.py` holds
       the concrete REST implementation and tests pass in-memory fakes.

Collaborators:
    DocumentStore  create / update / get / list / delete documents
    ObjectStore    put / delete binary objects in buckets
    MailExecutor   invoke a named serverless mail function

Error contract (all implementations):
    missing document         → NotFoundError
    duplicate document id    → DocumentConflictError
    other document failures  → PersistenceError
    object store failures    → UploadError
    mail function failures   → NotificationError
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence


@dataclass(frozen=True)
class Query:
    """
    One list-query clause: equality filter, ordering, limit or offset.

    Serialized in the JSON form the document store accepts as a
    `queries[]` parameter.
    """

    method: str
    attribute: Optional[str] = None
    values: Optional[List[Any]] = None

    @classmethod
    def equal(cls, attribute: str, value: Any) -> "Query":
        values = value if isinstance(value, list) else [value]
        return cls("equal", attribute, values)

    @classmethod
    def order_desc(cls, attribute: str) -> "Query":
        return cls("orderDesc", attribute)

    @classmethod
    def order_asc(cls, attribute: str) -> "Query":
        return cls("orderAsc", attribute)

    @classmethod
    def limit(cls, count: int) -> "Query":
        return cls("limit", None, [count])

    @classmethod
    def offset(cls, count: int) -> "Query":
        return cls("offset", None, [count])

    def to_param(self) -> str:
        body: Dict[str, Any] = {"method": self.method}
        if self.attribute is not None:
            body["attribute"] = self.attribute
        if self.values is not None:
            body["values"] = self.values
        return json.dumps(body, separators=(",", ":"))


@dataclass
class DocumentList:
    documents: List[Dict[str, Any]] = field(default_factory=list)
    total: int = 0


class DocumentStore(Protocol):
    async def create(
        self, collection_id: str, document_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]: ...

    async def update(
        self, collection_id: str, document_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]: ...

    async def get(self, collection_id: str, document_id: str) -> Dict[str, Any]: ...

    async def list(
        self, collection_id: str, queries: Sequence[Query] = ()
    ) -> DocumentList: ...

    async def delete(self, collection_id: str, document_id: str) -> None: ...


class ObjectStore(Protocol):
    async def put_object(
        self, bucket_id: str, object_id: str, data: bytes, content_type: str
    ) -> Dict[str, Any]: ...

    async def delete_object(self, bucket_id: str, object_id: str) -> None: ...


class MailExecutor(Protocol):
    async def invoke(self, function_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Run the function; returns at least `{"status": ..., "id": ...}`."""
        ...
