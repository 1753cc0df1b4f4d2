"""
Serve Tracker Backend — Test Configuration (conftest.py)
==========================================================

What:  Shared fixtures: in-memory fakes for the three remote collaborators,
       a temporary SQLite local cache, an httpx.MockTransport for image
       downloads and the messaging API, and Pillow-generated images.
How:   Services are wired with `assemble_services()` exactly as in
       production, only with fakes in place of the REST clients.

Fixture Hierarchy:
    test_settings ─┬─▶ local_cache (temp SQLite file)
                   ├─▶ http_routes → http_client (MockTransport)
                   └─▶ container (document_store, object_store, mail_executor fakes)
                         └─▶ test_client (ASGITransport, container on app.state)
"""

import base64
import io
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image

# Before any serve_tracker import: the module-level Settings() reads it
os.environ["LOG_LEVEL"] = "WARNING"

from serve_tracker.clients.base import DocumentList, Query
from serve_tracker.config import Settings
from serve_tracker.database import create_engine_and_sessions, create_tables, dispose_engine
from serve_tracker.dependencies import assemble_services
from serve_tracker.exceptions import (
    DocumentConflictError,
    NotFoundError,
    NotificationError,
    PersistenceError,
    UploadError,
)
from serve_tracker.services.local_cache import LocalCache


# ══════════════════════════════════════════════════════════════════════════
# Image helpers
# ══════════════════════════════════════════════════════════════════════════

def make_image_bytes(width: int = 64, height: int = 48, fmt: str = "JPEG",
                     color: Tuple[int, int, int] = (200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format=fmt)
    return buffer.getvalue()


def make_image_b64(width: int = 64, height: int = 48, fmt: str = "JPEG",
                   data_url: bool = False) -> str:
    encoded = base64.b64encode(make_image_bytes(width, height, fmt)).decode("ascii")
    if data_url:
        return f"data:image/{fmt.lower()};base64,{encoded}"
    return encoded


# ══════════════════════════════════════════════════════════════════════════
# Fakes for the remote collaborators
# ══════════════════════════════════════════════════════════════════════════

class InMemoryDocumentStore:
    """
    DocumentStore fake that honours equality filters, ordering, limit and offset.

    `fail_on` holds method names that raise PersistenceError; every call
    is recorded in `calls` as (method, collection_id, document_id).
    """

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.fail_on: set = set()
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _check(self, method: str, collection_id: str, document_id: Optional[str] = None):
        self.calls.append((method, collection_id, document_id))
        if method in self.fail_on:
            raise PersistenceError(
                message=f"Simulated {method} failure",
                context={"collection_id": collection_id},
            )

    def _now(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def seed(self, collection_id: str, document_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        now = self._now()
        document = {**data, "$id": document_id, "$createdAt": now, "$updatedAt": now}
        self.collections.setdefault(collection_id, {})[document_id] = document
        return dict(document)

    def remote_calls(self, collection_id: Optional[str] = None) -> List[Tuple[str, str, Optional[str]]]:
        return [c for c in self.calls if collection_id is None or c[1] == collection_id]

    async def create(self, collection_id: str, document_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self._check("create", collection_id, document_id)
        if document_id in self.collections.get(collection_id, {}):
            raise DocumentConflictError(document_id=document_id)
        return self.seed(collection_id, document_id, data)

    async def update(self, collection_id: str, document_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self._check("update", collection_id, document_id)
        documents = self.collections.get(collection_id, {})
        if document_id not in documents:
            raise NotFoundError(resource="document", resource_id=document_id)
        documents[document_id].update(data)
        documents[document_id]["$updatedAt"] = self._now()
        return dict(documents[document_id])

    async def get(self, collection_id: str, document_id: str) -> Dict[str, Any]:
        self._check("get", collection_id, document_id)
        documents = self.collections.get(collection_id, {})
        if document_id not in documents:
            raise NotFoundError(resource="document", resource_id=document_id)
        return dict(documents[document_id])

    async def list(self, collection_id: str, queries: Sequence[Query] = ()) -> DocumentList:
        self._check("list", collection_id)
        documents = [dict(d) for d in self.collections.get(collection_id, {}).values()]
        limit, offset = None, 0
        for query in queries:
            if query.method == "equal":
                documents = [d for d in documents if d.get(query.attribute) in query.values]
            elif query.method in ("orderDesc", "orderAsc"):
                documents.sort(key=lambda d: str(d.get(query.attribute) or ""),
                               reverse=query.method == "orderDesc")
            elif query.method == "limit":
                limit = query.values[0]
            elif query.method == "offset":
                offset = query.values[0]
        total = len(documents)
        documents = documents[offset:]
        if limit is not None:
            documents = documents[:limit]
        return DocumentList(documents=documents, total=total)

    async def delete(self, collection_id: str, document_id: str) -> None:
        self._check("delete", collection_id, document_id)
        documents = self.collections.get(collection_id, {})
        if document_id not in documents:
            raise NotFoundError(resource="document", resource_id=document_id)
        del documents[document_id]


class FakeObjectStore:
    """ObjectStore fake; buckets listed in `fail_buckets` reject uploads."""

    def __init__(self):
        self.objects: Dict[Tuple[str, str], Tuple[bytes, str]] = {}
        self.fail_buckets: set = set()
        self.deleted: List[Tuple[str, str]] = []

    async def put_object(self, bucket_id: str, object_id: str, data: bytes, content_type: str) -> Dict[str, Any]:
        if bucket_id in self.fail_buckets:
            raise UploadError(message="Simulated upload failure", bucket_id=bucket_id)
        self.objects[(bucket_id, object_id)] = (data, content_type)
        return {"id": object_id}

    async def delete_object(self, bucket_id: str, object_id: str) -> None:
        if (bucket_id, object_id) not in self.objects:
            raise NotFoundError(resource="object", resource_id=object_id)
        del self.objects[(bucket_id, object_id)]
        self.deleted.append((bucket_id, object_id))

    def in_bucket(self, bucket_id: str) -> List[str]:
        return [object_id for (bucket, object_id) in self.objects if bucket == bucket_id]


class FakeMailExecutor:
    """MailExecutor fake; `status` is what every execution reports."""

    def __init__(self, status: str = "completed"):
        self.status = status
        self.fail = False
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    async def invoke(self, function_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append((function_id, payload))
        if self.fail:
            raise NotificationError(message="Simulated function failure", transport="function")
        return {"id": f"exec-{len(self.calls)}", "status": self.status}


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        appwrite_endpoint="https://appwrite.test/v1",
        appwrite_project_id="test-project",
        appwrite_api_key="test-key",
        cache_database_url=f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}",
        download_max_attempts=2,
        retry_min_wait=0,
        retry_max_wait=0,
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def local_cache(test_settings):
    engine, session_factory = create_engine_and_sessions(test_settings.cache_database_url)
    await create_tables(engine)
    yield LocalCache(session_factory)
    await dispose_engine(engine)


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def mail_executor() -> FakeMailExecutor:
    return FakeMailExecutor()


@pytest.fixture
def http_routes() -> Dict[str, Callable[[httpx.Request], httpx.Response]]:
    """
    URL → handler map behind the mock HTTP transport.

    Unmapped URLs answer 404. Every request is appended to
    `http_routes["__requests__"]`.
    """
    return {"__requests__": []}


@pytest_asyncio.fixture
async def http_client(http_routes):
    def handler(request: httpx.Request) -> httpx.Response:
        http_routes["__requests__"].append(request)
        url = str(request.url).split("?")[0]
        route = http_routes.get(url)
        if route is None:
            return httpx.Response(404, json={"message": "not found"})
        return route(request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        yield client


@pytest_asyncio.fixture
async def container(test_settings, document_store, object_store, mail_executor,
                    http_client, local_cache):
    container = assemble_services(
        test_settings,
        document_store=document_store,
        object_store=object_store,
        mail_executor=mail_executor,
        http_client=http_client,
        cache=local_cache,
    )
    yield container
    await container.background.drain()


@pytest.fixture
def service(container):
    return container.serve_attempts


@pytest_asyncio.fixture
async def test_client(container, test_settings):
    from serve_tracker.main import create_app

    app = create_app(test_settings)
    app.state.container = container
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def client_record(document_store, test_settings):
    """A client document with a name and email."""
    return document_store.seed(
        test_settings.clients_collection_id,
        "client-1",
        {"name": "Jane Doe", "email": "jane@client.test"},
    )
