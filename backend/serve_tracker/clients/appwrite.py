"""
Serve Tracker Backend — Hosted Backend REST Clients
=====================================================

What:  httpx implementations of DocumentStore, ObjectStore and MailExecutor
       against the hosted backend's REST API.
How:   All three share one `httpx.AsyncClient` (owned by the container) and
       one `AppwriteConnection` holding endpoint, project id and API key.
       HTTP failures are translated into the application exception taxonomy
       at this boundary, so services never see httpx exceptions.
Who:   Constructed once in `build_container()`; injected into services.

Endpoints used:
    POST   /databases/{db}/collections/{col}/documents
    GET    /databases/{db}/collections/{col}/documents[?queries[]=...]
    GET    /databases/{db}/collections/{col}/documents/{id}
    PATCH  /databases/{db}/collections/{col}/documents/{id}
    DELETE /databases/{db}/collections/{col}/documents/{id}
    POST   /storage/buckets/{bucket}/files          (multipart)
    DELETE /storage/buckets/{bucket}/files/{id}
    POST   /functions/{function}/executions
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import httpx

from serve_tracker.clients.base import DocumentList, Query
from serve_tracker.exceptions import (
    DocumentConflictError,
    NotFoundError,
    NotificationError,
    PersistenceError,
    UploadError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppwriteConnection:
    endpoint: str
    project_id: str
    api_key: str = ""

    def url(self, path: str) -> str:
        return f"{self.endpoint.rstrip('/')}/{path.lstrip('/')}"

    def headers(self, json_body: bool = True) -> Dict[str, str]:
        headers = {"X-Appwrite-Project": self.project_id}
        if self.api_key:
            headers["X-Appwrite-Key"] = self.api_key
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase


def _json_object(response: httpx.Response) -> Dict[str, Any]:
    """Success body as a dict; ValueError for anything that is not a JSON object."""
    body = response.json()
    if not isinstance(body, dict):
        raise ValueError(f"expected a JSON object, got {type(body).__name__}")
    return body


class AppwriteDocumentStore:
    """DocumentStore over the databases REST API, scoped to one database id."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        connection: AppwriteConnection,
        database_id: str,
    ):
        self.http = http_client
        self.connection = connection
        self.database_id = database_id

    def _path(self, collection_id: str, document_id: Optional[str] = None) -> str:
        path = f"databases/{self.database_id}/collections/{collection_id}/documents"
        if document_id:
            path = f"{path}/{document_id}"
        return self.connection.url(path)

    async def _send(
        self,
        method: str,
        url: str,
        collection_id: str,
        document_id: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self.http.request(
                method, url, headers=self.connection.headers(), **kwargs
            )
        except httpx.HTTPError as e:
            raise PersistenceError(
                context={
                    "collection_id": collection_id,
                    "document_id": document_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            ) from e

        if response.status_code == 404:
            raise NotFoundError(resource="document", resource_id=document_id,
                                context={"collection_id": collection_id})
        if response.status_code == 409:
            raise DocumentConflictError(document_id=document_id,
                                        context={"collection_id": collection_id})
        if response.is_error:
            raise PersistenceError(
                message=f"Document store rejected the request: {_error_message(response)}",
                status_code=response.status_code,
                context={"collection_id": collection_id, "document_id": document_id},
            )
        return response

    def _decode(
        self,
        response: httpx.Response,
        collection_id: str,
        document_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            return _json_object(response)
        except ValueError as e:
            raise PersistenceError(
                message="Document store returned an unreadable response",
                status_code=response.status_code,
                context={
                    "collection_id": collection_id,
                    "document_id": document_id,
                    "error": str(e),
                },
            ) from e

    async def create(
        self, collection_id: str, document_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        response = await self._send(
            "POST",
            self._path(collection_id),
            collection_id,
            document_id,
            json={"documentId": document_id, "data": data},
        )
        return self._decode(response, collection_id, document_id)

    async def update(
        self, collection_id: str, document_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        response = await self._send(
            "PATCH",
            self._path(collection_id, document_id),
            collection_id,
            document_id,
            json={"data": data},
        )
        return self._decode(response, collection_id, document_id)

    async def get(self, collection_id: str, document_id: str) -> Dict[str, Any]:
        response = await self._send(
            "GET", self._path(collection_id, document_id), collection_id, document_id
        )
        return self._decode(response, collection_id, document_id)

    async def list(
        self, collection_id: str, queries: Sequence[Query] = ()
    ) -> DocumentList:
        params = [("queries[]", query.to_param()) for query in queries]
        response = await self._send(
            "GET", self._path(collection_id), collection_id, params=params
        )
        body = self._decode(response, collection_id)
        return DocumentList(
            documents=list(body.get("documents") or []),
            total=int(body.get("total") or 0),
        )

    async def delete(self, collection_id: str, document_id: str) -> None:
        await self._send(
            "DELETE", self._path(collection_id, document_id), collection_id, document_id
        )


class AppwriteObjectStore:
    """ObjectStore over the storage buckets REST API."""

    def __init__(self, http_client: httpx.AsyncClient, connection: AppwriteConnection):
        self.http = http_client
        self.connection = connection

    async def put_object(
        self, bucket_id: str, object_id: str, data: bytes, content_type: str
    ) -> Dict[str, Any]:
        extension = content_type.split("/")[-1].replace("jpeg", "jpg")
        url = self.connection.url(f"storage/buckets/{bucket_id}/files")
        try:
            response = await self.http.post(
                url,
                headers=self.connection.headers(json_body=False),
                data={"fileId": object_id},
                files={"file": (f"{object_id}.{extension}", data, content_type)},
            )
        except httpx.HTTPError as e:
            raise UploadError(
                bucket_id=bucket_id,
                context={"object_id": object_id, "error": str(e)},
            ) from e
        if response.is_error:
            raise UploadError(
                message=f"Object store rejected the upload: {_error_message(response)}",
                bucket_id=bucket_id,
                context={"object_id": object_id, "status_code": response.status_code},
            )
        try:
            body = _json_object(response)
        except ValueError as e:
            raise UploadError(
                message="Object store returned an unreadable response",
                bucket_id=bucket_id,
                context={"object_id": object_id, "error": str(e)},
            ) from e
        return {"id": body.get("$id", object_id), **body}

    async def delete_object(self, bucket_id: str, object_id: str) -> None:
        url = self.connection.url(f"storage/buckets/{bucket_id}/files/{object_id}")
        try:
            response = await self.http.delete(url, headers=self.connection.headers())
        except httpx.HTTPError as e:
            raise UploadError(
                message="Object could not be deleted",
                bucket_id=bucket_id,
                context={"object_id": object_id, "error": str(e)},
            ) from e
        if response.status_code == 404:
            raise NotFoundError(resource="object", resource_id=object_id,
                                context={"bucket_id": bucket_id})
        if response.is_error:
            raise UploadError(
                message=f"Object store rejected the delete: {_error_message(response)}",
                bucket_id=bucket_id,
                context={"object_id": object_id, "status_code": response.status_code},
            )


class AppwriteFunctions:
    """MailExecutor that runs a serverless function synchronously."""

    def __init__(self, http_client: httpx.AsyncClient, connection: AppwriteConnection):
        self.http = http_client
        self.connection = connection

    async def invoke(self, function_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = self.connection.url(f"functions/{function_id}/executions")
        try:
            response = await self.http.post(
                url,
                headers=self.connection.headers(),
                json={"body": json.dumps(payload), "async": False},
            )
        except httpx.HTTPError as e:
            raise NotificationError(
                message="Mail function could not be reached",
                transport="function",
                context={"function_id": function_id, "error": str(e)},
            ) from e
        if response.is_error:
            raise NotificationError(
                message=f"Mail function execution was rejected: {_error_message(response)}",
                transport="function",
                context={"function_id": function_id, "status_code": response.status_code},
            )
        try:
            body = _json_object(response)
        except ValueError as e:
            raise NotificationError(
                message="Mail function returned an unreadable response",
                transport="function",
                context={"function_id": function_id, "error": str(e)},
            ) from e
        return {
            "id": body.get("$id"),
            "status": body.get("status"),
            "response": body.get("responseBody"),
        }
