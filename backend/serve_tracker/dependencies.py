"""
Serve Tracker Backend — Service Container
===========================================

What:  Builds every client and service once, explicitly, from Settings.
How:   `build_container()` wires the httpx client, the REST collaborators,
       the local cache engine and the services into a `Container`. The app
       lifespan stores it on `app.state.container`; route handlers get it
       through the `get_container` dependency.
Who:   main.py (production), tests (either build_container with a temp
       SQLite URL, or a Container assembled from fakes).

Wiring:
    Settings ──▶ httpx.AsyncClient ──▶ AppwriteDocumentStore / ObjectStore / Functions
             └─▶ SQLAlchemy engine ──▶ LocalCache
    ServeAttemptService(document_store, EvidenceService, NotificationService,
                        SyncService, LocalCache, BackgroundTaskRunner)
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from serve_tracker.clients.appwrite import (
    AppwriteConnection,
    AppwriteDocumentStore,
    AppwriteFunctions,
    AppwriteObjectStore,
)
from serve_tracker.clients.base import DocumentStore, MailExecutor, ObjectStore
from serve_tracker.config import Settings
from serve_tracker.database import create_engine_and_sessions, dispose_engine
from serve_tracker.services.attachments import (
    AttachmentResolver,
    ImageDownloader,
    InlineAttachmentSource,
    RecordAttachmentSource,
    UrlAttachmentSource,
)
from serve_tracker.services.background import BackgroundTaskRunner, PeriodicJob
from serve_tracker.services.evidence_service import EvidenceService
from serve_tracker.services.local_cache import LocalCache
from serve_tracker.services.media_service import MediaService, ThumbnailOptions
from serve_tracker.services.notification_service import (
    FunctionMailTransport,
    MessagingApiTransport,
    NotificationService,
)
from serve_tracker.services.serve_attempt_service import ServeAttemptService
from serve_tracker.services.sync_service import SyncService

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    serve_attempts: ServeAttemptService
    notifications: NotificationService
    sync: SyncService
    cache: LocalCache
    background: BackgroundTaskRunner
    http_client: Optional[httpx.AsyncClient] = None
    engine: Optional[AsyncEngine] = None
    reconciler: Optional[PeriodicJob] = None
    started_at: float = field(default=0.0)

    async def close(self) -> None:
        """Stop the schedule, let background work finish, then release the HTTP client and engine."""
        if self.reconciler is not None:
            await self.reconciler.stop()
        await self.background.shutdown()
        if self.http_client is not None:
            await self.http_client.aclose()
        if self.engine is not None:
            await dispose_engine(self.engine)


def assemble_services(
    settings: Settings,
    document_store: DocumentStore,
    object_store: ObjectStore,
    mail_executor: MailExecutor,
    http_client: httpx.AsyncClient,
    cache: LocalCache,
) -> Container:
    """Wire services around already-constructed collaborators."""
    connection = AppwriteConnection(
        endpoint=settings.appwrite_endpoint,
        project_id=settings.appwrite_project_id,
        api_key=settings.appwrite_api_key,
    )
    media = MediaService(
        ThumbnailOptions(
            max_width=settings.thumbnail_max_width,
            max_height=settings.thumbnail_max_height,
            quality=settings.thumbnail_quality,
            format=settings.thumbnail_format,
        ),
        max_dimension=settings.max_image_dimension,
    )
    downloader = ImageDownloader(
        http_client,
        max_attempts=settings.download_max_attempts,
        min_wait=settings.retry_min_wait,
        max_wait=settings.retry_max_wait,
    )
    resolver = AttachmentResolver([
        UrlAttachmentSource(downloader),
        RecordAttachmentSource(document_store, settings.serve_attempts_collection_id, downloader),
        InlineAttachmentSource(),
    ])
    notifications = NotificationService(
        resolver,
        [
            FunctionMailTransport(mail_executor, settings.email_function_id),
            MessagingApiTransport(
                http_client,
                connection,
                provider_id=settings.messaging_provider_id,
                topic_id=settings.messaging_topic_id,
            ),
        ],
        business_email=settings.business_email,
    )
    sync = SyncService(
        document_store,
        cache,
        collection_id=settings.serve_attempts_collection_id,
        namespace=settings.cache_namespace,
        limit=settings.sync_limit,
        size_limit_bytes=settings.cache_size_limit_bytes,
    )
    background = BackgroundTaskRunner()
    serve_attempts = ServeAttemptService(
        document_store=document_store,
        evidence=EvidenceService(object_store, media, settings),
        notifications=notifications,
        sync=sync,
        cache=cache,
        background=background,
        settings=settings,
    )
    return Container(
        settings=settings,
        serve_attempts=serve_attempts,
        notifications=notifications,
        sync=sync,
        cache=cache,
        background=background,
    )


def build_container(settings: Settings) -> Container:
    """Production wiring: REST collaborators plus the on-disk local cache."""
    http_client = httpx.AsyncClient(timeout=settings.http_timeout)
    connection = AppwriteConnection(
        endpoint=settings.appwrite_endpoint,
        project_id=settings.appwrite_project_id,
        api_key=settings.appwrite_api_key,
    )
    engine, session_factory = create_engine_and_sessions(settings.cache_database_url)

    container = assemble_services(
        settings,
        document_store=AppwriteDocumentStore(http_client, connection, settings.database_id),
        object_store=AppwriteObjectStore(http_client, connection),
        mail_executor=AppwriteFunctions(http_client, connection),
        http_client=http_client,
        cache=LocalCache(session_factory),
    )
    container.http_client = http_client
    container.engine = engine
    if settings.sync_interval_seconds > 0:
        container.reconciler = PeriodicJob(
            "reconcile", container.serve_attempts.reconcile, settings.sync_interval_seconds
        )
    logger.info("Service container built (endpoint=%s, project=%s)",
                settings.appwrite_endpoint, settings.appwrite_project_id)
    return container


def get_container(request: Request) -> Container:
    """FastAPI dependency: the container created at startup."""
    return request.app.state.container


def get_serve_attempt_service(request: Request) -> ServeAttemptService:
    return get_container(request).serve_attempts
