"""
Serve Tracker Backend — Services Layer
========================================

Service Inventory (leaf first):
    - MediaService:          base64 decoding and Pillow thumbnails
    - EvidenceService:       isolated full-image and thumbnail uploads
    - LocalCache:            namespaced durable cache (SQLAlchemy)
    - AttachmentResolver:    url → cross-referenced record → inline chain
    - NotificationService:   recipient list and mail transport fallback
    - SyncService:           remote → local read cache reconciler
    - BackgroundTaskRunner:  fire-after tasks with queryable outcomes
    - ServeAttemptService:   the submission pipeline that composes the above

Services receive their collaborators through their constructors; nothing
here reaches for a global client.
"""
