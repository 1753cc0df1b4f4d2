"""
Serve Tracker Backend — Evidence Upload Coordinator Tests
===========================================================

What we test:
    ✅ Full image and thumbnail land in their own buckets with public URLs
    ✅ A failed thumbnail upload leaves the full image intact, and vice versa
    ✅ Undecodable input degrades to no evidence without raising
    ✅ Oversized images upload in full with no thumbnail; bytes decode once
    ✅ Object ids can be recovered from public URLs for cascade deletes
"""

import base64

import pytest

from serve_tracker.services.evidence_service import EvidenceService, object_id_from_url
from serve_tracker.services.media_service import MediaService
from tests.conftest import make_image_b64


class TestUploadEvidence:

    @pytest.fixture(autouse=True)
    def _wire(self, object_store, test_settings):
        self.objects = object_store
        self.settings = test_settings
        self.service = EvidenceService(object_store, MediaService(), test_settings)

    @pytest.mark.asyncio
    async def test_both_uploads_succeed(self):
        refs = await self.service.upload_evidence(make_image_b64(800, 600, fmt="PNG"), "doc-1")

        assert refs.image_file_id in self.objects.in_bucket("serve_evidence")
        assert refs.thumbnail_file_id in self.objects.in_bucket("serve_thumbnails")
        assert refs.image_url == self.settings.public_file_url("serve_evidence", refs.image_file_id)
        assert refs.thumbnail_url == (
            f"https://appwrite.test/v1/storage/buckets/serve_thumbnails/files/"
            f"{refs.thumbnail_file_id}/view?project=test-project"
        )
        assert refs.image_file_id != refs.thumbnail_file_id

        _, full_type = self.objects.objects[("serve_evidence", refs.image_file_id)]
        _, thumb_type = self.objects.objects[("serve_thumbnails", refs.thumbnail_file_id)]
        assert full_type == "image/png"
        assert thumb_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_thumbnail_failure_keeps_full_image(self):
        self.objects.fail_buckets.add("serve_thumbnails")

        refs = await self.service.upload_evidence(make_image_b64(), "doc-1")

        assert refs.image_url is not None
        assert refs.thumbnail_url is None
        assert refs.thumbnail_file_id is None
        assert refs.has_thumbnail is False

    @pytest.mark.asyncio
    async def test_full_image_failure_keeps_thumbnail(self):
        self.objects.fail_buckets.add("serve_evidence")

        refs = await self.service.upload_evidence(make_image_b64(), "doc-1")

        assert refs.image_url is None
        assert refs.image_file_id is None
        assert refs.has_thumbnail is True

    @pytest.mark.asyncio
    async def test_malformed_payload_yields_no_evidence(self):
        refs = await self.service.upload_evidence("data:image/jpeg;base64,@@@", "doc-1")

        assert refs.image_url is None
        assert refs.thumbnail_url is None
        assert self.objects.objects == {}

    @pytest.mark.asyncio
    async def test_non_image_bytes_upload_full_but_skip_thumbnail(self):
        payload = base64.b64encode(b"not an image at all").decode("ascii")

        refs = await self.service.upload_evidence(payload, "doc-1")

        assert refs.image_url is not None
        assert refs.thumbnail_url is None

    @pytest.mark.asyncio
    async def test_oversized_image_uploads_full_but_skips_thumbnail(self):
        self.service.media = MediaService(max_dimension=1000)

        refs = await self.service.upload_evidence(make_image_b64(1200, 10, fmt="PNG"), "doc-1")

        assert refs.image_file_id in self.objects.in_bucket("serve_evidence")
        assert refs.thumbnail_url is None
        assert self.objects.in_bucket("serve_thumbnails") == []

    @pytest.mark.asyncio
    async def test_thumbnail_work_gets_decoded_bytes_once(self):
        seen = []

        class RecordingMedia(MediaService):
            def thumbnail_if_suitable(self, data, options=None):
                seen.append(data)
                return super().thumbnail_if_suitable(data, options)

        self.service.media = RecordingMedia()

        payload = make_image_b64(64, 48)
        refs = await self.service.upload_evidence(f"data:image/jpeg;base64,{payload}", "doc-1")

        assert refs.has_thumbnail is True
        assert seen == [base64.b64decode(payload)]

    @pytest.mark.asyncio
    async def test_no_payload_uploads_nothing(self):
        refs = await self.service.upload_evidence(None, "doc-1")
        assert refs.image_url is None
        assert self.objects.objects == {}


class TestDeleteEvidence:

    @pytest.fixture(autouse=True)
    def _wire(self, object_store, test_settings):
        self.objects = object_store
        self.settings = test_settings
        self.service = EvidenceService(object_store, MediaService(), test_settings)

    def test_object_id_round_trips_through_public_url(self):
        url = self.settings.public_file_url("serve_evidence", "abc123")
        assert object_id_from_url(url, "serve_evidence") == "abc123"
        assert object_id_from_url(url, "serve_thumbnails") is None
        assert object_id_from_url("https://elsewhere.test/image.jpg", "serve_evidence") is None
        assert object_id_from_url(None, "serve_evidence") is None

    @pytest.mark.asyncio
    async def test_deletes_by_id_or_parsed_url(self):
        refs = await self.service.upload_evidence(make_image_b64(), "doc-1")

        removed = await self.service.delete_evidence(
            image_url=refs.image_url,
            thumbnail_file_id=refs.thumbnail_file_id,
        )

        assert removed == 2
        assert self.objects.objects == {}

    @pytest.mark.asyncio
    async def test_missing_objects_do_not_raise(self):
        removed = await self.service.delete_evidence(image_file_id="gone", thumbnail_file_id="gone-too")
        assert removed == 0
