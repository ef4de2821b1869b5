from datetime import timedelta
from unittest.mock import Mock

import pytest
from minio.error import S3Error
from urllib3.exceptions import MaxRetryError

from library_portal.services.minio_service import MinIOService
from library_portal.utils.errors import NotFoundError, UpstreamError

BUCKET = "student-photos"


def s3_error(code: str) -> S3Error:
    return S3Error(
        response=Mock(),
        code=code,
        message=f"{code} raised by test",
        resource=f"/{BUCKET}",
        request_id="req-1",
        host_id="host-1",
    )


def connection_refused() -> MaxRetryError:
    return MaxRetryError(None, f"/{BUCKET}", reason=ConnectionRefusedError("refused"))


@pytest.fixture
def minio_client():
    client = Mock()
    client.bucket_exists.return_value = True
    client.put_object.return_value = Mock(etag="etag-1")
    client.stat_object.return_value = Mock()
    client.presigned_get_object.return_value = "https://minio.test/student-photos/u-1.jpg?sig"
    return client


@pytest.fixture
def service(minio_client) -> MinIOService:
    return MinIOService(client=minio_client, bucket_name=BUCKET)


class TestUpload:
    @pytest.mark.asyncio
    async def test_uploads_under_exact_object_name(self, service, minio_client):
        result = await service.upload_bytes(b"jpeg-bytes", "u-1-1700000000000.jpg", "image/jpeg")

        kwargs = minio_client.put_object.call_args.kwargs
        assert kwargs["bucket_name"] == BUCKET
        assert kwargs["object_name"] == "u-1-1700000000000.jpg"
        assert kwargs["length"] == len(b"jpeg-bytes")
        assert kwargs["content_type"] == "image/jpeg"
        assert result["etag"] == "etag-1"
        assert result["size"] == len(b"jpeg-bytes")

    @pytest.mark.asyncio
    async def test_bucket_is_checked_once_and_created_when_missing(self, service, minio_client):
        minio_client.bucket_exists.return_value = False

        await service.upload_bytes(b"one", "a.jpg")
        await service.upload_bytes(b"two", "b.jpg")

        minio_client.bucket_exists.assert_called_once_with(BUCKET)
        minio_client.make_bucket.assert_called_once_with(BUCKET)
        assert minio_client.put_object.call_count == 2

    @pytest.mark.asyncio
    async def test_s3_error_is_upstream(self, service, minio_client):
        minio_client.put_object.side_effect = s3_error("AccessDenied")

        with pytest.raises(UpstreamError) as exc_info:
            await service.upload_bytes(b"jpeg-bytes", "u-1.jpg")
        assert exc_info.value.error_code == "STORAGE_ERROR"

    @pytest.mark.asyncio
    async def test_unreachable_endpoint_is_upstream(self, service, minio_client):
        minio_client.bucket_exists.side_effect = connection_refused()

        with pytest.raises(UpstreamError) as exc_info:
            await service.upload_bytes(b"jpeg-bytes", "u-1.jpg")
        assert exc_info.value.error_code == "STORAGE_ERROR"
        minio_client.put_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_connection_lost_during_write_is_upstream(self, service, minio_client):
        minio_client.put_object.side_effect = connection_refused()

        with pytest.raises(UpstreamError):
            await service.upload_bytes(b"jpeg-bytes", "u-1.jpg")


class TestPresignedUrl:
    @pytest.mark.asyncio
    async def test_signs_existing_object(self, service, minio_client):
        result = await service.generate_presigned_url("u-1.jpg", expires_in_hours=24)

        minio_client.stat_object.assert_called_once_with(BUCKET, "u-1.jpg")
        kwargs = minio_client.presigned_get_object.call_args.kwargs
        assert kwargs["object_name"] == "u-1.jpg"
        assert kwargs["expires"] == timedelta(hours=24)
        assert result["presigned_url"].startswith("https://minio.test/")
        assert result["expires_in_hours"] == 24

    @pytest.mark.asyncio
    async def test_missing_object_is_not_found(self, service, minio_client):
        minio_client.stat_object.side_effect = s3_error("NoSuchKey")

        with pytest.raises(NotFoundError) as exc_info:
            await service.generate_presigned_url("u-1.jpg")
        assert exc_info.value.error_code == "PHOTO_NOT_FOUND"
        minio_client.presigned_get_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_other_stat_errors_are_upstream(self, service, minio_client):
        minio_client.stat_object.side_effect = s3_error("AccessDenied")

        with pytest.raises(UpstreamError):
            await service.generate_presigned_url("u-1.jpg")

    @pytest.mark.asyncio
    async def test_unreachable_endpoint_is_upstream(self, service, minio_client):
        minio_client.stat_object.side_effect = connection_refused()

        with pytest.raises(UpstreamError):
            await service.generate_presigned_url("u-1.jpg")

    @pytest.mark.asyncio
    async def test_signing_failure_is_upstream(self, service, minio_client):
        minio_client.presigned_get_object.side_effect = ValueError("bad expiry")

        with pytest.raises(UpstreamError):
            await service.generate_presigned_url("u-1.jpg")
