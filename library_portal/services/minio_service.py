import asyncio
from datetime import datetime, timedelta
from io import BytesIO
from typing import Any, Dict

from minio import Minio
from minio.error import S3Error

from library_portal.config.settings import settings
from library_portal.utils.errors import NotFoundError, UpstreamError
from library_portal.utils.logging import get_logger

logger = get_logger()


class MinIOService:
    """Service for student photo storage in MinIO"""

    def __init__(self, client: Minio = None, bucket_name: str = None):
        self.client = client or Minio(
            endpoint=settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE,
        )
        self.bucket_name = bucket_name or settings.MINIO_BUCKET_NAME
        self._bucket_checked = False

    async def _run(self, func, *args, **kwargs):
        # MinIO client is synchronous
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    async def ensure_bucket_exists(self) -> None:
        """Ensure the photo bucket exists (private), create if it doesn't."""
        if self._bucket_checked:
            return
        try:
            if not await self._run(self.client.bucket_exists, self.bucket_name):
                logger.info(f"Creating storage bucket {self.bucket_name}")
                await self._run(self.client.make_bucket, self.bucket_name)
        except S3Error as e:
            raise UpstreamError(
                f"Failed to ensure bucket exists: {str(e)}", "STORAGE_ERROR"
            )
        except Exception as e:
            raise UpstreamError(
                f"Unexpected error checking bucket {self.bucket_name}: {str(e)}",
                "STORAGE_ERROR",
            )
        self._bucket_checked = True

    async def upload_bytes(
        self,
        data: bytes,
        object_name: str,
        content_type: str = "application/octet-stream",
    ) -> Dict[str, Any]:
        """
        Upload bytes under an exact object name.

        Args:
            data: Raw bytes data to upload
            object_name: Object name to use in the bucket
            content_type: MIME type of the file

        Returns:
            Dict containing upload information
        """
        await self.ensure_bucket_exists()
        try:
            result = await self._run(
                self.client.put_object,
                bucket_name=self.bucket_name,
                object_name=object_name,
                data=BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        except S3Error as e:
            raise UpstreamError(
                f"Failed to upload {object_name} to MinIO: {str(e)}", "STORAGE_ERROR"
            )
        except Exception as e:
            raise UpstreamError(
                f"Unexpected error uploading {object_name}: {str(e)}", "STORAGE_ERROR"
            )

        return {
            "object_name": object_name,
            "bucket_name": self.bucket_name,
            "size": len(data),
            "content_type": content_type,
            "etag": result.etag,
            "upload_time": datetime.now().isoformat(),
        }

    async def generate_presigned_url(
        self, object_name: str, expires_in_hours: int = None
    ) -> Dict[str, Any]:
        """
        Generate a presigned GET URL for an existing object.

        Raises:
            NotFoundError: if the object is not in the bucket
        """
        expires_in_hours = expires_in_hours or settings.PHOTO_URL_EXPIRE_HOURS
        try:
            await self._run(self.client.stat_object, self.bucket_name, object_name)
        except S3Error as e:
            if e.code == "NoSuchKey":
                raise NotFoundError(
                    f"File '{object_name}' not found in bucket '{self.bucket_name}'",
                    "PHOTO_NOT_FOUND",
                )
            raise UpstreamError(
                f"Failed to stat {object_name}: {str(e)}", "STORAGE_ERROR"
            )
        except Exception as e:
            raise UpstreamError(
                f"Unexpected error checking {object_name}: {str(e)}", "STORAGE_ERROR"
            )

        try:
            presigned_url = await self._run(
                self.client.presigned_get_object,
                bucket_name=self.bucket_name,
                object_name=object_name,
                expires=timedelta(hours=expires_in_hours),
            )
        except S3Error as e:
            raise UpstreamError(
                f"Failed to generate presigned URL: {str(e)}", "STORAGE_ERROR"
            )
        except Exception as e:
            raise UpstreamError(
                f"Unexpected error generating presigned URL: {str(e)}",
                "STORAGE_ERROR",
            )

        return {
            "object_name": object_name,
            "presigned_url": presigned_url,
            "expires_at": (datetime.now() + timedelta(hours=expires_in_hours)).isoformat(),
            "expires_in_hours": expires_in_hours,
        }


def get_minio_service() -> MinIOService:
    """Dependency to get MinIO service instance"""
    return MinIOService()
