"""S3 storage helpers for recording audio and transcription output."""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from optihub.config.settings import settings
from optihub.services.aws import create_boto3_client

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Raised when S3 asset persistence fails."""


@dataclass(frozen=True)
class UploadResult:
    object_key: str
    url: str
    content_type: str
    size_bytes: int


def build_object_key(
    namespace: str,
    account_id: str,
    stem: str | None,
    extension: str,
) -> str:
    """Return ``{namespace}/{account_id}/{stem}.{ext}``; stem defaults to a timestamp."""

    if not stem:
        stem = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    return f"{namespace.strip('/')}/{account_id}/{stem}.{extension.lstrip('.')}"


class ObjectStorage:
    """Thin async facade over a single S3 bucket."""

    def __init__(
        self,
        *,
        bucket: str | None = None,
        region: str | None = None,
        namespace: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.bucket = bucket or settings.s3.bucket_name
        self.region = region or settings.s3.region
        self.namespace = namespace or settings.s3.audio_namespace
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = create_boto3_client("s3", region_name=self.region)
        return self._client

    def object_url(self, key: str) -> str:
        if self.region == "us-east-1":
            return f"https://{self.bucket}.s3.amazonaws.com/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def media_uri(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    async def upload(
        self,
        *,
        account_id: str,
        data: bytes,
        content_type: str,
        extension: str,
        stem: str | None = None,
    ) -> UploadResult:
        """Upload raw audio and return where it landed."""

        if not data:
            raise StorageError("Audio payload for upload was empty.")
        if not self.bucket:
            raise StorageError("S3 bucket name is not configured.")

        object_key = build_object_key(self.namespace, account_id, stem, extension)
        try:
            await run_in_threadpool(
                self.client.put_object,
                Bucket=self.bucket,
                Key=object_key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to upload recording audio: {exc}") from exc

        logger.info("Uploaded %s bytes to s3://%s/%s", len(data), self.bucket, object_key)
        return UploadResult(
            object_key=object_key,
            url=self.object_url(object_key),
            content_type=content_type,
            size_bytes=len(data),
        )

    async def delete(self, key: str) -> bool:
        """Best-effort removal; failures are logged and reported as ``False``."""

        try:
            await run_in_threadpool(
                self.client.delete_object, Bucket=self.bucket, Key=key
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Could not delete s3://%s/%s: %s", self.bucket, key, exc)
            return False
        return True

    async def exists(self, key: str) -> bool:
        try:
            await run_in_threadpool(self.client.head_object, Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"Failed to inspect {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to inspect {key}: {exc}") from exc
        return True

    async def read_json(self, key: str) -> Any:
        try:
            response = await run_in_threadpool(
                self.client.get_object, Bucket=self.bucket, Key=key
            )
            body = await run_in_threadpool(response["Body"].read)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to read {key}: {exc}") from exc
        return json.loads(body)

    async def presigned_url(self, key: str, expires_in: int | None = None) -> str:
        """Time-limited GET URL so users can download the raw input again."""

        try:
            return await run_in_threadpool(
                self.client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in or settings.s3.recovery_url_expires_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to sign download URL for {key}: {exc}") from exc


class UploadCache:
    """Map of client-generated slot ids to uploads that already succeeded.

    A retried submission with the same slot id reuses the stored object
    instead of uploading the audio again.
    """

    def __init__(self, max_entries: int = 512) -> None:
        self._entries: OrderedDict[str, UploadResult] = OrderedDict()
        self._max_entries = max_entries

    def get(self, slot_id: str | None) -> UploadResult | None:
        if not slot_id:
            return None
        result = self._entries.get(slot_id)
        if result is not None:
            self._entries.move_to_end(slot_id)
        return result

    def put(self, slot_id: str | None, result: UploadResult) -> None:
        if not slot_id:
            return
        self._entries[slot_id] = result
        self._entries.move_to_end(slot_id)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def discard(self, slot_id: str | None) -> None:
        if slot_id:
            self._entries.pop(slot_id, None)

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "ObjectStorage",
    "StorageError",
    "UploadCache",
    "UploadResult",
    "build_object_key",
]
