"""S3 storage facade and the upload slot cache."""

from __future__ import annotations

import asyncio

import boto3
import pytest
from botocore.stub import Stubber

from optihub.services.storage import (
    ObjectStorage,
    StorageError,
    UploadCache,
    UploadResult,
    build_object_key,
)


@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def _upload(key: str) -> UploadResult:
    return UploadResult(object_key=key, url=f"https://x/{key}", content_type="audio/webm", size_bytes=3)


def test_build_object_key():
    key = build_object_key("/optimizations/", "acc-9", "call-1", ".webm")

    assert key == "optimizations/acc-9/call-1.webm"


def test_build_object_key_defaults_to_timestamp():
    key = build_object_key("optimizations", "acc-9", None, "mp3")

    assert key.startswith("optimizations/acc-9/")
    assert key.endswith(".mp3")


def test_upload_puts_object(s3_client):
    storage = ObjectStorage(bucket="bucket", region="us-east-1", client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_response(
            "put_object",
            {},
            {
                "Bucket": "bucket",
                "Key": "optimizations/acc-1/call.webm",
                "Body": b"abc",
                "ContentType": "audio/webm",
            },
        )
        result = asyncio.run(
            storage.upload(
                account_id="acc-1",
                data=b"abc",
                content_type="audio/webm",
                extension="webm",
                stem="call",
            )
        )

    assert result.object_key == "optimizations/acc-1/call.webm"
    assert result.url == "https://bucket.s3.amazonaws.com/optimizations/acc-1/call.webm"
    assert result.size_bytes == 3


def test_upload_rejects_empty_payload(s3_client):
    storage = ObjectStorage(bucket="bucket", client=s3_client)

    with pytest.raises(StorageError):
        asyncio.run(
            storage.upload(account_id="a", data=b"", content_type="audio/webm", extension="webm")
        )


def test_delete_is_best_effort(s3_client):
    storage = ObjectStorage(bucket="bucket", client=s3_client)
    with Stubber(s3_client) as stubber:
        stubber.add_client_error(
            "delete_object", service_error_code="AccessDenied", http_status_code=403
        )
        removed = asyncio.run(storage.delete("optimizations/acc-1/call.webm"))

    assert removed is False


def test_presigned_url_targets_object(s3_client):
    storage = ObjectStorage(bucket="bucket", client=s3_client)

    url = asyncio.run(storage.presigned_url("optimizations/acc-1/call.webm", expires_in=120))

    assert "optimizations/acc-1/call.webm" in url
    assert "Expires=" in url or "X-Amz-Expires=120" in url


def test_upload_cache_reuses_slot():
    cache = UploadCache()
    cache.put("slot-1", _upload("a"))

    assert cache.get("slot-1").object_key == "a"
    assert cache.get(None) is None
    cache.discard("slot-1")
    assert cache.get("slot-1") is None


def test_upload_cache_evicts_oldest():
    cache = UploadCache(max_entries=2)
    cache.put("one", _upload("1"))
    cache.put("two", _upload("2"))
    cache.get("one")
    cache.put("three", _upload("3"))

    assert len(cache) == 2
    assert cache.get("two") is None
    assert cache.get("one") is not None
