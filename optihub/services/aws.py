"""Shared AWS helpers for service clients."""

from __future__ import annotations

from typing import Any

import boto3
from botocore.config import Config

from optihub.config.settings import settings


def create_boto3_client(
    service_name: str,
    *,
    region_name: str | None = None,
    read_timeout: float | None = None,
) -> Any:
    """Instantiate a boto3 client using configured credentials if available.

    Retries are left to the pipeline's own backoff, so botocore's retry
    mode is pinned to a single attempt.
    """

    client_kwargs: dict[str, Any] = {
        "region_name": region_name or settings.s3.region,
        "config": Config(
            retries={"max_attempts": 1, "mode": "standard"},
            read_timeout=read_timeout or 60,
        ),
    }
    if settings.s3.access_key and settings.s3.secret_key:
        client_kwargs["aws_access_key_id"] = settings.s3.access_key
        client_kwargs["aws_secret_access_key"] = settings.s3.secret_key
    return boto3.client(service_name, **client_kwargs)


__all__ = ["create_boto3_client"]
