"""HTTP client for the recording pipeline API.

Used by tooling and by callers outside the API process that need to start a
stage and wait for it through the public status endpoint.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping
from uuid import UUID

import httpx

from optihub.models.recording import StageStatus
from optihub.pipeline.errors import PermanentInputError, PipelineError, RecordingNotFound
from optihub.pipeline.registry import RecordingStatus, Stage, StageSnapshot
from optihub.pipeline.watcher import WatchContext, WatchResult

logger = logging.getLogger(__name__)


class PipelineClientError(PipelineError):
    code = "pipeline_client_error"
    user_message = "The pipeline API returned an unexpected response."


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def parse_status(payload: Mapping[str, Any]) -> RecordingStatus:
    """Build a ``RecordingStatus`` from the status endpoint's JSON body."""

    stages: dict[Stage, StageSnapshot] = {}
    raw_stages = payload.get("stages") or {}
    for stage in Stage:
        raw = raw_stages.get(stage.value) or {}
        stages[stage] = StageSnapshot(
            stage=stage,
            status=StageStatus(raw.get("status", StageStatus.PENDING.value)),
            updated_at=_parse_datetime(raw.get("updated_at")),
            error=raw.get("error"),
            orphaned=bool(raw.get("orphaned", False)),
        )
    return RecordingStatus(recording_id=UUID(str(payload["recording_id"])), stages=stages)


class PipelineClient:
    """Async wrapper over the pipeline endpoints using ``httpx``."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "PipelineClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self._client.request(method, url, **kwargs)
        if response.status_code == 404:
            raise RecordingNotFound(url=url)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = None
            try:
                body = response.json()
            except ValueError:
                detail = response.text[:200]
            else:
                body = body if isinstance(body, dict) else {"detail": body}
                if body.get("code") == PermanentInputError.code:
                    extra = {
                        key: value
                        for key, value in body.items()
                        if key not in ("detail", "code", "user_message")
                    }
                    raise PermanentInputError(body.get("detail"), **extra) from exc
                detail = body.get("detail")
            raise PipelineClientError(
                f"{method} {url} failed with {response.status_code}: {detail}",
                status=response.status_code,
            ) from exc
        return response.json()

    async def get_status(self, recording_id: UUID) -> RecordingStatus:
        payload = await self._request("GET", f"/recordings/{recording_id}/status")
        return parse_status(payload)

    async def invoke_stage(
        self,
        recording_id: UUID,
        stage: Stage,
        *,
        model_id: str | None = None,
    ) -> RecordingStatus:
        body = {"model_id": model_id} if model_id else {}
        payload = await self._request(
            "POST", f"/recordings/{recording_id}/stages/{stage.value}", json=body
        )
        return parse_status(payload)

    async def run_and_wait(
        self,
        recording_id: UUID,
        stage: Stage,
        *,
        context: WatchContext | None = None,
        model_id: str | None = None,
    ) -> WatchResult:
        """Start ``stage`` and poll until it leaves ``processing``."""

        await self.invoke_stage(recording_id, stage, model_id=model_id)
        ctx = context or WatchContext(recording_id)
        return await ctx.wait_for_stage(self, stage)


__all__ = ["PipelineClient", "PipelineClientError", "parse_status"]
