"""Shared fixtures: temporary SQLite database and scripted AI/storage fakes."""

from __future__ import annotations

import asyncio
import json
import os
import sys
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

os.environ.setdefault("DB_DSN", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from optihub.database import build_session_factory, init_models  # noqa: E402
from optihub.models.recording import Recording  # noqa: E402
from optihub.models.user import User, UserRole  # noqa: E402
from optihub.pipeline.registry import Stage  # noqa: E402
from optihub.services.container import Services, build_services  # noqa: E402
from optihub.services.inference import InferenceRequest, InferenceResult  # noqa: E402
from optihub.services.storage import UploadResult, build_object_key  # noqa: E402
from optihub.utils import hash_password  # noqa: E402

ANALYSIS_JSON = json.dumps(
    {
        "summary": "Paused the weakest ad set and moved budget to the best campaign.",
        "actions_taken": [
            {"type": "pause_campaign", "target": "Ad set B", "reason": "CPA above 200"}
        ],
        "metrics_mentioned": {"cpa": 200, "roas": 2.5},
        "strategy": {"type": "optimize", "duration_days": 7, "success_criteria": "CPA < 150"},
        "timeline": {"reevaluate_date": "2026-10-24"},
        "confidence_level": "high",
    }
)


class FakeStorage:
    """In-memory stand-in for ``ObjectStorage``."""

    bucket = "test-bucket"
    namespace = "optimizations"

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.uploads = 0

    def media_uri(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    async def upload(self, *, account_id, data, content_type, extension, stem=None):
        self.uploads += 1
        key = build_object_key(self.namespace, account_id, stem, extension)
        self.objects[key] = data
        return UploadResult(
            object_key=key,
            url=f"https://{self.bucket}.s3.amazonaws.com/{key}",
            content_type=content_type,
            size_bytes=len(data),
        )

    async def delete(self, key: str) -> bool:
        self.deleted.append(key)
        return self.objects.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return key in self.objects

    async def presigned_url(self, key: str, expires_in: int | None = None) -> str:
        return f"https://signed.example/{key}?expires={expires_in or 3600}"


class FakeInference:
    """Scripted AI client.

    ``queue(step, *items)`` lines up outcomes per step: strings become
    successful artifacts, exceptions are raised, callables are awaited with
    the request and their return value used as the artifact.
    """

    def __init__(self) -> None:
        self.script: dict[str, list[Any]] = defaultdict(list)
        self.calls: list[InferenceRequest] = []

    def queue(self, step: str, *items: Any) -> None:
        self.script[step].extend(items)

    def steps(self) -> list[str]:
        return [call.step for call in self.calls]

    async def invoke(self, request: InferenceRequest) -> InferenceResult:
        self.calls.append(request)
        if self.script[request.step]:
            item = self.script[request.step].pop(0)
        else:
            item = self._default(request)

        if isinstance(item, BaseException):
            raise item
        if callable(item):
            item = await item(request)
        return InferenceResult(
            artifact=item,
            model_used=request.model_id or "fake-model",
            tokens_used=42,
            prompt_sent=f"[{request.step}] {request.input_text or request.audio_ref}",
            language="pt-BR" if request.step == "transcribe" else None,
        )

    @staticmethod
    def _default(request: InferenceRequest) -> str:
        if request.step == "transcribe":
            return "raw transcript of the optimisation call"
        if request.step == "analyze":
            return ANALYSIS_JSON
        return f"{request.step} of: {request.input_text}"


@dataclass
class PipelineEnv:
    session_factory: async_sessionmaker[AsyncSession]
    services: Services
    storage: FakeStorage
    inference: FakeInference
    sleeps: list[float] = field(default_factory=list)

    def run(self, coro):
        return asyncio.run(coro)

    def create_recording(
        self, account_id: str = "acc-1", audio: bytes = b"audio", **metadata: Any
    ) -> Recording:
        async def _create() -> Recording:
            upload = await self.storage.upload(
                account_id=account_id,
                data=audio,
                content_type="audio/webm",
                extension="webm",
            )
            return await self.services.recordings.create(
                account_id=account_id,
                recorded_by="manager@example.com",
                upload=upload,
                **metadata,
            )

        return asyncio.run(_create())

    def complete_stages(self, recording_id, *stages: Stage) -> None:
        for stage in stages or tuple(Stage):
            asyncio.run(self.services.executor.invoke_stage(recording_id, stage))

    def create_user(self, role: UserRole, email: str | None = None, password: str = "password123") -> User:
        async def _create() -> User:
            user = User(
                email=email or f"{role.value}@example.com",
                name=role.value.title(),
                password_hash=hash_password(password),
                role=role,
            )
            async with self.session_factory() as session:
                session.add(user)
                await session.commit()
            return user

        return asyncio.run(_create())

    def fetch(self, model, **filters):
        async def _fetch():
            from sqlalchemy import select

            async with self.session_factory() as session:
                query = select(model).filter_by(**filters)
                return list((await session.execute(query)).scalars().all())

        return asyncio.run(_fetch())

    def update_recording(self, recording_id, **values) -> None:
        async def _update():
            async with self.session_factory() as session:
                recording = await session.get(Recording, recording_id)
                for key, value in values.items():
                    setattr(recording, key, value)
                await session.commit()

        asyncio.run(_update())


@pytest.fixture
def env(tmp_path: Path) -> PipelineEnv:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}",
        poolclass=NullPool,
    )
    asyncio.run(init_models(engine))
    session_factory = build_session_factory(engine)

    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    storage = FakeStorage()
    inference = FakeInference()
    services = build_services(
        session_factory,
        storage=storage,
        inference=inference,
        sleep=fake_sleep,
    )
    yield PipelineEnv(
        session_factory=session_factory,
        services=services,
        storage=storage,
        inference=inference,
        sleeps=sleeps,
    )
    asyncio.run(engine.dispose())


@pytest.fixture
def fixed_clock() -> Callable[[], Any]:
    """Mutable clock for expiry tests: ``fixed_clock.now`` can be reassigned."""

    from optihub.models.base import utcnow

    class _Clock:
        def __init__(self) -> None:
            self.now = utcnow()

        def __call__(self):
            return self.now

    return _Clock()
