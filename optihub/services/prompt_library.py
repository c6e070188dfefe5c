"""Editable stage prompts keyed by ad platform, campaign objective and stage.

A recording's ``platform`` and ``selected_objectives`` pick the prompt for
each stage. The first selected objective that has a prompt wins; without a
match the step falls back to its built-in persona. Edits keep one previous
version, like the stage artifacts.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from optihub.models.prompt import OptimizationPrompt, PromptType
from optihub.models.recording import AdPlatform, Recording
from optihub.pipeline.errors import PromptConflict, PromptNotFound
from optihub.pipeline.versions import FieldSpec, pop_version, push_version

logger = logging.getLogger(__name__)

PROMPT_FIELD = FieldSpec(
    model=OptimizationPrompt,
    value="prompt_text",
    previous="previous_version",
    count="edit_count",
    edited_at="updated_at",
    edited_by="edited_by",
)

PLACEHOLDERS = ("account_name", "objectives", "platform", "context")


def prompt_variables(recording: Recording) -> dict[str, Any]:
    """Recording metadata substituted into prompts and sent as request context."""

    platform = recording.platform
    return {
        "account_id": recording.account_id,
        "platform": platform.value if isinstance(platform, AdPlatform) else platform,
        "objectives": list(recording.selected_objectives or []),
        "context": recording.override_context,
    }


def render_prompt(text: str, variables: Mapping[str, Any]) -> str:
    """Fill ``{account_name}``, ``{objectives}``, ``{platform}`` and ``{context}``.

    Unknown or empty placeholders are left as written.
    """

    values = {
        "account_name": variables.get("account_name") or variables.get("account_id"),
        "objectives": ", ".join(variables.get("objectives") or []),
        "platform": variables.get("platform"),
        "context": variables.get("context"),
    }
    rendered = text
    for name in PLACEHOLDERS:
        if values[name]:
            rendered = rendered.replace("{" + name + "}", str(values[name]))
    return rendered


async def resolve_system_prompt(
    session: AsyncSession,
    recording: Recording,
    prompt_type: PromptType,
) -> str | None:
    """Rendered prompt for the recording's platform and objectives, if one exists."""

    objectives = list(recording.selected_objectives or [])
    if recording.platform is None or not objectives:
        return None

    result = await session.execute(
        select(OptimizationPrompt).where(
            OptimizationPrompt.platform == recording.platform,
            OptimizationPrompt.prompt_type == prompt_type,
            OptimizationPrompt.objective.in_(objectives),
        )
    )
    by_objective = {prompt.objective: prompt for prompt in result.scalars().all()}
    for objective in objectives:
        prompt = by_objective.get(objective)
        if prompt is not None:
            logger.debug(
                "Using %s prompt %s for recording %s (objective=%s)",
                prompt_type.value,
                prompt.id,
                recording.id,
                objective,
            )
            return render_prompt(prompt.prompt_text, prompt_variables(recording))
    return None


class PromptService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _load(self, session: AsyncSession, prompt_id: UUID) -> OptimizationPrompt:
        prompt = await session.get(OptimizationPrompt, prompt_id)
        if prompt is None:
            raise PromptNotFound(prompt_id=str(prompt_id))
        return prompt

    async def list_prompts(
        self,
        *,
        platform: AdPlatform | None = None,
        objective: str | None = None,
        prompt_type: PromptType | None = None,
    ) -> Sequence[OptimizationPrompt]:
        query = select(OptimizationPrompt).order_by(
            OptimizationPrompt.platform,
            OptimizationPrompt.objective,
            OptimizationPrompt.prompt_type,
        )
        if platform is not None:
            query = query.where(OptimizationPrompt.platform == platform)
        if objective:
            query = query.where(OptimizationPrompt.objective == objective)
        if prompt_type is not None:
            query = query.where(OptimizationPrompt.prompt_type == prompt_type)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get(self, prompt_id: UUID) -> OptimizationPrompt:
        async with self._session_factory() as session:
            return await self._load(session, prompt_id)

    async def create(
        self,
        *,
        platform: AdPlatform,
        objective: str,
        prompt_type: PromptType,
        prompt_text: str,
        variables: Iterable[str] = (),
        is_default: bool = False,
        editor: str | None = None,
    ) -> OptimizationPrompt:
        prompt = OptimizationPrompt(
            platform=platform,
            objective=objective,
            prompt_type=prompt_type,
            prompt_text=prompt_text,
            variables=list(variables),
            is_default=is_default,
            edited_by=editor,
            edit_count=0,
        )
        async with self._session_factory() as session:
            session.add(prompt)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise PromptConflict(
                    platform=platform.value,
                    objective=objective,
                    prompt_type=prompt_type.value,
                ) from exc
        logger.info(
            "Created %s prompt for %s/%s editor=%s",
            prompt_type.value,
            platform.value,
            objective,
            editor,
        )
        return prompt

    async def update(
        self, prompt_id: UUID, prompt_text: str, *, editor: str
    ) -> tuple[OptimizationPrompt, bool]:
        """Replace the prompt text, keeping the old text as the previous version."""

        async with self._session_factory() as session:
            prompt = await self._load(session, prompt_id)
            changed = push_version(prompt, PROMPT_FIELD, prompt_text, editor=editor)
            if changed:
                await session.commit()
                logger.info("Updated prompt %s editor=%s", prompt_id, editor)
            return prompt, changed

    async def undo(
        self, prompt_id: UUID, *, editor: str
    ) -> tuple[OptimizationPrompt, bool]:
        async with self._session_factory() as session:
            prompt = await self._load(session, prompt_id)
            changed = pop_version(prompt, PROMPT_FIELD, editor=editor)
            if changed:
                await session.commit()
                logger.info("Restored previous prompt %s editor=%s", prompt_id, editor)
            return prompt, changed


__all__ = [
    "PLACEHOLDERS",
    "PROMPT_FIELD",
    "PromptService",
    "prompt_variables",
    "render_prompt",
    "resolve_system_prompt",
]
