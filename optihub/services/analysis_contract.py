"""Pydantic model for validating the analysis step's JSON response."""

from __future__ import annotations

import json
from typing import Any, Dict, List

from pydantic import BaseModel, Field, ValidationError, field_validator

from optihub.models.artifacts import ConfidenceLevel


class ResponseContractError(RuntimeError):
    """Raised when the model output cannot be validated."""


class AnalysisResponse(BaseModel):
    summary: str = ""
    actions_taken: List[Dict[str, Any]] = Field(default_factory=list, alias="actionsTaken")
    metrics_mentioned: Dict[str, Any] = Field(default_factory=dict, alias="metricsMentioned")
    strategy: Dict[str, Any] = Field(default_factory=dict)
    timeline: Dict[str, Any] = Field(default_factory=dict)
    confidence_level: ConfidenceLevel = Field(
        default=ConfidenceLevel.MEDIUM, alias="confidenceLevel"
    )

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("confidence_level", mode="before")
    @classmethod
    def normalize_confidence(cls, value: Any) -> Any:
        if value is None or value == "":
            return ConfidenceLevel.MEDIUM
        if isinstance(value, str):
            lowered = value.strip().lower()
            # The model never gets to claim a human revision.
            if lowered == ConfidenceLevel.REVISED.value:
                return ConfidenceLevel.MEDIUM
            return lowered
        return value

    @field_validator("actions_taken", mode="before")
    @classmethod
    def wrap_single_action(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return [value]
        return value

    @classmethod
    def from_json(cls, payload: str) -> "AnalysisResponse":
        cleaned = _clean_json_payload(payload)
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise ResponseContractError(
                f"Analysis response is not valid JSON (line {exc.lineno}, column {exc.colno})."
            ) from None
        if not isinstance(data, dict):
            raise ResponseContractError("Analysis response must be a JSON object.")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
            raise ResponseContractError(
                f"Analysis response failed validation on: {fields}"
            ) from None


def _clean_json_payload(payload: str) -> str:
    """Strip Markdown code fences and keep the outermost JSON object."""

    if not payload:
        return ""

    cleaned = payload.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    cleaned = cleaned.strip()

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end != -1 and end > start:
        cleaned = cleaned[start : end + 1]
    return cleaned


__all__ = ["AnalysisResponse", "ResponseContractError"]
