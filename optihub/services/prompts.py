"""System/user prompt construction for each AI step of the pipeline.

Every step has a default system prompt. The user prompt carries the stage
input and, for the ``improve_*`` steps, the editor's optional instruction.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from optihub.services.inference import InferenceRequest

# Reply format the analysis parser expects; appended to custom analyze prompts too.
ANALYSIS_REPLY_FORMAT = (
    "Reply only with valid JSON using exactly these keys:\n"
    " {\n"
    '  "summary": string,\n'
    '  "actions_taken": [{"type": string, "target": string, "reason": string, '
    '"expected_impact": string | null}],\n'
    '  "metrics_mentioned": object,\n'
    '  "strategy": {"type": "test" | "scale" | "optimize" | "maintain" | "pivot", '
    '"duration_days": number, "success_criteria": string, "hypothesis": string | null},\n'
    '  "timeline": {"reevaluate_date": string, "milestones": array},\n'
    '  "confidence_level": "high" | "medium" | "low"\n'
    " }.\n"
    "Do not write any text before or after the JSON."
)

# Default personas per step.
PROMPT_TEMPLATES = {
    "process": (
        "You organise raw transcripts of paid-media optimisation sessions. "
        "Fix punctuation, split the text into topics with short headings and "
        "keep every campaign name, number and decision exactly as spoken."
    ),
    "analyze": (
        "You extract structured context from an organised optimisation transcript. "
        + ANALYSIS_REPLY_FORMAT
    ),
    "extract": (
        "You write the client-facing extract of an optimisation session: a short, "
        "plain-language list of what changed, why, and when results will be reviewed."
    ),
    "improve_transcript": (
        "You correct transcription mistakes in a raw transcript. Keep the speaker's "
        "wording; only fix misheard words, names and numbers."
    ),
    "improve_processed": (
        "You refine an organised optimisation transcript. Keep its topic structure "
        "and do not invent facts."
    ),
    "improve_extract": (
        "You polish a client-facing optimisation extract. Keep it short and factual."
    ),
}

DEFAULT_INSTRUCTION = "Improve clarity and correctness without changing the meaning."


@dataclass(frozen=True)
class PromptBundle:
    system_prompt: str
    user_prompt: str

    def describe(self) -> str:
        """Flattened form stored in the audit log."""

        return f"[system]\n{self.system_prompt}\n\n[user]\n{self.user_prompt}"


def system_prompt_for(step: str) -> str:
    try:
        return PROMPT_TEMPLATES[step]
    except KeyError:
        raise ValueError(f"No prompt template for step '{step}'.") from None


def build_prompt(request: "InferenceRequest") -> PromptBundle:
    """Compose system/user prompts for a text-model request."""

    system_prompt = request.system_prompt or system_prompt_for(request.step)
    if request.system_prompt and request.step == "analyze":
        system_prompt = f"{request.system_prompt}\n\n{ANALYSIS_REPLY_FORMAT}"
    sections: list[str] = []

    if request.step.startswith("improve_"):
        sections.append(f"Instruction: {request.instruction or DEFAULT_INSTRUCTION}")
        sections.append(f"Current text:\n{request.input_text or ''}")
        sections.append("Reply with the full improved text only.")
    else:
        if request.variables:
            sections.append(
                "Context:\n"
                + json.dumps(dict(request.variables), ensure_ascii=False, indent=2)
            )
        if request.instruction:
            sections.append(f"Additional instruction: {request.instruction}")
        sections.append(f"Input:\n{request.input_text or ''}")

    return PromptBundle(system_prompt=system_prompt, user_prompt="\n\n".join(sections))


def describe_request(request: "InferenceRequest") -> str:
    """Prompt text recorded for an attempt, including audio-only requests."""

    if request.audio_ref:
        return f"[transcribe] {request.audio_ref}"
    return build_prompt(request).describe()


__all__ = [
    "ANALYSIS_REPLY_FORMAT",
    "DEFAULT_INSTRUCTION",
    "PROMPT_TEMPLATES",
    "PromptBundle",
    "build_prompt",
    "describe_request",
    "system_prompt_for",
]
