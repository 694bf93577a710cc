"""Skill catalogue and model-based intent matching that produce guidance for a run."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .apps import AppIndex
from .info_pool import NO_SKILL_MATCH
from .result import InferenceResult

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.5

INTENT_PROMPT = """You are an intent recognition assistant. Pick the skill that best matches the user's request.

Available skills:
{skills}

User request: "{query}"

Return only a JSON object:
{{
  "skill_id": "matching skill id, or null when nothing fits",
  "confidence": 0.0-1.0,
  "reasoning": "short justification"
}}
Match on intent even when the wording differs. Use null when no skill fits."""


class ExecutionType(str, Enum):
    DELEGATION = "delegation"
    GUI_AUTOMATION = "gui_automation"


class RelatedApp(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    package: str = Field(alias="package_name")
    name: str
    type: ExecutionType = ExecutionType.GUI_AUTOMATION
    deep_link: Optional[str] = None
    steps: List[str] = Field(default_factory=list)
    priority: int = 0
    description: Optional[str] = None


class SkillConfig(BaseModel):
    id: str
    name: str
    description: str = ""
    category: str = ""
    keywords: List[str] = Field(default_factory=list)
    related_apps: List[RelatedApp] = Field(default_factory=list)
    prompt_hint: Optional[str] = None


@dataclass
class IntentMatch:
    skill_id: str
    confidence: float
    reasoning: str


class TextPredictor(Protocol):
    async def predict(self, prompt: str, images=()) -> InferenceResult[str]: ...


class SkillRegistry:
    """Skills loaded from a JSON list, filtered against the installed apps."""

    def __init__(self, skills: List[SkillConfig], app_index: Optional[AppIndex] = None) -> None:
        self._skills: Dict[str, SkillConfig] = {skill.id: skill for skill in skills}
        self.app_index = app_index

    @classmethod
    def load(cls, path: Path, app_index: Optional[AppIndex] = None) -> "SkillRegistry":
        try:
            records = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Skills file is not valid JSON: {path}") from exc
        if isinstance(records, dict):
            records = records.get("skills", [])
        skills: List[SkillConfig] = []
        for record in records:
            try:
                skills.append(SkillConfig.model_validate(record))
            except ValidationError as exc:
                raise ValueError(f"Invalid skill definition in {path}: {exc}") from exc
        logger.info("Loaded %s skills from %s", len(skills), path)
        return cls(skills, app_index)

    def __len__(self) -> int:
        return len(self._skills)

    def get(self, skill_id: str) -> Optional[SkillConfig]:
        return self._skills.get(skill_id)

    def all(self) -> List[SkillConfig]:
        return list(self._skills.values())

    def is_app_installed(self, package: str) -> bool:
        if self.app_index is None:
            return True
        return self.app_index.is_installed(package)

    def installed_apps_for(self, skill: SkillConfig) -> List[RelatedApp]:
        apps = [app for app in skill.related_apps if self.is_app_installed(app.package)]
        return sorted(apps, key=lambda app: app.priority, reverse=True)


class LLMSkillAdvisor:
    """Ask the model which skill fits the instruction and render guidance for it."""

    def __init__(self, registry: SkillRegistry, vlm: TextPredictor) -> None:
        self.registry = registry
        self.vlm = vlm

    async def match_intent(self, query: str) -> Optional[IntentMatch]:
        skills_info = self._describe_skills()
        if not skills_info:
            return None
        result = await self.vlm.predict(INTENT_PROMPT.format(skills=skills_info, query=query))
        if not result.ok:
            logger.warning("Intent matching failed: %s", result)
            return None
        return parse_intent_response(result.value)

    async def generate_context(self, instruction: str) -> str:
        match = await self.match_intent(instruction)
        if match is None or match.confidence < MIN_CONFIDENCE:
            return NO_SKILL_MATCH
        skill = self.registry.get(match.skill_id)
        if skill is None:
            logger.info("Model picked unknown skill %s", match.skill_id)
            return NO_SKILL_MATCH
        apps = self.registry.installed_apps_for(skill)
        if not apps:
            logger.info("No installed app for skill %s", skill.id)
            return NO_SKILL_MATCH
        logger.info("Matched skill %s (%.2f): %s", skill.id, match.confidence, match.reasoning)
        return render_context(skill, apps[0], match.confidence)

    def _describe_skills(self) -> str:
        lines: List[str] = []
        for skill in self.registry.all():
            apps = self.registry.installed_apps_for(skill)
            if not apps:
                continue
            lines.extend(
                [
                    f"- ID: {skill.id}",
                    f"  Name: {skill.name}",
                    f"  Description: {skill.description}",
                    f"  Keywords: {', '.join(skill.keywords)}",
                    f"  Apps: {', '.join(app.name for app in apps)}",
                ]
            )
        return "\n".join(lines)


def parse_intent_response(response: str) -> Optional[IntentMatch]:
    payload_str = response.replace("```json", "").replace("```", "").strip()
    start, end = payload_str.find("{"), payload_str.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        payload = json.loads(payload_str[start : end + 1])
    except json.JSONDecodeError:
        logger.debug("Intent response is not JSON: %r", response)
        return None
    skill_id = payload.get("skill_id")
    if not skill_id or skill_id == "null":
        return None
    try:
        confidence = float(payload.get("confidence") or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0
    return IntentMatch(skill_id=str(skill_id), confidence=confidence, reasoning=str(payload.get("reasoning") or ""))


def render_context(skill: SkillConfig, app: RelatedApp, confidence: float) -> str:
    lines = [
        "Matched skill based on user intent:",
        "",
        f"[{skill.name}] (Confidence: {int(confidence * 100)}%)",
        f"Description: {skill.description}",
        "",
    ]
    if skill.prompt_hint:
        lines.extend([f"Important: {skill.prompt_hint}", ""])
    delegated = app.type is ExecutionType.DELEGATION
    lines.append(f"Recommended App: {app.name} ({'Delegation' if delegated else 'GUI Automation'})")
    if delegated and app.deep_link:
        lines.append(f"DeepLink: {app.deep_link}")
    if app.steps:
        lines.append(f"Steps: {' -> '.join(app.steps)}")
    if app.description:
        lines.append(f"Note: {app.description}")
    lines.append("")
    if delegated:
        lines.append(f"Suggestion: Use the DeepLink to open {app.name} directly.")
    else:
        lines.append(f"Suggestion: Use GUI automation to operate {app.name}.")
    return "\n".join(lines)


__all__ = [
    "ExecutionType",
    "IntentMatch",
    "LLMSkillAdvisor",
    "RelatedApp",
    "SkillConfig",
    "SkillRegistry",
    "parse_intent_response",
    "render_context",
]
