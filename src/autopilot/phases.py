"""Prompt builders and response parsers for the plan / decide / reflect / note phases."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from .info_pool import InfoPool
from .models import Action
from .outcome import Outcome, classify_outcome

logger = logging.getLogger(__name__)

SENSITIVE_MARKER = "STOP_SENSITIVE"
FINISHED_MARKER = "Finished"

_SECTION_HEADER = re.compile(r"^[ \t]*#{2,}\s*(.+?)\s*#{2,}[ \t]*$", re.MULTILINE)

ACTION_SPACE = (
    "- Click: {\"action\": \"click\", \"coordinate\": [x, y]}\n"
    "- Double tap: {\"action\": \"double_tap\", \"coordinate\": [x, y]}\n"
    "- Long press: {\"action\": \"long_press\", \"coordinate\": [x, y]}\n"
    "- Swipe: {\"action\": \"swipe\", \"coordinate\": [x1, y1], \"coordinate2\": [x2, y2]}\n"
    "- Type text into the focused field: {\"action\": \"type\", \"text\": \"...\"}\n"
    "- System button: {\"action\": \"system_button\", \"button\": \"Back\" | \"Home\" | \"Enter\"}\n"
    "- Open an app: {\"action\": \"open_app\", \"text\": \"app name\"}\n"
    "- Wait for loading: {\"action\": \"wait\", \"duration\": seconds}\n"
    "- Answer the user and finish: {\"action\": \"answer\", \"text\": \"...\"}\n"
    "- Hand over to the user (login, captcha, payment): {\"action\": \"take_over\", \"message\": \"...\"}\n"
    "Coordinates are in a 0-999 space relative to the screen width and height.\n"
    "Add \"need_confirm\": true and a \"message\" to any action that sends, pays, deletes or posts something."
)


def parse_sections(text: str) -> Dict[str, str]:
    """Split a ``### Header ###`` formatted response into lower-cased sections."""
    sections: Dict[str, str] = {}
    matches = list(_SECTION_HEADER.finditer(text or ""))
    for idx, match in enumerate(matches):
        end = matches[idx + 1].start() if idx + 1 < len(matches) else len(text)
        sections[match.group(1).strip().lower()] = text[match.end() : end].strip()
    return sections


def _history_lines(info_pool: InfoPool, limit: int = 5) -> List[str]:
    lines: List[str] = []
    for action, summary, outcome, error in info_pool.recent_history(limit):
        line = f"- {action.describe()} | {summary} | outcome={outcome.value}"
        if outcome is not Outcome.SUCCESS and error:
            line += f" | error={error}"
        lines.append(line)
    return lines


def _skill_lines(info_pool: InfoPool) -> List[str]:
    if not info_pool.has_skill_context:
        return []
    return ["### Skill Guidance ###", info_pool.skill_context.strip(), ""]


@dataclass
class PlanResult:
    thought: str
    completed_subgoal: str
    plan: str

    @property
    def is_sensitive(self) -> bool:
        return SENSITIVE_MARKER in self.plan

    @property
    def is_finished(self) -> bool:
        # Short plans mentioning the marker are treated as completion.
        return FINISHED_MARKER in self.plan and len(self.plan) < 20


@dataclass
class DecisionResult:
    thought: str
    action: Optional[Action]
    action_str: str
    description: str


@dataclass
class ReflectionResult:
    outcome: Outcome
    error_description: str


class Manager:
    """Planning phase: maintains the high-level plan and the completed subgoal."""

    def get_prompt(self, info_pool: InfoPool) -> str:
        lines = [
            "You are an agent who can operate an Android phone on behalf of a user. "
            "Your job is to track progress and devise a high-level plan for the user's request.",
            "",
            "### User Request ###",
            info_pool.instruction,
            "",
        ]
        lines.extend(_skill_lines(info_pool))
        if info_pool.installed_apps:
            lines.extend(["### Installed Apps ###", ", ".join(info_pool.installed_apps), ""])

        if not info_pool.plan:
            lines.extend(
                [
                    "This is the first step. Study the screenshot and break the request into subgoals.",
                    "If the request needs an app, plan to open it directly instead of searching the home screen.",
                ]
            )
        else:
            lines.extend(
                [
                    "### Current Plan ###",
                    info_pool.plan,
                    "",
                    "### Previous Subgoal Completed ###",
                    info_pool.completed_plan or "None",
                    "",
                    "### Progress Status ###",
                    info_pool.progress_status or "No progress yet.",
                    "",
                    "### Last Action ###",
                    f"{info_pool.last_action.describe() if info_pool.last_action else 'None'}: {info_pool.last_summary}",
                    "",
                ]
            )
            history = _history_lines(info_pool)
            if history:
                lines.extend(["### Recent Actions ###", *history, ""])
            if info_pool.error_flag_plan:
                lines.extend(
                    [
                        "### Potentially Stuck! ###",
                        f"The last {info_pool.err_to_manager_thresh} actions failed. "
                        "Revise the plan with a different approach instead of repeating them.",
                        "",
                    ]
                )
            if info_pool.important_notes:
                lines.extend(["### Important Notes ###", info_pool.important_notes, ""])
            lines.append("Assess the current screenshot, update the completed subgoal and revise the plan if needed.")

        lines.extend(
            [
                f"If every subgoal is done, output only \"{FINISHED_MARKER}\" as the plan.",
                f"If the next step requires entering a payment password or another sensitive operation, "
                f"output only \"{SENSITIVE_MARKER}\" as the plan.",
                "",
                "Respond in exactly this format:",
                "### Thought ###",
                "Your reasoning about the progress and the plan.",
                "### Historical Operations ###",
                "The subgoals completed so far.",
                "### Plan ###",
                "A numbered list of the remaining subgoals.",
            ]
        )
        return "\n".join(lines)

    def parse_response(self, response: str) -> PlanResult:
        sections = parse_sections(response)
        return PlanResult(
            thought=sections.get("thought", ""),
            completed_subgoal=sections.get("historical operations", ""),
            plan=sections.get("plan", "").strip(),
        )


class Executor:
    """Decision phase: picks the next atomic action."""

    def get_prompt(self, info_pool: InfoPool) -> str:
        lines = [
            "### User Request ###",
            info_pool.instruction,
            "",
            "### Overall Plan ###",
            info_pool.plan or "No plan yet.",
            "",
            "### Progress Status ###",
            info_pool.progress_status or "No progress yet.",
            "",
        ]
        lines.extend(_skill_lines(info_pool))
        if info_pool.installed_apps:
            lines.extend(["### Installed Apps ###", ", ".join(info_pool.installed_apps), ""])
        if info_pool.important_notes:
            lines.extend(["### Important Notes ###", info_pool.important_notes, ""])
        if info_pool.last_action is not None:
            outcome = info_pool.action_outcomes[-1].value if info_pool.action_outcomes else "?"
            lines.extend(
                [
                    "### Latest Action ###",
                    f"{info_pool.last_action.describe()} ({info_pool.last_summary}), outcome={outcome}",
                ]
            )
            if info_pool.error_descriptions and info_pool.error_descriptions[-1] and outcome != Outcome.SUCCESS.value:
                lines.append(f"Error: {info_pool.error_descriptions[-1]}")
            lines.append("")
        lines.extend(
            [
                f"The screenshot shows the current screen ({info_pool.screen_width}x{info_pool.screen_height}).",
                "",
                "### Available Actions ###",
                ACTION_SPACE,
                "",
                "Respond in exactly this format:",
                "### Thought ###",
                "Why this action moves the plan forward.",
                "### Action ###",
                "A single JSON object from the available actions.",
                "### Description ###",
                "One short sentence describing the action and its expected effect.",
            ]
        )
        return "\n".join(lines)

    def parse_response(self, response: str) -> DecisionResult:
        sections = parse_sections(response)
        action_str = sections.get("action", "")
        return DecisionResult(
            thought=sections.get("thought", ""),
            action=parse_action(action_str),
            action_str=action_str,
            description=sections.get("description", ""),
        )


class ActionReflector:
    """Reflection phase: judges the before/after screenshot pair."""

    def get_prompt(self, info_pool: InfoPool) -> str:
        action = info_pool.last_action.describe() if info_pool.last_action else "None"
        lines = [
            "You are verifying whether the last action on an Android phone had the expected effect.",
            "The first screenshot was taken before the action and the second one after it.",
            "",
            "### User Request ###",
            info_pool.instruction,
            "",
            "### Progress Status ###",
            info_pool.progress_status or "No progress yet.",
            "",
            "### Latest Action ###",
            action,
            "",
            "### Expectation ###",
            info_pool.last_summary or "None",
            "",
            "Choose one outcome:",
            "A: Successful. The result matches the expectation.",
            "B: Uncertain. The screen changed but it is unclear whether the expectation is met.",
            "C: Failed. The action led to a wrong page or produced no change.",
            "",
            "Respond in exactly this format:",
            "### Outcome ###",
            "A, B or C",
            "### Error Description ###",
            "If the action failed, describe what went wrong. Otherwise write None.",
        ]
        return "\n".join(lines)

    def parse_response(self, response: str) -> ReflectionResult:
        sections = parse_sections(response)
        outcome = classify_outcome(sections.get("outcome", ""))
        error = sections.get("error description", "")
        if outcome is Outcome.SUCCESS and not error:
            error = "None"
        return ReflectionResult(outcome=outcome, error_description=error)


class Notetaker:
    """Note phase: keeps task-relevant facts seen on screen."""

    def get_prompt(self, info_pool: InfoPool) -> str:
        lines = [
            "You are helping an agent operate an Android phone. Record content on the current screen "
            "that will be needed later for the user's request.",
            "",
            "### User Request ###",
            info_pool.instruction,
            "",
            "### Overall Plan ###",
            info_pool.plan or "No plan yet.",
            "",
            "### Progress Status ###",
            info_pool.progress_status or "No progress yet.",
            "",
            "### Existing Important Notes ###",
            info_pool.important_notes or "No important notes recorded.",
            "",
            "Update the notes, keeping earlier facts that are still relevant.",
            "",
            "Respond in exactly this format:",
            "### Important Notes ###",
            "The updated notes.",
        ]
        return "\n".join(lines)

    def parse_response(self, response: str) -> str:
        sections = parse_sections(response)
        return sections.get("important notes", "").strip()


def parse_action(action_str: str) -> Optional[Action]:
    payload_str = _extract_json(action_str)
    if not payload_str:
        return None
    try:
        payload = json.loads(payload_str)
    except json.JSONDecodeError:
        logger.debug("Action is not valid JSON: %r", payload_str)
        return None
    if not isinstance(payload, dict):
        return None
    try:
        return Action.from_payload(payload)
    except (ValueError, OverflowError) as exc:
        logger.debug("Action rejected: %s (%s)", payload, exc)
        return None


def _extract_json(content: str) -> str:
    if not content:
        return ""
    trimmed = _remove_code_fences(content.strip())
    trimmed = _strip_json_prefix(trimmed)
    if trimmed.startswith("{") and trimmed.endswith("}"):
        return trimmed
    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start != -1 and end != -1 and end > start:
        return trimmed[start : end + 1]
    return ""


def _remove_code_fences(text: str) -> str:
    if text.startswith("```"):
        fence = text.split("```")
        if len(fence) >= 3:
            return fence[1].strip()
        return text.lstrip("`")
    return text


def _strip_json_prefix(text: str) -> str:
    if not text:
        return ""
    lowered = text.lower()
    if lowered.startswith("json"):
        return text[4:].lstrip(": \n\t")
    return text


__all__ = [
    "ActionReflector",
    "DecisionResult",
    "Executor",
    "FINISHED_MARKER",
    "Manager",
    "Notetaker",
    "PlanResult",
    "ReflectionResult",
    "SENSITIVE_MARKER",
    "parse_action",
    "parse_sections",
]
