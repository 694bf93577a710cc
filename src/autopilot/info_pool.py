"""Task context shared by every phase of a run."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .conversation import ConversationMemory
from .models import Action
from .outcome import Outcome, should_escalate

NO_SKILL_MATCH = "No relevant skill or available app found. Please use general GUI automation."


class InfoPool(BaseModel):
    """Everything the loop phases read and write across steps.

    Owned by the orchestrator for a single run. The three history lists are only
    extended through ``record_step`` so they stay positionally aligned.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    instruction: str
    screen_width: int = 1080
    screen_height: int = 2400
    installed_apps: List[str] = Field(default_factory=list)
    skill_context: str = ""

    # Planning (Manager sets these)
    plan: str = ""
    completed_plan: str = ""
    progress_status: str = ""

    # Action tracking
    action_history: List[Action] = Field(default_factory=list)
    summary_history: List[str] = Field(default_factory=list)
    action_outcomes: List[Outcome] = Field(default_factory=list)
    error_descriptions: List[str] = Field(default_factory=list)
    last_action: Optional[Action] = None
    last_summary: str = ""
    last_action_thought: str = ""

    # Error handling
    error_flag_plan: bool = False
    err_to_manager_thresh: int = 2

    # Notes
    use_notes: bool = False
    important_notes: str = ""

    conversation: Optional[ConversationMemory] = Field(default=None, exclude=True)

    @property
    def has_skill_context(self) -> bool:
        text = self.skill_context.strip()
        return bool(text) and text != NO_SKILL_MATCH

    def record_step(self, action: Action, summary: str, outcome: Outcome, error_description: str) -> None:
        if outcome is Outcome.PENDING:
            raise ValueError("Cannot record a pending outcome")
        self.action_history.append(action)
        self.summary_history.append(summary)
        self.action_outcomes.append(outcome)
        self.error_descriptions.append(error_description)
        self.last_action = action
        self.last_summary = summary

    def refresh_error_flag(self) -> bool:
        self.error_flag_plan = should_escalate(self.action_outcomes, self.err_to_manager_thresh)
        return self.error_flag_plan

    def should_skip_planning(self) -> bool:
        """Retry the decision directly after an unparseable action, unless escalating."""
        if self.error_flag_plan or not self.action_history:
            return False
        return self.action_history[-1].type == "invalid"

    def recent_history(self, limit: int = 5) -> List[tuple]:
        """Last ``limit`` (action, summary, outcome, error) tuples, oldest first."""
        rows = list(zip(self.action_history, self.summary_history, self.action_outcomes, self.error_descriptions))
        return rows[-limit:] if limit > 0 else rows


__all__ = ["InfoPool", "NO_SKILL_MATCH"]
