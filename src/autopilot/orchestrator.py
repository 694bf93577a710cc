"""Control loop that observes the phone, plans, acts and verifies each step."""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from PIL import Image

from .config import AgentConfig
from .conversation import ChatMessage, ConversationMemory
from .executor import ActionExecutor, DeviceController
from .gate import ask_confirmation
from .info_pool import NO_SKILL_MATCH, InfoPool
from .models import Action, AgentResult, AgentState, ExecutionStep, Observation, Termination
from .outcome import Outcome
from .phases import ActionReflector, Executor, Manager, Notetaker, ReflectionResult
from .result import InferenceResult
from .surface import StatusSurface

logger = logging.getLogger(__name__)

EXECUTOR_SYSTEM_PROMPT = (
    "You are an agent who can operate an Android phone. "
    "Decide the next action based on the current state.\n\nUser Request: {instruction}\n"
)
DEFAULT_CONFIRM_MESSAGE = "Confirm this operation?"
SENSITIVE_CONFIRM_MESSAGE = "Sensitive page detected. Continue?"


class InferenceBackend(Protocol):
    async def predict(self, prompt: str, images: Sequence[Image.Image] = ()) -> InferenceResult[str]: ...

    async def predict_with_context(self, messages: Sequence[ChatMessage]) -> InferenceResult[str]: ...


class AppCatalog(Protocol):
    def find_package(self, name: str) -> Optional[str]: ...

    def installed_app_names(self, limit: int = 50) -> List[str]: ...


class SkillAdvisor(Protocol):
    async def generate_context(self, instruction: str) -> Optional[str]: ...


class MobileAgent:
    """Run one natural-language task on the device.

    Collaborators are passed in by the host. ``state`` may be read from other
    threads while a run is in progress; it is always a complete snapshot.
    """

    def __init__(
        self,
        vlm: InferenceBackend,
        device: DeviceController,
        surface: StatusSurface,
        app_index: Optional[AppCatalog] = None,
        skill_advisor: Optional[SkillAdvisor] = None,
        config: Optional[AgentConfig] = None,
        bring_to_front: Optional[Callable[[], None]] = None,
        event_sink: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_stop_requested: Optional[Callable[[], None]] = None,
    ) -> None:
        self.vlm = vlm
        self.device = device
        self.surface = surface
        self.app_index = app_index
        self.skill_advisor = skill_advisor
        self.config = config or AgentConfig()
        self.bring_to_front = bring_to_front
        self.event_sink = event_sink
        self.on_stop_requested = on_stop_requested

        self.manager = Manager()
        self.executor = Executor()
        self.reflector = ActionReflector()
        self.notetaker = Notetaker()
        self.action_executor = ActionExecutor(device, app_index=app_index, surface=surface, log=self._log)

        self._state = AgentState()
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._logs: List[str] = []
        self.info_pool: Optional[InfoPool] = None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def logs(self) -> List[str]:
        return list(self._logs)

    def clear_logs(self) -> None:
        self._logs = []
        self._update_state(execution_steps=())

    def stop(self) -> None:
        """Ask the running loop to stop at its next checkpoint."""
        self._log("Stop requested")
        self._stop_event.set()
        self.surface.hide()
        self._update_state(is_running=False)
        if self.on_stop_requested:
            self.on_stop_requested()

    def _update_state(self, **changes: Any) -> None:
        with self._state_lock:
            self._state = self._state.model_copy(update=changes)

    def _append_step(self, step: ExecutionStep) -> int:
        with self._state_lock:
            steps = self._state.execution_steps + (step,)
            self._state = self._state.model_copy(update={"execution_steps": steps})
            return len(steps) - 1

    def _finalize_step(self, index: int, outcome: Outcome) -> None:
        with self._state_lock:
            steps = list(self._state.execution_steps)
            steps[index] = steps[index].with_outcome(outcome)
            self._state = self._state.model_copy(update={"execution_steps": tuple(steps)})

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        instruction: str,
        max_steps: Optional[int] = None,
        use_notetaker: Optional[bool] = None,
    ) -> AgentResult:
        max_steps = self.config.max_steps if max_steps is None else max_steps
        use_notes = self.config.use_notetaker if use_notetaker is None else use_notetaker

        self._logs = []
        self._stop_event.clear()
        with self._state_lock:
            self._state = AgentState(is_running=True, instruction=instruction)
        self._log(f"Starting task: {instruction}")
        self._emit({"event": "run_start", "instruction": instruction, "max_steps": max_steps})
        self.surface.show("Starting...")

        try:
            return await self._run_loop(instruction, max_steps, use_notes)
        except asyncio.CancelledError:
            self._log("Task cancelled")
            self._abort("Cancelled")
            raise
        except Exception as exc:
            logger.exception("Agent run failed")
            self._abort(f"Error: {exc}")
            raise

    async def _run_loop(self, instruction: str, max_steps: int, use_notes: bool) -> AgentResult:
        info_pool = await self._build_info_pool(instruction, use_notes)
        memory = ConversationMemory(EXECUTOR_SYSTEM_PROMPT.format(instruction=instruction))
        info_pool.conversation = memory
        self.info_pool = info_pool

        for step in range(max_steps):
            if self._stop_event.is_set():
                return await self._user_stopped()

            step_no = step + 1
            self._update_state(current_step=step_no)
            self._log(f"===== Step {step_no}/{max_steps} =====")
            self.surface.update(f"Step {step_no}/{max_steps}: capturing screen")

            before = await self._capture(info_pool)
            if self._stop_event.is_set():
                return await self._user_stopped()
            if before.is_sensitive:
                self._log("Sensitive page detected")
                if not await ask_confirmation(self.surface, SENSITIVE_CONFIRM_MESSAGE):
                    result = AgentResult(
                        success=False,
                        message="Sensitive page, cancelled by user",
                        termination=Termination.SENSITIVE_ABORT,
                    )
                    return await self._finish(result)
                before = Observation.placeholder(info_pool.screen_width, info_pool.screen_height)

            if info_pool.refresh_error_flag():
                self._log(f"{info_pool.err_to_manager_thresh} consecutive failures, re-planning")

            if info_pool.should_skip_planning():
                self._log("Previous action was invalid, skipping planning")
            else:
                self.surface.update(f"Step {step_no}/{max_steps}: planning")
                response = await self.vlm.predict(self.manager.get_prompt(info_pool), [before.image])
                if self._stop_event.is_set():
                    return await self._user_stopped()
                if not response.ok:
                    self._log(f"Manager call failed: {response}")
                    continue
                plan = self.manager.parse_response(response.value)
                info_pool.completed_plan = plan.completed_subgoal
                info_pool.plan = plan.plan
                self._log(f"Plan: {plan.plan[:200]}")
                self._emit({"event": "plan", "step": step_no, "plan": plan.plan, "completed": plan.completed_subgoal})

                if plan.is_sensitive:
                    result = AgentResult(
                        success=False,
                        message="Sensitive operation detected, stopped safely",
                        termination=Termination.SENSITIVE_ABORT,
                    )
                    return await self._finish(result, linger=self.config.sensitive_linger_s)
                if plan.is_finished:
                    result = AgentResult(success=True, message="Task completed", termination=Termination.COMPLETED)
                    return await self._finish(result, completed=True, linger=self.config.finish_linger_s)

            if self._stop_event.is_set():
                return await self._user_stopped()
            self.surface.update(f"Step {step_no}/{max_steps}: deciding")
            memory.add_user_message(self.executor.get_prompt(info_pool), before.image)
            response = await self.vlm.predict_with_context(memory.messages)
            memory.strip_last_user_image()
            if self._stop_event.is_set():
                return await self._user_stopped()
            if not response.ok:
                self._log(f"Executor call failed: {response}")
                continue
            memory.add_assistant_message(response.value)
            decision = self.executor.parse_response(response.value)
            info_pool.last_action_thought = decision.thought
            self._log(f"Thought: {decision.thought[:200]}")

            action = decision.action
            if action is None:
                self._log(f"Could not parse action: {decision.action_str[:200]}")
                info_pool.record_step(
                    Action.invalid(),
                    decision.description or "Invalid action",
                    Outcome.FAILURE,
                    "Invalid action format",
                )
                continue
            self._log(f"Action: {action.describe()} ({decision.description})")
            self._emit({"event": "action", "step": step_no, "action": action.model_dump(exclude_none=True)})

            if action.type == "answer":
                self._log(f"Answer: {action.text}")
                self._update_state(answer=action.text)
                result = AgentResult(success=True, message=f"Answer: {action.text}", termination=Termination.COMPLETED)
                return await self._finish(result, completed=True, linger=self.config.finish_linger_s)

            if action.requires_confirmation:
                confirmed = await ask_confirmation(self.surface, action.message or DEFAULT_CONFIRM_MESSAGE)
                if not confirmed:
                    self._log("User declined the action")
                    info_pool.record_step(
                        action,
                        f"User cancelled: {decision.description}",
                        Outcome.FAILURE,
                        "User cancelled",
                    )
                    continue

            info_pool.last_action = action
            info_pool.last_summary = decision.description
            self.surface.update(f"Step {step_no}/{max_steps}: {decision.description or action.describe()}")
            await self.action_executor.execute(action)
            step_index = self._append_step(
                ExecutionStep(
                    step=step_no,
                    action=action.type,
                    description=decision.description,
                    thought=decision.thought,
                )
            )

            await asyncio.sleep(self.config.first_settle_s if step == 0 else self.config.settle_s)
            if self._stop_event.is_set():
                return await self._user_stopped()

            after = await self._capture(info_pool)
            if self._stop_event.is_set():
                return await self._user_stopped()

            self.surface.update(f"Step {step_no}/{max_steps}: checking result")
            response = await self.vlm.predict(self.reflector.get_prompt(info_pool), [before.image, after.image])
            if response.ok:
                reflection = self.reflector.parse_response(response.value)
            else:
                self._log(f"Reflector call failed: {response}")
                reflection = ReflectionResult(outcome=Outcome.FAILURE, error_description="Failed to call reflector")

            info_pool.record_step(action, decision.description, reflection.outcome, reflection.error_description)
            info_pool.progress_status = info_pool.completed_plan
            self._finalize_step(step_index, reflection.outcome)
            self._log(f"Outcome: {reflection.outcome.value} {reflection.error_description}")
            self._emit(
                {
                    "event": "reflection",
                    "step": step_no,
                    "outcome": reflection.outcome.value,
                    "error": reflection.error_description,
                }
            )

            if use_notes and reflection.outcome.is_success and action.type != "answer":
                if self._stop_event.is_set():
                    return await self._user_stopped()
                response = await self.vlm.predict(self.notetaker.get_prompt(info_pool), [after.image])
                if response.ok:
                    notes = self.notetaker.parse_response(response.value)
                    if notes:
                        info_pool.important_notes = notes
                        self._log(f"Notes: {notes[:100]}")
                else:
                    self._log(f"Notetaker call failed: {response}")

        result = AgentResult(success=False, message="Reached maximum step limit", termination=Termination.MAX_STEPS)
        return await self._finish(result, linger=self.config.finish_linger_s)

    async def _build_info_pool(self, instruction: str, use_notes: bool) -> InfoPool:
        width, height = await asyncio.to_thread(self.device.get_screen_size)
        self._log(f"Screen size: {width}x{height}")
        installed: List[str] = []
        if self.app_index is not None:
            installed = self.app_index.installed_app_names(self.config.max_installed_apps)

        skill_context = NO_SKILL_MATCH
        if self.skill_advisor is not None:
            self.surface.update("Matching skills...")
            try:
                skill_context = await self.skill_advisor.generate_context(instruction) or NO_SKILL_MATCH
            except Exception as exc:  # noqa: BLE001 - guidance is optional
                self._log(f"Skill matching failed: {exc}")
            self._log(f"Skill context: {skill_context[:200]}")

        return InfoPool(
            instruction=instruction,
            screen_width=width,
            screen_height=height,
            installed_apps=installed,
            skill_context=skill_context,
            err_to_manager_thresh=self.config.err_to_manager_thresh,
            use_notes=use_notes,
        )

    async def _capture(self, info_pool: InfoPool) -> Observation:
        """Screenshot with the surface hidden; a placeholder on failure."""
        self.surface.set_visible(False)
        try:
            await asyncio.sleep(self.config.screenshot_grace_s)
            return await asyncio.to_thread(self.device.screenshot_with_fallback)
        except Exception as exc:  # noqa: BLE001 - capture failures are never fatal
            self._log(f"Screenshot failed: {exc}")
            return Observation.placeholder(info_pool.screen_width, info_pool.screen_height)
        finally:
            self.surface.set_visible(True)

    async def _user_stopped(self) -> AgentResult:
        self._log("Stopped by user")
        result = AgentResult(success=False, message="Stopped by user", termination=Termination.USER_STOPPED)
        return await self._finish(result)

    async def _finish(self, result: AgentResult, completed: bool = False, linger: float = 0.0) -> AgentResult:
        self._log(result.message)
        self.surface.update(result.message)
        if linger > 0:
            await asyncio.sleep(linger)
        self.surface.hide()
        self._update_state(is_running=False, is_completed=completed)
        self._restore_host()
        self._emit(
            {
                "event": "run_end",
                "success": result.success,
                "message": result.message,
                "termination": result.termination.value if result.termination else None,
            }
        )
        return result

    def _abort(self, message: str) -> None:
        self.surface.update(message)
        self.surface.hide()
        self._update_state(is_running=False)
        self._restore_host()
        self._emit({"event": "run_end", "success": False, "message": message, "termination": None})

    def _restore_host(self) -> None:
        if self.bring_to_front is None:
            return
        try:
            self.bring_to_front()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to bring host to front: %s", exc)

    def _log(self, message: str) -> None:
        logger.info("%s", message)
        self._logs.append(f"[{datetime.now().strftime('%H:%M:%S')}] {message}")

    def _emit(self, event: Dict[str, Any]) -> None:
        if self.event_sink is None:
            return
        try:
            self.event_sink(event)
        except Exception as exc:  # noqa: BLE001 - telemetry must not break the run
            logger.debug("Event sink failed: %s", exc)


__all__ = ["AppCatalog", "InferenceBackend", "MobileAgent", "SkillAdvisor"]
