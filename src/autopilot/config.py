"""Configuration for the autopilot agent."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

# Load environment variables from a .env file when present.
load_dotenv()

VLM_BASE_URL = os.getenv("AUTOPILOT_BASE_URL", "https://api.openai.com/v1")

VLM_MODEL = os.getenv("AUTOPILOT_MODEL", "gpt-4o")

DATA_ROOT = Path(os.getenv("AUTOPILOT_DATA_DIR", "data"))

APP_CACHE_PATH = DATA_ROOT / "installed_apps.json"

SKILLS_PATH = Path(os.getenv("AUTOPILOT_SKILLS", str(DATA_ROOT / "skills.json")))

TELEMETRY_DIR = Path(os.getenv("AUTOPILOT_TELEMETRY_DIR", "runs"))

DEFAULT_MAX_STEPS = 25


def get_api_key() -> str | None:
    """Return the model API key or None when it is not configured."""
    return os.getenv("AUTOPILOT_API_KEY") or os.getenv("OPENAI_API_KEY") or None


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class AgentConfig(BaseModel):
    """Loop tunables. Delays are seconds."""

    max_steps: int = DEFAULT_MAX_STEPS
    use_notetaker: bool = False
    err_to_manager_thresh: int = 2
    max_installed_apps: int = 50
    screenshot_grace_s: float = 0.1
    first_settle_s: float = 5.0
    settle_s: float = 2.0
    finish_linger_s: float = 1.5
    sensitive_linger_s: float = 2.0

    @classmethod
    def from_env(cls) -> "AgentConfig":
        return cls(
            max_steps=int(os.getenv("AUTOPILOT_MAX_STEPS", DEFAULT_MAX_STEPS)),
            use_notetaker=_env_flag("AUTOPILOT_USE_NOTETAKER", False),
            err_to_manager_thresh=int(os.getenv("AUTOPILOT_ERR_THRESH", 2)),
        )
