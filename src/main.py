"""CLI entrypoint for the autopilot agent."""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from autopilot.apps import AppIndex
from autopilot.config import APP_CACHE_PATH, SKILLS_PATH, TELEMETRY_DIR, VLM_BASE_URL, VLM_MODEL, AgentConfig, get_api_key
from autopilot.orchestrator import MobileAgent
from autopilot.skills import LLMSkillAdvisor, SkillRegistry
from autopilot.surface import ConsoleSurface
from autopilot.telemetry import TelemetryWriter
from autopilot.vlm import VLMClient


def parse_args() -> argparse.Namespace:
    defaults = AgentConfig.from_env()
    parser = argparse.ArgumentParser(description="Run the autopilot agent against a natural-language phone task.")
    parser.add_argument("--task", help="Natural-language task for the agent to complete.")
    parser.add_argument(
        "--device",
        help="Dotted path to a device factory, e.g. mypkg.devices:create_device. The factory takes no arguments.",
    )
    parser.add_argument("--base-url", default=VLM_BASE_URL, help="OpenAI-compatible endpoint of the vision model.")
    parser.add_argument("--model", default=VLM_MODEL, help="Vision model name.")
    parser.add_argument("--max-steps", type=int, default=defaults.max_steps, help="Maximum loop iterations.")
    parser.add_argument("--notes", action="store_true", default=defaults.use_notetaker, help="Enable the notetaker phase.")
    parser.add_argument("--app-cache", default=str(APP_CACHE_PATH), help="Installed-app cache file.")
    parser.add_argument("--skills", default=str(SKILLS_PATH), help="Skills definition file.")
    parser.add_argument("--outdir", default=str(TELEMETRY_DIR), help="Directory for run telemetry.")
    parser.add_argument("--list-models", action="store_true", help="Print the models offered by the endpoint and exit.")
    parser.add_argument("--log-level", default="INFO", help="Python logging level.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    log_file = _configure_logging(args.log_level)
    logging.info("Log file: %s", log_file)

    vlm = VLMClient(api_key=get_api_key(), base_url=args.base_url, model=args.model)
    if args.list_models:
        raise SystemExit(asyncio.run(_list_models(vlm)))

    _validate_args(args)
    device = _load_factory(args.device)()
    app_index = _load_app_index(Path(args.app_cache), device)
    skill_advisor = None
    skills_path = Path(args.skills)
    if skills_path.exists():
        skill_advisor = LLMSkillAdvisor(SkillRegistry.load(skills_path, app_index), vlm)
    else:
        logging.info("No skills file at %s; running without skill guidance", skills_path)

    run_dir = Path(args.outdir) / datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    config = AgentConfig.from_env().model_copy(update={"max_steps": args.max_steps, "use_notetaker": args.notes})
    with TelemetryWriter(run_dir / "run.jsonl") as telemetry:
        agent = MobileAgent(
            vlm=vlm,
            device=device,
            surface=ConsoleSurface(),
            app_index=app_index,
            skill_advisor=skill_advisor,
            config=config,
            event_sink=telemetry.write,
        )
        result = asyncio.run(agent.run(args.task))

    logging.info("Result: %s", result.message)
    sys.exit(0 if result.success else 1)


async def _list_models(vlm: VLMClient) -> int:
    result = await vlm.list_models()
    if not result.ok:
        logging.error("Could not list models: %s", result)
        return 1
    for model_id in result.value:
        print(model_id)
    return 0


def _validate_args(args: argparse.Namespace) -> None:
    if not args.task:
        raise SystemExit("--task is required")
    if not args.device or ":" not in args.device:
        raise SystemExit("--device must look like package.module:factory")
    if args.max_steps < 1:
        raise SystemExit("--max-steps must be at least 1")


def _load_factory(path: str) -> Callable[[], Any]:
    module_name, _, attr = path.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise SystemExit(f"Cannot import device module {module_name}: {exc}") from exc
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise SystemExit(f"{path} is not a callable device factory")
    return factory


def _load_app_index(cache_path: Path, device: Any) -> AppIndex:
    app_index = AppIndex.load(cache_path)
    if len(app_index):
        return app_index
    list_apps = getattr(device, "list_apps", None)
    if not callable(list_apps):
        logging.warning("Device cannot list apps and %s is empty; app names will be opened as given", cache_path)
        return app_index
    app_index = AppIndex.from_entries(list_apps())
    app_index.save(cache_path)
    return app_index


def _configure_logging(log_level: str) -> Path:
    level = getattr(logging, log_level.upper(), logging.INFO)
    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)
    log_file = log_dir / f"autopilot-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}.log"
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=[stream_handler, file_handler])
    return log_file


if __name__ == "__main__":
    main()
