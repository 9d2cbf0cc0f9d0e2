"""CLI commands for running dagent sessions."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from .config import (
    DEFAULT_CONFIG_NAME,
    ConfigError,
    copy_config_template,
    load_config,
    write_config,
)
from .models import ChatCompletionsClient, LLMClient, LLMClientError
from .models.chat_client import DEFAULT_BASE_URL
from .orchestrator import Orchestrator
from .plan.contract import PlanContractError, tool_definition
from .plan.store import PlanStoreError
from .tools.turn_logs import TurnLogWriter
from .utils.cancellation import CancellationToken, OperationCanceledError

APP_HELP = "dagent: a plan-driven shell agent loop."
API_KEY_ENV_VARS = ("OPENAI_API_KEY", "DAGENT_API_KEY")

app = typer.Typer(help=APP_HELP)


def _fail(message: str) -> typer.Exit:
    typer.echo(message, err=True)
    return typer.Exit(code=1)


def _load_config_or_exit(config: str, *, required: bool) -> Dict[str, Any]:
    try:
        return load_config(Path(config), required=required)
    except ConfigError as error:
        raise _fail(str(error)) from error


def _resolve_api_key() -> Optional[str]:
    for name in API_KEY_ENV_VARS:
        value = os.getenv(name, "").strip()
        if value:
            return value
    return None


def _build_client(config: Dict[str, Any]) -> LLMClient:
    """Create the Chat Completions client or exit with a message on stderr."""
    models_cfg = config.get("models") or {}
    model_name = str(models_cfg.get("default") or "").strip()
    if not model_name:
        raise _fail("No model configured. Pass --model or set models.default in the config.")

    api_key = _resolve_api_key()
    if not api_key:
        raise _fail("No API key given. Set OPENAI_API_KEY or DAGENT_API_KEY.")

    client_kwargs: Dict[str, Any] = {"api_key": api_key}
    timeout_value = models_cfg.get("timeout")
    if isinstance(timeout_value, (int, float)) and timeout_value > 0:
        client_kwargs["timeout"] = float(timeout_value)
    base_url_value = models_cfg.get("base_url")
    if isinstance(base_url_value, str) and base_url_value.strip():
        client_kwargs["base_url"] = base_url_value.strip()
    try:
        return ChatCompletionsClient(model=model_name, **client_kwargs)
    except (ValueError, LLMClientError, PlanContractError) as error:
        raise _fail(f"Failed to initialise model client: {error}") from error


def _apply_overrides(
    config: Dict[str, Any],
    *,
    model: Optional[str],
    base_url: Optional[str],
    auto_approve: Optional[bool],
    no_human: Optional[bool],
    augment: Optional[str],
    plan_reminder: Optional[str],
    auto_message: Optional[str],
    max_turns: Optional[int],
) -> None:
    models_cfg = config.setdefault("models", {})
    runtime_cfg = config.setdefault("runtime", {})
    if model:
        models_cfg["default"] = model
    if base_url:
        models_cfg["base_url"] = base_url
    if auto_approve is not None:
        runtime_cfg["auto_approve"] = auto_approve
    if no_human is not None:
        runtime_cfg["no_human"] = no_human
    if augment:
        runtime_cfg["augmentation"] = augment
    if plan_reminder:
        runtime_cfg["plan_reminder"] = plan_reminder
    if auto_message:
        runtime_cfg["auto_message"] = auto_message
    if max_turns is not None:
        runtime_cfg["max_turns"] = max_turns


def _turn_logger(config: Dict[str, Any], config_path: Path) -> Optional[TurnLogWriter]:
    paths_cfg = config.get("paths") or {}
    logs_value = paths_cfg.get("logs")
    if not isinstance(logs_value, str) or not logs_value.strip():
        return None
    logs_root = Path(logs_value.strip())
    if not logs_root.is_absolute():
        logs_root = (config_path.parent / logs_root).resolve()
    models_cfg = config.get("models") or {}
    return TurnLogWriter(root=logs_root, session=str(models_cfg.get("default") or "session"))


@app.callback()
def main(
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        envvar="DAGENT_LOG_LEVEL",
        help="Python logging level for diagnostic output.",
    ),
) -> None:
    """Configure logging before any command runs."""
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level: {log_level}")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@app.command()
def run(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the dagent configuration file (optional).",
    ),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model name to request plans from."),
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        help=f"Chat Completions endpoint (default {DEFAULT_BASE_URL}).",
    ),
    auto_approve: Optional[bool] = typer.Option(
        None,
        "--auto-approve/--no-auto-approve",
        help="Execute ready plan steps without asking.",
    ),
    no_human: Optional[bool] = typer.Option(
        None,
        "--no-human/--human",
        help="Run without a human; the loop answers itself with reminder messages.",
    ),
    augment: Optional[str] = typer.Option(None, "--augment", help="Text appended to the system prompt."),
    plan_reminder: Optional[str] = typer.Option(
        None,
        "--plan-reminder",
        help="Message sent when steps are pending but cannot run.",
    ),
    auto_message: Optional[str] = typer.Option(
        None,
        "--auto-message",
        help="Message sent in no-human mode when nothing is pending.",
    ),
    max_turns: Optional[int] = typer.Option(
        None,
        "--max-turns",
        min=1,
        help="Stop after this many model turns.",
    ),
) -> None:
    """Start an interactive session."""
    config_path = Path(config)
    config_data = _load_config_or_exit(config, required=config != DEFAULT_CONFIG_NAME)
    _apply_overrides(
        config_data,
        model=model,
        base_url=base_url,
        auto_approve=auto_approve,
        no_human=no_human,
        augment=augment,
        plan_reminder=plan_reminder,
        auto_message=auto_message,
        max_turns=max_turns,
    )

    client = _build_client(config_data)
    orchestrator = Orchestrator.from_client(
        client,
        config_data,
        workspace_root=Path.cwd(),
        exchange_logger=_turn_logger(config_data, config_path),
    )

    cancel = CancellationToken()
    try:
        orchestrator.run(cancel)
    except KeyboardInterrupt:
        typer.echo("\nInterrupted.", err=True)
        raise typer.Exit(code=130)
    except OperationCanceledError as error:
        typer.echo(f"\nCanceled: {error}", err=True)
        raise typer.Exit(code=130) from error
    except (LLMClientError, PlanStoreError) as error:
        raise _fail(f"Session failed: {error}") from error


@app.command()
def schema() -> None:
    """Print the tool definition sent to the model on every turn."""
    try:
        tool = tool_definition()
    except PlanContractError as error:
        raise _fail(str(error)) from error
    typer.echo(json.dumps(tool.to_tool_spec(), indent=2, sort_keys=True))


@app.command("init-config")
def init_config(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Where to write the configuration file.",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
) -> None:
    """Write the default configuration so it can be edited."""
    config_path = Path(config)
    if config_path.exists() and not force:
        raise _fail(f"{config_path} already exists; pass --force to overwrite it.")
    write_config(config_path, copy_config_template())
    typer.echo(f"Wrote configuration to {config_path}.")


if __name__ == "__main__":
    app()
