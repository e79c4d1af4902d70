from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from refinery.backends import CodexBackend, GeneratorBackend
from refinery.config import (
    ConfigError,
    RefineryConfig,
    apply_env_overrides,
    dumps_toml,
    load_config,
    save_config,
)
from refinery.formatters import format_search_conditions, strip_bot_mention
from refinery.planning import PlanningWorkflow
from refinery.refinement import ProgressEvent, RefinementEngine

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    config_path: Path
    config: RefineryConfig
    backend: GeneratorBackend


def _resolve_config_path(config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = Path.cwd() / config_path
    return config_path.resolve()


def _log_backend_event(event: dict[str, Any]) -> None:
    logger.debug("backend event: %s", event)


def _build_backend(config: RefineryConfig) -> GeneratorBackend:
    return CodexBackend(binary=config.backend.binary, event_hook=_log_backend_event)


def _read_config(config_path: Path) -> RefineryConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc


def _load_runtime(config_value: str) -> Runtime:
    config_path = _resolve_config_path(config_value)
    config = apply_env_overrides(_read_config(config_path), os.environ)
    return Runtime(config_path=config_path, config=config, backend=_build_backend(config))


def _load_context(context_file: Path | None) -> dict[str, Any] | None:
    if context_file is None:
        return None
    try:
        payload = json.loads(context_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"Context file is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise click.ClickException("Context file must contain a JSON object.")
    return payload


async def _echo_progress(event: ProgressEvent) -> None:
    status = "…" if event.pending else "done"
    click.echo(f"[{event.stage} {event.pass_index}/{event.total_passes} {status}]")
    click.echo(event.text)
    click.echo("")


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
def cli(log_level: str) -> None:
    """Refinery CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("init")
@click.option("--config", "config_value", default="refinery.toml", show_default=True)
def init_command(config_value: str) -> None:
    config_path = _resolve_config_path(config_value)
    config = _read_config(config_path)
    save_config(config_path, config)
    click.echo(f"Config: {config_path}")
    click.echo(f"Binary: {config.backend.binary}")
    click.echo(f"Refine passes: {config.refine.total_passes}")


@cli.command("config")
@click.option("--config", "config_value", default="refinery.toml", show_default=True)
def config_command(config_value: str) -> None:
    runtime = _load_runtime(config_value)
    click.echo(dumps_toml(runtime.config), nl=False)


@cli.command("ask")
@click.argument("text")
@click.option(
    "--context-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
)
@click.option("--no-refine", is_flag=True, default=False)
@click.option("--max-refines", type=click.IntRange(min=1), default=None)
@click.option("--quiet", is_flag=True, default=False, help="Only print the final reply.")
@click.option("--config", "config_value", default="refinery.toml", show_default=True)
def ask_command(
    text: str,
    context_file: Path | None,
    no_refine: bool,
    max_refines: int | None,
    quiet: bool,
    config_value: str,
) -> None:
    runtime = _load_runtime(config_value)
    if no_refine:
        runtime.config.refine.enabled = False
    if max_refines is not None:
        runtime.config.refine.max_refines = max_refines

    cleaned = strip_bot_mention(text)
    if not cleaned:
        raise click.ClickException("Nothing to answer: the message is empty.")

    engine = RefinementEngine(runtime.backend, runtime.config, event_hook=_log_backend_event)
    result = asyncio.run(
        engine.respond(
            cleaned,
            _load_context(context_file),
            on_progress=None if quiet else _echo_progress,
        )
    )
    if not result.ok:
        raise click.ClickException(result.text)
    if not quiet:
        click.echo(f"--- {result.outcome} after {result.passes} pass(es) ---")
    click.echo(result.text)


@cli.command("plan")
@click.argument("text")
@click.option(
    "--context-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
)
@click.option("--config", "config_value", default="refinery.toml", show_default=True)
def plan_command(text: str, context_file: Path | None, config_value: str) -> None:
    runtime = _load_runtime(config_value)
    click.echo(format_search_conditions(text))
    workflow = PlanningWorkflow(runtime.backend, runtime.config, event_hook=_log_backend_event)
    result = asyncio.run(workflow.plan(text, _load_context(context_file)))
    if not result.ok:
        raise click.ClickException(result.text)
    click.echo(result.text)
