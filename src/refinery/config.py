from __future__ import annotations

import json
import tomllib
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

DEFAULT_MAX_REFINES = 4
FALSY_TOGGLES = {"0", "false"}
TRUTHY_TOGGLES = {"1", "true"}


@dataclass(slots=True)
class BackendConfig:
    binary: str = "codex"
    working_directory: str = ""
    timeout_seconds: float = 0.0

    @property
    def timeout(self) -> float | None:
        return self.timeout_seconds if self.timeout_seconds > 0 else None

    def resolve_working_directory(self) -> Path | None:
        if not self.working_directory.strip():
            return None
        return Path(self.working_directory).expanduser()


@dataclass(slots=True)
class RefineConfig:
    enabled: bool = True
    max_refines: int = DEFAULT_MAX_REFINES

    @property
    def effective_max_refines(self) -> int:
        if not self.enabled:
            return 0
        return self.max_refines if self.max_refines > 0 else DEFAULT_MAX_REFINES

    @property
    def total_passes(self) -> int:
        return 1 + self.effective_max_refines


@dataclass(slots=True)
class OutputConfig:
    debug: bool = False


@dataclass(slots=True)
class RefineryConfig:
    backend: BackendConfig = field(default_factory=BackendConfig)
    refine: RefineConfig = field(default_factory=RefineConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    @classmethod
    def default(cls) -> RefineryConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], source: str = "config") -> RefineryConfig:
        unknown = sorted(set(data) - set(SECTIONS))
        if unknown:
            raise ConfigError(f"{source}: unknown section(s): {', '.join(unknown)}")
        sections = {
            name: _section_from_table(name, section_type, data.get(name, {}), source)
            for name, section_type in SECTIONS.items()
        }
        return cls(**sections)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {name: asdict(getattr(self, name)) for name in SECTIONS}


SECTIONS: dict[str, type] = {
    "backend": BackendConfig,
    "refine": RefineConfig,
    "output": OutputConfig,
}


class ConfigError(ValueError):
    """Raised when a config file cannot be parsed or names settings that do not exist."""


def _coerce(value: Any, default: Any, where: str) -> Any:
    # Field defaults double as the schema: every setting is a bool, int, float or str.
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
    elif isinstance(default, int):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif isinstance(default, float):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif isinstance(value, str):
        return value
    raise ConfigError(f"{where} must be {type(default).__name__}, got {value!r}")


def _section_from_table(name: str, section_type: type, table: Any, source: str) -> Any:
    if not isinstance(table, Mapping):
        raise ConfigError(f"{source}: [{name}] must be a table")
    blank = section_type()
    defaults = {item.name: getattr(blank, item.name) for item in fields(section_type)}
    unknown = sorted(set(table) - set(defaults))
    if unknown:
        raise ConfigError(f"{source}: unknown key(s) in [{name}]: {', '.join(unknown)}")
    return section_type(
        **{
            key: _coerce(value, defaults[key], f"{source}: {name}.{key}")
            for key, value in table.items()
        }
    )


def _render_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        # repr keeps the fractional part ("0.0", "45.5"), which TOML needs to read a float back.
        return repr(value)
    if isinstance(value, int):
        return str(value)
    return json.dumps(value, ensure_ascii=False)


def dumps_toml(config: RefineryConfig) -> str:
    blocks = []
    for name, table in config.to_dict().items():
        body = "\n".join(f"{key} = {_render_scalar(value)}" for key, value in table.items())
        blocks.append(f"[{name}]\n{body}\n")
    return "\n".join(blocks)


def load_config(path: Path) -> RefineryConfig:
    """Read ``path`` as TOML; a missing file means every setting keeps its default."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return RefineryConfig.default()
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: invalid TOML: {exc}") from exc
    return RefineryConfig.from_dict(data, source=str(path))


def save_config(path: Path, config: RefineryConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")


def _parse_positive_int(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        return None
    return value if value > 0 else None


def _parse_positive_float(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        value = float(raw.strip())
    except ValueError:
        return None
    return value if value > 0 else None


def apply_env_overrides(config: RefineryConfig, environ: Mapping[str, str]) -> RefineryConfig:
    """Overlay process-environment settings onto ``config`` in place.

    Only the CLI entry point calls this; the engines take the resulting config
    as an explicit argument.
    """
    refine_toggle = environ.get("CODEX_REFINE")
    if refine_toggle is not None:
        config.refine.enabled = refine_toggle.strip().lower() not in FALSY_TOGGLES

    max_refines = _parse_positive_int(environ.get("CODEX_REFINE_MAX"))
    if max_refines is not None:
        config.refine.max_refines = max_refines

    debug_toggle = environ.get("PLANNER_DEBUG")
    if debug_toggle is not None:
        config.output.debug = debug_toggle.strip().lower() in TRUTHY_TOGGLES

    binary = environ.get("CODEX_BIN")
    if binary and binary.strip():
        config.backend.binary = binary.strip()

    timeout = _parse_positive_float(environ.get("CODEX_TIMEOUT"))
    if timeout is not None:
        config.backend.timeout_seconds = timeout

    workdir = environ.get("CODEX_WORKDIR")
    if workdir and workdir.strip():
        config.backend.working_directory = workdir.strip()

    return config
