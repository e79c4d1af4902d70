import tomllib
from pathlib import Path

import pytest

from refinery import __version__
from refinery.config import (
    ConfigError,
    RefineryConfig,
    apply_env_overrides,
    dumps_toml,
    load_config,
    save_config,
)


def test_config_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / "refinery.toml"
    config = RefineryConfig.default()
    config.backend.binary = "/opt/bin/codex"
    config.backend.timeout_seconds = 45.5
    config.backend.working_directory = "~/workbench"
    config.refine.enabled = False
    config.refine.max_refines = 2
    config.output.debug = True

    save_config(config_path, config)
    loaded = load_config(config_path)

    assert loaded.backend.binary == "/opt/bin/codex"
    assert loaded.backend.timeout_seconds == 45.5
    assert loaded.backend.working_directory == "~/workbench"
    assert loaded.refine.enabled is False
    assert loaded.refine.max_refines == 2
    assert loaded.output.debug is True


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    loaded = load_config(tmp_path / "absent.toml")

    assert loaded.backend.binary == "codex"
    assert loaded.backend.timeout is None
    assert loaded.refine.total_passes == 5


def test_toml_dump_contains_every_section() -> None:
    rendered = dumps_toml(RefineryConfig.default())
    parsed = tomllib.loads(rendered)

    assert set(parsed) == {"backend", "refine", "output"}
    assert parsed["backend"]["timeout_seconds"] == 0.0
    assert parsed["refine"]["max_refines"] == 4


def test_integer_timeout_in_file_is_read_as_float(tmp_path: Path) -> None:
    config_path = tmp_path / "refinery.toml"
    config_path.write_text("[backend]\ntimeout_seconds = 30\n", encoding="utf-8")

    loaded = load_config(config_path)

    assert loaded.backend.timeout_seconds == 30.0
    assert isinstance(loaded.backend.timeout_seconds, float)
    assert loaded.refine.max_refines == 4


def test_invalid_toml_names_the_file(tmp_path: Path) -> None:
    config_path = tmp_path / "refinery.toml"
    config_path.write_text("[backend\nbinary = codex\n", encoding="utf-8")

    with pytest.raises(ConfigError) as excinfo:
        load_config(config_path)

    assert str(config_path) in str(excinfo.value)
    assert "invalid TOML" in str(excinfo.value)


def test_unknown_keys_are_rejected() -> None:
    with pytest.raises(ConfigError, match=r"unknown key\(s\) in \[refine\]: max_refine"):
        RefineryConfig.from_dict({"refine": {"max_refine": 2}})

    with pytest.raises(ConfigError, match="unknown section"):
        RefineryConfig.from_dict({"logging": {}})


def test_wrongly_typed_values_are_rejected() -> None:
    with pytest.raises(ConfigError, match="refine.enabled must be bool"):
        RefineryConfig.from_dict({"refine": {"enabled": "yes"}})

    with pytest.raises(ConfigError, match="refine.max_refines must be int"):
        RefineryConfig.from_dict({"refine": {"max_refines": 2.5}})


def test_refine_pass_count_rules() -> None:
    config = RefineryConfig.default()
    config.refine.max_refines = -3
    assert config.refine.effective_max_refines == 4

    config.refine.max_refines = 2
    assert config.refine.total_passes == 3

    config.refine.enabled = False
    assert config.refine.effective_max_refines == 0
    assert config.refine.total_passes == 1


def test_env_overrides() -> None:
    config = apply_env_overrides(
        RefineryConfig.default(),
        {
            "CODEX_REFINE": "false",
            "CODEX_REFINE_MAX": "2",
            "PLANNER_DEBUG": "1",
            "CODEX_BIN": "codex-nightly",
            "CODEX_TIMEOUT": "60",
            "CODEX_WORKDIR": "/srv/agent",
        },
    )

    assert config.refine.enabled is False
    assert config.refine.max_refines == 2
    assert config.output.debug is True
    assert config.backend.binary == "codex-nightly"
    assert config.backend.timeout == 60.0
    assert str(config.backend.resolve_working_directory()) == "/srv/agent"


def test_invalid_env_values_are_ignored() -> None:
    config = apply_env_overrides(
        RefineryConfig.default(),
        {"CODEX_REFINE": "yes", "CODEX_REFINE_MAX": "zero", "CODEX_TIMEOUT": "-1"},
    )

    assert config.refine.enabled is True
    assert config.refine.max_refines == 4
    assert config.backend.timeout is None


def test_package_version_constant_matches_pyproject() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))

    assert __version__ == pyproject["project"]["version"]
