"""
This module defines the configuration schema for kota-governor and the layered
loader that produces it.

Configuration is read from up to two JSON files, a global one under the user's
home directory and a per-project one under the repository root, and merged over
built-in defaults. Every field of every layer is validated on its own: a
malformed value is reported and ignored, keeping whatever the previous layer
said, so that one typo in a project file never throws away an otherwise valid
configuration. A handful of environment variables are applied last for
deployments that cannot ship a file.

JSON keys are camelCase (``connectTimeoutMs``), matching the files written by
the host's other plugins; snake_case keys are accepted as well.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ..errors import ConfigError
from ..pruning import PruneSettings

LOGGER = logging.getLogger(__name__)

GLOBAL_CONFIG_RELATIVE = Path(".pi/agent/pi-kota.json")
PROJECT_CONFIG_RELATIVE = Path(".pi/pi-kota.json")

AutoContextMode = Literal["off", "onPaths", "always"]


class _Section(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        strict=True,
        extra="ignore",
    )


class KotaSection(_Section):
    """How the KotaDB subprocess is launched and used."""

    toolset: Literal["core"] = "core"
    auto_context: AutoContextMode = "off"
    confirm_index: bool = True
    command: str = "bun"
    args: List[str] = Field(
        default_factory=lambda: ["x", "kotadb@next", "--stdio", "--toolset", "core"]
    )
    connect_timeout_ms: int = Field(default=10_000, gt=0)

    @field_validator("command")
    @classmethod
    def _require_command(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command must be a non-empty string")
        return value


class PruneSection(_Section):
    """Conversation pruning of stale tool outputs."""

    enabled: bool = True
    keep_recent_turns: int = Field(default=2, ge=0)
    max_tool_chars: int = Field(default=1200, gt=0)
    adaptive: bool = True
    tool_names: List[str] = Field(default_factory=lambda: ["read", "bash", "kota_search"])


class BlobsSection(_Section):
    """Content-addressed cache for oversized tool output."""

    enabled: bool = True
    dir: str = "~/.pi/cache/pi-kota/blobs"
    max_age_days: int = Field(default=7, gt=0)
    max_size_bytes: int = Field(default=50 * 1024 * 1024, gt=0)


class LogSection(_Section):
    """Optional JSONL debug event log."""

    enabled: bool = False
    path: str = "~/.pi/cache/pi-kota/debug.jsonl"


class KotaConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kota: KotaSection = Field(default_factory=KotaSection)
    prune: PruneSection = Field(default_factory=PruneSection)
    blobs: BlobsSection = Field(default_factory=BlobsSection)
    log: LogSection = Field(default_factory=LogSection)

    def prune_settings(self) -> PruneSettings:
        return PruneSettings(
            keep_recent_turns=self.prune.keep_recent_turns,
            max_tool_chars=self.prune.max_tool_chars,
            prune_tool_names=frozenset(self.prune.tool_names),
        )


DEFAULT_CONFIG = KotaConfig()


@dataclass(frozen=True, slots=True)
class ConfigSources:
    global_path: Optional[str] = None
    project_path: Optional[str] = None


@dataclass(frozen=True, slots=True)
class LoadedConfig:
    config: KotaConfig
    sources: ConfigSources


S = TypeVar("S", bound=_Section)


def expand_tilde(path: str, home_dir: str) -> str:
    if path == "~":
        return home_dir
    if path.startswith("~/"):
        return os.path.join(home_dir, path[2:])
    return path


def _field_name(section: Type[_Section], key: str) -> Optional[str]:
    for name, info in section.model_fields.items():
        if key == name or key == info.alias:
            return name
    return None


def _merge_section(current: S, overrides: Any, *, section_name: str, source: str) -> S:
    if not isinstance(overrides, Mapping):
        LOGGER.warning("Ignoring %s.%s: expected an object, got %s", source, section_name, type(overrides).__name__)
        return current
    section_type = type(current)
    data: Dict[str, Any] = current.model_dump()
    for key, value in overrides.items():
        name = _field_name(section_type, str(key))
        if name is None:
            LOGGER.debug("Ignoring unknown key %s.%s.%s", source, section_name, key)
            continue
        try:
            candidate = section_type.model_validate({**data, name: value})
        except ValidationError as exc:
            LOGGER.warning(
                "Ignoring invalid %s.%s in %s: %s",
                section_name,
                key,
                source,
                exc.errors()[0].get("msg", "invalid value"),
            )
            continue
        data = candidate.model_dump()
    return section_type.model_validate(data)


def merge_config(base: KotaConfig, override: Mapping[str, Any], *, source: str = "<override>") -> KotaConfig:
    """
    Deep-merges one configuration layer over ``base``.

    Unknown sections and keys are ignored; invalid values keep the base value.
    """
    sections = {
        "kota": base.kota,
        "prune": base.prune,
        "blobs": base.blobs,
        "log": base.log,
    }
    for section_name, current in list(sections.items()):
        if section_name in override and override[section_name] is not None:
            sections[section_name] = _merge_section(
                current, override[section_name], section_name=section_name, source=source
            )
    return KotaConfig(**sections)


def _read_json_if_exists(path: Path) -> Optional[Dict[str, Any]]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ConfigError(f"Expected a JSON object in {path}")
    return parsed


def _environment_overrides(environ: Mapping[str, str]) -> Dict[str, Dict[str, Any]]:
    def _int(name: str) -> Optional[int]:
        raw = environ.get(name)
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            LOGGER.warning("Ignoring %s=%r: not an integer", name, raw)
            return None

    overrides: Dict[str, Dict[str, Any]] = {"kota": {}, "blobs": {}, "log": {}}
    if environ.get("KOTA_COMMAND"):
        overrides["kota"]["command"] = environ["KOTA_COMMAND"]
    timeout = _int("KOTA_CONNECT_TIMEOUT_MS")
    if timeout is not None:
        overrides["kota"]["connectTimeoutMs"] = timeout
    if environ.get("KOTA_BLOBS_DIR"):
        overrides["blobs"]["dir"] = environ["KOTA_BLOBS_DIR"]
    if environ.get("KOTA_LOG_PATH"):
        overrides["log"]["path"] = environ["KOTA_LOG_PATH"]
        overrides["log"]["enabled"] = True
    return {section: values for section, values in overrides.items() if values}


def load_config(
    cwd: str | None = None,
    project_root: str | None = None,
    home_dir: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> LoadedConfig:
    """
    Loads the effective configuration for a session.

    Args:
        cwd: Working directory of the host; used when ``project_root`` is unset.
        project_root: Repository root holding ``.pi/pi-kota.json``.
        home_dir: Home directory holding ``.pi/agent/pi-kota.json``.
        environ: Environment used for overrides; ``os.environ`` by default.

    Returns:
        The merged configuration and the files that contributed to it.

    Raises:
        ConfigError: A configuration file exists but is not a JSON object.
    """
    working_dir = cwd or os.getcwd()
    home = home_dir or str(Path.home())
    env = os.environ if environ is None else environ

    global_path = Path(home) / GLOBAL_CONFIG_RELATIVE
    project_path = Path(project_root or working_dir) / PROJECT_CONFIG_RELATIVE

    config = DEFAULT_CONFIG
    global_source: Optional[str] = None
    project_source: Optional[str] = None

    global_json = _read_json_if_exists(global_path)
    if global_json is not None:
        config = merge_config(config, global_json, source=str(global_path))
        global_source = str(global_path)

    project_json = _read_json_if_exists(project_path)
    if project_json is not None:
        config = merge_config(config, project_json, source=str(project_path))
        project_source = str(project_path)

    env_overrides = _environment_overrides(env)
    if env_overrides:
        config = merge_config(config, env_overrides, source="environment")

    config = config.model_copy(
        update={
            "blobs": config.blobs.model_copy(update={"dir": expand_tilde(config.blobs.dir, home)}),
            "log": config.log.model_copy(update={"path": expand_tilde(config.log.path, home)}),
        }
    )
    return LoadedConfig(
        config=config,
        sources=ConfigSources(global_path=global_source, project_path=project_source),
    )
