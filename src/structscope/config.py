from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import StrEnum
from pathlib import Path
from typing import TypeAlias
import logging
import tomllib

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "structscope.toml"
DEFAULT_EXCLUDES = ("bin", "obj")
DEFAULT_TIMEOUT_MS = 60_000

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


class Severity(StrEnum):
    HINT = "hint"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class RunConfig:
    enabled: bool = True
    severity: Severity = Severity.INFO
    exclude: tuple[str, ...] = DEFAULT_EXCLUDES
    jobs: int = 1
    timeout_ms: int = DEFAULT_TIMEOUT_MS


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        logger.debug("cannot read config %s: %s", path, exc)
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as exc:
        logger.warning("ignoring invalid config %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def _section(data: TomlTable, name: str) -> TomlTable:
    section = data.get(name, {})
    return section if isinstance(section, dict) else {}


def _normalize_name_list(value: TomlValue) -> list[str]:
    items: list[str] = []
    if value is None:
        return items
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple, set)):
        for item in value:
            if isinstance(item, str):
                items.extend([part.strip() for part in item.split(",") if part.strip()])
    return [item for item in items if item]


def _as_bool(value: TomlValue) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def _as_positive_int(value: TomlValue, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
        return parsed if parsed > 0 else default
    return default


def severity_from(value: TomlValue) -> Severity:
    if isinstance(value, str):
        try:
            return Severity(value.strip().lower())
        except ValueError:
            logger.warning("unknown severity %r; using %s", value, Severity.INFO)
    return Severity.INFO


def merge_payload(payload: TomlTable, defaults: TomlTable) -> TomlTable:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged


def resolve_run_config(
    payload: TomlTable | None = None,
    *,
    root: Path | None = None,
    config_path: Path | None = None,
) -> RunConfig:
    """Combine config-file sections with explicit overrides.

    ``payload`` keys override file values; ``None`` values are ignored so
    unset CLI options fall through to the file.
    """
    data = load_config(root=root, config_path=config_path)
    defaults: TomlTable = {**_section(data, "readonly_members"), **_section(data, "analysis")}
    merged = merge_payload(payload or {}, defaults)
    exclude = merged.get("exclude")
    return RunConfig(
        enabled=_as_bool(merged.get("enabled", True)),
        severity=severity_from(merged.get("severity")),
        exclude=tuple(_normalize_name_list(exclude)) if exclude is not None else DEFAULT_EXCLUDES,
        jobs=_as_positive_int(merged.get("jobs"), 1),
        timeout_ms=_as_positive_int(merged.get("timeout_ms"), DEFAULT_TIMEOUT_MS),
    )
