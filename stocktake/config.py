"""Settings for the stocktake command line.

Values come from three places, later ones winning:

    1. the defaults on :class:`Settings`
    2. a YAML file (``--config`` or ``stocktake.yaml`` in the working directory)
    3. ``STOCKTAKE_*`` environment variables
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

DEFAULT_CONFIG_NAME = "stocktake.yaml"

ENV_OVERRIDES = {
    "STOCKTAKE_STORE": "store_path",
    "STOCKTAKE_MIN_CONFIDENCE": "min_confidence",
    "STOCKTAKE_LOG_LEVEL": "log_level",
}

DEFAULT_CONFIG_TEXT = """\
# stocktake settings
# Mapping detection below this confidence (0-100) needs --accept-low-confidence.
min_confidence: 50
# Data rows shown to the detector alongside the header row.
sample_rows: 5
# JSON document holding ingested files, rows and aggregates.
store_path: stocktake-store.json
log_level: WARNING
log_file: null
export_sheet_titles:
  aggregated: Aggregated Data
  raw: Raw Data
"""


class ConfigError(ValueError):
    pass


@dataclass
class Settings:
    min_confidence: int = 50
    sample_rows: int = 5
    store_path: str = "stocktake-store.json"
    log_level: str = "WARNING"
    log_file: Optional[str] = None
    export_sheet_titles: dict[str, str] = field(
        default_factory=lambda: {"aggregated": "Aggregated Data", "raw": "Raw Data"}
    )

    def sheet_title(self, kind: str) -> str:
        return self.export_sheet_titles.get(kind) or kind.title()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _coerce(name: str, value: Any) -> Any:
    if name in ("min_confidence", "sample_rows"):
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{name} must be an integer, got {value!r}") from None
        if name == "min_confidence" and not 0 <= number <= 100:
            raise ConfigError(f"min_confidence must be between 0 and 100, got {number}")
        if name == "sample_rows" and number < 1:
            raise ConfigError(f"sample_rows must be at least 1, got {number}")
        return number
    if name == "export_sheet_titles":
        if not isinstance(value, Mapping):
            raise ConfigError("export_sheet_titles must be a mapping")
        return {str(key): str(title) for key, title in value.items()}
    if name == "log_file":
        return str(value) if value else None
    return str(value)


def settings_from_mapping(payload: Mapping[str, Any], base: Settings | None = None) -> Settings:
    settings = base or Settings()
    known = {item.name for item in fields(Settings)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise ConfigError(f"Unknown setting(s): {', '.join(unknown)}")
    for name, value in payload.items():
        if name == "export_sheet_titles":
            merged = dict(settings.export_sheet_titles)
            merged.update(_coerce(name, value))
            settings.export_sheet_titles = merged
        else:
            setattr(settings, name, _coerce(name, value))
    return settings


def load_settings(path: "str | Path | None" = None, environ: Mapping[str, str] | None = None) -> Settings:
    """Build settings from the YAML file at ``path`` plus environment overrides.

    An explicit ``path`` must exist; the implicit ``stocktake.yaml`` is optional.
    """
    environ = os.environ if environ is None else environ
    settings = Settings()

    config_path = Path(path) if path else Path(DEFAULT_CONFIG_NAME)
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                payload = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Could not parse {config_path}: {exc}") from exc
        if not isinstance(payload, Mapping):
            raise ConfigError(f"{config_path} must contain a mapping at the top level")
        settings = settings_from_mapping(payload, settings)
    elif path:
        raise ConfigError(f"Config file not found: {config_path}")

    overrides = {name: environ[var] for var, name in ENV_OVERRIDES.items() if environ.get(var)}
    if overrides:
        settings = settings_from_mapping(overrides, settings)
    return settings


def write_default_config(path: "str | Path") -> Path:
    path = Path(path)
    if path.exists():
        raise ConfigError(f"Refusing to overwrite existing config: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TEXT, encoding="utf-8")
    return path
