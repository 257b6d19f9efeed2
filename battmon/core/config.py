"""Config loading and validation for the YAML battmon config file."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from battmon.core.errors import ConfigLoadError, ConfigValidationError
from battmon.core.model import BATTERY_LEVEL_CHAR_UUID, BATTERY_SERVICE_UUID
from battmon.core.uuids import normalize_uuid

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class MonitorConfig:
    service_uuid: str = BATTERY_SERVICE_UUID
    characteristic_uuid: str = BATTERY_LEVEL_CHAR_UUID
    request_timeout_s: float = 5.0
    scan_timeout_s: float = 5.0
    rescan_interval_s: float = 30.0


def _load_schema_validator() -> Any:
    schema_text = resources.files("battmon.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "battmon/config.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _normalize_uuid(value: str, *, context: str) -> str:
    try:
        return normalize_uuid(value)
    except ValueError as exc:
        raise ConfigValidationError(f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string") from exc


def _build_config(doc: dict[str, Any], source: Path) -> MonitorConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    defaults = MonitorConfig()
    return MonitorConfig(
        service_uuid=_normalize_uuid(
            doc.get("service_uuid", defaults.service_uuid),
            context="service_uuid",
        ),
        characteristic_uuid=_normalize_uuid(
            doc.get("characteristic_uuid", defaults.characteristic_uuid),
            context="characteristic_uuid",
        ),
        request_timeout_s=float(doc.get("request_timeout_s", defaults.request_timeout_s)),
        scan_timeout_s=float(doc.get("scan_timeout_s", defaults.scan_timeout_s)),
        rescan_interval_s=float(doc.get("rescan_interval_s", defaults.rescan_interval_s)),
    )


def load_config(path: Path | None = None) -> MonitorConfig:
    """Load the config from `path`, or from the user config dir when omitted.

    A missing file at the default location yields the defaults; a missing
    explicit path is an error.
    """
    if path is None:
        path = default_config_path()
        if not path.is_file():
            LOGGER.debug("No config file at %s, using defaults", path)
            return MonitorConfig()

    doc = _read_yaml(path)
    config = _build_config(doc, path)
    LOGGER.debug("Loaded config from %s: %s", path, config)
    return config
