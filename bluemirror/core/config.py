"""Config loading and validation for YAML-based bluemirror settings."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from bluemirror.core.errors import ConfigLoadError, ConfigValidationError
from bluemirror.core.model import Config

LOGGER = logging.getLogger(__name__)

_PACKAGE_ROOT = Path(__file__).resolve().parent.parent
_SCHEMA_PATH = _PACKAGE_ROOT / "schemas" / "config.schema.json"
_DEFAULTS_PATH = _PACKAGE_ROOT / "defaults" / "config.yaml"


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


def _load_schema_validator() -> Any:
    try:
        schema = json.loads(_SCHEMA_PATH.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config schema {_SCHEMA_PATH}: {exc}") from exc
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def user_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "bluemirror" / "config.yaml"


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


def _validate(doc: dict[str, Any], source: Path) -> None:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def load_config(path: Path | None = None) -> Config:
    """Load packaged defaults, then overlay the user's config file if present."""
    doc = _read_yaml(_DEFAULTS_PATH)
    _validate(doc, _DEFAULTS_PATH)
    sources = [str(_DEFAULTS_PATH)]

    user_path = path or user_config_path()
    if path is not None or user_path.is_file():
        user_doc = _read_yaml(user_path)
        _validate(user_doc, user_path)
        for key, value in sorted(user_doc.items()):
            if doc.get(key) != value:
                LOGGER.info("User config %s overrides %s=%r", user_path, key, value)
            doc[key] = value
        sources.append(str(user_path))

    return Config(
        bus=doc["bus"],
        service=doc["service"],
        obex_bus=doc["obex_bus"],
        obex_service=doc["obex_service"],
        call_timeout_s=float(doc["call_timeout_s"]),
        log_level=doc["log_level"].upper(),
        sources=tuple(sources),
    )
