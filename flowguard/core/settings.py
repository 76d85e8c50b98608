"""Validator settings loaded from YAML with environment overrides."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import jsonschema
import yaml

from flowguard.core.errors import SettingsError

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).parent.parent

ENV_PROFILE = "FLOWGUARD_PROFILE"
ENV_CATALOG = "FLOWGUARD_CATALOG"


@dataclass
class ValidatorSettings:
    """Tunables shared by the validators and the diff engine."""

    default_profile: str = "runtime"
    max_expression_depth: int = 100
    long_chain_threshold: int = 10
    loop_back_max_depth: int = 50
    max_operations_per_batch: int | None = None  # None means unlimited
    catalog_path: Path | None = None

    def __post_init__(self) -> None:
        if isinstance(self.catalog_path, str):
            self.catalog_path = Path(self.catalog_path).expanduser()


class SettingsLoader:
    """Find, validate and merge flowguard settings.

    Precedence (first existing file wins): an explicit path, the project file
    ``.flowguard/config.yaml`` under the working directory, then the user file
    ``~/.flowguard/config.yaml``. Environment variables override file values.
    """

    SCHEMA_PATH = PACKAGE_DIR / "config/settings_schema.json"

    def __init__(self, project_dir: Path | None = None) -> None:
        project_dir = project_dir or Path.cwd()
        self._search_paths = [
            project_dir / ".flowguard/config.yaml",
            Path.home() / ".flowguard/config.yaml",
        ]
        with open(self.SCHEMA_PATH, encoding="utf-8") as f:
            self._schema = json.load(f)

    def find_config(self) -> Path | None:
        for path in self._search_paths:
            if path.exists():
                return path
        return None

    def load(
        self, path: Path | None = None, environ: Mapping[str, str] | None = None
    ) -> ValidatorSettings:
        """Load settings from ``path`` (or the search paths) and the environment.

        Raises:
            SettingsError: If the file is unreadable or fails schema validation.
        """
        environ = os.environ if environ is None else environ
        source = path or self.find_config()
        values: dict[str, Any] = {}
        if source is not None:
            values = self._read(source)
            logger.debug(f"Loaded settings from {source}")

        if environ.get(ENV_PROFILE):
            values["default_profile"] = environ[ENV_PROFILE]
        if environ.get(ENV_CATALOG):
            values["catalog_path"] = environ[ENV_CATALOG]

        self._validate(values, source)
        known = {f.name for f in fields(ValidatorSettings)}
        return ValidatorSettings(**{k: v for k, v in values.items() if k in known})

    def _read(self, path: Path) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise SettingsError(f"Cannot read settings file {path}: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise SettingsError(
                f"Settings file {path} must contain a mapping, got {type(data).__name__}"
            )
        return data

    def _validate(self, values: dict[str, Any], source: Path | None) -> None:
        try:
            jsonschema.validate(values, self._schema)
        except jsonschema.ValidationError as e:
            origin = source or "environment"
            raise SettingsError(
                f"Settings validation failed in {origin}: {e.message}\n"
                f"Path: {' -> '.join(str(p) for p in e.absolute_path)}"
            ) from e


def load_settings(
    path: Path | None = None, environ: Mapping[str, str] | None = None
) -> ValidatorSettings:
    """Convenience wrapper around :class:`SettingsLoader`."""
    return SettingsLoader().load(path, environ)
