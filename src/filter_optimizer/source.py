"""Configuration sources.

A ``ConfigSource`` is where a starting configuration comes from and where
the final choice is pushed back to. The optimizer only calls
``get_current()`` once at the start and ``apply()`` once at the end.
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

from src.filter_optimizer.exceptions import UnknownParameterError
from src.filter_optimizer.parameters import (
    DEFAULT_TABLE,
    Config,
    ParameterTable,
    config_to_jsonable,
    flatten_config,
    normalize_config,
)

logger = logging.getLogger(__name__)


class ConfigSource(Protocol):
    """External holder of the live filter configuration."""

    def get_current(self) -> Config:
        ...

    def apply(self, config: Config) -> float:
        """Push *config* outward; return the fraction of fields applied."""
        ...


class InMemoryConfigSource:
    """Config source backed by a dict; useful for scripting and tests."""

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        table: ParameterTable = DEFAULT_TABLE,
    ) -> None:
        self._table = table
        self._config = normalize_config(config, table)
        self.applied: list[Config] = []

    def get_current(self) -> Config:
        return copy.deepcopy(self._config)

    def apply(self, config: Config) -> float:
        applied, total = _count_applicable(config, self._table)
        self._config = normalize_config(
            {k: v for k, v in flatten_config(config).items() if k in self._table},
            self._table,
        )
        self.applied.append(copy.deepcopy(self._config))
        return applied / total if total else 1.0


class JsonFileConfigSource:
    """Config source reading and writing a JSON file.

    ``null`` in the file means the parameter is unset.
    """

    def __init__(self, path: str | Path, table: ParameterTable = DEFAULT_TABLE) -> None:
        self.path = Path(path)
        self._table = table

    def get_current(self) -> Config:
        if not self.path.exists():
            logger.warning("Config file %s not found, starting from an empty configuration", self.path)
            return normalize_config(None, self._table)
        with open(self.path) as f:
            data = json.load(f)
        logger.info("Loaded configuration from %s", self.path)
        return normalize_config(data, self._table)

    def apply(self, config: Config) -> float:
        applied, total = _count_applicable(config, self._table)
        known = {k: v for k, v in flatten_config(config).items() if k in self._table}
        normalized = normalize_config(known, self._table)
        with open(self.path, "w") as f:
            json.dump(config_to_jsonable(normalized), f, indent=2)
        logger.info("Wrote configuration to %s (%d/%d fields)", self.path, applied, total)
        return applied / total if total else 1.0


def _count_applicable(config: Config, table: ParameterTable) -> tuple[int, int]:
    flat = flatten_config(config)
    applied = 0
    for name in flat:
        try:
            table.require(name)
        except UnknownParameterError:
            logger.warning("Cannot apply unknown parameter '%s'", name)
            continue
        applied += 1
    return applied, len(flat)
