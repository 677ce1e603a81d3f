"""Filter parameter table and configuration helpers.

Defines the closed set of filter parameters, grouped into sections, with
their valid domains and backtester API field names. A configuration is a
sectioned mapping ``{section: {parameter: value}}`` in which every known
parameter is present and an unspecified one holds the ``UNSET`` sentinel.
"""

from __future__ import annotations

import copy
import json
import logging
import math
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Iterable, Mapping

from src.filter_optimizer.exceptions import UnknownParameterError

logger = logging.getLogger(__name__)


class _Unset:
    """Marker for a parameter that is deliberately left unspecified."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> _Unset:
        return self

    def __deepcopy__(self, memo: dict) -> _Unset:
        return self

    def __reduce__(self) -> str:
        return "UNSET"


UNSET = _Unset()

Config = dict[str, dict[str, Any]]

SECTIONS: tuple[str, ...] = ("basic", "tokenDetails", "wallets", "risk", "advanced")

_TRUE_STRINGS = {"yes", "true", "1"}
_FALSE_STRINGS = {"no", "false", "0"}
_UNSET_STRINGS = {"", "don't care", "dont care", "none", "null", "undefined"}


def is_unset(value: Any) -> bool:
    return value is UNSET


class ParamKind(str, Enum):
    """Parameter value kind."""

    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class ParameterRule:
    """Valid domain of a single filter parameter.

    Attributes:
        name: Display name used in configurations (e.g. ``Min MCAP (USD)``).
        section: Configuration section that owns the parameter.
        kind: Value kind; booleans are tri-state (True / False / UNSET).
        min_val: Lower bound for numeric parameters.
        max_val: Upper bound for numeric parameters.
        step: Grid spacing for numeric parameters.
        api_name: Backtester query field.
        description: Human-readable explanation.
    """

    name: str
    section: str
    kind: ParamKind = ParamKind.INTEGER
    min_val: float | None = None
    max_val: float | None = None
    step: float | None = None
    api_name: str = ""
    description: str = ""

    # ------------------------------------------------------------------
    @property
    def is_numeric(self) -> bool:
        return self.kind != ParamKind.BOOLEAN

    @property
    def span(self) -> float:
        if not self.is_numeric:
            return 0.0
        return float(self.max_val - self.min_val)

    @property
    def grid_size(self) -> int:
        """Number of grid points between min and max inclusive."""
        if not self.is_numeric:
            return 3
        return int(math.floor(self.span / self.step + 1e-9)) + 1

    def validate(self) -> bool:
        """Return *True* if the rule is internally consistent."""
        if self.section not in SECTIONS:
            return False
        if self.is_numeric:
            if self.min_val is None or self.max_val is None or not self.step:
                return False
            if self.min_val > self.max_val or self.step <= 0:
                return False
        return True

    def snap(self, value: float, step: float | None = None) -> float | int:
        """Clamp *value* into range and round it onto the step grid."""
        step = step or self.step
        value = min(max(float(value), self.min_val), self.max_val)
        snapped = self.min_val + round((value - self.min_val) / step) * step
        snapped = min(max(snapped, self.min_val), self.max_val)
        if self.kind == ParamKind.INTEGER and float(snapped).is_integer():
            return int(snapped)
        return round(snapped, 6)

    def at_fraction(self, fraction: float) -> float | int:
        """Grid value at *fraction* (0..1) of the range."""
        return self.snap(self.min_val + _clamp(fraction, 0.0, 1.0) * self.span)

    def fraction_of(self, value: Any) -> float:
        """Position of *value* within the range as 0..1."""
        if not self.is_numeric or is_unset(value) or self.span == 0:
            return 0.5
        return _clamp((float(value) - self.min_val) / self.span, 0.0, 1.0)

    def contains(self, value: Any) -> bool:
        if is_unset(value):
            return True
        if not self.is_numeric:
            return isinstance(value, bool)
        return self.min_val <= float(value) <= self.max_val

    def coerce(self, value: Any) -> Any:
        """Normalize a raw input value to this rule's representation.

        Missing, empty, "Don't care", and not-a-number values become
        ``UNSET``. Booleans accept "Yes"/"No". Numbers are not clamped.
        """
        if value is None or is_unset(value):
            return UNSET
        if not self.is_numeric:
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
            if text not in _UNSET_STRINGS:
                logger.warning("Treating %r as unset for '%s'", value, self.name)
            return UNSET
        if isinstance(value, bool):
            logger.warning("Ignoring boolean %r for numeric '%s'", value, self.name)
            return UNSET
        if isinstance(value, str):
            text = value.strip()
            if text.lower() in _UNSET_STRINGS:
                return UNSET
            try:
                value = float(text)
            except ValueError:
                logger.warning("Ignoring non-numeric %r for '%s'", value, self.name)
                return UNSET
        number = float(value)
        if math.isnan(number) or math.isinf(number):
            return UNSET
        if self.kind == ParamKind.INTEGER and number.is_integer():
            return int(number)
        return number

    def to_dict(self) -> dict:
        d = asdict(self)
        d["kind"] = self.kind.value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> ParameterRule:
        d = dict(d)
        d["kind"] = ParamKind(d["kind"])
        return cls(**d)


class ParameterTable:
    """Closed collection of parameter rules.

    Parameter names are unique across sections, so a configuration can be
    addressed either by section or by bare parameter name.
    """

    def __init__(self, rules: Iterable[ParameterRule] = ()) -> None:
        self._rules: dict[str, ParameterRule] = {}
        for rule in rules:
            self.add(rule)

    # -- mutators -------------------------------------------------------

    def add(self, rule: ParameterRule) -> None:
        """Register a parameter rule."""
        if not rule.validate():
            raise ValueError(f"Inconsistent parameter rule: {rule.name}")
        self._rules[rule.name] = rule

    # -- accessors -------------------------------------------------------

    def get(self, name: str) -> ParameterRule | None:
        return self._rules.get(name)

    def require(self, name: str) -> ParameterRule:
        rule = self._rules.get(name)
        if rule is None:
            raise UnknownParameterError(name)
        return rule

    def get_all(self) -> list[ParameterRule]:
        return list(self._rules.values())

    def get_by_section(self, section: str) -> list[ParameterRule]:
        return [r for r in self._rules.values() if r.section == section]

    def get_names(self) -> list[str]:
        return list(self._rules.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._rules

    def __len__(self) -> int:
        return len(self._rules)

    # -- serialisation ---------------------------------------------------

    def to_dict(self) -> dict:
        return {name: r.to_dict() for name, r in self._rules.items()}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


# ── Default parameter table ─────────────────────────────────────────────


def build_default_parameter_table() -> ParameterTable:
    """Construct the backtester filter parameter table."""
    table = ParameterTable()
    i, f, b = ParamKind.INTEGER, ParamKind.FLOAT, ParamKind.BOOLEAN

    # -- basic ------------------------------------------------------------
    table.add(ParameterRule("Min MCAP (USD)", "basic", i, 0, 10000, 1000, "minMcap"))
    table.add(ParameterRule("Max MCAP (USD)", "basic", i, 10000, 60000, 1000, "maxMcap"))

    # -- tokenDetails -----------------------------------------------------
    table.add(ParameterRule("Min Deployer Age (min)", "tokenDetails", i, 0, 1440, 5, "minDeployerAge"))
    table.add(ParameterRule("Min Token Age (sec)", "tokenDetails", i, 0, 99999, 15, "minTokenAge"))
    table.add(ParameterRule("Max Token Age (sec)", "tokenDetails", i, 0, 99999, 15, "maxTokenAge"))
    table.add(ParameterRule(
        "Min AG Score", "tokenDetails", i, 0, 10, 1, "minAgScore",
        description="Sent as an integer clamped to 0-10",
    ))

    # -- wallets ----------------------------------------------------------
    table.add(ParameterRule("Min Holders", "wallets", i, 1, 5, 1, "minHolders"))
    table.add(ParameterRule("Max Holders", "wallets", i, 1, 50, 5, "maxHolders"))
    table.add(ParameterRule(
        "Holders Growth %", "wallets", i, 0, 500, 10, "holdersDiffPct",
        description="Minimum holder growth; varied together with the growth window",
    ))
    table.add(ParameterRule(
        "Holders Growth Minutes", "wallets", i, 1, 60, 1, "holdersSinceMinutes",
        description="Window over which holder growth is measured",
    ))
    table.add(ParameterRule("Min Unique Wallets", "wallets", i, 1, 3, 1, "minUniqueWallets"))
    table.add(ParameterRule("Max Unique Wallets", "wallets", i, 1, 8, 1, "maxUniqueWallets"))
    table.add(ParameterRule("Min KYC Wallets", "wallets", i, 0, 3, 1, "minKycWallets"))
    table.add(ParameterRule("Max KYC Wallets", "wallets", i, 1, 8, 1, "maxKycWallets"))

    # -- risk -------------------------------------------------------------
    table.add(ParameterRule("Min Bundled %", "risk", i, 0, 50, 1, "minBundledPercent"))
    table.add(ParameterRule("Max Bundled %", "risk", i, 0, 100, 5, "maxBundledPercent"))
    table.add(ParameterRule("Min Deployer Balance (SOL)", "risk", f, 0, 10, 0.5, "minDeployerBalance"))
    table.add(ParameterRule("Min Buy Ratio %", "risk", i, 0, 50, 10, "minBuyRatio"))
    table.add(ParameterRule("Max Buy Ratio %", "risk", i, 50, 100, 5, "maxBuyRatio"))
    table.add(ParameterRule("Min Vol MCAP %", "risk", i, 0, 100, 10, "minVolMcapPercent"))
    table.add(ParameterRule("Max Vol MCAP %", "risk", i, 33, 300, 20, "maxVolMcapPercent"))
    table.add(ParameterRule("Max Drained %", "risk", i, 0, 100, 5, "maxDrainedPercent"))
    table.add(ParameterRule("Max Drained Count", "risk", i, 0, 11, 1, "maxDrainedCount"))
    table.add(ParameterRule("Description", "risk", b, api_name="needsDescription"))
    table.add(ParameterRule("Fresh Deployer", "risk", b, api_name="needsFreshDeployer"))

    # -- advanced ---------------------------------------------------------
    table.add(ParameterRule("Min TTC (sec)", "advanced", i, 0, 3600, 5, "minTtc"))
    table.add(ParameterRule("Max TTC (sec)", "advanced", i, 10, 3600, 10, "maxTtc"))
    table.add(ParameterRule("Max Liquidity %", "advanced", i, 10, 100, 10, "maxLiquidityPct"))
    table.add(ParameterRule("Min Win Pred %", "advanced", i, 0, 70, 5, "minWinPred"))

    return table


DEFAULT_PARAM_COUNT = 29

DEFAULT_TABLE = build_default_parameter_table()

MIN_MAX_PAIRS: tuple[tuple[str, str], ...] = (
    ("Min MCAP (USD)", "Max MCAP (USD)"),
    ("Min Token Age (sec)", "Max Token Age (sec)"),
    ("Min Holders", "Max Holders"),
    ("Min Unique Wallets", "Max Unique Wallets"),
    ("Min KYC Wallets", "Max KYC Wallets"),
    ("Min Bundled %", "Max Bundled %"),
    ("Min Buy Ratio %", "Max Buy Ratio %"),
    ("Min Vol MCAP %", "Max Vol MCAP %"),
    ("Min TTC (sec)", "Max TTC (sec)"),
)

# Parameters that only ever change together
LINKED_PARAMETERS: tuple[tuple[str, ...], ...] = (
    ("Holders Growth %", "Holders Growth Minutes"),
)


# ── Configuration helpers ─────────────────────────────────────────────


def empty_config(table: ParameterTable = DEFAULT_TABLE) -> Config:
    """Return a configuration with every parameter ``UNSET``."""
    config: Config = {section: {} for section in SECTIONS}
    for rule in table.get_all():
        config[rule.section][rule.name] = UNSET
    return config


def normalize_config(
    config: Mapping[str, Any] | None,
    table: ParameterTable = DEFAULT_TABLE,
) -> Config:
    """Expand *config* to the full canonical shape.

    Accepts a sectioned mapping, a flat ``{parameter: value}`` mapping, or
    a mix of both. Every known parameter is present in the result; values
    not supplied are ``UNSET``. The input is never mutated.

    Raises:
        UnknownParameterError: a parameter or section is not in *table*.
    """
    result = empty_config(table)
    if not config:
        return result
    for key, value in config.items():
        if key in SECTIONS and isinstance(value, Mapping):
            for name, raw in value.items():
                rule = table.get(name)
                if rule is None or rule.section != key:
                    raise UnknownParameterError(name, key)
                result[key][name] = rule.coerce(copy.deepcopy(raw))
        elif key in table:
            rule = table.require(key)
            result[rule.section][key] = rule.coerce(copy.deepcopy(value))
        else:
            raise UnknownParameterError(key)
    return result


def flatten_config(config: Mapping[str, Mapping[str, Any]]) -> dict[str, Any]:
    """Merge all sections into one ``{parameter: value}`` mapping."""
    flat: dict[str, Any] = {}
    for section in config.values():
        if isinstance(section, Mapping):
            flat.update(section)
    return flat


def get_value(config: Config, name: str, table: ParameterTable = DEFAULT_TABLE) -> Any:
    rule = table.require(name)
    return config.get(rule.section, {}).get(name, UNSET)


def with_values(
    config: Config,
    updates: Mapping[str, Any],
    table: ParameterTable = DEFAULT_TABLE,
) -> Config:
    """Return a deep copy of *config* with *updates* applied by name."""
    result = copy.deepcopy(config)
    for name, value in updates.items():
        rule = table.require(name)
        result.setdefault(rule.section, {})[name] = value
    return result


def apply_pins(
    config: Config,
    pins: Mapping[str, Any] | None,
    table: ParameterTable = DEFAULT_TABLE,
) -> Config:
    """Force pinned values onto a copy of *config*."""
    if not pins:
        return copy.deepcopy(config)
    coerced = {name: table.require(name).coerce(value) for name, value in pins.items()}
    return with_values(config, coerced, table)


def validate_min_max(config: Config, table: ParameterTable = DEFAULT_TABLE) -> list[str]:
    """Return one message per inverted min/max pair; empty when valid."""
    errors: list[str] = []
    for min_name, max_name in MIN_MAX_PAIRS:
        if min_name not in table or max_name not in table:
            continue
        lo = get_value(config, min_name, table)
        hi = get_value(config, max_name, table)
        if is_unset(lo) or is_unset(hi):
            continue
        if float(lo) > float(hi):
            errors.append(f"{min_name} ({lo}) > {max_name} ({hi})")
    return errors


def config_to_jsonable(config: Mapping[str, Any]) -> Any:
    """Replace ``UNSET`` with ``None`` recursively for JSON output."""
    if isinstance(config, Mapping):
        return {k: config_to_jsonable(v) for k, v in config.items()}
    if isinstance(config, (list, tuple)):
        return [config_to_jsonable(v) for v in config]
    if is_unset(config):
        return None
    return config


def format_config(config: Config) -> str:
    """One-line summary of the set parameters, for logs."""
    parts = [
        f"{name}={value}"
        for name, value in flatten_config(config).items()
        if not is_unset(value)
    ]
    return ", ".join(parts) if parts else "(all unset)"


# ── Candidate generation ──────────────────────────────────────────────

# Strategic sampling points for ranges too large to enumerate
_STRATEGIC_FRACTIONS = (0.0, 1.0, 0.25, 0.75, 0.5, 0.1, 0.9)


def generate_test_values(
    rule: ParameterRule,
    current: Any,
    max_values: int = 8,
) -> list[Any]:
    """Candidate values for a one-parameter sweep around *current*.

    Small ranges are enumerated in full. Larger ranges yield the nearest
    grid neighbours of *current* first, then the bounds, quartiles,
    midpoint, and deciles. *current* itself is never returned.
    """
    if not rule.is_numeric:
        options = [True, False, UNSET]
        return [v for v in options if not _same_value(v, current)][:max_values]

    if rule.grid_size <= max_values:
        values = [rule.snap(rule.min_val + k * rule.step) for k in range(rule.grid_size)]
        return _dedupe([v for v in values if not _same_value(v, current)])[:max_values]

    candidates: list[Any] = []
    if not is_unset(current):
        base = float(current)
        for k in (1, -1, 2, -2):
            candidates.append(rule.snap(base + k * rule.step))
    for fraction in _STRATEGIC_FRACTIONS:
        candidates.append(rule.at_fraction(fraction))
    values = [v for v in _dedupe(candidates) if not _same_value(v, current)]
    return values[:max_values]


def generate_linked_values(
    rules: list[ParameterRule],
    current: Mapping[str, Any],
    max_values: int = 8,
) -> list[dict[str, Any]]:
    """Joint candidates for parameters that move together.

    Every candidate places all linked parameters at the same fraction of
    their own range.
    """
    candidates: list[dict[str, Any]] = []
    seen: set[tuple] = set()
    current_key = tuple(_hashable(current.get(r.name, UNSET)) for r in rules)
    for fraction in _STRATEGIC_FRACTIONS:
        values = {r.name: r.at_fraction(fraction) for r in rules}
        key = tuple(_hashable(values[r.name]) for r in rules)
        if key == current_key or key in seen:
            continue
        seen.add(key)
        candidates.append(values)
        if len(candidates) >= max_values:
            break
    return candidates


def _same_value(a: Any, b: Any) -> bool:
    if is_unset(a) or is_unset(b):
        return a is b
    if isinstance(a, bool) or isinstance(b, bool):
        return a is b
    return float(a) == float(b)


def _hashable(value: Any) -> Any:
    if is_unset(value):
        return "__unset__"
    if isinstance(value, bool):
        return value
    return float(value)


def _dedupe(values: list[Any]) -> list[Any]:
    seen: set = set()
    result = []
    for v in values:
        key = _hashable(v)
        if key in seen:
            continue
        seen.add(key)
        result.append(v)
    return result


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))
