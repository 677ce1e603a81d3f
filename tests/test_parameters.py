"""Tests for the filter parameter table and configuration helpers."""

import copy
import json

import pytest

from src.filter_optimizer.exceptions import UnknownParameterError
from src.filter_optimizer.parameters import (
    DEFAULT_PARAM_COUNT,
    DEFAULT_TABLE,
    LINKED_PARAMETERS,
    MIN_MAX_PAIRS,
    SECTIONS,
    UNSET,
    ParameterRule,
    ParameterTable,
    ParamKind,
    apply_pins,
    build_default_parameter_table,
    config_to_jsonable,
    flatten_config,
    format_config,
    generate_linked_values,
    generate_test_values,
    get_value,
    normalize_config,
    validate_min_max,
    with_values,
)


# ── Table ────────────────────────────────────────────────────────────


class TestParameterTable:
    def test_default_count(self):
        table = build_default_parameter_table()
        assert len(table) == DEFAULT_PARAM_COUNT == 29

    def test_every_rule_valid_and_mapped(self):
        for rule in DEFAULT_TABLE.get_all():
            assert rule.validate()
            assert rule.section in SECTIONS
            assert rule.api_name

    def test_sections_populated(self):
        for section in SECTIONS:
            assert DEFAULT_TABLE.get_by_section(section)

    def test_require_unknown(self):
        with pytest.raises(UnknownParameterError):
            DEFAULT_TABLE.require("Max Moon Factor")

    def test_pairs_and_links_known(self):
        for lo, hi in MIN_MAX_PAIRS:
            assert lo in DEFAULT_TABLE and hi in DEFAULT_TABLE
        for group in LINKED_PARAMETERS:
            assert all(n in DEFAULT_TABLE for n in group)

    def test_add_rejects_inconsistent(self):
        table = ParameterTable()
        with pytest.raises(ValueError):
            table.add(ParameterRule("Bad", "basic", ParamKind.INTEGER, 10, 0, 1, "bad"))

    def test_serialization(self):
        data = json.loads(DEFAULT_TABLE.to_json())
        rule = ParameterRule.from_dict(data["Min AG Score"])
        assert rule == DEFAULT_TABLE.get("Min AG Score")


# ── Rule ─────────────────────────────────────────────────────────────


class TestParameterRule:
    def test_snap_clamps_and_rounds(self):
        rule = DEFAULT_TABLE.get("Max MCAP (USD)")
        assert rule.snap(23400) == 23000
        assert rule.snap(23600) == 24000
        assert rule.snap(999999) == 60000
        assert rule.snap(-5) == 10000

    def test_snap_float(self):
        rule = DEFAULT_TABLE.get("Min Deployer Balance (SOL)")
        assert rule.snap(1.3) == 1.5
        assert rule.snap(1.2) == 1.0

    def test_grid_size(self):
        assert DEFAULT_TABLE.get("Min AG Score").grid_size == 11
        assert DEFAULT_TABLE.get("Description").grid_size == 3

    def test_coerce(self):
        ag = DEFAULT_TABLE.get("Min AG Score")
        assert ag.coerce("5") == 5
        assert ag.coerce(float("nan")) is UNSET
        assert ag.coerce("Don't care") is UNSET
        assert ag.coerce(None) is UNSET
        desc = DEFAULT_TABLE.get("Description")
        assert desc.coerce("Yes") is True
        assert desc.coerce("No") is False
        assert desc.coerce("Don't care") is UNSET

    def test_fraction_roundtrip_bounds(self):
        rule = DEFAULT_TABLE.get("Max Liquidity %")
        assert rule.at_fraction(0.0) == 10
        assert rule.at_fraction(1.0) == 100
        assert rule.fraction_of(55) == pytest.approx(0.5)


# ── Config helpers ───────────────────────────────────────────────────


class TestConfigHelpers:
    def test_normalize_fills_every_parameter(self):
        config = normalize_config({"Min AG Score": 4})
        flat = flatten_config(config)
        assert len(flat) == 29
        assert flat["Min AG Score"] == 4
        assert flat["Max Holders"] is UNSET

    def test_normalize_sectioned_and_flat_agree(self):
        sectioned = normalize_config({"basic": {"Min MCAP (USD)": 2000}})
        flat = normalize_config({"Min MCAP (USD)": 2000})
        assert sectioned == flat

    def test_normalize_unknown_raises(self):
        with pytest.raises(UnknownParameterError):
            normalize_config({"Moon": 1})
        with pytest.raises(UnknownParameterError):
            normalize_config({"basic": {"Min AG Score": 3}})

    def test_normalize_does_not_mutate(self):
        raw = {"basic": {"Min MCAP (USD)": "3000"}}
        before = copy.deepcopy(raw)
        normalize_config(raw)
        assert raw == before

    def test_with_values_copies(self):
        base = normalize_config({"Min AG Score": 3})
        updated = with_values(base, {"Min AG Score": 6})
        assert get_value(base, "Min AG Score") == 3
        assert get_value(updated, "Min AG Score") == 6

    def test_apply_pins(self):
        base = normalize_config({"Min AG Score": 3})
        pinned = apply_pins(base, {"Min AG Score": "7"})
        assert get_value(pinned, "Min AG Score") == 7
        assert get_value(base, "Min AG Score") == 3

    def test_validate_min_max(self):
        config = normalize_config({"Min MCAP (USD)": 9000, "Max MCAP (USD)": 12000})
        assert validate_min_max(config) == []
        bad = normalize_config({"Min Bundled %": 40, "Max Bundled %": 20})
        errors = validate_min_max(bad)
        assert len(errors) == 1
        assert "Min Bundled %" in errors[0]

    def test_validate_ignores_unset(self):
        config = normalize_config({"Min Holders": 5})
        assert validate_min_max(config) == []

    def test_jsonable_and_format(self):
        config = normalize_config({"Fresh Deployer": True})
        data = config_to_jsonable(config)
        assert data["risk"]["Fresh Deployer"] is True
        assert data["basic"]["Min MCAP (USD)"] is None
        json.dumps(data)
        assert format_config(config) == "Fresh Deployer=True"
        assert format_config(normalize_config(None)) == "(all unset)"


# ── Candidate generation ─────────────────────────────────────────────


class TestGenerateTestValues:
    def test_boolean_other_options(self):
        values = generate_test_values(DEFAULT_TABLE.get("Description"), True)
        assert values == [False, UNSET]

    def test_small_range_enumerated(self):
        rule = DEFAULT_TABLE.get("Min Unique Wallets")
        assert generate_test_values(rule, 2) == [1, 3]

    def test_large_range_neighbours_first(self):
        rule = DEFAULT_TABLE.get("Max MCAP (USD)")
        values = generate_test_values(rule, 30000, max_values=8)
        assert values[:4] == [31000, 29000, 32000, 28000]
        assert 30000 not in values
        assert len(values) == 8
        assert all(rule.contains(v) for v in values)

    def test_unset_current_uses_strategic_points(self):
        rule = DEFAULT_TABLE.get("Max MCAP (USD)")
        values = generate_test_values(rule, UNSET, max_values=3)
        assert values == [10000, 60000, 22000]

    def test_linked_values_share_fraction(self):
        rules = [DEFAULT_TABLE.get(n) for n in LINKED_PARAMETERS[0]]
        candidates = generate_linked_values(rules, {r.name: UNSET for r in rules}, 4)
        assert len(candidates) == 4
        first = candidates[0]
        assert first == {"Holders Growth %": 0, "Holders Growth Minutes": 1}
        assert candidates[1] == {"Holders Growth %": 500, "Holders Growth Minutes": 60}
