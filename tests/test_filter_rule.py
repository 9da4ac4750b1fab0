#!/usr/bin/env python3
"""Tests for rule-form validation and rule construction."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(repo_root))

from bgp_filter_manager.mt_filter_gen.filter_rule import (  # noqa: E402
    FilterRule,
    RuleValidationError,
    build_rule,
    is_valid_prefix,
    next_rule_id,
    normalize_schema,
    prefix_network,
    sample_rules,
    validate_rule_fields,
)


def _fields(**overrides) -> dict:
    fields = {
        "chain": "bgp-in",
        "prefix": "10.1.0.0/16",
        "action": "accept",
        "prepend": "",
        "description": "",
        "comment": "",
        "rule": "",
    }
    fields.update(overrides)
    return fields


@pytest.mark.parametrize("prefix", ["10.1.0.0/16", "0.0.0.0/0", "255.255.255.255/32", "192.0.2.1/24"])
def test_valid_prefixes(prefix):
    assert is_valid_prefix(prefix)


@pytest.mark.parametrize(
    "prefix",
    [
        "300.1.1.1/24",
        "10.0.0.0/33",
        "10.0.0/8",
        "10.0.0.0",
        "2001:db8::/32",
        "",
        "10.0.0.0/8 extra",
        "010.0.0.0/8",
        "10.00.0.0/16",
        "10.0.0.0/08",
    ],
)
def test_invalid_prefixes(prefix):
    assert not is_valid_prefix(prefix)


def test_octet_out_of_range_fails_prefix_validation():
    errors = validate_rule_fields(_fields(prefix="300.1.1.1/24"))
    assert errors == {"prefix": "Invalid prefix format"}


def test_suffix_out_of_range_fails_prefix_validation():
    errors = validate_rule_fields(_fields(prefix="10.0.0.0/33"))
    assert errors == {"prefix": "Invalid prefix format"}


def test_leading_zero_octet_fails_prefix_validation():
    # netaddr refuses to parse these; they must never reach the store.
    assert validate_rule_fields(_fields(prefix="010.0.0.0/8")) == {"prefix": "Invalid prefix format"}
    with pytest.raises(RuleValidationError):
        build_rule(_fields(prefix="010.0.0.0/8"))


@pytest.mark.parametrize("name", ["description", "comment", "rule"])
def test_line_breaks_in_text_fields_rejected(name):
    errors = validate_rule_fields(_fields(**{name: "Test\nprefix=1.2.3.0/24"}))
    assert errors == {name: f"{name.capitalize()} must be a single line"}


def test_tab_in_comment_rejected():
    assert "comment" in validate_rule_fields(_fields(comment="a\tb"))


@pytest.mark.parametrize("chain", ["bgp in", 'bgp"in', "bgp\\in"])
def test_chain_name_must_be_one_token(chain):
    errors = validate_rule_fields(_fields(chain=chain))
    assert errors == {"chain": "Chain must not contain spaces, quotes or backslashes"}



def test_missing_chain_and_prefix_reported_together():
    errors = validate_rule_fields(_fields(chain=" ", prefix=""))
    assert errors == {"chain": "Chain is required", "prefix": "Prefix is required"}


@pytest.mark.parametrize("prepend", ["0", "11", 42, "-1"])
def test_prepend_out_of_range(prepend):
    errors = validate_rule_fields(_fields(prepend=prepend))
    assert errors == {"prepend": "Prepend must be between 1 and 10"}


def test_prepend_must_be_a_number():
    assert validate_rule_fields(_fields(prepend="two")) == {"prepend": "Prepend must be a whole number"}


def test_unknown_action_rejected():
    assert "action" in validate_rule_fields(_fields(action="permit"))


def test_asn_schema_requires_numeric_asn():
    assert validate_rule_fields(_fields(asn=""), "asn") == {"asn": "ASN is required"}
    assert "asn" in validate_rule_fields(_fields(asn="AS65001"), "asn")
    assert validate_rule_fields(_fields(asn="65001"), "asn") == {}


def test_build_rule_trims_and_defaults():
    rule = build_rule(_fields(chain="  bgp-out ", action="", prepend="3", description=" Test "))
    assert rule.chain_or_asn == "bgp-out"
    assert rule.action == "accept"
    assert rule.prepend == 3
    assert rule.description == "Test"
    assert rule.rule is None
    assert rule.key_kind == "chain"


def test_build_rule_keeps_raw_expression_unvalidated():
    rule = build_rule(_fields(rule="if (this is not routeros) { ??? }"))
    assert rule.rule == "if (this is not routeros) { ??? }"


def test_build_rule_asn_schema_drops_raw_expression():
    rule = build_rule(_fields(asn="65001", rule="if (dst == 10.1.0.0/16) { accept; }"), "asn")
    assert rule.chain_or_asn == "65001"
    assert rule.key_kind == "asn"
    assert rule.rule is None


def test_build_rule_raises_with_field_errors():
    with pytest.raises(RuleValidationError) as excinfo:
        build_rule(_fields(prefix="10.0.0.0/33", prepend="12"))
    assert set(excinfo.value.errors) == {"prefix", "prepend"}
    assert isinstance(excinfo.value, ValueError)


def test_build_rule_preserves_given_id():
    assert build_rule(_fields(), rule_id=4242).id == 4242


def test_rule_ids_are_never_reused():
    ids = [next_rule_id() for _ in range(50)] + [build_rule(_fields()).id for _ in range(5)]
    assert len(set(ids)) == len(ids)


def test_label_prefers_description_over_comment():
    rule = FilterRule(id=1, chain_or_asn="bgp-in", prefix="10.0.0.0/8", description="", comment="fallback")
    assert rule.label == "fallback"
    assert FilterRule(id=2, chain_or_asn="x", prefix="10.0.0.0/8", description="d", comment="c").label == "d"


def test_prefix_network_strips_host_bits():
    assert prefix_network("10.1.2.3/8") == "10.0.0.0/8"


def test_normalize_schema():
    assert normalize_schema(" ASN ") == "asn"
    with pytest.raises(ValueError):
        normalize_schema("vrf")


def test_sample_rules():
    samples = sample_rules()
    assert [r.chain_or_asn for r in samples] == ["isp-HE-out", "bgp-in", "bgp-out"]
    assert [r.action for r in samples] == ["accept", "reject", "accept"]
    assert samples[2].prepend == 1
    assert all(is_valid_prefix(r.prefix) for r in samples)
