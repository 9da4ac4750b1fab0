#!/usr/bin/env python3
"""Tests for the in-memory filter rule store."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(repo_root))

from bgp_filter_manager.mt_filter_gen.filter_rule import FilterRule, next_rule_id  # noqa: E402
from bgp_filter_manager.mt_filter_gen.rule_store import (  # noqa: E402
    RuleIndexError,
    RuleNotFoundError,
    RuleStore,
    rule_stats,
)


def _rule(chain="bgp-in", prefix="10.0.0.0/8", action="accept", **kwargs) -> FilterRule:
    return FilterRule(id=next_rule_id(), chain_or_asn=chain, prefix=prefix, action=action, **kwargs)


def _store() -> RuleStore:
    return RuleStore([
        _rule("bgp-in", "10.0.0.0/8", "reject"),
        _rule("bgp-in", "192.0.2.0/24", "accept"),
        _rule("bgp-out", "203.0.113.0/24", "drop"),
    ])


def test_add_appends_in_order():
    store = RuleStore()
    first, second = _rule(prefix="10.0.0.0/8"), _rule(prefix="10.1.0.0/16")
    store.add(first)
    store.add(second)
    assert store.all() == (first, second)
    assert len(store) == 2


def test_add_rejects_duplicate_id():
    store = RuleStore()
    rule = _rule()
    store.add(rule)
    with pytest.raises(ValueError):
        store.add(rule)
    assert len(store) == 1


def test_extend_is_all_or_nothing():
    store = _store()
    fresh = _rule(prefix="198.51.100.0/24")
    with pytest.raises(ValueError):
        store.extend([fresh, store.all()[0]])
    assert len(store) == 3
    assert fresh not in store.all()


def test_update_replaces_in_place_and_keeps_id():
    store = _store()
    original = store.all()[1]
    store.update(1, _rule("bgp-in", "192.0.2.0/25", "reject"))
    updated = store.all()[1]
    assert updated.id == original.id
    assert updated.prefix == "192.0.2.0/25"
    assert updated.action == "reject"
    assert len(store) == 3


@pytest.mark.parametrize("index", [3, 99, -1])
def test_update_out_of_range(index):
    store = _store()
    before = store.all()
    with pytest.raises(RuleIndexError):
        store.update(index, _rule())
    assert store.all() == before


def test_remove_at_shifts_later_rules_down():
    store = _store()
    first, second, third = store.all()
    removed = store.remove_at(1)
    assert removed == second
    assert store.all() == (first, third)


@pytest.mark.parametrize("index", [3, 10, -1])
def test_remove_at_out_of_range_leaves_store_unchanged(index):
    store = _store()
    with pytest.raises(RuleIndexError):
        store.remove_at(index)
    assert len(store) == 3


def test_index_errors_are_index_errors():
    with pytest.raises(IndexError):
        RuleStore().remove_at(0)


def test_clear_twice_leaves_store_empty():
    store = _store()
    store.clear()
    assert store.all() == ()
    store.clear()
    assert store.all() == ()
    assert store.stats()["total"] == 0


def test_id_based_operations():
    store = _store()
    target = store.all()[2]
    assert store.index_of(target.id) == 2
    assert store.id_at(2) == target.id
    assert store.get(target.id) == target

    store.update_by_id(target.id, _rule("bgp-out", "203.0.113.0/25", "accept"))
    assert store.get(target.id).prefix == "203.0.113.0/25"

    store.remove_by_id(target.id)
    assert len(store) == 2
    with pytest.raises(RuleNotFoundError):
        store.get(target.id)
    with pytest.raises(RuleNotFoundError):
        store.remove_by_id(target.id)


def test_stats():
    store = _store()
    store.add(_rule("bgp-out", "198.51.100.0/24", "accept"))
    stats = store.stats()
    assert stats == {"total": 4, "accepted": 2, "rejected_or_dropped": 2, "distinct_groups": 2}
    assert stats["accepted"] + stats["rejected_or_dropped"] <= stats["total"]


def test_stats_recomputed_after_mutation():
    store = _store()
    store.remove_at(2)
    assert store.stats() == {"total": 2, "accepted": 1, "rejected_or_dropped": 1, "distinct_groups": 1}


def test_all_is_read_only_view():
    store = _store()
    view = store.all()
    store.clear()
    assert len(view) == 3
    assert isinstance(view, tuple)


def test_rule_stats_counts_a_snapshot():
    store = _store()
    snapshot = store.all()
    store.add(_rule("bgp-edge", "198.51.100.0/24", "accept"))
    assert rule_stats(snapshot) == {"total": 3, "accepted": 1, "rejected_or_dropped": 2, "distinct_groups": 2}
    assert store.stats() == rule_stats(store.all())
    assert rule_stats([]) == {"total": 0, "accepted": 0, "rejected_or_dropped": 0, "distinct_groups": 0}
