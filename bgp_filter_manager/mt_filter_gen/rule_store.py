"""In-memory, ordered store of BGP filter rules for one session."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Dict, Iterable, List, Tuple

from .filter_rule import FilterRule

logger = logging.getLogger(__name__)


class RuleIndexError(IndexError):
    """Position does not refer to a rule currently in the store."""


class RuleNotFoundError(KeyError):
    """No rule with the given id is in the store."""


def rule_stats(rules: Iterable[FilterRule]) -> Dict[str, int]:
    """Counters for one snapshot of rules."""
    rules = list(rules)
    return {
        "total": len(rules),
        "accepted": sum(1 for r in rules if r.action == "accept"),
        "rejected_or_dropped": sum(1 for r in rules if r.action in ("reject", "drop")),
        "distinct_groups": len({r.chain_or_asn for r in rules}),
    }


class RuleStore:
    def __init__(self, rules: Iterable[FilterRule] = ()):
        self._rules: List[FilterRule] = []
        self._lock = threading.RLock()
        self.extend(rules)

    def __len__(self) -> int:
        return len(self._rules)

    def _check_index(self, index: int) -> None:
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(self._rules):
            raise RuleIndexError(
                f"Rule position {index} is out of range; store holds {len(self._rules)} rules."
            )

    def _check_new_ids(self, rules: List[FilterRule]) -> None:
        seen = {r.id for r in self._rules}
        for rule in rules:
            if rule.id is None:
                raise ValueError("Rule id must be set before adding it to the store.")
            if rule.id in seen:
                raise ValueError(f"Duplicate rule id: {rule.id}")
            seen.add(rule.id)

    def add(self, rule: FilterRule) -> None:
        with self._lock:
            self._check_new_ids([rule])
            self._rules.append(rule)
            logger.debug(f"Added rule {rule.id} ({rule.action} {rule.prefix})")

    def extend(self, rules: Iterable[FilterRule]) -> None:
        rules = list(rules)
        with self._lock:
            self._check_new_ids(rules)
            self._rules.extend(rules)
        if rules:
            logger.debug(f"Added {len(rules)} rules")

    def update(self, index: int, rule: FilterRule) -> None:
        """Replace the rule at ``index``. The stored rule keeps its original id."""
        with self._lock:
            self._check_index(index)
            current = self._rules[index]
            self._rules[index] = replace(rule, id=current.id)
            logger.debug(f"Updated rule {current.id} at position {index}")

    def remove_at(self, index: int) -> FilterRule:
        with self._lock:
            self._check_index(index)
            removed = self._rules.pop(index)
            logger.debug(f"Removed rule {removed.id} from position {index}")
            return removed

    def clear(self) -> None:
        with self._lock:
            count = len(self._rules)
            self._rules = []
        logger.info(f"Cleared {count} rules")

    def all(self) -> Tuple[FilterRule, ...]:
        with self._lock:
            return tuple(self._rules)

    def id_at(self, index: int) -> int:
        with self._lock:
            self._check_index(index)
            return self._rules[index].id

    def index_of(self, rule_id: int) -> int:
        with self._lock:
            for index, rule in enumerate(self._rules):
                if rule.id == rule_id:
                    return index
        raise RuleNotFoundError(rule_id)

    def get(self, rule_id: int) -> FilterRule:
        with self._lock:
            return self._rules[self.index_of(rule_id)]

    def update_by_id(self, rule_id: int, rule: FilterRule) -> None:
        with self._lock:
            self.update(self.index_of(rule_id), rule)

    def remove_by_id(self, rule_id: int) -> FilterRule:
        with self._lock:
            return self.remove_at(self.index_of(rule_id))

    def stats(self) -> Dict[str, int]:
        return rule_stats(self.all())
