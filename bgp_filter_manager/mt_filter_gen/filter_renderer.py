"""
Render BGP filter rules as RouterOS v7 configuration commands.

Each rule is laid out by its own key kind. Chain-keyed rules are grouped per
chain and then per action. ASN-keyed rules get one address list per ASN,
followed by action groups spanning all ASN-keyed rules.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from jinja2 import Environment, FileSystemLoader

from .filter_parser import DEFAULT_DROP_TARGET, FILTER_RULE_MARKER
from .filter_rule import (
    ACTIONS,
    KEY_ASN,
    KEY_CHAIN,
    FilterRule,
    normalize_schema,
    prefix_network,
)

logger = logging.getLogger(__name__)


###################################
###          Constants          ###
###################################

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
CONFIG_TEMPLATE = "filter_config.rsc.j2"

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_PEER = {
    "name": "peer-1",
    "address": "192.168.1.1",
    "remote_as": "65001",
    "in_filter": "bgp-in",
}


_ESCAPES = str.maketrans({"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r", "\t": "\\t"})


def quote(value: str) -> str:
    escaped = str(value).translate(_ESCAPES)
    return f'"{escaped}"'


def _group_in_order(rules: Iterable[FilterRule]) -> Dict[str, List[FilterRule]]:
    groups: Dict[str, List[FilterRule]] = {}
    for rule in rules:
        groups.setdefault(rule.chain_or_asn, []).append(rule)
    return groups


def _bucket_by_action(rules: Iterable[FilterRule]) -> Dict[str, List[FilterRule]]:
    buckets: Dict[str, List[FilterRule]] = {action: [] for action in ACTIONS}
    for rule in rules:
        buckets[rule.action].append(rule)
    return buckets


class FilterRenderer:
    def __init__(self, **params):
        # No schema renders every rule; a schema keeps only rules tagged with it.
        schema = params.get("schema")
        self.schema = normalize_schema(schema) if schema else None
        self.drop_target = params.get("drop_target") or DEFAULT_DROP_TARGET
        self.peer = {**DEFAULT_PEER, **(params.get("peer") or {})}
        self.skipped = 0

        self.jinja_env = Environment(loader=FileSystemLoader(str(TEMPLATE_DIR)))
        self.jinja_env.trim_blocks = True
        self.jinja_env.lstrip_blocks = True
        self.jinja_env.keep_trailing_newline = True

    def split_by_schema(self, rules: Iterable[FilterRule]) -> Tuple[List[FilterRule], List[FilterRule]]:
        """Return ``(kept, skipped)`` for the renderer's schema filter."""
        kept: List[FilterRule] = []
        skipped: List[FilterRule] = []
        for rule in rules:
            if self.schema is None or rule.key_kind == self.schema:
                kept.append(rule)
            else:
                skipped.append(rule)
        return kept, skipped

    def default_comment(self, rule: FilterRule) -> str:
        text = f"{rule.action.capitalize()} prefix {rule.prefix}"
        if rule.key_kind == KEY_ASN:
            text += f" from AS{rule.chain_or_asn}"
        return text

    def _action_tokens(self, rule: FilterRule) -> List[str]:
        if rule.action == "drop":
            return ["action=jump", f"jump-target={self.drop_target}", f"prefix={rule.prefix}"]

        tokens = [f"action={rule.action}", f"prefix={rule.prefix}"]
        if rule.action == "accept" and rule.prepend:
            if rule.key_kind == KEY_ASN:
                path = ",".join([str(rule.chain_or_asn)] * rule.prepend)
                tokens.append(f"set-bgp-prepend-path={path}")
            else:
                tokens.append(f"set-bgp-prepend-path={rule.prepend}")
        return tokens

    def statement(self, rule: FilterRule) -> str:
        """One ``/routing/filter/rule add`` line; the comment is always last."""
        if rule.key_kind == KEY_ASN:
            tokens = [f"chain=AS{rule.chain_or_asn}-in"]
        else:
            tokens = [f"chain={rule.chain_or_asn}"]

        # Raw expressions are passed through untouched.
        if rule.rule and rule.key_kind == KEY_CHAIN:
            tokens.append(f"rule={quote(rule.rule)}")
        else:
            tokens.extend(self._action_tokens(rule))

        tokens.append(f"comment={quote(rule.label or self.default_comment(rule))}")
        return f"{FILTER_RULE_MARKER} add " + " ".join(tokens)

    def address_list_entry(self, rule: FilterRule) -> str:
        asn = rule.chain_or_asn
        comment = rule.label or f"AS{asn} prefix {rule.prefix}"
        return (
            f"/ip/firewall/address-list add list=AS{asn}-prefixes "
            f"address={prefix_network(rule.prefix)} comment={quote(comment)}"
        )

    def _action_sections(self, rules: Iterable[FilterRule], chain: Optional[str] = None) -> List[Dict[str, Any]]:
        sections = []
        for action, bucket in _bucket_by_action(rules).items():
            if not bucket:
                continue
            title = f"{action.capitalize()} filters"
            if chain is not None:
                title += f" for chain {chain}"
            sections.append({"title": title, "lines": [self.statement(r) for r in bucket]})
        return sections

    def build_sections(self, rules: Iterable[FilterRule]) -> List[Dict[str, Any]]:
        """Chain-keyed sections first, then address lists and action groups for ASN-keyed rules."""
        rules = list(rules)
        chain_rules = [r for r in rules if r.key_kind != KEY_ASN]
        asn_rules = [r for r in rules if r.key_kind == KEY_ASN]
        sections: List[Dict[str, Any]] = []

        for chain, grouped in _group_in_order(chain_rules).items():
            sections.extend(self._action_sections(grouped, chain=chain))

        for asn, grouped in _group_in_order(asn_rules).items():
            sections.append({
                "title": f"Address list for AS{asn}",
                "lines": [self.address_list_entry(r) for r in grouped],
            })
        sections.extend(self._action_sections(asn_rules))
        return sections

    def render(self, rules: Iterable[FilterRule], now: Optional[datetime] = None) -> str:
        rules, skipped = self.split_by_schema(rules)
        self.skipped = len(skipped)
        if skipped:
            logger.warning(f"Skipped {len(skipped)} rules not keyed by {self.schema}")

        params = {
            "generated_on": (now or datetime.now()).strftime(TIMESTAMP_FORMAT),
            "sections": self.build_sections(rules),
            "peer": self.peer,
        }
        template = self.jinja_env.get_template(CONFIG_TEMPLATE)
        config_text = template.render(params)
        logger.info(f"Rendered {len(rules)} rules as RouterOS config")
        return config_text


def render_text(
    rules: Iterable[FilterRule],
    now: Optional[datetime] = None,
    schema: Optional[str] = None,
    **params,
) -> str:
    return FilterRenderer(schema=schema, **params).render(rules, now)
