"""
Import BGP filter rules from pasted RouterOS v7 configuration text.

Only single-line ``/routing/filter/rule add ...`` statements are understood.
Each field is pulled out by its own pattern, so fields may appear in any
order and unknown tokens are ignored. Lines that do not carry the statement
marker, or that yield neither a chain/ASN nor a prefix, are skipped quietly.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .filter_rule import (
    DEFAULT_ACTION,
    KEY_CHAIN,
    UNKNOWN_ASN,
    FilterRule,
    is_valid_prefix,
    next_rule_id,
    normalize_schema,
)

logger = logging.getLogger(__name__)


###################################
###          Constants          ###
###################################

FILTER_RULE_MARKER = "/routing/filter/rule"

DEFAULT_CHAIN = "bgp-in"
DEFAULT_DROP_TARGET = "bgp-drop"
PARSED_DESCRIPTION = "Parsed from input"
PARSED_COMMENT = "Imported from RouterOS commands"

_QUOTED = r'"((?:[^"\\]|\\.)*)"'
_KEY = r"(?<![\w.-])"
_IPV4_PREFIX = r"(\d{1,3}(?:\.\d{1,3}){3}/\d{1,2})(?![\w./])"

QUOTED_VALUE_RE = re.compile(_QUOTED)
CHAIN_RE = re.compile(_KEY + r"chain=([^\s\"]+)", re.IGNORECASE)
REMOTE_AS_RE = re.compile(_KEY + r"remote[.-]as=(\d+)\b", re.IGNORECASE)
CHAIN_ASN_RE = re.compile(_KEY + r"chain=AS(\d+)(?![\d])", re.IGNORECASE)
PREFIX_RE = re.compile(_KEY + r"prefix=" + _IPV4_PREFIX, re.IGNORECASE)
ACTION_RE = re.compile(_KEY + r"action=(accept|reject|drop)\b", re.IGNORECASE)
COMMENT_RE = re.compile(_KEY + r"comment=" + _QUOTED, re.IGNORECASE)
RULE_RE = re.compile(_KEY + r"rule=" + _QUOTED, re.IGNORECASE)
DST_PREFIX_RE = re.compile(r"\bdst\s*==\s*" + _IPV4_PREFIX)
RULE_ACTION_RE = re.compile(r"\b(accept|reject)\s*;", re.IGNORECASE)


_UNESCAPES = {"n": "\n", "r": "\r", "t": "\t"}


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", lambda m: _UNESCAPES.get(m.group(1), m.group(1)), value)


def _search(pattern: re.Pattern, text: str) -> Optional[str]:
    match = pattern.search(text)
    return match.group(1) if match else None


@dataclass(frozen=True)
class ParseResult:
    imported: Tuple[FilterRule, ...]
    total_lines: int = 0
    candidate_lines: int = 0
    blank_input: bool = False

    @property
    def imported_count(self) -> int:
        return len(self.imported)

    @property
    def message(self) -> str:
        if self.blank_input:
            return "Please paste some RouterOS commands first"
        if self.imported_count:
            return f"{self.imported_count} filters imported successfully"
        return "No valid BGP filter commands found in input"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "imported": [r.to_dict() for r in self.imported],
            "imported_count": self.imported_count,
            "total_lines": self.total_lines,
            "candidate_lines": self.candidate_lines,
            "message": self.message,
        }


class FilterParser:
    def __init__(self, **params):
        self.schema = normalize_schema(params.get("schema") or KEY_CHAIN)
        self.default_chain = params.get("default_chain") or DEFAULT_CHAIN
        self.drop_target = params.get("drop_target") or DEFAULT_DROP_TARGET

        target = re.escape(self.drop_target)
        self.drop_jump_re = re.compile(
            rf"(?<![\w.-])jump-target={target}(?![\w-])|\bjump\s+{target}(?![\w-])",
            re.IGNORECASE,
        )

    def _extract_group_key(self, bare: str) -> Optional[str]:
        if self.schema == KEY_CHAIN:
            return _search(CHAIN_RE, bare)
        return _search(REMOTE_AS_RE, bare) or _search(CHAIN_ASN_RE, bare)

    def _extract_prefix(self, bare: str, raw_rule: Optional[str]) -> Optional[str]:
        prefix = _search(PREFIX_RE, bare)
        if not prefix and raw_rule:
            prefix = _search(DST_PREFIX_RE, raw_rule)
        if prefix and not is_valid_prefix(prefix):
            logger.debug(f"Ignoring out-of-range prefix {prefix}")
            return None
        return prefix

    def _extract_action(self, bare: str, raw_rule: Optional[str]) -> str:
        action = _search(ACTION_RE, bare)
        if action:
            return action.lower()
        if self.drop_jump_re.search(bare):
            return "drop"
        if raw_rule:
            if self.drop_jump_re.search(raw_rule):
                return "drop"
            action = _search(RULE_ACTION_RE, raw_rule)
            if action:
                return action.lower()
        return DEFAULT_ACTION

    def parse_line(self, line: str) -> Optional[FilterRule]:
        line = line.strip()
        if FILTER_RULE_MARKER not in line:
            return None

        # Match key=value tokens only outside quoted values so a comment
        # mentioning "prefix=..." is not read as the rule's prefix.
        bare = QUOTED_VALUE_RE.sub('""', line)

        comment = _search(COMMENT_RE, line)
        raw_rule = _search(RULE_RE, line)
        comment = _unescape(comment) if comment is not None else None
        raw_rule = _unescape(raw_rule) if raw_rule is not None else None

        group_key = self._extract_group_key(bare)
        prefix = self._extract_prefix(bare, raw_rule)
        if not group_key and not prefix:
            return None

        if self.schema == KEY_CHAIN:
            default_key = self.default_chain
        else:
            default_key = UNKNOWN_ASN

        return FilterRule(
            id=next_rule_id(),
            chain_or_asn=group_key or default_key,
            prefix=prefix or "0.0.0.0/0",
            action=self._extract_action(bare, raw_rule),
            prepend=None,
            description=comment if comment is not None else PARSED_DESCRIPTION,
            comment=comment if comment is not None else PARSED_COMMENT,
            rule=(raw_rule or None) if self.schema == KEY_CHAIN else None,
            key_kind=self.schema,
        )

    def parse(self, text: str) -> ParseResult:
        text = (text or "").strip()
        if not text:
            return ParseResult(imported=(), blank_input=True)

        lines = text.splitlines()
        candidates = 0
        imported: List[FilterRule] = []
        for line in lines:
            if FILTER_RULE_MARKER in line:
                candidates += 1
            rule = self.parse_line(line)
            if rule is not None:
                imported.append(rule)

        logger.info(
            f"Parsed {len(lines)} lines: {candidates} filter statements, {len(imported)} imported"
        )
        return ParseResult(
            imported=tuple(imported),
            total_lines=len(lines),
            candidate_lines=candidates,
        )


def parse_text(raw: str, schema: str = KEY_CHAIN, **params) -> ParseResult:
    return FilterParser(schema=schema, **params).parse(raw)
