"""
BGP filter rule record, rule-form validation and rule construction.

A rule is keyed either by a routing chain name or by a remote ASN. The
``key_kind`` tag on each rule says which one ``chain_or_asn`` holds, so both
export layouts share one record shape.
"""

from __future__ import annotations

import itertools
import re
import threading
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from netaddr import AddrFormatError, IPNetwork


###################################
###          Constants          ###
###################################

KEY_CHAIN = "chain"
KEY_ASN = "asn"
SCHEMAS = (KEY_CHAIN, KEY_ASN)

ACTIONS = ("accept", "reject", "drop")
DEFAULT_ACTION = "accept"

PREPEND_MIN = 1
PREPEND_MAX = 10

ASN_MAX = 4294967295
UNKNOWN_ASN = "unknown"

_OCTET = r"(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)"
IPV4_PREFIX_RE = re.compile(rf"^{_OCTET}(?:\.{_OCTET}){{3}}/(?:3[0-2]|[12]?\d)$")
CHAIN_NAME_RE = re.compile(r"^[^\s\"\\]+$")
CONTROL_CHAR_RE = re.compile(r"[\x00-\x1f\x7f]")
TEXT_FIELDS = ("description", "comment", "rule")
ASN_RE = re.compile(r"^\d{1,10}$")


class RuleValidationError(ValueError):
    """Raised when a rule is built from form fields that do not validate."""

    def __init__(self, errors: Mapping[str, str]):
        self.errors = dict(errors)
        super().__init__(
            "Invalid filter rule: "
            + "; ".join(f"{name}: {message}" for name, message in self.errors.items())
        )


_id_lock = threading.Lock()
_id_counter = itertools.count(1)


def next_rule_id() -> int:
    """Mint a process-local rule id. Ids are never handed out twice."""
    with _id_lock:
        return next(_id_counter)


@dataclass(frozen=True)
class FilterRule:
    id: int
    chain_or_asn: str
    prefix: str
    action: str = DEFAULT_ACTION
    prepend: Optional[int] = None
    description: str = ""
    comment: str = ""
    rule: Optional[str] = None
    key_kind: str = KEY_CHAIN

    @property
    def label(self) -> str:
        return self.description or self.comment

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_schema(value: Optional[str]) -> str:
    schema = str(value or "").strip().lower()
    if schema not in SCHEMAS:
        raise ValueError(f"Invalid schema: {value!r}. Expected one of {list(SCHEMAS)}.")
    return schema


def is_valid_prefix(prefix: str) -> bool:
    """Dotted-quad IPv4 prefix, octets 0-255 without leading zeros, /0-/32."""
    prefix = str(prefix or "").strip()
    if not IPV4_PREFIX_RE.match(prefix):
        return False
    try:
        return IPNetwork(prefix).version == 4
    except (AddrFormatError, ValueError):
        return False


def is_valid_asn(value: str) -> bool:
    value = str(value or "").strip()
    return bool(ASN_RE.match(value)) and 1 <= int(value) <= ASN_MAX


def prefix_network(prefix: str) -> str:
    # 10.1.2.3/8 -> 10.0.0.0/8
    return str(IPNetwork(prefix).cidr)


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _group_key(fields: Mapping[str, Any], schema: str) -> str:
    for name in (schema, "chain_or_asn"):
        value = _clean(fields.get(name))
        if value:
            return value
    return ""


def _parse_prepend(value: Any) -> Optional[int]:
    if value is None or _clean(value) == "":
        return None
    if isinstance(value, bool):
        raise ValueError("Prepend must be a whole number")
    try:
        return int(_clean(value))
    except ValueError:
        raise ValueError("Prepend must be a whole number")


def validate_rule_fields(fields: Mapping[str, Any], schema: str = KEY_CHAIN) -> Dict[str, str]:
    """
    Check raw rule-form fields and return ``{field: message}`` for every
    problem found. An empty dict means the fields can be built into a rule.
    """
    schema = normalize_schema(schema)
    errors: Dict[str, str] = {}

    key = _group_key(fields, schema)
    if schema == KEY_CHAIN:
        if not key:
            errors["chain"] = "Chain is required"
        elif not CHAIN_NAME_RE.match(key):
            errors["chain"] = "Chain must not contain spaces, quotes or backslashes"
    else:
        if not key:
            errors["asn"] = "ASN is required"
        elif not is_valid_asn(key):
            errors["asn"] = f"ASN must be a number between 1 and {ASN_MAX}"

    prefix = _clean(fields.get("prefix"))
    if not prefix:
        errors["prefix"] = "Prefix is required"
    elif not is_valid_prefix(prefix):
        errors["prefix"] = "Invalid prefix format"

    action = _clean(fields.get("action")).lower()
    if action and action not in ACTIONS:
        errors["action"] = f"Action must be one of {', '.join(ACTIONS)}"

    try:
        prepend = _parse_prepend(fields.get("prepend"))
    except ValueError as exc:
        errors["prepend"] = str(exc)
    else:
        if prepend is not None and not PREPEND_MIN <= prepend <= PREPEND_MAX:
            errors["prepend"] = f"Prepend must be between {PREPEND_MIN} and {PREPEND_MAX}"

    # Each rule exports as one command line.
    for name in TEXT_FIELDS:
        if CONTROL_CHAR_RE.search(str(fields.get(name) or "")):
            errors[name] = f"{name.capitalize()} must be a single line"

    return errors


def build_rule(
    fields: Mapping[str, Any],
    schema: str = KEY_CHAIN,
    rule_id: Optional[int] = None,
) -> FilterRule:
    """Validate form fields and turn them into a rule.

    Passing ``rule_id`` keeps the id of the rule being edited; otherwise a new
    id is minted. The raw ``rule`` expression is only kept for chain-keyed
    rules and is stored exactly as entered.
    """
    schema = normalize_schema(schema)
    errors = validate_rule_fields(fields, schema)
    if errors:
        raise RuleValidationError(errors)

    raw_rule = _clean(fields.get("rule")) if schema == KEY_CHAIN else ""
    return FilterRule(
        id=rule_id if rule_id is not None else next_rule_id(),
        chain_or_asn=_group_key(fields, schema),
        prefix=_clean(fields.get("prefix")),
        action=_clean(fields.get("action")).lower() or DEFAULT_ACTION,
        prepend=_parse_prepend(fields.get("prepend")),
        description=_clean(fields.get("description")),
        comment=_clean(fields.get("comment")),
        rule=raw_rule or None,
        key_kind=schema,
    )


def sample_rules() -> List[FilterRule]:
    """Demo rules shown when the service starts with an empty session."""
    samples: Iterable[Dict[str, Any]] = (
        {
            "chain": "isp-HE-out",
            "prefix": "23.145.224.0/24",
            "action": "accept",
            "description": "Announce prefix - CX Bradford Broadband",
            "comment": "Announce prefix - CX Bradford Broadband",
            "rule": "if (dst == 23.145.224.0/24) { accept; }",
        },
        {
            "chain": "bgp-in",
            "prefix": "10.0.0.0/8",
            "action": "reject",
            "description": "RFC 1918 space",
            "comment": "Block private IP space",
            "rule": "if (dst == 10.0.0.0/8) { reject; }",
        },
        {
            "chain": "bgp-out",
            "prefix": "203.0.113.0/24",
            "action": "accept",
            "prepend": 1,
            "description": "Test network",
            "comment": "Documentation network",
            "rule": "if (dst == 203.0.113.0/24) { accept; }",
        },
    )
    return [build_rule(fields, KEY_CHAIN) for fields in samples]
