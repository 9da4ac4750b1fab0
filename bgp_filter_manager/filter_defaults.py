from __future__ import annotations

import os
from typing import Any, Dict

from .mt_filter_gen.filter_parser import DEFAULT_CHAIN, DEFAULT_DROP_TARGET
from .mt_filter_gen.filter_renderer import DEFAULT_PEER
from .mt_filter_gen.filter_rule import KEY_CHAIN, normalize_schema


def _str_to_bool(value: str) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _env(name: str, default: str) -> str:
    return (os.getenv(name) or default).strip()


def get_peer_defaults() -> Dict[str, str]:
    return {
        "name": _env("BGP_FILTER_PEER_NAME", DEFAULT_PEER["name"]),
        "address": _env("BGP_FILTER_PEER_ADDRESS", DEFAULT_PEER["address"]),
        "remote_as": _env("BGP_FILTER_PEER_AS", DEFAULT_PEER["remote_as"]),
        "in_filter": _env("BGP_FILTER_PEER_IN_FILTER", DEFAULT_PEER["in_filter"]),
    }


def get_defaults() -> Dict[str, Any]:
    """Session defaults, read from the environment on every call."""
    return {
        "schema": normalize_schema(_env("BGP_FILTER_SCHEMA", KEY_CHAIN)),
        "default_chain": _env("BGP_FILTER_DEFAULT_CHAIN", DEFAULT_CHAIN),
        "drop_target": _env("BGP_FILTER_DROP_TARGET", DEFAULT_DROP_TARGET),
        "load_samples": _str_to_bool(_env("BGP_FILTER_LOAD_SAMPLES", "true")),
        "peer": get_peer_defaults(),
    }


def merge_defaults(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Fill codec options missing from a request payload with session defaults.

    Raises ValueError when the payload names an unknown schema.
    """
    defaults = get_defaults()
    merged = dict(payload or {})
    merged["schema"] = normalize_schema(merged.get("schema") or defaults["schema"])
    for key in ("default_chain", "drop_target"):
        merged[key] = str(merged.get(key) or defaults[key]).strip()
    merged["peer"] = {**defaults["peer"], **(merged.get("peer") or {})}
    return merged


def codec_options(merged: Dict[str, Any]) -> Dict[str, Any]:
    return {key: merged[key] for key in ("schema", "default_chain", "drop_target", "peer")}
