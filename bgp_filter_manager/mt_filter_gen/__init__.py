from .filter_parser import FilterParser, ParseResult, parse_text
from .filter_renderer import FilterRenderer, render_text
from .filter_rule import (
    FilterRule,
    RuleValidationError,
    build_rule,
    is_valid_prefix,
    sample_rules,
    validate_rule_fields,
)
from .rule_store import RuleIndexError, RuleNotFoundError, RuleStore, rule_stats
