"""
Naming helpers for relationship resolution.

English pluralisation tuned for snake_case table names, and matching of
configured override rules against foreign keys.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import Iterable, Optional

from tier_sync.config import NamingRule
from tier_sync.errors import ConfigurationError
from tier_sync.models import ForeignKey

logger = logging.getLogger(__name__)

_VOWELS = set("aeiou")


def _split_last_word(name: str):
    """Split ``order_line_items`` into (``order_line_``, ``items``)."""
    head, sep, last = name.rpartition("_")
    return head + sep, last


def pluralize(name: str) -> str:
    """
    Plural form of a snake_case name; already-plural names are kept.

    >>> pluralize("order"), pluralize("orders"), pluralize("company")
    ('orders', 'orders', 'companies')
    """
    head, word = _split_last_word(name)
    lower = word.lower()

    if not lower:
        return name
    if lower.endswith("ss"):
        return head + word + "es"
    if lower.endswith(("ies", "es", "s")):
        return name
    if lower.endswith("y") and len(lower) > 1 and lower[-2] not in _VOWELS:
        return head + word[:-1] + "ies"
    if lower.endswith(("x", "z", "ch", "sh")):
        return head + word + "es"
    return head + word + "s"


def singularize(name: str) -> str:
    """
    Singular form of a snake_case name.

    >>> singularize("companies"), singularize("addresses"), singularize("users")
    ('company', 'address', 'user')
    """
    head, word = _split_last_word(name)
    lower = word.lower()

    if lower.endswith("ies") and len(lower) > 3:
        return head + word[:-3] + "y"
    if lower.endswith(("sses", "uses", "xes", "zes", "ches", "shes")):
        return head + word[:-2]
    if lower.endswith(("ss", "us", "is")):
        return name
    if lower.endswith("s") and len(lower) > 1:
        return head + word[:-1]
    return name


def _matches(pattern: str, *candidates: str) -> bool:
    pattern = pattern.lower()
    return any(fnmatch.fnmatchcase(c.lower(), pattern) for c in candidates)


def rule_matches(rule: NamingRule, fk: ForeignKey) -> bool:
    """
    Target table and source column both match the rule's glob patterns.

    A target pattern containing a dot is matched against ``schema.table``;
    otherwise only the bare table name is considered.
    """
    target = fk.target_table
    target_name = target.qualified_name if "." in rule.target_table else target.name
    return (
        _matches(rule.target_table, target_name)
        and _matches(rule.source_column, fk.source_column)
    )


def find_rule(rules: Iterable[NamingRule], fk: ForeignKey) -> Optional[NamingRule]:
    """First matching rule in configured order."""
    for rule in rules:
        if rule_matches(rule, fk):
            return rule
    return None


def render_name(template: str, fk: ForeignKey) -> str:
    """Fill ``{base}``, ``{source}`` and ``{target}`` placeholders."""
    try:
        return template.format(
            base=fk.base_name,
            source=fk.source_table.name,
            target=fk.target_table.name,
        )
    except (KeyError, IndexError, ValueError) as e:
        raise ConfigurationError(f"Invalid naming template {template!r}: {e}") from e
