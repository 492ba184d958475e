"""Keyword and pattern denylist applied to SQL before it reaches the driver.

This is a heuristic, defense-in-depth layer. Parameter binding is what
actually keeps caller values out of the statement text; the checks below
only catch statements that should never be sent through the query paths.

Keyword checks are plain substring matches on the upper-cased text, so a
column such as ``UPDATED_AT`` trips the ``UPDATE`` rule on the read path.
"""

from __future__ import annotations

import re

from .models import ValidationResult

# Never allowed, on either path.
SCHEMA_KEYWORDS = ("DROP", "TRUNCATE", "ALTER", "CREATE")

# Allowed only inside transactions.
WRITE_KEYWORDS = ("DELETE", "UPDATE", "INSERT")

INJECTION_PATTERNS = (
    re.compile(r"(;|--|#|/\*|\*/)"),
    re.compile(r"('|\")\s*(OR|AND)\s*('|\").*('|\")\s*=\s*('|\")", re.IGNORECASE),
    re.compile(r"EXEC\s*\(|SP_|XP_", re.IGNORECASE),
)

TAUTOLOGY_PATTERN = re.compile(r"\b(OR|AND)\s+1\s*=\s*1\b", re.IGNORECASE)

INJECTION_REASON = "injection pattern detected"
VALID_MESSAGE = "Query is valid"


def validate_sql(sql: str) -> ValidationResult:
    """Validate SQL for the read path (no schema or data changes)."""

    return _validate(sql, allow_writes=False)


def validate_sql_for_transaction(sql: str) -> ValidationResult:
    """Validate SQL for the transaction path, which may change data."""

    return _validate(sql, allow_writes=True)


def contains_injection_pattern(sql: str) -> bool:
    """True when ``sql`` matches any injection heuristic."""

    if any(pattern.search(sql) for pattern in INJECTION_PATTERNS):
        return True
    return TAUTOLOGY_PATTERN.search(sql) is not None


def _validate(sql: str, *, allow_writes: bool) -> ValidationResult:
    if not isinstance(sql, str) or not sql.strip():
        return ValidationResult.rejected("Query cannot be empty")
    normalized = sql.strip().upper()
    keywords = SCHEMA_KEYWORDS if allow_writes else SCHEMA_KEYWORDS + WRITE_KEYWORDS
    for keyword in keywords:
        if keyword in normalized:
            return ValidationResult.rejected(f"Keyword not allowed: {keyword}")
    if contains_injection_pattern(sql):
        return ValidationResult.rejected(INJECTION_REASON)
    return ValidationResult.ok(VALID_MESSAGE)


__all__ = [
    "INJECTION_REASON",
    "SCHEMA_KEYWORDS",
    "WRITE_KEYWORDS",
    "contains_injection_pattern",
    "validate_sql",
    "validate_sql_for_transaction",
]
