"""Tests for the SQL keyword and pattern denylist."""

from __future__ import annotations

import pytest

from querycore.validation import contains_injection_pattern, validate_sql, validate_sql_for_transaction


@pytest.mark.parametrize(
    ("sql", "keyword"),
    [
        ("DROP TABLE users", "DROP"),
        ("truncate table audit_log", "TRUNCATE"),
        ("Alter Table users ADD nickname VARCHAR(20)", "ALTER"),
        ("create index idx_users_email on users(email)", "CREATE"),
    ],
)
def test_schema_keywords_rejected_on_both_paths(sql: str, keyword: str) -> None:
    for validator in (validate_sql, validate_sql_for_transaction):
        result = validator(sql)

        assert result.valid is False
        assert result.error == f"Keyword not allowed: {keyword}"


@pytest.mark.parametrize(
    ("sql", "keyword"),
    [
        ("DELETE FROM users WHERE id = ?", "DELETE"),
        ("update users set email = ? where id = ?", "UPDATE"),
        ("INSERT INTO users (email) VALUES (?)", "INSERT"),
    ],
)
def test_write_keywords_only_allowed_in_transactions(sql: str, keyword: str) -> None:
    read = validate_sql(sql)
    write = validate_sql_for_transaction(sql)

    assert read.valid is False
    assert read.error == f"Keyword not allowed: {keyword}"
    assert write.valid is True


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT * FROM users WHERE id = 1 OR 1=1",
        "SELECT * FROM users WHERE id = 1 and 1 = 1",
        "SELECT * FROM users WHERE name = '' OR 'x'='x'",
    ],
)
def test_tautologies_rejected_on_both_paths(sql: str) -> None:
    assert validate_sql(sql).error == "injection pattern detected"
    assert validate_sql_for_transaction(sql).error == "injection pattern detected"


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT * FROM users; SELECT 1",
        "SELECT * FROM users -- trailing comment",
        "SELECT * FROM users /* hidden */",
        "SELECT * FROM users # note",
        "SELECT exec (1) FROM users",
        "SELECT * FROM xp_cmdshell",
    ],
)
def test_comment_and_procedure_patterns_rejected(sql: str) -> None:
    result = validate_sql(sql)

    assert result.valid is False
    assert result.error == "injection pattern detected"
    assert contains_injection_pattern(sql) is True


def test_plain_select_is_valid() -> None:
    result = validate_sql("SELECT id, email FROM users WHERE id = ?")

    assert result.valid is True
    assert result.message == "Query is valid"


def test_empty_statement_is_rejected() -> None:
    assert validate_sql("   ").error == "Query cannot be empty"
    assert validate_sql_for_transaction("").error == "Query cannot be empty"


def test_keyword_matching_is_substring_based() -> None:
    result = validate_sql("SELECT updated_at FROM users")

    assert result.valid is False
    assert result.error == "Keyword not allowed: UPDATE"
