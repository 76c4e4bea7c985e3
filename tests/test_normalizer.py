"""Tests for SQL pattern normalization."""

import pytest

from rulelearner.learning.normalizer import INVALID_SQL_KEY, normalize_sql_pattern


class TestNormalizeSqlPattern:
    def test_integer_literal_becomes_id(self) -> None:
        assert (
            normalize_sql_pattern("SELECT * FROM users WHERE id = 1")
            == "SELECT * FROM users WHERE id = {id}"
        )

    def test_string_literals_become_value(self) -> None:
        assert (
            normalize_sql_pattern("SELECT id FROM users WHERE name = 'bob' OR nick = \"b\"")
            == "SELECT id FROM users WHERE name = {value} OR nick = {value}"
        )

    def test_decimal_is_not_split_into_two_ids(self) -> None:
        assert normalize_sql_pattern("SELECT id FROM items WHERE price > 9.99") == (
            "SELECT id FROM items WHERE price > {number}"
        )

    def test_punctuation_and_whitespace_canonicalized(self) -> None:
        assert (
            normalize_sql_pattern("INSERT  INTO t(a,b)\n VALUES(1,'x')")
            == "INSERT INTO t ( a, b ) VALUES ( {id}, {value} )"
        )

    def test_queries_differing_only_in_literals_share_a_key(self) -> None:
        first = normalize_sql_pattern("SELECT * FROM orders WHERE user_id = 42 AND status = 'paid'")
        second = normalize_sql_pattern("SELECT * FROM orders WHERE user_id = 7 AND status = 'new'")
        assert first == second

    def test_identifiers_with_digits_are_kept(self) -> None:
        assert normalize_sql_pattern("SELECT c1 FROM t2") == "SELECT c1 FROM t2"

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT * FROM users WHERE id = 1",
            "INSERT INTO t(a,b) VALUES(1,'x')",
            "UPDATE t SET price = 1.5, name = 'a' WHERE id IN (1, 2,3)",
        ],
    )
    def test_idempotent(self, sql: str) -> None:
        once = normalize_sql_pattern(sql)
        assert normalize_sql_pattern(once) == once

    @pytest.mark.parametrize("value", ["", "   \n", None, 42, ["SELECT 1"]])
    def test_invalid_input_maps_to_invalid_key(self, value: object) -> None:
        assert normalize_sql_pattern(value) == INVALID_SQL_KEY
