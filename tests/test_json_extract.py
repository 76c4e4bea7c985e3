"""Tests for tolerant JSON extraction from model replies."""

from rulelearner.learning.json_extract import extract_json


class TestExtractJson:
    def test_direct_object(self) -> None:
        result = extract_json('{"rules": []}')
        assert result.ok
        assert result.value == {"rules": []}
        assert result.tier == "direct"

    def test_direct_list(self) -> None:
        result = extract_json("  [1, 2]  ")
        assert result.value == [1, 2]
        assert result.tier == "direct"

    def test_fenced_block(self) -> None:
        reply = 'Here you go:\n```json\n{"score": 80}\n```\nThanks.'
        result = extract_json(reply)
        assert result.ok
        assert result.value == {"score": 80}
        assert result.tier == "fenced"

    def test_skips_unparseable_fenced_block(self) -> None:
        reply = "```\nnot json\n```\n```json\n{\"a\": 1}\n```"
        result = extract_json(reply)
        assert result.value == {"a": 1}
        assert result.tier == "fenced"

    def test_brace_span_inside_prose(self) -> None:
        result = extract_json('Sure! {"a": {"b": 2}} Hope this helps.')
        assert result.ok
        assert result.value == {"a": {"b": 2}}
        assert result.tier == "brace_span"

    def test_invalid_brace_span(self) -> None:
        result = extract_json("prefix {not: json} suffix")
        assert not result.ok
        assert result.value is None
        assert "brace span" in result.reason

    def test_no_json_at_all(self) -> None:
        result = extract_json("I cannot help with that.")
        assert not result.ok
        assert result.reason == "no JSON object found"

    def test_empty_and_non_string_input(self) -> None:
        assert extract_json("").reason == "empty reply"
        assert not extract_json(None).ok
        assert not extract_json(123).ok
