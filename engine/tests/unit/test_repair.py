"""
Unit Tests - truncation repair parser
═════════════════════════════════════
One test class per scanner transition, then the public repair function.
"""

from __future__ import annotations

import pytest

from tools.press.repair import RecordScanner, locate_records_array, repair_truncated_records


@pytest.mark.unit
class TestQuoteToggle:

    def test_quote_enters_and_leaves_string(self):
        s = RecordScanner()
        s.feed("{")
        s.feed('"')
        assert s.in_string is True
        s.feed('"')
        assert s.in_string is False

    def test_braces_inside_string_do_not_change_depth(self):
        s = RecordScanner().feed_text('{"a": "}{"')
        assert s.depth == 1
        assert s.in_string is False
        assert s.records == []


@pytest.mark.unit
class TestEscapeHandling:

    def test_escaped_quote_does_not_close_string(self):
        s = RecordScanner().feed_text('{"a": "x\\"}')
        assert s.in_string is True
        assert s.depth == 1
        assert s.records == []

    def test_escape_flag_is_consumed_by_next_char(self):
        s = RecordScanner()
        s.feed_text('{"a": "')
        s.feed("\\")
        assert s.escape_next is True
        s.feed("n")
        assert s.escape_next is False
        assert s.in_string is True

    def test_object_with_escaped_quote_completes(self):
        s = RecordScanner().feed_text('{"a": "x\\"}"}')
        assert s.records == [{"a": 'x"}'}]


@pytest.mark.unit
class TestDepthTracking:

    def test_nested_object_keeps_depth_above_zero(self):
        s = RecordScanner().feed_text('{"a": {"b": 1}')
        assert s.depth == 1
        assert s.records == []

    def test_closing_outer_object_returns_to_zero(self):
        s = RecordScanner().feed_text('{"a": {"b": 1}}')
        assert s.depth == 0
        assert s.records == [{"a": {"b": 1}}]

    def test_stray_close_at_depth_zero_is_ignored(self):
        s = RecordScanner()
        s.feed("}")
        assert s.depth == 0
        assert s.records == []


@pytest.mark.unit
class TestObjectCompletion:

    def test_each_top_level_object_is_emitted(self):
        s = RecordScanner().feed_text('{"title": "A"}, {"title": "B"}')
        assert [r["title"] for r in s.records] == ["A", "B"]
        assert s.buffer == []

    def test_unparseable_object_is_discarded(self):
        s = RecordScanner().feed_text('{"title": A}')
        assert s.records == []
        assert s.discarded == 1

    def test_array_end_stops_scanning(self):
        s = RecordScanner().feed_text('{"a": 1}] , {"b": 2}')
        assert s.finished is True
        assert s.records == [{"a": 1}]


@pytest.mark.unit
class TestRepairTruncatedRecords:

    def test_three_complete_and_one_cut_record(self):
        raw = (
            '{"records": ['
            '{"title": "A", "content": "a"}, '
            '{"title": "B", "content": "b {x}"}, '
            '{"title": "C", "content": "c \\"q\\""}, '
            '{"title": "D", "content": "cut off mid'
        )
        out = repair_truncated_records(raw)
        assert [r["title"] for r in out] == ["A", "B", "C"]
        assert out[2]["content"] == 'c "q"'

    def test_fenced_truncated_output(self):
        raw = '```json\n{"records": [{"title": "A", "content": "a"}, {"title": "B"'
        assert repair_truncated_records(raw) == [{"title": "A", "content": "a"}]

    def test_bare_array(self):
        raw = '[{"title": "A", "content": "a"}, {"ti'
        assert repair_truncated_records(raw) == [{"title": "A", "content": "a"}]

    @pytest.mark.parametrize("raw", ["", "   ", '{"records": [{"title": "only half'])
    def test_nothing_recoverable_returns_none(self, raw):
        assert repair_truncated_records(raw) is None

    def test_locate_records_array(self):
        text = '{"records" : [{"a": 1}]}'
        assert text[locate_records_array(text):].startswith('{"a"')
