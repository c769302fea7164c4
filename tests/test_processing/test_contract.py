"""Tests for the provider response contract."""

import json

import pytest

from inbox_enrich.processing.contract import (
    NO_DUE_DATE,
    ParseError,
    coerce_classification,
    coerce_extraction,
    parse_response_array,
    strip_fences,
)
from inbox_enrich.processing.types import Category, ExtractedTask

VALID_CLASSIFY: dict[str, object] = {
    "id": "a",
    "category": "Important",
    "summary": "Greeting",
    "requiresReply": True,
    "draftReply": "Thanks! Will do.",
    "appliedLabels": ["Finance"],
}


# ── strip_fences ───────────────────────────────────────────────────────────────


class TestStripFences:
    def test_json_fence_removed(self) -> None:
        assert strip_fences('```json\n[{"id": "a"}]\n```') == '[{"id": "a"}]'

    def test_fence_match_is_case_insensitive(self) -> None:
        assert strip_fences("```JSON\n[]\n```") == "[]"

    def test_bare_fence_removed(self) -> None:
        assert strip_fences("```\n[1, 2]\n```") == "[1, 2]"

    def test_unfenced_text_untouched(self) -> None:
        assert strip_fences('  [{"id": "a"}] ') == '[{"id": "a"}]'


# ── parse_response_array ───────────────────────────────────────────────────────


class TestParseResponseArray:
    def test_parses_plain_array(self) -> None:
        assert parse_response_array(json.dumps([VALID_CLASSIFY]), 1) == [VALID_CLASSIFY]

    def test_parses_fenced_array(self) -> None:
        raw = "```json\n" + json.dumps([VALID_CLASSIFY]) + "\n```"
        assert parse_response_array(raw, 1) == [VALID_CLASSIFY]

    def test_fence_with_trailing_garbage_is_parse_error(self) -> None:
        raw = '```json\n[{"id": "a"}]\nHope this helps!'
        with pytest.raises(ParseError) as info:
            parse_response_array(raw, 1)
        assert info.value.raw_text == raw

    def test_object_instead_of_array_is_parse_error(self) -> None:
        with pytest.raises(ParseError, match="array"):
            parse_response_array('{"id": "a"}', 1)

    def test_empty_text_is_parse_error(self) -> None:
        with pytest.raises(ParseError):
            parse_response_array("", 1)

    def test_count_mismatch_tolerated(self) -> None:
        assert parse_response_array("[]", 3) == []
        assert len(parse_response_array('[{"id": "a"}, {"id": "b"}]', 1)) == 2

    def test_excerpt_is_bounded(self) -> None:
        with pytest.raises(ParseError) as info:
            parse_response_array("x" * 5000, 1)
        assert len(info.value.excerpt) == 500


# ── coerce_classification ──────────────────────────────────────────────────────


class TestCoerceClassification:
    def test_parses_all_fields(self) -> None:
        c = coerce_classification(VALID_CLASSIFY)
        assert c is not None
        assert c.id == "a"
        assert c.category is Category.IMPORTANT
        assert c.summary == "Greeting"
        assert c.requires_reply is True
        assert c.draft_reply == "Thanks! Will do."
        assert c.applied_labels == frozenset({"Finance"})

    def test_category_case_insensitive(self) -> None:
        c = coerce_classification({**VALID_CLASSIFY, "category": "promotions"})
        assert c is not None and c.category is Category.PROMOTIONS

    def test_unknown_category_dropped(self) -> None:
        assert coerce_classification({**VALID_CLASSIFY, "category": "Limit Reached"}) is None

    def test_missing_id_dropped(self) -> None:
        entry = {k: v for k, v in VALID_CLASSIFY.items() if k != "id"}
        assert coerce_classification(entry) is None

    def test_non_object_dropped(self) -> None:
        assert coerce_classification(["a", "Important"]) is None

    def test_numeric_id_stringified(self) -> None:
        c = coerce_classification({**VALID_CLASSIFY, "id": 42})
        assert c is not None and c.id == "42"

    def test_draft_cleared_when_no_reply_needed(self) -> None:
        c = coerce_classification({**VALID_CLASSIFY, "requiresReply": False})
        assert c is not None and c.draft_reply == ""

    def test_missing_labels_mean_empty_set(self) -> None:
        entry = {k: v for k, v in VALID_CLASSIFY.items() if k != "appliedLabels"}
        c = coerce_classification(entry)
        assert c is not None and c.applied_labels == frozenset()

    def test_labels_not_a_list_dropped(self) -> None:
        assert coerce_classification({**VALID_CLASSIFY, "appliedLabels": "Finance"}) is None

    def test_duplicate_labels_collapse(self) -> None:
        c = coerce_classification({**VALID_CLASSIFY, "appliedLabels": ["A", "A", " A "]})
        assert c is not None and c.applied_labels == frozenset({"A"})


# ── coerce_extraction ──────────────────────────────────────────────────────────


class TestCoerceExtraction:
    def test_parses_tasks_and_labels(self) -> None:
        x = coerce_extraction({
            "id": "a",
            "tasks": [{"title": "Send report", "date": "Friday", "isUrgent": True, "isPastDue": False}],
            "appliedLabels": ["Work"],
        })
        assert x is not None
        assert x.tasks == (ExtractedTask("Send report", "Friday", True, False),)
        assert x.applied_labels == frozenset({"Work"})

    def test_missing_date_defaults(self) -> None:
        x = coerce_extraction({"id": "a", "tasks": [{"title": "Call Bob"}]})
        assert x is not None and x.tasks[0].date == NO_DUE_DATE

    def test_empty_tasks_allowed(self) -> None:
        x = coerce_extraction({"id": "a", "tasks": [], "appliedLabels": []})
        assert x is not None
        assert x.tasks == ()
        assert x.applied_labels == frozenset()

    def test_malformed_tasks_skipped_individually(self) -> None:
        x = coerce_extraction({"id": "a", "tasks": [{"title": ""}, "junk", {"title": "Real"}]})
        assert x is not None
        assert [t.title for t in x.tasks] == ["Real"]

    def test_tasks_not_a_list_dropped(self) -> None:
        assert coerce_extraction({"id": "a", "tasks": "do it"}) is None

    def test_missing_id_dropped(self) -> None:
        assert coerce_extraction({"tasks": []}) is None
