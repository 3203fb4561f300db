import json
import random

import pytest

from lume.services.partial_json import (
    PartialJSONParser,
    parse_partial,
    partial_markdown,
    partial_slides_outline,
    repair_json,
)
from conftest import outline_content


@pytest.mark.parametrize(
    "text, expected",
    [
        ('{"a": "hel', {"a": "hel"}),
        ('{"a": 1, "b": [1, 2', {"a": 1, "b": [1, 2]}),
        ('{"a": 1, "b"', {"a": 1}),
        ('{"a": 1, "b":', {"a": 1}),
        ('{"a": 1,', {"a": 1}),
        ('{"a": tr', {}),
        ('{"a": -', {}),
        ('{"a": 12', {"a": 12}),
        ('[{"x": "y"}, {"x": "z', [{"x": "y"}, {"x": "z"}]),
        ('{"a": "line\\', {"a": "line"}),
        ('{"a": "\\u00e', {"a": ""}),
        ('{"a": "tab\\t', {"a": "tab\t"}),
        ('{"a": {"b": {"c": null', {"a": {"b": {"c": None}}}),
    ],
)
def test_repair_closes_truncated_documents(text, expected):
    assert json.loads(repair_json(text)) == expected


def test_split_surrogate_escape_waits_for_its_low_half():
    parser = PartialJSONParser(partial_markdown)

    assert parser.feed('{"title": "Smile \\ud83d') == {"title": "Smile "}
    assert parser.feed('\\ude00", "content": "x"}') == {"title": "Smile \U0001F600", "content": "x"}
    assert json.loads(repair_json('{"a": "\\\\ud83d')) == {"a": "\\ud83d"}


def test_repair_without_any_value_raises():
    with pytest.raises(ValueError):
        repair_json("   ")


def test_complete_document_parses_like_json_loads():
    doc = '{"s": "a \\"quoted\\" \\\\ word", "n": -1.5e3, "t": true, "f": false, "z": null, "l": [1, [2, {}]]}'
    assert parse_partial(doc) == json.loads(doc)


def test_feeding_char_by_char_never_raises_and_ends_with_full_value():
    document = json.dumps(outline_content([2, 3]))
    parser = PartialJSONParser()
    for ch in document:
        parser.feed(ch)
    assert parser.value == json.loads(document)


def test_random_chunking_matches_whole_parse():
    rng = random.Random(7)
    document = json.dumps({"title": "Notes ✓", "content": "# Head\n\n- a\n- b \"quoted\"", "description": "x"})
    for _ in range(20):
        parser = PartialJSONParser(partial_markdown)
        pos = 0
        while pos < len(document):
            step = rng.randint(1, 6)
            parser.feed(document[pos:pos + step])
            pos += step
        assert parser.value == json.loads(document)


def test_feed_returns_none_until_a_value_starts():
    parser = PartialJSONParser(partial_markdown)
    assert parser.feed("  ") is None
    assert parser.feed('{"title": "Dr') == {"title": "Dr"}
    assert parser.buffer == '  {"title": "Dr'


def test_feed_skips_garbage_without_raising():
    parser = PartialJSONParser()
    assert parser.feed("{]") is None
    assert parser.value is None


def test_partial_outline_keeps_well_typed_fields_only():
    view = partial_slides_outline({
        "outline": {"pptTitle": "Deck", "slidesCount": "three"},
        "chapters": [
            {"chapterTitle": "Intro", "slides": [{"slideNumber": 1, "slideTitle": 5, "slideType": "title"}]},
            "not a chapter",
        ],
        "extra": True,
    })
    assert view == {
        "outline": {"pptTitle": "Deck"},
        "chapters": [{"chapterTitle": "Intro", "slides": [{"slideNumber": 1, "slideType": "title"}]}],
        "extra": True,
    }


def test_partial_outline_of_non_object_is_empty():
    assert partial_slides_outline([1, 2]) == {}
    assert partial_markdown("text") == {}


def test_bool_is_not_accepted_as_number():
    assert partial_slides_outline({"outline": {"slidesCount": True}}) == {"outline": {}}
