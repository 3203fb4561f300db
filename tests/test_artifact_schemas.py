import pytest

from lume.errors import InvalidInput
from lume.schemas.artifacts import renumber_outline, validate_artifact_content
from conftest import outline_content


def test_renumber_drops_empty_chapters_and_recounts():
    content = outline_content([2, 2])
    content["chapters"][0]["slides"] = []
    content["chapters"][1]["slides"][0]["slideNumber"] = 9

    fixed = renumber_outline(content)

    assert len(fixed["chapters"]) == 1
    assert [s["slideNumber"] for s in fixed["chapters"][0]["slides"]] == [1, 2]
    assert fixed["outline"]["slidesCount"] == 2
    # Input is left alone
    assert content["chapters"][1]["slides"][0]["slideNumber"] == 9


def test_validate_normalizes_numbering():
    content = outline_content([1, 2])
    for slide in content["chapters"][1]["slides"]:
        slide["slideNumber"] = 7
    content["outline"]["slidesCount"] = 1

    result = validate_artifact_content("slidesOutline", content)

    assert [s["slideNumber"] for c in result["chapters"] for s in c["slides"]] == [1, 2, 3]
    assert result["outline"]["slidesCount"] == 3


def test_validate_rejects_more_than_ten_slides():
    with pytest.raises(InvalidInput):
        validate_artifact_content("slidesOutline", outline_content([6, 5]))


def test_validate_rejects_unknown_slide_type():
    content = outline_content([1])
    content["chapters"][0]["slides"][0]["slideType"] = "video"
    with pytest.raises(InvalidInput) as exc:
        validate_artifact_content("slidesOutline", content)
    assert "slideType" in exc.value.message


def test_validate_markdown():
    assert validate_artifact_content("markdown", {"title": "T", "content": "# x"}) == {
        "title": "T",
        "content": "# x",
        "description": None,
    }
    with pytest.raises(InvalidInput):
        validate_artifact_content("markdown", {"title": "T", "content": ""})


def test_validate_unknown_type():
    with pytest.raises(InvalidInput):
        validate_artifact_content("spreadsheet", {})
