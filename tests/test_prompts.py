from chromactl.models import Combination
from chromactl.prompts import (
    COVERAGE_CLAUSE, EXTRACTION_MODE, FULL_BODY_NOTE, KEEP_COMPOSITION, LANDSCAPE_MODE,
    NO_CHARACTER_FALLBACK, compose,
)


def test_only_present_categories_are_written():
    out = compose(Combination(values={"gender": "Female", "environment": "Desert"}))
    assert "- Gender: Female" in out.instructions
    assert "- Environment: Desert" in out.instructions
    assert "Hair" not in out.instructions
    assert "N/A" not in out.instructions
    assert KEEP_COMPOSITION in out.instructions
    assert out.summary == "Female, Desert"


def test_fallback_line_when_no_character_details():
    out = compose(Combination(values={"weather": "Rain"}))
    assert NO_CHARACTER_FALLBACK in out.instructions


def test_summary_fallback_for_empty_combination():
    assert compose(Combination()).summary == "Default"


def test_implied_undress_triggers_coverage_clause_case_insensitively():
    out = compose(Combination(values={"clothes": "Boots + NUDE (Implied)"}))
    assert out.flags["requires_coverage"]
    assert COVERAGE_CLAUSE in out.instructions

    plain = compose(Combination(values={"clothes": "Leather Jacket"}))
    assert not plain.flags["requires_coverage"]
    assert COVERAGE_CLAUSE not in plain.instructions


def test_subject_removal_omits_character_categories():
    combo = Combination(
        values={"gender": "Male", "clothes": "Body Paint", "environment": "Forest"},
        remove_characters=True,
    )
    out = compose(combo)
    assert "Gender" not in out.instructions
    assert "Body Paint" not in out.instructions
    assert not out.flags["requires_coverage"]
    assert LANDSCAPE_MODE in out.instructions
    assert "Infill the space" in out.instructions
    assert NO_CHARACTER_FALLBACK in out.instructions


def test_subject_removal_with_background_replacement_discards_background():
    out = compose(Combination(values={"environment": "Moon"}, remove_characters=True, replace_background=True))
    assert "Completely discard the original background line art" in out.instructions
    assert EXTRACTION_MODE not in out.instructions


def test_background_replacement_mode():
    out = compose(Combination(values={"gender": "Female"}, replace_background=True))
    assert EXTRACTION_MODE in out.instructions
    assert out.flags["replace_background"]


def test_full_body_camera_adds_framing_note():
    out = compose(Combination(values={"camera": "Full Body Shot"}))
    assert out.flags["full_body"]
    assert FULL_BODY_NOTE in out.instructions
