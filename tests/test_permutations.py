import pytest

from chromactl.models import CATEGORIES, Combined, OptionSet, Permuted
from chromactl.permutations import count, expand, is_reserved_marker
from chromactl.prompts import compose


def test_two_permuted_categories_first_varies_slowest():
    opts = OptionSet(selections={"gender": ["A", "B"], "art_style": ["X", "Y"]})
    combos = expand(opts)
    assert [(c.get("gender"), c.get("art_style")) for c in combos] == [
        ("A", "X"), ("A", "Y"), ("B", "X"), ("B", "Y"),
    ]


def test_combined_category_yields_single_joined_value():
    opts = OptionSet(selections={"clothes": Combined(("Boots", "Anklets"))})
    combos = expand(opts)
    assert len(combos) == 1
    assert combos[0].get("clothes") == "Boots + Anklets"


def test_no_selection_gives_one_empty_combination():
    combos = expand(OptionSet())
    assert len(combos) == 1
    assert dict(combos[0].values) == {}


@pytest.mark.parametrize("selections", [
    {},
    {"gender": ["A"]},
    {"gender": ["A", "B", "C"], "hair": ["Red", "Black"]},
    {"gender": ["A", "B"], "clothes": Combined(("Boots", "Anklets", "Cape"))},
    {"age": ["Young", "Old"], "weather": Combined(()), "mood": Permuted(())},
    {"aspect_ratio": ["Original", "16:9"], "lighting": ["Soft", "Hard", "Neon"]},
])
def test_count_matches_product_of_selection_sizes(selections):
    opts = OptionSet(selections=selections)
    expected = 1
    for c in CATEGORIES:
        sel = opts.selection(c)
        expected *= 1 if isinstance(sel, Combined) else max(1, len(sel.values))
    assert len(expand(opts)) == expected
    assert count(opts) == expected


def test_expand_is_deterministic():
    opts = OptionSet(selections={"gender": ["A", "B"], "hair": ["Red", "Blue"], "mood": ["Calm"]})
    assert expand(opts) == expand(opts)


def test_reserved_marker_keeps_slot_but_not_content():
    opts = OptionSet(selections={"aspect_ratio": ["Original", "16:9"], "gender": ["Female"]})
    combos = expand(opts)
    assert len(combos) == 2
    assert "aspect_ratio" not in combos[0].values
    assert combos[1].get("aspect_ratio") == "16:9"
    for combo in combos:
        assert "Original" not in compose(combo).instructions


@pytest.mark.parametrize("value", ["Original", "original aspect", "As-Is", "as-is (keep)", "None", "DEFAULT"])
def test_reserved_markers(value):
    assert is_reserved_marker(value)


@pytest.mark.parametrize("value", ["Nonexistent", "Defaulted", "Anime", "Boots + Original"])
def test_ordinary_values_are_not_markers(value):
    assert not is_reserved_marker(value)


def test_markers_are_dropped_from_combined_join():
    opts = OptionSet(selections={"clothes": Combined(("As-Is", "Boots"))})
    assert expand(opts)[0].get("clothes") == "Boots"
    only_marker = OptionSet(selections={"clothes": Combined(("Default",))})
    assert "clothes" not in expand(only_marker)[0].values


def test_modes_are_copied_onto_every_combination():
    opts = OptionSet(selections={"gender": ["A", "B"]}, replace_background=True)
    assert all(c.replace_background and not c.remove_characters for c in expand(opts))


def test_unknown_category_and_duplicates_rejected():
    with pytest.raises(ValueError):
        OptionSet(selections={"flavour": ["Sweet"]})
    with pytest.raises(ValueError):
        OptionSet(selections={"gender": ["A", "A"]})


@pytest.mark.parametrize("bare", ["AB", ""])
def test_bare_string_selection_rejected(bare):
    with pytest.raises(ValueError):
        OptionSet(selections={"gender": bare})
    with pytest.raises(ValueError):
        OptionSet().with_values("gender", bare)


def test_marker_arms_get_distinct_variants():
    opts = OptionSet(selections={"gender": ["Female", "Original", "Default"]})
    combos = expand(opts)
    assert [dict(c.values) for c in combos] == [{"gender": "Female"}, {}, {}]
    assert len({c.variant for c in combos}) == 3
