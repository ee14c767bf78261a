"""
Cartesian expansion of an OptionSet into Combinations.

Every category is an axis, walked in CATEGORIES order with the first
category varying slowest. An empty selection is a one-slot axis holding
UNSET, so it neither multiplies nor zeroes the product. A Combined
selection is also a one-slot axis: its values joined with " + ".

Reserved markers ("Original", "As-Is ...", "Default", "None") keep their
slot in the product but are never written into a Combination.
"""
from itertools import product
from typing import List, Optional

from .models import CATEGORIES, Combination, Combined, OptionSet, Selection

COMBINE_SEPARATOR = " + "

UNSET = None

_PREFIX_MARKERS = ("original", "as-is")
_EXACT_MARKERS = ("default", "none")


def is_reserved_marker(value: Optional[str]) -> bool:
    if not value:
        return True
    v = value.strip().lower()
    return v.startswith(_PREFIX_MARKERS) or v in _EXACT_MARKERS


def _axis(sel: Selection) -> list:
    if isinstance(sel, Combined):
        kept = [v for v in sel.values if not is_reserved_marker(v)]
        return [COMBINE_SEPARATOR.join(kept) if kept else UNSET]
    return list(sel.values) or [UNSET]


def count(option_set: OptionSet) -> int:
    """Number of Combinations expand() would return, without building them."""
    total = 1
    for category in CATEGORIES:
        sel = option_set.selection(category)
        if not isinstance(sel, Combined):
            total *= max(1, len(sel.values))
    return total


def expand(option_set: OptionSet) -> List[Combination]:
    axes = [_axis(option_set.selection(c)) for c in CATEGORIES]
    out = []
    for row in product(*axes):
        values = {
            category: value
            for category, value in zip(CATEGORIES, row)
            if value is not UNSET and not is_reserved_marker(value)
        }
        variant = "; ".join(f"{c}={v}" for c, v in zip(CATEGORIES, row) if v is not UNSET)
        out.append(Combination(
            values=values,
            variant=variant,
            replace_background=option_set.replace_background,
            remove_characters=option_set.remove_characters,
        ))
    return out
