from dataclasses import dataclass, field
from typing import Dict, List

from .models import CATEGORIES, Combination
from .permutations import is_reserved_marker

CHARACTER_LINES = (
    ("species", "Species"),
    ("gender", "Gender"),
    ("age", "Age"),
    ("body_type", "Body Type"),
    ("skin", "Skin"),
    ("hair", "Hair"),
    ("eye_color", "Eye Color"),
    ("emotions", "Emotion/Expression"),
    ("clothes", "Clothes/Attire"),
    ("shoes", "Shoes"),
    ("items", "Item(s) equipped/holding"),
    ("decorations", "Body Decorations/Features"),
    ("skin_conditions", "Skin Condition/Surface"),
    ("actions", "Action/Activity"),
)

SETTING_LINES = (
    ("technology", "Technology Level"),
    ("environment", "Environment"),
    ("time_of_day", "Time of Day"),
    ("weather", "Weather"),
    ("aspect_ratio", "Aspect Ratio"),
)

STYLE_LINES = (
    ("art_style", "Art Style"),
    ("lighting", "Lighting"),
    ("camera", "Camera/Lens"),
    ("mood", "Mood/Atmosphere"),
)

# Attire substrings that imply undress and require the coverage clause.
COVERAGE_TRIGGERS = ("nude", "body paint", "strategic", "sheet", "chained")

NO_CHARACTER_FALLBACK = "N/A (Landscape Mode or As-Is)"

FULL_BODY_NOTE = (
    "IMPORTANT: Ensure the FULL BODY of the character is visible within the frame, "
    "from head to toe."
)

LANDSCAPE_MODE = (
    "5. LANDSCAPE MODE: The output must contain NO characters, people, or figures. "
    "Focus entirely on the environment/scenery."
)
LANDSCAPE_NEW_BACKGROUND = (
    " Completely discard the original background line art and generate a new scene "
    "based on the Environment settings."
)
LANDSCAPE_INFILL = (
    " Maintain the original background composition but remove the people. "
    "Infill the space where characters were."
)
EXTRACTION_MODE = (
    "5. EXTRACTION MODE: Extract the main character(s) from the original line art. "
    "Completely discard the original background. Generate a new background based on "
    "the specified Environment. Ensure seamless integration."
)
KEEP_COMPOSITION = "5. Maintain the composition of the original line art strictly."

COVERAGE_CLAUSE = (
    "8. IMPLIED NUDITY HANDLING: For the 'Nude (Implied)', 'Chained' or artistic body "
    "paint options, maintain an artistic, tasteful look. CRITICAL: Provide minimal "
    "coverage to private areas using small elements like a single leaf, a strategically "
    "placed object, deep shadow, flowing hair, or flower petals. The nudity should be "
    "implied but not explicitly graphic."
)

SUMMARY_FALLBACK = "Default"


@dataclass(frozen=True)
class Composition:
    instructions: str
    summary: str
    flags: Dict[str, bool] = field(default_factory=dict)


def _present(combo: Combination, category: str):
    value = combo.get(category)
    if value is None or is_reserved_marker(value):
        return None
    return value


def _lines(combo: Combination, layout) -> List[str]:
    out = []
    for category, label in layout:
        value = _present(combo, category)
        if value is not None:
            out.append(f"- {label}: {value}")
    return out


def requires_coverage(combo: Combination) -> bool:
    clothes = _present(combo, "clothes")
    if clothes is None or combo.remove_characters:
        return False
    lowered = clothes.lower()
    return any(t in lowered for t in COVERAGE_TRIGGERS)


def mode_instruction(combo: Combination) -> str:
    if combo.remove_characters:
        tail = LANDSCAPE_NEW_BACKGROUND if combo.replace_background else LANDSCAPE_INFILL
        return LANDSCAPE_MODE + tail
    if combo.replace_background:
        return EXTRACTION_MODE
    return KEEP_COMPOSITION


def summarize(combo: Combination) -> str:
    parts = [combo.values[c] for c in CATEGORIES
             if c in combo.values and not is_reserved_marker(combo.values[c])]
    return ", ".join(parts) if parts else SUMMARY_FALLBACK


def compose(combo: Combination) -> Composition:
    """
    Build the generation instructions for one Combination.

    Only categories present in the combination are written out. Subject
    categories are skipped entirely in subject-removal mode.
    """
    details = [] if combo.remove_characters else _lines(combo, CHARACTER_LINES)
    setting = _lines(combo, SETTING_LINES)
    style = _lines(combo, STYLE_LINES)

    camera = _present(combo, "camera")
    full_body = bool(camera and "full body" in camera.lower())
    if full_body:
        style.append(FULL_BODY_NOTE)

    coverage = requires_coverage(combo)

    body = [
        "Colorize this line art.",
        "Turn it into a high-resolution, 4K, photo-realistic photograph "
        "(unless Art Style specifies otherwise).",
        "It must look like a real picture or high-end render.",
        "",
        "Character Details:",
        *(details or [NO_CHARACTER_FALLBACK]),
        "",
        "Setting:",
        *setting,
        "",
        "Artistic Direction:",
        *style,
        "",
        "IMPORTANT INSTRUCTIONS:",
        "1. Apply the 'Species' setting (if specified) to the main humanoid character in the line art.",
        "2. Ensure strict logical consistency between the Technology/Environment and the Character's attire.",
        "3. Make sure people in the generated images wear the proper clothes for their technology and "
        "the environment, including the clothing option set for the character.",
        "4. Maintain the original pose and gesture of the character(s) strictly.",
        mode_instruction(combo),
        "6. If an option is not set (missing from the lists above), do not use it or infer it "
        "arbitrarily; use the original image content as the guide for that aspect.",
        "7. IMPORTANT: Preserve all facial details, expressions, and features from the original "
        "line art. Do not distort the face.",
    ]
    if coverage:
        body.append(COVERAGE_CLAUSE)
    body += ["", "High quality, detailed, masterpiece."]

    return Composition(
        instructions="\n".join(body),
        summary=summarize(combo),
        flags={
            "requires_coverage": coverage,
            "full_body": full_body,
            "remove_characters": combo.remove_characters,
            "replace_background": combo.replace_background,
        },
    )
