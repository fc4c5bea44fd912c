"""Color validation and provider color conversion.

Canonical taxonomy colors are plain hex strings. Neither provider accepts
arbitrary hex:

- Gmail only accepts background/text colors from a fixed palette, so an
  arbitrary hex is mapped to the nearest palette entry (Euclidean RGB distance).
- Outlook has no folder colors; color is carried by a master category whose
  color is one of 25 "presetN" values, so hex is mapped to the nearest preset.

Invalid input never raises here: callers get None and fall back to the
provider's default color.
"""

from __future__ import annotations

import re

HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

# Background colors Gmail accepts for user labels
GMAIL_LABEL_PALETTE: tuple[str, ...] = (
    "#000000", "#434343", "#666666", "#999999", "#cccccc", "#efefef", "#f3f3f3", "#ffffff",
    "#fb4c2f", "#ffad47", "#fad165", "#16a766", "#43d692", "#4a86e8", "#a479e2", "#f691b3",
    "#f6c5be", "#ffe6c7", "#fef1d1", "#b9e4d0", "#c6f3de", "#c9daf8", "#e4d7f5", "#fcdee8",
    "#efa093", "#ffd6a2", "#fce8b3", "#89d3b2", "#a0eac9", "#a4c2f4", "#d0bcf1", "#fbc8d9",
    "#e66550", "#ffbc6b", "#fcda83", "#44b984", "#68dfa9", "#6d9eeb", "#b694e8", "#f7a7c0",
    "#cc3a21", "#eaa041", "#f2c960", "#149e60", "#3dc789", "#3c78d8", "#8e63ce", "#e07798",
    "#ac2b16", "#cf8933", "#d5ae49", "#0b804b", "#2a9c68", "#285bac", "#653e9b", "#b65775",
    "#822111", "#a46a21", "#aa8831", "#076239", "#1a764d", "#1c4587", "#41236d", "#83334c",
)  # fmt: skip

GMAIL_DARK_TEXT = "#000000"
GMAIL_LIGHT_TEXT = "#ffffff"

# Outlook category presets and the color Outlook renders for each
O365_PRESET_COLORS: dict[str, str] = {
    "preset0": "#e7393f",  # Red
    "preset1": "#f5883b",  # Orange
    "preset2": "#a76a3a",  # Brown
    "preset3": "#f8c73c",  # Yellow
    "preset4": "#4cb14f",  # Green
    "preset5": "#41b7a6",  # Teal
    "preset6": "#9aa43c",  # Olive
    "preset7": "#4a8fd8",  # Blue
    "preset8": "#8a5ec3",  # Purple
    "preset9": "#c5407a",  # Cranberry
    "preset10": "#8da1b5",  # Steel
    "preset11": "#4d6277",  # DarkSteel
    "preset12": "#a5a5a5",  # Gray
    "preset13": "#5b5b5b",  # DarkGray
    "preset14": "#000000",  # Black
    "preset15": "#a0161c",  # DarkRed
    "preset16": "#c15c14",  # DarkOrange
    "preset17": "#6b3d1d",  # DarkBrown
    "preset18": "#b3891a",  # DarkYellow
    "preset19": "#226b25",  # DarkGreen
    "preset20": "#1b6b60",  # DarkTeal
    "preset21": "#5c6421",  # DarkOlive
    "preset22": "#20508a",  # DarkBlue
    "preset23": "#4d2c7d",  # DarkPurple
    "preset24": "#7b1c45",  # DarkCranberry
}

O365_DEFAULT_PRESET = "none"


def is_valid_color(value: object) -> bool:
    """Check that a value is a 6-digit hex color like "#FF0000".

    Example:
        is_valid_color("#FF0000")  # True
        is_valid_color("invalid")  # False
    """
    return isinstance(value, str) and HEX_COLOR_RE.match(value) is not None


def _rgb(hex_color: str) -> tuple[int, int, int]:
    value = hex_color.lstrip("#")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)


def _distance(a: tuple[int, int, int], b: tuple[int, int, int]) -> int:
    return (a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2 + (a[2] - b[2]) ** 2


def _nearest(hex_color: str, candidates: list[tuple[str, str]]) -> str:
    """Return the name of the candidate closest to hex_color.

    Candidates are (name, hex) pairs; ties go to the earliest candidate so the
    result never depends on dict ordering beyond the declared order.
    """
    target = _rgb(hex_color)
    best_name, best_distance = candidates[0][0], None
    for name, candidate_hex in candidates:
        distance = _distance(target, _rgb(candidate_hex))
        if best_distance is None or distance < best_distance:
            best_name, best_distance = name, distance
    return best_name


def nearest_gmail_color(hex_color: str) -> dict[str, str] | None:
    """Map an arbitrary hex color to a Gmail label color payload.

    Args:
        hex_color: "#RRGGBB"

    Returns:
        {"backgroundColor": ..., "textColor": ...} using palette values, or
        None if hex_color is not a valid hex color
    """
    if not is_valid_color(hex_color):
        return None

    background = _nearest(hex_color, [(c, c) for c in GMAIL_LABEL_PALETTE])
    red, green, blue = _rgb(background)
    # Relative luminance (ITU-R BT.601) decides black vs white text
    luminance = 0.299 * red + 0.587 * green + 0.114 * blue
    text = GMAIL_DARK_TEXT if luminance > 150 else GMAIL_LIGHT_TEXT
    return {"backgroundColor": background, "textColor": text}


def hex_to_o365_color(hex_color: str) -> str:
    """Convert a hex color to the nearest Outlook category preset.

    Args:
        hex_color: "#RRGGBB"

    Returns:
        "preset0".."preset24", or "none" (Outlook's default) for invalid input
    """
    if not is_valid_color(hex_color):
        return O365_DEFAULT_PRESET
    return _nearest(hex_color, list(O365_PRESET_COLORS.items()))
