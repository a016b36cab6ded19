"""Color normalization: only near-black ink survives in sanitized artwork."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET

from services.derivatives.svg_tree import local_name, parse_svg, serialize_svg, strip_namespaces
from shared.logging_utils import setup_logging

logger = setup_logging("derivative-sanitizer")

NEAR_BLACK_THRESHOLD = 40
PURE_BLACK = "#000000"

RGB = tuple[int, int, int]

ABSENT_COLORS = {"none", "transparent", "inherit", "currentcolor"}
NAMED_COLORS: dict[str, RGB] = {
    "black": (0, 0, 0),
    "white": (255, 255, 255),
    "red": (255, 0, 0),
    "green": (0, 128, 0),
    "blue": (0, 0, 255),
}

# Containers walked through without being treated as shapes
PASS_THROUGH_TAGS = {"svg", "defs", "style"}

_RGB_FUNCTION = re.compile(r"rgba?\s*\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)")
_HEX_DIGITS = re.compile(r"^[0-9a-f]+$")


def parse_color_to_rgb(color: str | None) -> RGB | None:
    """Parse a paint value to RGB; absent or unparseable values give None."""
    if not color:
        return None
    color = color.strip().lower()
    if not color or color in ABSENT_COLORS:
        return None

    if color in NAMED_COLORS:
        return NAMED_COLORS[color]

    if color.startswith("#"):
        digits = color[1:]
        if len(digits) == 3:
            digits = "".join(ch * 2 for ch in digits)
        if len(digits) == 6 and _HEX_DIGITS.match(digits):
            return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)
        return None

    match = _RGB_FUNCTION.match(color)
    if match:
        return int(match.group(1)), int(match.group(2)), int(match.group(3))

    return None


def is_near_black(rgb: RGB | None) -> bool:
    if rgb is None:
        return False
    return all(channel <= NEAR_BLACK_THRESHOLD for channel in rgb)


def _style_declarations(style: str) -> list[tuple[str, str]]:
    declarations: list[tuple[str, str]] = []
    for chunk in style.split(";"):
        name, sep, value = chunk.partition(":")
        if sep and name.strip():
            declarations.append((name.strip().lower(), value.strip()))
    return declarations


def _style_paint(style: str, prop: str) -> str | None:
    found = None
    for name, value in _style_declarations(style):
        if name == prop:
            found = value
    return found


def _strip_paint_declarations(style: str) -> str:
    kept = [
        chunk.strip()
        for chunk in style.split(";")
        if chunk.strip() and chunk.partition(":")[0].strip().lower() not in {"fill", "stroke"}
    ]
    return ";".join(kept)


def _normalize_element(parent: ET.Element, element: ET.Element) -> None:
    if local_name(element.tag) in PASS_THROUGH_TAGS:
        _normalize_children(element)
        return

    style = element.get("style") or ""
    fill = element.get("fill")
    stroke = element.get("stroke")
    style_fill = _style_paint(style, "fill") if style else None
    style_stroke = _style_paint(style, "stroke") if style else None
    if style_fill is not None:
        fill = style_fill
    if style_stroke is not None:
        stroke = style_stroke

    fill_rgb = parse_color_to_rgb(fill)
    stroke_rgb = parse_color_to_rgb(stroke)

    keep = False
    if is_near_black(fill_rgb):
        element.set("fill", PURE_BLACK)
        keep = True
    elif style_fill is not None:
        element.set("fill", style_fill)

    if is_near_black(stroke_rgb):
        element.set("stroke", PURE_BLACK)
        keep = True
    elif style_stroke is not None:
        element.set("stroke", style_stroke)

    non_black_fill = fill_rgb is not None and not is_near_black(fill_rgb)
    non_black_stroke = stroke_rgb is not None and not is_near_black(stroke_rgb)

    if non_black_fill or non_black_stroke:
        if not keep:
            parent.remove(element)
            return
        if non_black_fill:
            element.set("fill", "none")
        if non_black_stroke:
            element.set("stroke", "none")

    if "style" in element.attrib:
        remaining = _strip_paint_declarations(style)
        if remaining:
            element.set("style", remaining)
        else:
            del element.attrib["style"]

    _normalize_children(element)


def _normalize_children(element: ET.Element) -> None:
    for child in list(element):
        _normalize_element(element, child)


def normalize_tree(root: ET.Element) -> ET.Element:
    """Apply the line-art color policy to a parsed tree in place."""
    _normalize_children(root)
    return root


def normalize_svg_colors(svg_content: str) -> str:
    """
    Rewrite fill/stroke so every surviving shape is pure black line art.

    Never raises; on any failure the input is returned unchanged.
    """
    try:
        root = parse_svg(svg_content)
        if local_name(root.tag) != "svg":
            return svg_content
        strip_namespaces(root)
        normalize_tree(root)
        return serialize_svg(root)
    except Exception as exc:
        logger.warning("Color normalization skipped: %s", exc)
        return svg_content
