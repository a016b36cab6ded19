"""Parsing and serialization helpers for SVG element trees."""

from __future__ import annotations

import math
import re
import xml.etree.ElementTree as ET

from defusedxml import ElementTree as DefusedET

SVG_NAMESPACE = "http://www.w3.org/2000/svg"
DEFAULT_DIMENSION = 800.0

_LEADING_NUMBER = re.compile(r"^\s*(\d+(?:\.\d+)?)")


def parse_svg(svg_content: str) -> ET.Element:
    """
    Parse untrusted markup.

    A plain DOCTYPE (as written by Illustrator or Inkscape) is accepted; entity
    declarations and external references are refused.
    """
    return DefusedET.fromstring(svg_content, forbid_dtd=False, forbid_entities=True, forbid_external=True)


def local_name(tag: object) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def strip_namespaces(root: ET.Element) -> None:
    """Drop namespace URIs from element and attribute names in place."""
    for element in root.iter():
        element.tag = local_name(element.tag)
        namespaced = [key for key in element.attrib if key.startswith("{")]
        for key in namespaced:
            value = element.attrib.pop(key)
            element.attrib.setdefault(local_name(key), value)


def serialize_svg(root: ET.Element) -> str:
    root.attrib.pop("xmlns", None)
    root.set("xmlns", SVG_NAMESPACE)
    return ET.tostring(root, encoding="unicode")


def _parse_length(value: str | None) -> float | None:
    if not value or value.strip().endswith("%"):
        return None
    match = _LEADING_NUMBER.match(value)
    if not match:
        return None
    number = float(match.group(1))
    return number if number > 0 else None


def _parse_view_box(value: str | None) -> tuple[float, float, float, float] | None:
    if not value:
        return None
    parts = [part for part in re.split(r"[\s,]+", value.strip()) if part]
    if len(parts) != 4:
        return None
    try:
        min_x, min_y, width, height = (float(part) for part in parts)
    except ValueError:
        return None
    if not all(math.isfinite(v) for v in (min_x, min_y, width, height)) or width <= 0 or height <= 0:
        return None
    return min_x, min_y, width, height


def view_box(root: ET.Element) -> tuple[float, float, float, float] | None:
    return _parse_view_box(root.get("viewBox"))


def read_dimensions(root: ET.Element) -> tuple[float, float]:
    """
    Intrinsic size of an SVG document.

    The root's viewBox wins when it has four valid parts, otherwise the
    width/height attributes are used. Missing values default to 800.
    """
    box = view_box(root)
    if box:
        return box[2], box[3]
    width = _parse_length(root.get("width")) or DEFAULT_DIMENSION
    height = _parse_length(root.get("height")) or DEFAULT_DIMENSION
    return width, height


def svg_dimensions(svg_content: str) -> tuple[float, float]:
    """Shallow read of an SVG string's intrinsic size; defaults on unreadable input."""
    try:
        return read_dimensions(parse_svg(svg_content))
    except (ET.ParseError, ValueError):
        return DEFAULT_DIMENSION, DEFAULT_DIMENSION
