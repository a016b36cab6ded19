"""Allow-list sanitization of untrusted SVG markup."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET

from services.derivatives.colors import normalize_tree
from services.derivatives.svg_tree import local_name, parse_svg, serialize_svg, strip_namespaces
from shared.errors import ValidationError

MAX_SVG_BYTES = 5 * 1024 * 1024

ALLOWED_TAGS = frozenset(
    {
        "svg",
        "g",
        "defs",
        "style",
        "title",
        "desc",
        "path",
        "rect",
        "circle",
        "ellipse",
        "line",
        "polyline",
        "polygon",
        "text",
        "tspan",
        "linearGradient",
        "radialGradient",
        "stop",
        "clipPath",
    }
)

ALLOWED_ATTRIBUTES = frozenset(
    {
        "id",
        "class",
        "version",
        "width",
        "height",
        "viewBox",
        "preserveAspectRatio",
        "fill",
        "fill-rule",
        "fill-opacity",
        "stroke",
        "stroke-width",
        "stroke-linecap",
        "stroke-linejoin",
        "stroke-miterlimit",
        "stroke-dasharray",
        "stroke-dashoffset",
        "stroke-opacity",
        "opacity",
        "style",
        "d",
        "transform",
        "points",
        "x",
        "y",
        "x1",
        "y1",
        "x2",
        "y2",
        "dx",
        "dy",
        "r",
        "cx",
        "cy",
        "fx",
        "fy",
        "rx",
        "ry",
        "offset",
        "stop-color",
        "stop-opacity",
        "gradientUnits",
        "gradientTransform",
        "clip-path",
        "clip-rule",
        "clipPathUnits",
        "font-family",
        "font-size",
        "font-weight",
        "font-style",
        "text-anchor",
    }
)

_URL_REFERENCE = re.compile(r"url\(\s*['\"]?([^'\")]*)", re.IGNORECASE)
_UNSAFE_TOKENS = ("javascript:", "vbscript:", "data:", "expression(", "@import", "behavior:")
_CSS_IMPORT = re.compile(r"@import[^;]*;?", re.IGNORECASE)
_CSS_EXTERNAL_URL = re.compile(r"url\(\s*(?!['\"]?#)[^)]*\)", re.IGNORECASE)


def escape_xml(unsafe: str | None) -> str:
    """Escape text for embedding inside generated SVG/XML."""
    if not unsafe:
        return ""
    return (
        unsafe.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace("'", "&apos;")
        .replace('"', "&quot;")
    )


def _is_safe_value(value: str) -> bool:
    compact = re.sub(r"\s+", "", value).lower()
    if any(token in compact for token in _UNSAFE_TOKENS):
        return False
    return all(ref.strip().startswith("#") for ref in _URL_REFERENCE.findall(value))


def _clean_stylesheet(css: str) -> str:
    css = _CSS_IMPORT.sub("", css)
    return _CSS_EXTERNAL_URL.sub("none", css)


def _filter_element(element: ET.Element) -> None:
    for key in list(element.attrib):
        if key not in ALLOWED_ATTRIBUTES or not _is_safe_value(element.attrib[key]):
            del element.attrib[key]

    if element.tag == "style":
        for child in list(element):
            element.remove(child)
        element.text = _clean_stylesheet(element.text or "")
        return

    for child in list(element):
        if child.tag not in ALLOWED_TAGS:
            element.remove(child)
        else:
            _filter_element(child)


def sanitize_svg_content(svg_content: str | bytes | None) -> str:
    """
    Validate and clean untrusted SVG markup.

    Disallowed elements are dropped with their whole subtree, disallowed
    attributes are dropped, and the remaining tree goes through color
    normalization. Same input always gives the same output.

    Raises:
        ValidationError: input larger than 5 MiB or not well-formed SVG
    """
    if isinstance(svg_content, bytes):
        raw_size = len(svg_content)
        svg_content = svg_content.decode("utf-8", errors="replace")
    else:
        raw_size = len(svg_content.encode("utf-8")) if svg_content else 0

    if raw_size > MAX_SVG_BYTES:
        raise ValidationError("SVG content too large (max 5MB)")
    if not svg_content or not svg_content.strip():
        raise ValidationError("Invalid SVG format: empty content")

    try:
        root = parse_svg(svg_content)
    except (ET.ParseError, ValueError) as exc:
        raise ValidationError(f"Invalid SVG format: {exc}") from exc

    if local_name(root.tag) != "svg":
        raise ValidationError("Invalid SVG format: root element is not <svg>")

    strip_namespaces(root)
    _filter_element(root)
    normalize_tree(root)
    return serialize_svg(root)
