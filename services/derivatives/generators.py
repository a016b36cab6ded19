"""
Derivative generators: watermarked thumbnail, social preview image and print PDF.

Every generator sanitizes its input first; renderers only ever see sanitized SVG.
"""

from __future__ import annotations

import math
import os
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from services.derivatives import render
from services.derivatives.sanitizer import escape_xml, sanitize_svg_content
from services.derivatives.svg_tree import SVG_NAMESPACE, parse_svg, read_dimensions, strip_namespaces
from shared.config import config
from shared.errors import RenderError
from shared.logging_utils import setup_logging
from shared.models import Asset

logger = setup_logging("derivative-generators")

# Thumbnail
DEFAULT_THUMBNAIL_SIZE = 600
BANNER_RATIO = 0.083
BANNER_COLOR = "#1F2937"

# OG image
OG_WIDTH = 1200
OG_HEIGHT = 630
OG_ART_BOX = (450, 500)
OG_ART_CENTER = (900, 315)
MAX_TITLE_CHARS = 22
MAX_TITLE_LINES = 3
TITLE_LINE_HEIGHT = 60
TITLE_START_Y = 280
SUBTITLE_GAP = 20
DEFAULT_TITLE = "Coloring Page"

# PDF (points)
A4_WIDTH_PT = 595.28
A4_HEIGHT_PT = 841.89
PDF_MARGIN_PT = 28.35
FOOTER_OFFSET_PT = 50
FOOTER_LINE_PT = 12

OG_TEMPLATE = "og_template.svg"
MARKETING_TEMPLATE = "marketing_template.svg"

_DISPLAY_ID_PREFIX = re.compile(r"^HP-[A-Z]+-")
_FONT_STACK = "'Inter', 'FreeSans', sans-serif"


def display_asset_id(asset_id: str | None) -> str:
    """Human-facing id: ``HP-ANI-00067`` becomes ``00067``."""
    return _DISPLAY_ID_PREFIX.sub("", asset_id or "")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _branding(key: str, default: str) -> str:
    return str(config.get_pipeline_value(f"branding.{key}", default))


def _template_path(name: str) -> str | None:
    path = os.path.join(config.get("template_dir"), name)
    return path if os.path.isfile(path) else None


# ---------------------------------------------------------------------------
# Thumbnail
# ---------------------------------------------------------------------------


def banner_height(size: int) -> int:
    return round_half_up(size * BANNER_RATIO)


def build_banner_svg(width: int, height: int, display_id: str, year: int) -> str:
    site_name = escape_xml(_branding("site_name", "huepress.co"))
    brand_name = escape_xml(_branding("brand_name", "HuePress"))
    notice = escape_xml(
        _branding("preview_notice", "Low-res preview only. Get print-quality PDFs at huepress.co")
    )
    return f"""<svg xmlns="{SVG_NAMESPACE}" width="{width}" height="{height}">
  <rect fill="{BANNER_COLOR}" width="{width}" height="{height}"/>
  <style>
    .domain {{ font: bold 16px {_FONT_STACK}; fill: #FFFFFF; }}
    .id {{ font: 24px {_FONT_STACK}; fill: #9CA3AF; }}
    .meta {{ font: 10px {_FONT_STACK}; fill: #9CA3AF; }}
    .notice {{ font: 9px {_FONT_STACK}; fill: #6B7280; }}
  </style>
  <text x="15" y="17" class="domain">{site_name}</text>
  <text x="{width - 15}" y="32" text-anchor="end" class="id">#{escape_xml(display_id)}</text>
  <text x="15" y="32" class="meta">{year} {brand_name}. All rights reserved.</text>
  <text x="15" y="44" class="notice">{notice}</text>
</svg>"""


def generate_thumbnail(svg_content: str, asset_id: str | None, size: int = DEFAULT_THUMBNAIL_SIZE) -> bytes:
    """
    Render the watermarked preview: the art in a ``size`` square above a branded banner.

    Returns:
        WebP bytes of a ``size`` x ``size + banner`` image
    """
    safe_svg = sanitize_svg_content(svg_content)
    strip_height = banner_height(size)

    art = render.rasterize_svg(safe_svg, size, size, fit="contain")
    banner = render.render_svg_layer(
        build_banner_svg(size, strip_height, display_asset_id(asset_id), datetime.now().year),
        size,
        strip_height,
    )
    canvas = render.composite((size, size + strip_height), [(art, (0, 0)), (banner, (0, size))])
    quality = int(config.get_pipeline_value("derivatives.thumbnail.quality", 85))
    return render.encode_image(canvas, "WEBP", quality=quality)


# ---------------------------------------------------------------------------
# OG image
# ---------------------------------------------------------------------------


def wrap_title(title: str | None, max_chars: int = MAX_TITLE_CHARS, max_lines: int = MAX_TITLE_LINES) -> list[str]:
    """
    Greedy word wrap for the social card title.

    Words are appended while ``line + " " + word`` stays shorter than ``max_chars``.
    When more than ``max_lines`` lines result, the last shown line loses three
    characters and gets an ellipsis.
    """
    words = (title or DEFAULT_TITLE).split(" ")
    lines: list[str] = []
    current = words[0]
    for word in words[1:]:
        if len(f"{current} {word}") < max_chars:
            current = f"{current} {word}"
        else:
            lines.append(current)
            current = word
    lines.append(current)

    shown = lines[:max_lines]
    if len(lines) > max_lines:
        shown[-1] = shown[-1][:-3] + "..."
    return shown


def build_og_text_svg(lines: list[str]) -> str:
    subtitle = escape_xml(_branding("og_subtitle", "Printable Coloring Page"))
    subtitle_y = TITLE_START_Y + len(lines) * TITLE_LINE_HEIGHT + SUBTITLE_GAP
    spans = "".join(
        f'<tspan x="60" dy="{0 if index == 0 else TITLE_LINE_HEIGHT}">{escape_xml(line)}</tspan>'
        for index, line in enumerate(lines)
    )
    return f"""<svg xmlns="{SVG_NAMESPACE}" width="{OG_WIDTH}" height="{OG_HEIGHT}">
  <style>
    .title {{ font: bold 48px {_FONT_STACK}; fill: #0f766e; }}
    .subtitle {{ font: 24px {_FONT_STACK}; fill: #374151; }}
  </style>
  <text x="60" y="{TITLE_START_Y}" class="title">{spans}</text>
  <text x="60" y="{subtitle_y}" class="subtitle">{subtitle}</text>
</svg>"""


def _og_background():
    template = _template_path(OG_TEMPLATE)
    if not template:
        return None
    with open(template, "r", encoding="utf-8") as stream:
        return render.render_svg_layer(stream.read(), OG_WIDTH, OG_HEIGHT)


def generate_og_image(svg_content: str | None, title: str | None, art_image: bytes | None = None) -> bytes:
    """
    Render the 1200x630 social card: background, art on the right, wrapped title on the left.

    The art comes from ``svg_content`` or, when no SVG is given, from the raster
    ``art_image``. A broken art layer is logged and left out.
    """
    safe_svg = sanitize_svg_content(svg_content) if svg_content else None

    layers = []
    background = _og_background()
    if background is not None:
        layers.append((background, (0, 0)))

    try:
        art = None
        if safe_svg is not None:
            art = render.rasterize_svg(safe_svg, *OG_ART_BOX, fit="inside")
        elif art_image:
            art = render.load_raster(art_image, *OG_ART_BOX)
        if art is not None:
            left = OG_ART_CENTER[0] - round_half_up(art.width / 2)
            top = OG_ART_CENTER[1] - round_half_up(art.height / 2)
            layers.append((art, (left, top)))
    except Exception as exc:
        logger.error("OG art processing error: %s", exc)

    text = render.render_svg_layer(build_og_text_svg(wrap_title(title)), OG_WIDTH, OG_HEIGHT)
    layers.append((text, (0, 0)))

    canvas = render.composite((OG_WIDTH, OG_HEIGHT), layers)
    return render.encode_image(canvas, "PNG")


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------


@dataclass
class PageLayout:
    landscape: bool
    page_width: float
    page_height: float
    x: float
    y: float
    width: float
    height: float
    scale: float


def pdf_page_layout(svg_width: float, svg_height: float) -> PageLayout:
    """A4 page in the art's orientation, with the art fitted and centered inside the margins."""
    landscape = svg_width > svg_height
    page_width = A4_HEIGHT_PT if landscape else A4_WIDTH_PT
    page_height = A4_WIDTH_PT if landscape else A4_HEIGHT_PT
    avail_width = page_width - 2 * PDF_MARGIN_PT
    avail_height = page_height - 2 * PDF_MARGIN_PT
    scale = min(avail_width / svg_width, avail_height / svg_height)
    width = svg_width * scale
    height = svg_height * scale
    return PageLayout(
        landscape=landscape,
        page_width=page_width,
        page_height=page_height,
        x=PDF_MARGIN_PT + (avail_width - width) / 2,
        y=PDF_MARGIN_PT + (avail_height - height) / 2,
        width=width,
        height=height,
        scale=scale,
    )


def _artwork_page(safe_svg: str) -> bytes:
    root = parse_svg(safe_svg)
    strip_namespaces(root)
    layout = pdf_page_layout(*read_dimensions(root))
    page = render.page_document(layout.page_width, layout.page_height)
    page.append(render.embed_svg(root, layout.x, layout.y, layout.width, layout.height))
    return render.svg_to_pdf_page(page)


def _footer_lines(display_id: str, year: int) -> list[str]:
    return [
        f"Need help? Email us anytime: {_branding('support_email', 'hello@huepress.co')}",
        f"© {year} {_branding('brand_name', 'HuePress')}. All rights reserved.",
        f"Asset ID: #{display_id}",
    ]


def _marketing_page(display_id: str) -> bytes | None:
    template = _template_path(MARKETING_TEMPLATE)
    if not template:
        return None

    try:
        with open(template, "r", encoding="utf-8") as stream:
            template_root = parse_svg(stream.read())
    except (OSError, ET.ParseError, ValueError) as exc:
        raise RenderError(f"Unreadable marketing template: {exc}") from exc
    strip_namespaces(template_root)

    page = render.page_document(A4_WIDTH_PT, A4_HEIGHT_PT)
    page.append(render.embed_svg(template_root, 0, 0, A4_WIDTH_PT, A4_HEIGHT_PT))

    # 8pt text; baseline sits one font size below each line's top
    footer_top = A4_HEIGHT_PT - FOOTER_OFFSET_PT
    for index, line in enumerate(_footer_lines(display_id, datetime.now().year)):
        text = ET.SubElement(page, "text")
        text.set("x", f"{A4_WIDTH_PT / 2:.2f}")
        text.set("y", f"{footer_top + index * FOOTER_LINE_PT + 8:.2f}")
        text.set("text-anchor", "middle")
        text.set("font-family", "Helvetica, Arial, sans-serif")
        text.set("font-size", "8")
        text.set("fill", "#969696")
        text.text = line

    return render.svg_to_pdf_page(page)


def pdf_metadata(asset: Asset, display_id: str, public_url: str | None = None) -> dict[str, str]:
    brand_name = _branding("brand_name", "HuePress")
    asset_url = public_url or _branding("public_url", "https://huepress.co")
    title = asset.title or config.get_pipeline_value("derivatives.pdf.default_title", DEFAULT_TITLE)
    description = asset.description or config.get_pipeline_value(
        "derivatives.pdf.default_description", "Therapy-Grade Coloring Page"
    )
    return {
        "Title": str(title),
        "Author": brand_name,
        "Subject": f"{description} • ID: #{display_id} • {asset_url}",
        "Keywords": (
            f"coloring, page, printable, kids, art, {brand_name.lower()}, therapy, vector, #{display_id}"
        ),
        "Creator": brand_name,
        "Producer": brand_name,
    }


def generate_pdf(svg_content: str, asset: Asset | dict[str, Any], public_url: str | None = None) -> bytes:
    """
    Render the print PDF.

    Page 1 holds the vector art on A4 in the art's orientation. Page 2 is the
    portrait marketing page, present only when the marketing template exists.
    Any failure rejects the whole document.
    """
    if isinstance(asset, dict):
        asset = Asset.model_validate(asset)
    safe_svg = sanitize_svg_content(svg_content)
    display_id = display_asset_id(asset.asset_id)

    try:
        pages = [_artwork_page(safe_svg)]
    except (ET.ParseError, ValueError) as exc:
        raise RenderError(f"Artwork page failed: {exc}") from exc

    marketing = _marketing_page(display_id)
    if marketing is not None:
        pages.append(marketing)

    return render.assemble_pdf(pages, pdf_metadata(asset, display_id, public_url))
