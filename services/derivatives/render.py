"""
Rendering backends used by the derivative generators.

Raster output goes through CairoSVG (SVG -> PNG) and Pillow (compositing and
encoding). Print output stays vector: each page is an SVG document converted
with CairoSVG's PDF surface, and pages are stitched together with pypdf.
"""

from __future__ import annotations

import io
import xml.etree.ElementTree as ET
from typing import Any

import cairosvg
from PIL import Image
from pypdf import PdfReader, PdfWriter

from services.derivatives.svg_tree import SVG_NAMESPACE, read_dimensions, svg_dimensions, view_box
from shared.errors import RenderError
from shared.logging_utils import setup_logging

logger = setup_logging("derivative-render")

WHITE = (255, 255, 255)

# Root attributes that describe the viewport rather than inherited paint
_VIEWPORT_ATTRIBUTES = {"width", "height", "viewBox", "preserveAspectRatio", "x", "y", "version", "xmlns"}


def fit_inside(width: float, height: float, box_width: int, box_height: int) -> tuple[int, int]:
    """Largest size with the source aspect ratio that fits the box."""
    scale = min(box_width / width, box_height / height)
    return max(1, round(width * scale)), max(1, round(height * scale))


def flatten(image: Image.Image, background: tuple[int, int, int] = WHITE) -> Image.Image:
    """Drop transparency by compositing onto an opaque background."""
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        flat = Image.new("RGB", rgba.size, background)
        flat.paste(rgba, mask=rgba.split()[-1])
        return flat
    return image.convert("RGB")


def render_svg_layer(svg_markup: str, width: int, height: int) -> Image.Image:
    """Rasterize SVG markup to an RGBA layer of exactly width x height."""
    try:
        png_bytes = cairosvg.svg2png(
            bytestring=svg_markup.encode("utf-8"),
            output_width=width,
            output_height=height,
        )
        with Image.open(io.BytesIO(png_bytes)) as image:
            layer = image.convert("RGBA")
    except Exception as exc:
        raise RenderError(f"SVG rasterization failed: {exc}") from exc
    if layer.size != (width, height):
        layer = layer.resize((width, height))
    return layer


def rasterize_svg(
    svg_content: str,
    box_width: int,
    box_height: int,
    fit: str = "contain",
    background: tuple[int, int, int] = WHITE,
) -> Image.Image:
    """
    Rasterize artwork into a box, preserving aspect ratio, flattened to opaque.

    ``fit="contain"`` pads to exactly the box size; ``fit="inside"`` returns the
    image at its actual rendered size.
    """
    source_width, source_height = svg_dimensions(svg_content)
    out_width, out_height = fit_inside(source_width, source_height, box_width, box_height)
    art = flatten(render_svg_layer(svg_content, out_width, out_height), background)
    if fit == "inside":
        return art

    canvas = Image.new("RGB", (box_width, box_height), background)
    canvas.paste(art, ((box_width - out_width) // 2, (box_height - out_height) // 2))
    return canvas


def load_raster(data: bytes, box_width: int, box_height: int) -> Image.Image:
    """Open raster bytes and shrink them to fit inside the box, flattened to white."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.load()
            art = flatten(image)
    except Exception as exc:
        raise RenderError(f"Unreadable raster image: {exc}") from exc
    size = fit_inside(art.width, art.height, box_width, box_height)
    return art.resize(size, Image.LANCZOS)


def composite(
    size: tuple[int, int],
    layers: list[tuple[Image.Image, tuple[int, int]]],
    background: tuple[int, int, int] = WHITE,
) -> Image.Image:
    """Stack layers bottom-up on an opaque canvas."""
    canvas = Image.new("RGBA", size, (*background, 255))
    for layer, (left, top) in layers:
        canvas.alpha_composite(layer.convert("RGBA"), dest=(max(0, left), max(0, top)))
    return canvas.convert("RGB")


def encode_image(image: Image.Image, image_format: str, **options: Any) -> bytes:
    buffer = io.BytesIO()
    try:
        image.save(buffer, format=image_format, **options)
    except Exception as exc:
        raise RenderError(f"{image_format} encoding failed: {exc}") from exc
    return buffer.getvalue()


def embed_svg(root: ET.Element, x: float, y: float, width: float, height: float) -> ET.Element:
    """
    Wrap a parsed SVG document as a vector group scaled to fit the given box.

    The aspect ratio is preserved and the art is centered in the box.
    """
    source_width, source_height = read_dimensions(root)
    box = view_box(root)
    min_x, min_y = (box[0], box[1]) if box else (0.0, 0.0)
    scale = min(width / source_width, height / source_height)
    offset_x = x + (width - source_width * scale) / 2
    offset_y = y + (height - source_height * scale) / 2

    group = ET.Element("g")
    for key, value in root.attrib.items():
        if key not in _VIEWPORT_ATTRIBUTES:
            group.set(key, value)
    group.set(
        "transform",
        f"translate({offset_x:.4f} {offset_y:.4f}) scale({scale:.6f}) translate({-min_x:.4f} {-min_y:.4f})",
    )
    group.extend(list(root))
    return group


def page_document(width_pt: float, height_pt: float) -> ET.Element:
    """Empty SVG page whose user units are PDF points."""
    page = ET.Element("svg")
    page.set("xmlns", SVG_NAMESPACE)
    page.set("width", f"{width_pt}pt")
    page.set("height", f"{height_pt}pt")
    page.set("viewBox", f"0 0 {width_pt} {height_pt}")
    return page


def svg_to_pdf_page(page: ET.Element) -> bytes:
    """Convert one SVG page document to a single-page vector PDF."""
    markup = ET.tostring(page, encoding="unicode")
    try:
        return cairosvg.svg2pdf(bytestring=markup.encode("utf-8"))
    except Exception as exc:
        raise RenderError(f"PDF embedding failed: {exc}") from exc


def assemble_pdf(pages: list[bytes], metadata: dict[str, str] | None = None) -> bytes:
    """Concatenate single-page PDFs into one document and stamp its info dictionary."""
    writer = PdfWriter()
    try:
        for page_bytes in pages:
            for page in PdfReader(io.BytesIO(page_bytes)).pages:
                writer.add_page(page)
        if metadata:
            writer.add_metadata({f"/{key}": value for key, value in metadata.items()})
        buffer = io.BytesIO()
        writer.write(buffer)
        logger.debug("Assembled PDF with %s pages", len(writer.pages))
    except Exception as exc:
        raise RenderError(f"PDF assembly failed: {exc}") from exc
    return buffer.getvalue()
