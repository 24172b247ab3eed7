import io
import logging
import os
from functools import lru_cache
from typing import Dict, List, Optional, Union

import arabic_reshaper
from bidi.algorithm import get_display
from PIL import Image, ImageDraw, ImageFont
from pydantic import BaseModel

from layouts import Layout

logger = logging.getLogger("certportal.rendering")

CANVAS_WIDTH = 1200
CANVAS_HEIGHT = 800

FontType = Union[ImageFont.FreeTypeFont, ImageFont.ImageFont]


# ----------- Document model -----------

class TextNode(BaseModel):
    text: str
    x: float          # anchor, in canvas pixels
    y: float          # top of the text, in canvas pixels
    align: str = "center"
    fontSize: int = 32


class CertificateDocument(BaseModel):
    background: bytes
    width: int = CANVAS_WIDTH
    height: int = CANVAS_HEIGHT
    nodes: List[TextNode] = []


def build_document(
    template_image: bytes,
    layout: Layout,
    display_fields: Dict[str, str],
    canvas_width: int = CANVAS_WIDTH,
    canvas_height: int = CANVAS_HEIGHT,
) -> CertificateDocument:
    """
    Place every non-empty display field that has a layout entry.
    Percent positions become absolute pixels on the canvas.
    """
    nodes = []
    for name, value in display_fields.items():
        pos = layout.get(name)
        if pos is None or not value:
            continue
        nodes.append(TextNode(
            text=value,
            x=pos.x / 100 * canvas_width,
            y=pos.y / 100 * canvas_height,
            align=pos.align,
            fontSize=pos.fontSize,
        ))
    return CertificateDocument(background=template_image, width=canvas_width, height=canvas_height, nodes=nodes)


# ----------- Font Loader -----------

@lru_cache(maxsize=64)
def _load_font(font_file: str, size: int) -> FontType:
    for candidate in (os.path.join("fonts", font_file), font_file):
        try:
            return ImageFont.truetype(candidate, size)
        except IOError:
            continue

    logger.warning("Font '%s' not found, falling back to default font", font_file)
    return ImageFont.load_default(size=size)


def shape_text(text: str) -> str:
    """
    Reorder right-to-left scripts (Arabic, Hebrew) for left-to-right drawing.
    """
    return get_display(arabic_reshaper.reshape(text))


def aligned_x(anchor_x: float, bbox, align: str) -> float:
    """
    Draw origin so that the text's box starts at, centers on, or ends at anchor_x.
    """
    left, _, right, _ = bbox
    if align == "center":
        return anchor_x - (left + right) / 2
    if align == "right":
        return anchor_x - right
    return anchor_x - left


# ----------- Rasterizer -----------

class PillowRasterizer:
    """
    Draws a CertificateDocument onto a fresh canvas and returns PNG bytes.
    """

    def __init__(self, font_file: str = "DejaVuSans-Bold.ttf", fill: str = "#333333"):
        self.font_file = font_file
        self.fill = fill

    def rasterize(self, document: CertificateDocument) -> bytes:
        background = Image.open(io.BytesIO(document.background)).convert("RGBA")
        img = background.resize((document.width, document.height))
        draw = ImageDraw.Draw(img)

        for node in document.nodes:
            text = shape_text(node.text)
            font = _load_font(self.font_file, node.fontSize)
            bbox = draw.textbbox((0, 0), text, font=font)
            x = aligned_x(node.x, bbox, node.align)
            draw.text((x, node.y), text, font=font, fill=self.fill)

        img = img.convert("RGB")

        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return buf.getvalue()


def render_certificate(
    template_image: bytes,
    layout: Layout,
    display_fields: Dict[str, str],
    canvas_width: int = CANVAS_WIDTH,
    canvas_height: int = CANVAS_HEIGHT,
    rasterizer: Optional[PillowRasterizer] = None,
) -> bytes:
    document = build_document(template_image, layout, display_fields, canvas_width, canvas_height)
    return (rasterizer or PillowRasterizer()).rasterize(document)
