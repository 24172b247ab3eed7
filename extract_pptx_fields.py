import json
import re
import sys
from typing import Dict

from pptx import Presentation
from pptx.enum.text import PP_ALIGN

from layouts import DEFAULT_FONT_SIZE, FieldPosition
from rendering import CANVAS_HEIGHT

_PLACEHOLDER = re.compile(r"^\{\{?\s*([^{}]+?)\s*\}?\}$")


def emu_to_px(emu) -> float:
    return emu / 914400 * 96


def _clamp_percent(value: float) -> float:
    return round(min(max(value, 0.0), 100.0), 2)


def extract_layout(pptx_source, canvas_height: int = CANVAS_HEIGHT) -> Dict[str, FieldPosition]:
    """
    Turn the text boxes of the first slide into field positions.

    x is taken from the point the paragraph alignment anchors to (left edge,
    box center or right edge), y from the top of the text area. Font sizes are
    scaled from the slide height to the canvas height. A box containing
    "{Name}" or "{{Name}}" becomes field "Name", any other box "field<n>".
    """
    prs = Presentation(pptx_source)
    slide_width, slide_height = prs.slide_width, prs.slide_height
    scale = canvas_height / emu_to_px(slide_height)

    fields: Dict[str, FieldPosition] = {}
    if not len(prs.slides):
        return fields

    field_index = 1
    for shape in prs.slides[0].shapes:
        if not shape.has_text_frame:
            continue

        text = shape.text.strip()
        if not text:
            continue

        tf = shape.text_frame

        # Alignment – take from first paragraph
        alignment = "left"
        if tf.paragraphs and tf.paragraphs[0].alignment is not None:
            align_map = {
                PP_ALIGN.LEFT: "left",
                PP_ALIGN.CENTER: "center",
                PP_ALIGN.RIGHT: "right",
            }
            alignment = align_map.get(tf.paragraphs[0].alignment, "left")

        left, top, width = shape.left or 0, shape.top or 0, shape.width or 0
        if alignment == "center":
            anchor = left + width / 2
        elif alignment == "right":
            anchor = left + width - tf.margin_right
        else:
            anchor = left + tf.margin_left

        font_size = None
        for paragraph in tf.paragraphs:
            for run in paragraph.runs:
                if run.font and run.font.size:
                    font_size = run.font.size.pt
                    break
            if font_size:
                break

        if font_size:
            size_px = max(1, round(font_size * 96 / 72 * scale))
        else:
            size_px = DEFAULT_FONT_SIZE

        match = _PLACEHOLDER.match(text)
        if match:
            name = match.group(1)
        else:
            name = f"field{field_index}"
        field_index += 1

        fields[name] = FieldPosition(
            x=_clamp_percent(anchor / slide_width * 100),
            y=_clamp_percent((top + tf.margin_top) / slide_height * 100),
            align=alignment,
            fontSize=size_px,
        )

    return fields


if __name__ == "__main__":
    pptx_file = sys.argv[1] if len(sys.argv) > 1 else "template-filled.pptx"
    layout = extract_layout(pptx_file)
    print(json.dumps({k: v.model_dump() for k, v in layout.items()}, indent=2, ensure_ascii=False))
