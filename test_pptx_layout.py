import io

import pytest
from pptx import Presentation
from pptx.enum.text import PP_ALIGN
from pptx.util import Inches, Pt

from extract_pptx_fields import extract_layout


def _pptx_bytes() -> bytes:
    prs = Presentation()  # 10in x 7.5in
    slide = prs.slides.add_slide(prs.slide_layouts[6])

    name_box = slide.shapes.add_textbox(Inches(2), Inches(3), Inches(6), Inches(1))
    name_box.text_frame.text = "{{ Name }}"
    paragraph = name_box.text_frame.paragraphs[0]
    paragraph.alignment = PP_ALIGN.CENTER
    paragraph.runs[0].font.size = Pt(24)

    label_box = slide.shapes.add_textbox(Inches(1), Inches(6), Inches(3), Inches(0.5))
    label_box.text_frame.text = "Awarded on"

    date_box = slide.shapes.add_textbox(Inches(6), Inches(6), Inches(3), Inches(0.5))
    date_box.text_frame.text = "{Date}"
    date_box.text_frame.paragraphs[0].alignment = PP_ALIGN.RIGHT

    buf = io.BytesIO()
    prs.save(buf)
    return buf.getvalue()


def test_text_boxes_become_field_positions():
    layout = extract_layout(io.BytesIO(_pptx_bytes()), canvas_height=800)

    assert list(layout) == ["Name", "field2", "Date"]

    name = layout["Name"]
    assert name.align == "center"
    assert name.x == pytest.approx(50.0)
    assert name.y == pytest.approx(40.67, abs=0.01)
    # 24pt = 32px on a 720px-high slide, scaled to an 800px canvas
    assert name.fontSize == 36

    label = layout["field2"]
    assert label.align == "left"
    assert label.x == pytest.approx(11.0)
    assert label.fontSize == 32

    date = layout["Date"]
    assert date.align == "right"
    assert date.x == pytest.approx(89.0)
