import json
import os

import pytest
from pydantic import ValidationError

from conftest import png_bytes
from errors import StorageError
from layouts import FieldPosition, LayoutStore, list_template_images
from persistence import JsonDocument


def _touch_image(directory, name):
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, name), "wb") as f:
        f.write(png_bytes((10, 10)))


def test_field_position_defaults_and_bounds():
    pos = FieldPosition(x=10, y=20)
    assert pos.align == "center"
    assert pos.fontSize == 32
    with pytest.raises(ValidationError):
        FieldPosition(x=101, y=0)
    with pytest.raises(ValidationError):
        FieldPosition(x=0, y=0, align="justify")
    with pytest.raises(ValidationError):
        FieldPosition(x=0, y=0, fontSize=0)


def test_missing_layout_is_none(tmp_path):
    store = LayoutStore(JsonDocument(str(tmp_path / "layouts.json")))
    assert store.get_layout("template1") is None


def test_save_replaces_whole_field_set_and_persists(tmp_path):
    path = str(tmp_path / "layouts.json")
    store = LayoutStore(JsonDocument(path))
    store.save_layout("template1", {"Name": FieldPosition(x=50, y=40), "Date": FieldPosition(x=80, y=90)})
    store.save_layout("template1", {"Course": FieldPosition(x=50, y=60, align="left", fontSize=20)})

    reloaded = LayoutStore(JsonDocument(path))
    layout = reloaded.get_layout("template1")
    assert list(layout) == ["Course"]
    assert layout["Course"] == FieldPosition(x=50, y=60, align="left", fontSize=20)


def test_discover_assigns_stable_ids(tmp_path):
    templates = str(tmp_path / "templates")
    path = str(tmp_path / "layouts.json")
    _touch_image(templates, "b.png")
    _touch_image(templates, "c.jpg")

    store = LayoutStore(JsonDocument(path))
    assert store.discover(templates) == {"template1": "b.png", "template2": "c.jpg"}

    # A file sorting first must not shift existing ids
    _touch_image(templates, "a.png")
    reloaded = LayoutStore(JsonDocument(path))
    assert reloaded.discover(templates) == {"template1": "b.png", "template2": "c.jpg", "template3": "a.png"}

    os.remove(os.path.join(templates, "b.png"))
    assert reloaded.discover(templates) == {"template2": "c.jpg", "template3": "a.png"}


def test_discover_keeps_layout_saved_before_discovery(tmp_path):
    templates = str(tmp_path / "templates")
    _touch_image(templates, "one.png")
    _touch_image(templates, "two.png")

    store = LayoutStore(JsonDocument(str(tmp_path / "layouts.json")))
    store.save_layout("template2", {"Name": FieldPosition(x=50, y=50)})

    assert store.discover(templates) == {"template1": "one.png", "template2": "two.png"}
    assert store.image_for("template2") == "two.png"
    assert store.get_layout("template2")["Name"].x == 50


def test_list_template_images_ignores_other_and_empty_files(tmp_path):
    templates = tmp_path / "templates"
    templates.mkdir()
    (templates / "notes.txt").write_text("x")
    (templates / "empty.png").write_bytes(b"")
    _touch_image(str(templates), "ok.PNG")
    assert list_template_images(str(templates)) == ["ok.PNG"]


def test_unreadable_layout_file_is_never_overwritten(tmp_path):
    path = tmp_path / "layouts.json"
    broken = '{"template1": {"fields": '
    path.write_text(broken)

    with pytest.raises(StorageError):
        LayoutStore(JsonDocument(str(path)))
    assert path.read_text() == broken


def test_invalid_positions_are_kept_on_disk(tmp_path):
    templates = str(tmp_path / "templates")
    _touch_image(templates, "one.png")
    path = tmp_path / "layouts.json"
    path.write_text(json.dumps({
        "template1": {"image": "one.png", "fields": {"Name": {"x": 50, "y": 50}, "Seal": {"x": "far"}}},
    }))

    store = LayoutStore(JsonDocument(str(path)))
    assert list(store.get_layout("template1")) == ["Name"]

    _touch_image(templates, "two.png")
    store.discover(templates)

    stored = json.loads(path.read_text())
    assert stored["template1"]["fields"]["Seal"] == {"x": "far"}
    assert stored["template2"] == {"image": "two.png"}
