import copy
import logging
import os
import re
import threading
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from errors import StorageError
from persistence import JsonDocument

logger = logging.getLogger("certportal.layouts")

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif")
DEFAULT_FONT_SIZE = 32

_TEMPLATE_ID = re.compile(r"^template(\d+)$")


# ----------- Data models -----------

class FieldPosition(BaseModel):
    x: float = Field(ge=0, le=100)                       # percent of canvas width
    y: float = Field(ge=0, le=100)                       # percent of canvas height
    align: Literal["left", "center", "right"] = "center"
    fontSize: int = Field(default=DEFAULT_FONT_SIZE, gt=0)


Layout = Dict[str, FieldPosition]


def _template_index(template_id: str) -> Optional[int]:
    match = _TEMPLATE_ID.match(template_id)
    return int(match.group(1)) if match else None


def list_template_images(templates_dir: str) -> List[str]:
    """
    Non-empty image files in the templates folder, sorted by name.
    """
    if not os.path.isdir(templates_dir):
        return []
    files = []
    for name in sorted(os.listdir(templates_dir)):
        if not name.lower().endswith(IMAGE_EXTENSIONS):
            continue
        path = os.path.join(templates_dir, name)
        if os.path.isfile(path) and os.path.getsize(path) > 0:
            files.append(name)
    return files


# ----------- Store -----------

class LayoutStore:
    """
    Field layouts and image assignments, keyed by template id.

    Document shape: {"template1": {"image": "gold.png", "fields": {"Name": {...}}}}
    """

    def __init__(self, document: JsonDocument):
        self._document = document
        self._lock = threading.Lock()
        self._configs: Dict[str, Dict[str, Any]] = document.load({})
        if not isinstance(self._configs, dict):
            raise StorageError(f"{document.path} does not hold template layouts")
        logger.info("Loaded layouts for %d template(s)", len(self._configs))

    def _commit(self, configs: Dict[str, Dict[str, Any]]) -> None:
        # Caller holds the lock; memory only changes once the file is written
        self._document.save(configs)
        self._configs = configs

    def get_layout(self, template_id: str) -> Optional[Layout]:
        """
        Parsed field positions, or None when no layout was ever saved for this template.
        """
        config = self._configs.get(template_id)
        if not config or config.get("fields") is None:
            return None

        layout = {}
        for name, raw in config["fields"].items():
            try:
                layout[name] = FieldPosition.model_validate(raw)
            except ValidationError as e:
                logger.warning("Ignoring invalid position for %s.%s: %s", template_id, name, e)
        return layout

    def raw_fields(self, template_id: str) -> Dict[str, Any]:
        return copy.deepcopy(self._configs.get(template_id, {}).get("fields") or {})

    def image_for(self, template_id: str) -> Optional[str]:
        return self._configs.get(template_id, {}).get("image")

    def save_layout(self, template_id: str, fields: Layout) -> None:
        """
        Replace the whole field set for a template and persist immediately.
        """
        with self._lock:
            configs = copy.deepcopy(self._configs)
            entry = configs.setdefault(template_id, {})
            entry["fields"] = {name: pos.model_dump() for name, pos in fields.items()}
            self._commit(configs)
        logger.info("Saved %d field position(s) for %s", len(fields), template_id)

    def discover(self, templates_dir: str) -> Dict[str, str]:
        """
        Give every template image a stable id and return {template_id: image} for
        the images currently on disk, ordered by id.

        Ids are kept in the layout document, so renaming or adding files never
        shifts an existing template to a different id.
        """
        files = list_template_images(templates_dir)

        with self._lock:
            configs = copy.deepcopy(self._configs)
            assigned = {cfg["image"]: tid for tid, cfg in configs.items() if cfg.get("image")}
            changed = False

            # Layouts saved before the image was discovered follow folder order
            for tid, cfg in configs.items():
                index = _template_index(tid)
                if cfg.get("image") or index is None or index > len(files):
                    continue
                name = files[index - 1]
                if name not in assigned:
                    cfg["image"] = name
                    assigned[name] = tid
                    changed = True

            for name in files:
                if name in assigned:
                    continue
                used = {_template_index(tid) for tid in configs}
                index = 1
                while index in used:
                    index += 1
                tid = f"template{index}"
                configs[tid] = {"image": name}
                assigned[name] = tid
                changed = True
                logger.info("Discovered template %s: %s", tid, name)

            if changed:
                self._commit(configs)

        present = {tid: name for name, tid in assigned.items() if name in files}
        return dict(sorted(present.items(), key=lambda item: (_template_index(item[0]) or 0, item[0])))
