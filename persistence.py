import json
import logging
import os
from typing import Any

from errors import StorageError

logger = logging.getLogger("certportal.persistence")


class JsonDocument:
    """
    A single JSON file that is always read and written as a whole.
    """

    def __init__(self, path: str):
        self.path = path

    def load(self, default: Any) -> Any:
        """
        Parsed content, or `default` when the file does not exist yet.
        A file that exists but cannot be read raises StorageError, so a later
        save never replaces data that was only unreadable.
        """
        if not os.path.exists(self.path):
            return default
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Could not read %s: %s", self.path, e)
            raise StorageError(f"Could not read {self.path}: {e}") from e

    def save(self, data: Any) -> None:
        # Write next to the target, then swap it in
        temp_path = self.path + ".tmp"
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(temp_path, self.path)
