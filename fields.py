import math
import re
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

MAX_FIELD_LENGTH = 100

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9@.\-]")


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value == ""


def display_value(value: Any) -> str:
    """
    Coerce a spreadsheet cell to the text shown on a certificate.
    """
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        if value.time() == time(0, 0):
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def map_fields(column_mapping: Dict[str, str], record: Dict[str, Any]) -> Dict[str, str]:
    """
    Resolve template field -> display text for one row.
    Missing or blank cells give an empty string; long values are cut to 100 characters.
    """
    mapped = {}
    for template_field, column in column_mapping.items():
        value = record.get(column)
        if is_blank(value):
            mapped[template_field] = ""
        else:
            mapped[template_field] = display_value(value)[:MAX_FIELD_LENGTH]
    return mapped


def find_email_column(column_mapping: Dict[str, str], records: List[Dict[str, Any]]) -> Optional[str]:
    for template_field, column in column_mapping.items():
        if "email" in template_field.lower() or "email" in str(column).lower():
            return column

    first_row = records[0] if records else {}
    for column in first_row:
        if "email" in column.lower():
            return column

    return None


def sanitize_email_for_filename(email: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", email)
