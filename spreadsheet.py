import logging
import math
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

logger = logging.getLogger("certportal.spreadsheet")

EXCEL_EXTENSIONS = (".xlsx", ".xls")
SPREADSHEET_EXTENSIONS = EXCEL_EXTENSIONS + (".csv",)


def _clean_value(value: Any) -> Any:
    """
    Turn a pandas cell into a plain Python value (None / int / float / str / datetime).
    """
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            return int(value)
        return value
    if hasattr(value, "item"):  # numpy scalars
        return _clean_value(value.item())
    return value


def read_records(path: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Read the first sheet of a spreadsheet into a list of flat row dicts.
    The first row becomes the column names. With `limit`, at most that many
    data rows are parsed.
    """
    ext = os.path.splitext(path)[1].lower()
    if ext == ".csv":
        df = pd.read_csv(path, nrows=limit)
    else:
        df = pd.read_excel(path, sheet_name=0, nrows=limit)

    columns = [str(c) for c in df.columns]
    records = []
    for row in df.itertuples(index=False, name=None):
        records.append({col: _clean_value(val) for col, val in zip(columns, row)})

    logger.info("Read %d rows and %d columns from %s", len(records), len(columns), path)
    return records


def columns_of(records: List[Dict[str, Any]]) -> List[str]:
    return list(records[0].keys()) if records else []


def preview_rows(records: List[Dict[str, Any]], limit: int = 5) -> List[Dict[str, Any]]:
    rows = []
    for record in records[:limit]:
        rows.append({
            k: (v.isoformat() if isinstance(v, datetime) else v)
            for k, v in record.items()
        })
    return rows
