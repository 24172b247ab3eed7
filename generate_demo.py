import sys
from typing import Any, Dict, List, Optional

import pandas as pd

DEMO_ROWS = [
    {"Name": "John Doe", "Course": "Data Analysis", "Email": "john.doe@example.com"},
    {"Name": "Mary Smith", "Course": "Data Analysis", "Email": "mary.smith@example.com"},
    {"Name": "Ahmed Ali", "Course": "Data Analysis", "Email": "ahmed.ali@example.com"},
]


def build_demo_roster(path: str, rows: Optional[List[Dict[str, Any]]] = None) -> str:
    """
    Write a roster spreadsheet (.xlsx or .csv, by extension) for trying the service.
    """
    df = pd.DataFrame(rows if rows is not None else DEMO_ROWS)
    if path.lower().endswith(".csv"):
        df.to_csv(path, index=False)
    else:
        df.to_excel(path, index=False)
    return path


if __name__ == "__main__":
    out = build_demo_roster(sys.argv[1] if len(sys.argv) > 1 else "students.xlsx")
    print(f"{out} created!")
