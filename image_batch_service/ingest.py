"""CSV ingestion: uploaded batch files to ordered row maps."""

from __future__ import annotations

import csv
import io
from typing import Dict, List


def parse_csv_rows(content: bytes, encoding: str = "utf-8-sig") -> List[Dict[str, str]]:
    """
    Parse a CSV document with a header row into one dict per data row.

    Header and cell whitespace is trimmed; fully blank rows are skipped.

    Raises:
        ValueError: when the content is not text in `encoding` or has no header.
    """
    try:
        text = content.decode(encoding)
    except UnicodeDecodeError as exc:
        raise ValueError(f"CSV upload is not valid {encoding} text") from exc

    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise ValueError("CSV upload has no header row")
    reader.fieldnames = [name.strip() for name in reader.fieldnames]

    rows: List[Dict[str, str]] = []
    for raw in reader:
        row = {key: (value or "").strip() for key, value in raw.items() if key is not None}
        if any(row.values()):
            rows.append(row)
    return rows
