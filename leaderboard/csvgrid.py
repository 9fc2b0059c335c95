from __future__ import annotations

import csv
import io

_DELIMITERS = ",;\t"


def _sniff_delimiter(text: str) -> str:
    first_line = text.split("\n", 1)[0]
    try:
        return csv.Sniffer().sniff(first_line, delimiters=_DELIMITERS).delimiter
    except csv.Error:
        return ","


def parse_csv_grid(text: str) -> list[list[str]]:
    """Read CSV text into a rectangular grid of strings, header row first."""
    text = (text or "").lstrip("\ufeff")
    if not text.strip():
        return []
    reader = csv.reader(io.StringIO(text), delimiter=_sniff_delimiter(text))
    rows = [[cell.strip() for cell in row] for row in reader]
    while rows and not any(rows[-1]):
        rows.pop()
    if not rows:
        return []
    width = max(len(row) for row in rows)
    return [row + [""] * (width - len(row)) for row in rows]


def count_data_rows(grid: list[list[str]]) -> int:
    return sum(1 for row in grid[1:] if any(cell for cell in row))
