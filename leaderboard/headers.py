"""Column header resolution for operator-authored CSV files.

Headers are matched against a fixed alias table so that localized or loosely
named columns ("Nama Lengkap", "Chip EPC", "Finish Time") map onto the
canonical fields the indexes read.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

CSV_KINDS = ("master", "start", "finish", "checkpoint")

HEADER_ALIASES: dict[str, list[str]] = {
    "epc": ["epc", "uid", "tag", "rfid", "chip epc", "epc code"],
    "bib": ["bib", "no bib", "bib number", "race bib", "nomor bib", "no. bib"],
    "name": ["nama lengkap", "full name", "name", "nama", "participant name"],
    "gender": ["jenis kelamin", "gender", "sex", "jk", "kelamin"],
    "category": ["kategori", "category", "kelas", "class"],
    "times": [
        "times",
        "time",
        "timestamp",
        "start time",
        "finish time",
        "jam",
        "checkpoint time",
        "cp time",
    ],
}

_WHITESPACE_RE = re.compile(r"\s+")


class HeaderValidationError(ValueError):
    def __init__(self, kind: str, missing_fields: list[str], headers: list[str]):
        self.kind = kind
        self.missing_fields = missing_fields
        self.headers = headers
        super().__init__(self._build_message())

    def _build_message(self) -> str:
        found = ", ".join(h for h in self.headers if h) or "(no headers)"
        if self.kind == "master":
            wanted = "one of " + ", ".join(f"'{field}'" for field in self.missing_fields)
        else:
            wanted = ", ".join(f"'{field}'" for field in self.missing_fields)
        accepted = "; ".join(
            f"{field}: {', '.join(HEADER_ALIASES[field])}" for field in self.missing_fields
        )
        return (
            f"CSV '{self.kind}' is missing required column {wanted}. "
            f"Columns found: {found}. Accepted headers: {accepted}."
        )


@dataclass(frozen=True)
class HeaderCheck:
    valid: bool
    missing_fields: list[str]


def normalize_header(value: str | None) -> str:
    return _WHITESPACE_RE.sub(" ", str(value or "").lower()).strip()


def _matches(header: str, alias: str) -> bool:
    return header == alias or alias in header


def header_has_field(headers: list[str], field: str) -> bool:
    aliases = [normalize_header(alias) for alias in HEADER_ALIASES[field]]
    normalized = [normalize_header(header) for header in headers]
    return any(_matches(header, alias) for header in normalized for alias in aliases)


def validate_headers(headers: list[str], kind: str) -> HeaderCheck:
    if kind not in CSV_KINDS:
        raise ValueError(f"Unknown CSV kind '{kind}'")
    if kind == "master":
        identity = ["epc", "bib", "name"]
        if any(header_has_field(headers, field) for field in identity):
            return HeaderCheck(True, [])
        return HeaderCheck(False, identity)
    missing = [field for field in ("epc", "times") if not header_has_field(headers, field)]
    return HeaderCheck(not missing, missing)


def require_headers(headers: list[str], kind: str) -> None:
    check = validate_headers(headers, kind)
    if not check.valid:
        raise HeaderValidationError(kind, check.missing_fields, list(headers))


def resolve_columns(headers: list[str]) -> dict[str, int]:
    """Map each canonical field to the index of its column.

    An exact alias match wins over a substring match; otherwise the leftmost
    matching column is used. Fields with no matching column are absent.
    """
    normalized = [normalize_header(header) for header in headers]
    columns: dict[str, int] = {}
    for field, aliases in HEADER_ALIASES.items():
        exact = [i for i, header in enumerate(normalized) if header in aliases]
        if exact:
            columns[field] = exact[0]
            continue
        partial = [
            i for i, header in enumerate(normalized) if any(alias in header for alias in aliases)
        ]
        if partial:
            columns[field] = partial[0]
    return columns
