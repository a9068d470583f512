"""GEDCOM record reading and date handling utilities."""

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date
import io
import logging
import re

from ged4py import GedcomReader
from ged4py.model import Pointer
from ged4py.parser import ParserError


logger = logging.getLogger(__name__)

# Month name mappings (handle abbreviations and full names)
MONTH_MAP = {
    "JAN": 1,
    "JANUARY": 1,
    "FEB": 2,
    "FEBRUARY": 2,
    "MAR": 3,
    "MARCH": 3,
    "APR": 4,
    "APRIL": 4,
    "MAY": 5,
    "JUN": 6,
    "JUNE": 6,
    "JUL": 7,
    "JULY": 7,
    "AUG": 8,
    "AUGUST": 8,
    "SEP": 9,
    "SEPT": 9,
    "SEPTEMBER": 9,
    "OCT": 10,
    "OCTOBER": 10,
    "NOV": 11,
    "NOVEMBER": 11,
    "DEC": 12,
    "DECEMBER": 12,
}

GEDCOM_MONTHS = ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC")

DATE_QUALIFIER = re.compile(
    r"^(ABT\.?|ABOUT|BEF\.?|BEFORE|AFT\.?|AFTER|EST\.?|CAL\.?|FROM|TO|BET\.?|AND|CIRCA|CA\.?|AROUND|INT):?\s*",
    re.IGNORECASE,
)


@dataclass
class GedcomRecord:
    """One GEDCOM line together with the lines nested below it."""

    tag: str
    data: str | None = None
    pointer: str | None = None
    children: list["GedcomRecord"] = field(default_factory=list)

    def find(self, tag: str) -> "GedcomRecord | None":
        for child in self.children:
            if child.tag == tag:
                return child
        return None

    def find_all(self, tag: str) -> list["GedcomRecord"]:
        return [child for child in self.children if child.tag == tag]

    def value(self, tag: str) -> str | None:
        child = self.find(tag)
        return child.data if child else None

    def nested_value(self, parent_tag: str, child_tag: str) -> str | None:
        parent = self.find(parent_tag)
        return parent.value(child_tag) if parent else None

    def text(self) -> str | None:
        """Return the data with CONT (new line) and CONC (same line) continuations applied."""
        parts = [self.data or ""]
        for child in self.children:
            if child.tag == "CONT":
                parts.append("\n" + (child.data or ""))
            elif child.tag == "CONC":
                parts.append(child.data or "")
        joined = "".join(parts)
        return joined or None

    def walk(self) -> Iterator["GedcomRecord"]:
        yield self
        for child in self.children:
            yield from child.walk()


def _is_gedcom_line(line: str) -> bool:
    """Cheap shape check for "<level> [@POINTER@] <TAG> [data]"."""
    parts = line.split(None, 2)
    if len(parts) < 2 or not parts[0].isdigit():
        return False
    tag = parts[1]
    if tag.startswith("@"):
        if len(parts) < 3:
            return False
        tag = parts[2].split(None, 1)[0]
    return tag.replace("_", "").isalnum()


def _as_text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _record_data(rec) -> str | None:
    value = rec.value
    if isinstance(value, Pointer):
        value = value.value
    elif isinstance(value, tuple):
        # ged4py returns NAME as tuple: (given, surname, suffix)
        given, surname, suffix = (tuple(value) + ("", "", ""))[:3]
        value = " ".join(p for p in (given, f"/{surname}/" if surname else "", suffix) if p)
    return _as_text(value) or None


def _to_record(rec) -> GedcomRecord:
    return GedcomRecord(
        tag=rec.tag.upper(),
        data=_record_data(rec),
        pointer=(_as_text(rec.xref_id) or "").strip() or None,
        children=[_to_record(sub) for sub in rec.sub_records or []],
    )


def parse_gedcom_records(text: str) -> list[GedcomRecord]:
    """
    Parse GEDCOM text into a forest of records using ged4py.

    Lines that are not shaped like "<level> [@POINTER@] <TAG> [data]" are
    dropped before parsing. Accepts CRLF or LF line endings and a UTF-8 BOM.
    Dates come back in ged4py's normalized text form.
    """
    lines = []
    for number, line in enumerate(text.lstrip("\ufeff").splitlines(), start=1):
        if not line.strip():
            continue
        if not _is_gedcom_line(line):
            logger.debug("Skipping unparseable GEDCOM line %d: %r", number, line)
            continue
        lines.append(line.strip())
    if not lines:
        return []

    raw = io.BytesIO(("\n".join(lines) + "\n").encode("utf-8"))
    try:
        reader = GedcomReader(raw, encoding="utf-8")
        return [_to_record(rec) for rec in reader.records0()]
    except ParserError as e:
        raise ValueError(f"Invalid GEDCOM: {e}") from e


def unwrap_header(records: list[GedcomRecord]) -> list[GedcomRecord]:
    """If the whole document is nested under a single HEAD record, descend into it."""
    if len(records) == 1 and records[0].tag == "HEAD":
        return records[0].children
    return records


def parse_date_string(date_str: str | None) -> str | None:
    """
    Parse a free-form date string into ISO format (YYYY-MM-DD).
    Returns None if the date cannot be parsed; partial dates default the
    missing month/day to 01.

    Handles formats like:
    - "25 NOV 1954", "08 March 1893", "11 Aug. 1968", "02 May1838"
    - "NOV 1954", "May, 1837"
    - "1698", "ABT 1905", "(1789?)"
    - "1839-08-29", "1746-00-00"
    - "01-27-1920", "05/15/1923", "04 05 1911"
    - "April 17, 1850", "SEPT. 17,1910"
    """
    if not date_str:
        return None

    s = date_str.strip().strip("()").rstrip("?")
    s = DATE_QUALIFIER.sub("", s).strip()
    # "BET 1900 AND 1910" keeps the first bound
    s = re.split(r"\s+(?:AND|TO)\s+", s, maxsplit=1, flags=re.IGNORECASE)[0].strip()
    if not s:
        return None

    def iso(year: int, month: int | None, day: int | None) -> str | None:
        month = month or 1
        day = day or 1
        if 1 <= month <= 12 and 1 <= day <= 31:
            return f"{year:04d}-{month:02d}-{day:02d}"
        return None

    def month_number(name: str) -> int | None:
        return MONTH_MAP.get(name.upper().rstrip("."))

    match = re.match(r"^(\d{4})-(\d{2})-(\d{2})$", s)
    if match:
        return iso(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    match = re.match(r"^(\d{4})$", s)
    if match:
        return iso(int(match.group(1)), None, None)

    match = re.match(r"^(\d{1,2})\s+([A-Za-z]+)\.?\s*(\d{4})$", s)
    if match:
        month = month_number(match.group(2))
        if month:
            return iso(int(match.group(3)), month, int(match.group(1)))

    match = re.match(r"^([A-Za-z]+)\.?,?\s*(\d{4})$", s)
    if match:
        month = month_number(match.group(1))
        if month:
            return iso(int(match.group(2)), month, None)

    # US ordering: MM-DD-YYYY, MM/DD/YYYY, MM DD YYYY
    match = re.match(r"^(\d{1,2})[-/\s]+(\d{1,2})[-/\s]+(\d{4})$", s)
    if match:
        return iso(int(match.group(3)), int(match.group(1)), int(match.group(2)))

    match = re.match(r"^([A-Za-z]+)\.?\s*(\d{1,2}),?\s*(\d{4})$", s)
    if match:
        month = month_number(match.group(1))
        if month:
            return iso(int(match.group(3)), month, int(match.group(2)))

    return None


def extract_year(date_str: str | None) -> int | None:
    """Best-effort year of a free-form date; falls back to the first 4-digit number."""
    iso = parse_date_string(date_str)
    if iso:
        return int(iso[:4])
    if date_str:
        match = re.search(r"\b(\d{4})\b", date_str)
        if match:
            return int(match.group(1))
    return None


def format_gedcom_date(value: date) -> str:
    """Format a calendar date the GEDCOM way, e.g. "17 OCT 2026"."""
    return f"{value.day} {GEDCOM_MONTHS[value.month - 1]} {value.year}"
