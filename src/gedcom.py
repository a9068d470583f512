"""GEDCOM import and export for persons and families."""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
import logging
import re

from database import FamilyStore
from models import (
    FEMALE,
    MALE,
    MARRIED,
    UNKNOWN,
    DatePlace,
    Family,
    Person,
    date_place,
    new_id,
    utcnow,
)
from parsing import GedcomRecord, format_gedcom_date, parse_gedcom_records, unwrap_header


logger = logging.getLogger(__name__)

SOURCE_NAME = "KINMAP"
SOURCE_VERSION = "1.0"
GEDCOM_VERSION = "5.5.1"

# "Given Names /Surname/ suffix"
NAME_PATTERN = re.compile(r"^([^/]*)(?:/([^/]*)/?)?(.*)$")

SEX_CODES = {"M": MALE, "F": FEMALE}
SEX_TAGS = {MALE: "M", FEMALE: "F"}


@dataclass
class ImportResult:
    persons: int
    families: int


class PointerMap:
    """
    Maps GEDCOM pointers (e.g. "@I1@") to freshly minted ids.

    One map is created per import so pointers never leak between documents.
    """

    def __init__(self, id_factory: Callable[[], str] = new_id):
        self._id_factory = id_factory
        self._ids: dict[str, str] = {}

    def resolve(self, pointer: str) -> str:
        if pointer not in self._ids:
            self._ids[pointer] = self._id_factory()
        return self._ids[pointer]

    def __contains__(self, pointer: str) -> bool:
        return pointer in self._ids

    def __len__(self) -> int:
        return len(self._ids)


# ============================================================================
# Import
# ============================================================================


def collect_records(records: Iterable[GedcomRecord]) -> tuple[list[GedcomRecord], list[GedcomRecord]]:
    """Collect INDI and FAM records that carry a pointer, at any nesting depth."""
    individuals: list[GedcomRecord] = []
    families: list[GedcomRecord] = []
    for root in records:
        for record in root.walk():
            if not record.pointer:
                continue
            if record.tag == "INDI":
                individuals.append(record)
            elif record.tag == "FAM":
                families.append(record)
    return individuals, families


def parse_name(record: GedcomRecord) -> tuple[str, str]:
    """Extract (given names, surname) from an INDI record, preferring GIVN/SURN."""
    given = ""
    surname = ""
    name = record.find("NAME")
    if name is None:
        return ("Unknown", "")

    if name.data:
        match = NAME_PATTERN.match(name.data)
        if match:
            given = " ".join(p for p in (match.group(1).strip(), match.group(3).strip()) if p)
            surname = (match.group(2) or "").strip()

    givn = name.value("GIVN")
    surn = name.value("SURN")
    if givn:
        given = givn.strip()
    if surn:
        surname = surn.strip()

    return (given or "Unknown", surname)


def _event(record: GedcomRecord, tag: str) -> DatePlace | None:
    return date_place(record.nested_value(tag, "DATE"), record.nested_value(tag, "PLAC"))


def record_to_person(record: GedcomRecord, pointers: PointerMap) -> Person:
    given_names, surname = parse_name(record)
    sex = SEX_CODES.get((record.value("SEX") or "").strip().upper(), UNKNOWN)
    note = record.find("NOTE")
    now = utcnow()
    return Person(
        id=pointers.resolve(record.pointer),
        given_names=given_names,
        surname=surname,
        sex=sex,
        birth=_event(record, "BIRT"),
        death=_event(record, "DEAT"),
        notes=note.text() if note else None,
        created_at=now,
        updated_at=now,
    )


def record_to_family(record: GedcomRecord, pointers: PointerMap) -> Family:
    husband = record.value("HUSB")
    wife = record.value("WIFE")
    spouse1_id = pointers.resolve(husband.strip()) if husband else None
    spouse2_id = pointers.resolve(wife.strip()) if wife else None
    if spouse2_id is not None and spouse2_id == spouse1_id:
        logger.warning("Family %s lists the same person as husband and wife; ignoring WIFE", record.pointer)
        spouse2_id = None

    child_ids: list[str] = []
    for child in record.find_all("CHIL"):
        if not child.data:
            continue
        child_id = pointers.resolve(child.data.strip())
        if child_id in (spouse1_id, spouse2_id):
            logger.warning("Family %s lists a spouse as its own child; ignoring", record.pointer)
            continue
        if child_id not in child_ids:
            child_ids.append(child_id)

    now = utcnow()
    return Family(
        id=pointers.resolve(record.pointer),
        spouse1_id=spouse1_id,
        spouse2_id=spouse2_id,
        child_ids=child_ids,
        marriage=_event(record, "MARR"),
        divorce=_event(record, "DIV"),
        union_type=MARRIED if record.find("MARR") else UNKNOWN,
        created_at=now,
        updated_at=now,
    )


def read_gedcom(text: str, pointers: PointerMap | None = None) -> tuple[list[Person], list[Family]]:
    """Convert GEDCOM text into persons and families without touching storage."""
    pointers = pointers if pointers is not None else PointerMap()
    records = unwrap_header(parse_gedcom_records(text))
    individual_records, family_records = collect_records(records)

    persons = [record_to_person(r, pointers) for r in individual_records]
    families = [record_to_family(r, pointers) for r in family_records]
    return persons, families


def import_gedcom(store: FamilyStore, text: str) -> ImportResult:
    """Parse GEDCOM text and persist every person and family in one transaction."""
    persons, families = read_gedcom(text, PointerMap())

    with store.transaction():
        for person in persons:
            store.put_person(person)
        for family in families:
            store.put_family(family)

    logger.info("Imported %d persons and %d families from GEDCOM", len(persons), len(families))
    return ImportResult(persons=len(persons), families=len(families))


# ============================================================================
# Export
# ============================================================================


def _event_lines(tag: str, event: DatePlace | None, always: bool = False) -> list[str]:
    if event is None or not (event.date or event.place):
        return [f"1 {tag}"] if always else []
    lines = [f"1 {tag}"]
    if event.date:
        lines.append(f"2 DATE {event.date}")
    if event.place:
        lines.append(f"2 PLAC {event.place}")
    return lines


def _note_lines(notes: str) -> list[str]:
    first, *rest = notes.splitlines() or [""]
    return [f"1 NOTE {first}".rstrip()] + [f"2 CONT {line}".rstrip() for line in rest]


def export_gedcom(
    persons: Iterable[Person], families: Iterable[Family], export_date: date | None = None
) -> str:
    """Serialize persons and families as a GEDCOM 5.5.1 document."""
    persons = [p for p in persons if not p.deleted]
    families = [f for f in families if not f.deleted]

    id_to_pointer: dict[str, str] = {}
    for number, person in enumerate(persons, start=1):
        id_to_pointer[person.id] = f"@I{number}@"
    for number, family in enumerate(families, start=1):
        id_to_pointer[family.id] = f"@F{number}@"

    # person id -> FAMS / FAMC back-references, built once
    spouse_of: dict[str, list[str]] = {}
    child_of: dict[str, list[str]] = {}
    for family in families:
        pointer = id_to_pointer[family.id]
        for spouse_id in family.spouse_ids:
            spouse_of.setdefault(spouse_id, []).append(pointer)
        for child_id in family.child_ids:
            child_of.setdefault(child_id, []).append(pointer)

    lines = [
        "0 HEAD",
        f"1 SOUR {SOURCE_NAME}",
        f"2 VERS {SOURCE_VERSION}",
        "1 GEDC",
        f"2 VERS {GEDCOM_VERSION}",
        "2 FORM LINEAGE-LINKED",
        "1 CHAR UTF-8",
        f"1 DATE {format_gedcom_date(export_date or date.today())}",
    ]

    for person in persons:
        lines.append(f"0 {id_to_pointer[person.id]} INDI")
        lines.append(f"1 NAME {person.given_names} /{person.surname}/")
        if person.given_names:
            lines.append(f"2 GIVN {person.given_names}")
        if person.surname:
            lines.append(f"2 SURN {person.surname}")
        if person.sex in SEX_TAGS:
            lines.append(f"1 SEX {SEX_TAGS[person.sex]}")
        lines.extend(_event_lines("BIRT", person.birth))
        lines.extend(_event_lines("DEAT", person.death))
        if person.notes:
            lines.extend(_note_lines(person.notes))
        lines.extend(f"1 FAMS {pointer}" for pointer in spouse_of.get(person.id, []))
        lines.extend(f"1 FAMC {pointer}" for pointer in child_of.get(person.id, []))

    for family in families:
        lines.append(f"0 {id_to_pointer[family.id]} FAM")
        if family.spouse1_id and family.spouse1_id in id_to_pointer:
            lines.append(f"1 HUSB {id_to_pointer[family.spouse1_id]}")
        if family.spouse2_id and family.spouse2_id in id_to_pointer:
            lines.append(f"1 WIFE {id_to_pointer[family.spouse2_id]}")
        if family.union_type == MARRIED or family.marriage:
            lines.extend(_event_lines("MARR", family.marriage, always=True))
        lines.extend(_event_lines("DIV", family.divorce))
        for child_id in family.child_ids:
            if child_id in id_to_pointer:
                lines.append(f"1 CHIL {id_to_pointer[child_id]}")

    lines.append("0 TRLR")
    return "\n".join(lines) + "\n"


def export_database(store: FamilyStore, export_date: date | None = None) -> str:
    persons = store.get_all_persons()
    families = store.get_all_families()
    logger.info("Exporting %d persons and %d families to GEDCOM", len(persons), len(families))
    return export_gedcom(persons, families, export_date)
