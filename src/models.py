"""Data classes for family tree entities."""

import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid


MALE = "male"
FEMALE = "female"
UNKNOWN = "unknown"
SEXES = (MALE, FEMALE, UNKNOWN)

MARRIED = "married"
PARTNERSHIP = "partnership"
FAMILY_TYPES = (MARRIED, PARTNERSHIP, UNKNOWN)

VERTICAL = "vertical"
HORIZONTAL = "horizontal"
ORIENTATIONS = (VERTICAL, HORIZONTAL)

THEMES = ("light", "dark", "system")

SETTINGS_ID = "user-settings"


def new_id() -> str:
    return str(uuid.uuid4())


def new_revision() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DatePlace:
    # Free-form: "1985", "Mar 1985", "15 MAR 1985"
    date: str | None = None
    place: str | None = None


def date_place(date: str | None, place: str | None) -> DatePlace | None:
    """Build an event only when it carries a date or a place."""
    if date or place:
        return DatePlace(date=date or None, place=place or None)
    return None


@dataclass
class Person:
    id: str
    given_names: str
    surname: str = ""
    sex: str = UNKNOWN
    birth_name: str | None = None  # maiden name
    birth: DatePlace | None = None
    death: DatePlace | None = None
    photo: bytes | None = None
    photo_thumbnail: bytes | None = None
    notes: str | None = None
    rev: str = field(default_factory=new_revision)
    deleted: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.given_names, self.surname) if p) or "Unknown"


@dataclass
class Family:
    id: str
    spouse1_id: str | None = None
    spouse2_id: str | None = None
    child_ids: list[str] = field(default_factory=list)  # birth order
    marriage: DatePlace | None = None
    divorce: DatePlace | None = None
    union_type: str = UNKNOWN
    rev: str = field(default_factory=new_revision)
    deleted: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def spouse_ids(self) -> list[str]:
        return [s for s in (self.spouse1_id, self.spouse2_id) if s]

    def has_spouse(self, person_id: str) -> bool:
        return person_id in self.spouse_ids

    def other_spouse(self, person_id: str) -> str | None:
        if self.spouse1_id == person_id:
            return self.spouse2_id
        if self.spouse2_id == person_id:
            return self.spouse1_id
        return None

    def has_spouses(self, a: str | None, b: str | None) -> bool:
        """Compare the spouse pair as an unordered set."""
        return {self.spouse1_id, self.spouse2_id} == {a, b}


@dataclass
class FamilyTree:
    id: str
    name: str
    description: str | None = None
    root_person_id: str | None = None
    rev: str = field(default_factory=new_revision)
    deleted: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Settings:
    id: str = SETTINGS_ID
    layout_orientation: str = VERTICAL
    theme: str = "system"
    has_seen_install_prompt: bool = False
    last_backup_date: datetime | None = None
    last_viewed_tree_id: str | None = None
    last_viewed_person_id: str | None = None


def check_choice(value: str, choices: tuple[str, ...], what: str) -> str:
    if value not in choices:
        raise ValueError(f"Invalid {what} {value!r}, expected one of {', '.join(choices)}")
    return value


# ============================================================================
# Dict (JSON) form, shared by backups and the render adapter
# ============================================================================


def _encode_time(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _decode_time(value: str | None) -> datetime | None:
    if not value:
        return None
    # Accept the trailing "Z" written by JavaScript exports
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _encode_event(event: DatePlace | None) -> dict | None:
    if event is None:
        return None
    return {k: v for k, v in (("date", event.date), ("place", event.place)) if v}


def _decode_event(data: dict | None) -> DatePlace | None:
    if not data:
        return None
    return date_place(data.get("date"), data.get("place"))


def _encode_blob(blob: bytes | None) -> str | None:
    return base64.b64encode(blob).decode("ascii") if blob else None


def _decode_blob(text: str | None) -> bytes | None:
    return base64.b64decode(text) if text else None


def person_to_dict(person: Person, include_photos: bool = True) -> dict:
    data = {
        "id": person.id,
        "_rev": person.rev,
        "_deleted": person.deleted,
        "createdAt": _encode_time(person.created_at),
        "updatedAt": _encode_time(person.updated_at),
        "givenNames": person.given_names,
        "surname": person.surname,
        "birthName": person.birth_name,
        "sex": person.sex,
        "birth": _encode_event(person.birth),
        "death": _encode_event(person.death),
        "notes": person.notes,
    }
    if include_photos:
        data["photo"] = _encode_blob(person.photo)
    return data


def person_from_dict(data: dict) -> Person:
    sex = data.get("sex") or UNKNOWN
    # Older backups used single-letter codes
    sex = {"M": MALE, "F": FEMALE, "U": UNKNOWN}.get(sex, sex)
    return Person(
        id=data["id"],
        given_names=data.get("givenNames") or "",
        surname=data.get("surname") or "",
        sex=sex if sex in SEXES else UNKNOWN,
        birth_name=data.get("birthName"),
        birth=_decode_event(data.get("birth")),
        death=_decode_event(data.get("death")),
        photo=_decode_blob(data.get("photo")),
        photo_thumbnail=_decode_blob(data.get("photoThumbnail")),
        notes=data.get("notes"),
        rev=data.get("_rev") or new_revision(),
        deleted=bool(data.get("_deleted")),
        created_at=_decode_time(data.get("createdAt")) or utcnow(),
        updated_at=_decode_time(data.get("updatedAt")) or utcnow(),
    )


def family_to_dict(family: Family) -> dict:
    return {
        "id": family.id,
        "_rev": family.rev,
        "_deleted": family.deleted,
        "createdAt": _encode_time(family.created_at),
        "updatedAt": _encode_time(family.updated_at),
        "spouse1Id": family.spouse1_id,
        "spouse2Id": family.spouse2_id,
        "childIds": list(family.child_ids),
        "marriageDate": _encode_event(family.marriage),
        "divorceDate": _encode_event(family.divorce),
        "type": family.union_type,
    }


def family_from_dict(data: dict) -> Family:
    union_type = data.get("type") or UNKNOWN
    return Family(
        id=data["id"],
        spouse1_id=data.get("spouse1Id"),
        spouse2_id=data.get("spouse2Id"),
        child_ids=list(data.get("childIds") or []),
        marriage=_decode_event(data.get("marriageDate")),
        divorce=_decode_event(data.get("divorceDate")),
        union_type=union_type if union_type in FAMILY_TYPES else UNKNOWN,
        rev=data.get("_rev") or new_revision(),
        deleted=bool(data.get("_deleted")),
        created_at=_decode_time(data.get("createdAt")) or utcnow(),
        updated_at=_decode_time(data.get("updatedAt")) or utcnow(),
    )


def tree_to_dict(tree: FamilyTree) -> dict:
    return {
        "id": tree.id,
        "_rev": tree.rev,
        "_deleted": tree.deleted,
        "createdAt": _encode_time(tree.created_at),
        "updatedAt": _encode_time(tree.updated_at),
        "name": tree.name,
        "description": tree.description,
        "rootPersonId": tree.root_person_id,
    }


def tree_from_dict(data: dict) -> FamilyTree:
    return FamilyTree(
        id=data["id"],
        name=data.get("name") or "",
        description=data.get("description"),
        root_person_id=data.get("rootPersonId"),
        rev=data.get("_rev") or new_revision(),
        deleted=bool(data.get("_deleted")),
        created_at=_decode_time(data.get("createdAt")) or utcnow(),
        updated_at=_decode_time(data.get("updatedAt")) or utcnow(),
    )
