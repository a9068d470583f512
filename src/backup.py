"""JSON backup export and import of the whole database."""

from dataclasses import dataclass
from datetime import datetime
import json
import logging

from database import FamilyStore
from models import (
    family_from_dict,
    family_to_dict,
    person_from_dict,
    person_to_dict,
    tree_from_dict,
    tree_to_dict,
    utcnow,
)


logger = logging.getLogger(__name__)

BACKUP_VERSION = 1


class BackupFormatError(ValueError):
    """The data is not a backup this application can read."""


@dataclass
class RestoreResult:
    persons: int
    families: int
    trees: int


def export_backup(store: FamilyStore, now: datetime | None = None) -> dict:
    """
    Snapshot persons (photos as base64, no thumbnails), families and trees.

    Soft-deleted entities are left out. The export time is recorded as the
    last backup date in the settings.
    """
    now = now or utcnow()
    data = {
        "version": BACKUP_VERSION,
        "exportDate": now.isoformat(),
        "persons": [person_to_dict(p) for p in store.get_all_persons()],
        "families": [family_to_dict(f) for f in store.get_all_families()],
        "trees": [tree_to_dict(t) for t in store.get_all_trees()],
    }
    store.update_settings(last_backup_date=now)
    logger.info(
        "Exported backup with %d persons, %d families, %d trees",
        len(data["persons"]),
        len(data["families"]),
        len(data["trees"]),
    )
    return data


def dumps_backup(data: dict) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def loads_backup(text: str) -> dict:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise BackupFormatError(f"Backup is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise BackupFormatError("Backup must be a JSON object")
    return data


def _records(data: dict, key: str, from_dict, required: bool = False) -> list:
    items = data.get(key)
    if items is None and not required:
        return []
    if not isinstance(items, list):
        raise BackupFormatError(f"Backup field {key!r} must be a list")
    try:
        return [from_dict(item) for item in items]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise BackupFormatError(f"Invalid entry in {key!r}: {e}") from e


def import_backup(store: FamilyStore, data: dict) -> RestoreResult:
    """
    Restore a backup, overwriting entities with the same ids.

    Everything is validated before the first write; the writes themselves
    happen in one transaction.
    """
    if not isinstance(data, dict) or not data.get("version") or data.get("persons") is None:
        raise BackupFormatError("Invalid backup file format")
    version = data["version"]
    if not isinstance(version, int) or version > BACKUP_VERSION:
        raise BackupFormatError(f"Unsupported backup version {version!r}")

    persons = _records(data, "persons", person_from_dict, required=True)
    families = _records(data, "families", family_from_dict)
    trees = _records(data, "trees", tree_from_dict)
    for family in families:
        if set(family.spouse_ids) & set(family.child_ids):
            raise BackupFormatError(f"Family {family.id} lists a spouse as its own child")
        if family.spouse1_id and family.spouse1_id == family.spouse2_id:
            raise BackupFormatError(f"Family {family.id} lists the same person as both spouses")

    with store.transaction():
        for person in persons:
            store.put_person(person)
        for family in families:
            store.put_family(family)
        for tree in trees:
            store.put_tree(tree)

    logger.info("Restored %d persons, %d families, %d trees", len(persons), len(families), len(trees))
    return RestoreResult(persons=len(persons), families=len(families), trees=len(trees))
