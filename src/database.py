"""SQLite storage for persons, families, trees and settings."""

from collections.abc import Callable, Iterable
from contextlib import contextmanager
from dataclasses import fields
from datetime import datetime
import logging
from pathlib import Path
import sqlite3

from models import (
    FAMILY_TYPES,
    ORIENTATIONS,
    SETTINGS_ID,
    SEXES,
    THEMES,
    UNKNOWN,
    DatePlace,
    Family,
    FamilyTree,
    Person,
    Settings,
    check_choice,
    date_place,
    new_id,
    new_revision,
    utcnow,
)


logger = logging.getLogger(__name__)

PERSONS = "persons"
FAMILIES = "families"
TREES = "trees"
SETTINGS = "settings"

PERSON_UPDATE_FIELDS = {
    "given_names",
    "surname",
    "birth_name",
    "sex",
    "notes",
    "birth_date",
    "birth_place",
    "death_date",
    "death_place",
}
TREE_UPDATE_FIELDS = {"name", "description", "root_person_id"}


class NotFoundError(LookupError):
    """An update or delete targeted an id that does not exist."""


def create_database(db_path: Path | str) -> sqlite3.Connection:
    """Create SQLite database with person, family, tree and settings tables."""
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row

    conn.executescript("""
        CREATE TABLE IF NOT EXISTS person (
            id TEXT PRIMARY KEY,
            rev TEXT NOT NULL,
            deleted INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            given_names TEXT NOT NULL,
            surname TEXT NOT NULL DEFAULT '',
            birth_name TEXT,
            sex TEXT NOT NULL,
            birth_date TEXT,
            birth_place TEXT,
            death_date TEXT,
            death_place TEXT,
            photo BLOB,
            photo_thumbnail BLOB,
            notes TEXT
        );

        CREATE TABLE IF NOT EXISTS family (
            id TEXT PRIMARY KEY,
            rev TEXT NOT NULL,
            deleted INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            spouse1_id TEXT,
            spouse2_id TEXT,
            marriage_date TEXT,
            marriage_place TEXT,
            divorce_date TEXT,
            divorce_place TEXT,
            union_type TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS family_child (
            family_id TEXT NOT NULL,
            child_id TEXT NOT NULL,
            position INTEGER NOT NULL,
            PRIMARY KEY (family_id, position)
        );

        CREATE INDEX IF NOT EXISTS family_child_child ON family_child (child_id);

        CREATE TABLE IF NOT EXISTS tree (
            id TEXT PRIMARY KEY,
            rev TEXT NOT NULL,
            deleted INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            root_person_id TEXT
        );

        CREATE TABLE IF NOT EXISTS settings (
            id TEXT PRIMARY KEY,
            layout_orientation TEXT NOT NULL,
            theme TEXT NOT NULL,
            has_seen_install_prompt INTEGER NOT NULL,
            last_backup_date TEXT,
            last_viewed_tree_id TEXT,
            last_viewed_person_id TEXT
        );
    """)

    conn.commit()
    return conn


def _time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _event_columns(event: DatePlace | None) -> tuple[str | None, str | None]:
    if event is None:
        return (None, None)
    return (event.date, event.place)


def _touch(entity) -> None:
    entity.rev = new_revision()
    entity.updated_at = utcnow()


def _check_family(family: Family) -> None:
    if family.spouse1_id and family.spouse1_id == family.spouse2_id:
        raise ValueError(f"Person {family.spouse1_id} cannot be both spouses of family {family.id}")
    for spouse_id in family.spouse_ids:
        if spouse_id in family.child_ids:
            raise ValueError(f"Person {spouse_id} cannot be a child in their own family {family.id}")


class FamilyStore:
    """
    Data-access layer over a SQLite connection.

    Writes are grouped with `transaction()`; listeners registered with
    `subscribe()` are called once per committed transaction with the set of
    changed collections ("persons", "families", "trees", "settings").
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row
        self._depth = 0
        self._changed: set[str] = set()
        self._listeners: list[Callable[[set[str]], None]] = []

    @classmethod
    def open(cls, db_path: Path | str) -> "FamilyStore":
        return cls(create_database(db_path))

    def close(self) -> None:
        self.conn.close()

    # ==================== TRANSACTIONS & SUBSCRIPTIONS ====================

    @contextmanager
    def transaction(self):
        """Run a block of writes atomically. Nested blocks join the outer one."""
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                self.conn.rollback()
                self._changed.clear()
            raise
        self._depth -= 1
        if self._depth == 0:
            self.conn.commit()
            changed, self._changed = self._changed, set()
            if changed:
                for listener in list(self._listeners):
                    listener(changed)

    def subscribe(self, listener: Callable[[set[str]], None]) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ==================== PERSONS ====================

    def _row_to_person(self, row: sqlite3.Row) -> Person:
        return Person(
            id=row["id"],
            given_names=row["given_names"],
            surname=row["surname"],
            sex=row["sex"],
            birth_name=row["birth_name"],
            birth=date_place(row["birth_date"], row["birth_place"]),
            death=date_place(row["death_date"], row["death_place"]),
            photo=row["photo"],
            photo_thumbnail=row["photo_thumbnail"],
            notes=row["notes"],
            rev=row["rev"],
            deleted=bool(row["deleted"]),
            created_at=_time(row["created_at"]),
            updated_at=_time(row["updated_at"]),
        )

    def get_person(self, person_id: str) -> Person | None:
        row = self.conn.execute("SELECT * FROM person WHERE id = ?", (person_id,)).fetchone()
        return self._row_to_person(row) if row else None

    def get_all_persons(self, include_deleted: bool = False) -> list[Person]:
        query = "SELECT * FROM person"
        if not include_deleted:
            query += " WHERE deleted = 0"
        query += " ORDER BY rowid"
        return [self._row_to_person(row) for row in self.conn.execute(query)]

    def put_person(self, person: Person) -> Person:
        """Insert or overwrite a person, keeping its id, revision and timestamps."""
        check_choice(person.sex, SEXES, "sex")
        birth_date, birth_place = _event_columns(person.birth)
        death_date, death_place = _event_columns(person.death)
        with self.transaction():
            self.conn.execute(
                """
                INSERT INTO person
                (id, rev, deleted, created_at, updated_at, given_names, surname, birth_name, sex,
                 birth_date, birth_place, death_date, death_place, photo, photo_thumbnail, notes)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    rev = excluded.rev,
                    deleted = excluded.deleted,
                    created_at = excluded.created_at,
                    updated_at = excluded.updated_at,
                    given_names = excluded.given_names,
                    surname = excluded.surname,
                    birth_name = excluded.birth_name,
                    sex = excluded.sex,
                    birth_date = excluded.birth_date,
                    birth_place = excluded.birth_place,
                    death_date = excluded.death_date,
                    death_place = excluded.death_place,
                    photo = excluded.photo,
                    photo_thumbnail = excluded.photo_thumbnail,
                    notes = excluded.notes
                """,
                (
                    person.id,
                    person.rev,
                    int(person.deleted),
                    person.created_at.isoformat(),
                    person.updated_at.isoformat(),
                    person.given_names,
                    person.surname,
                    person.birth_name,
                    person.sex,
                    birth_date,
                    birth_place,
                    death_date,
                    death_place,
                    person.photo,
                    person.photo_thumbnail,
                    person.notes,
                ),
            )
            self._changed.add(PERSONS)
        return person

    def create_person(
        self,
        given_names: str,
        surname: str = "",
        sex: str = UNKNOWN,
        birth_name: str | None = None,
        birth_date: str | None = None,
        birth_place: str | None = None,
        death_date: str | None = None,
        death_place: str | None = None,
        notes: str | None = None,
    ) -> Person:
        person = Person(
            id=new_id(),
            given_names=given_names,
            surname=surname,
            sex=sex,
            birth_name=birth_name,
            birth=date_place(birth_date, birth_place),
            death=date_place(death_date, death_place),
            notes=notes,
        )
        logger.debug("Creating person %s (%s)", person.id, person.full_name)
        return self.put_person(person)

    def _require_person(self, person_id: str) -> Person:
        person = self.get_person(person_id)
        if person is None:
            raise NotFoundError(f"Person not found: {person_id}")
        return person

    def update_person(self, person_id: str, **changes) -> Person:
        """
        Apply a partial update.

        Accepts the person fields plus `birth_date`, `birth_place`, `death_date`
        and `death_place`; a date or place that is not supplied keeps its
        current value.
        """
        unknown = set(changes) - PERSON_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown person fields: {', '.join(sorted(unknown))}")

        person = self._require_person(person_id)
        for name in ("given_names", "surname", "birth_name", "sex", "notes"):
            if name in changes:
                setattr(person, name, changes[name])

        for event in ("birth", "death"):
            date_key, place_key = f"{event}_date", f"{event}_place"
            if date_key in changes or place_key in changes:
                current = getattr(person, event) or DatePlace()
                setattr(
                    person,
                    event,
                    date_place(
                        changes[date_key] if date_key in changes else current.date,
                        changes[place_key] if place_key in changes else current.place,
                    ),
                )

        _touch(person)
        return self.put_person(person)

    def update_person_photo(
        self, person_id: str, photo: bytes | None, thumbnail: bytes | None = None
    ) -> Person:
        person = self._require_person(person_id)
        person.photo = photo
        person.photo_thumbnail = thumbnail
        _touch(person)
        return self.put_person(person)

    def delete_person(self, person_id: str, hard: bool = False) -> None:
        if hard:
            with self.transaction():
                self.conn.execute("DELETE FROM person WHERE id = ?", (person_id,))
                self._changed.add(PERSONS)
            return
        person = self._require_person(person_id)
        person.deleted = True
        _touch(person)
        self.put_person(person)

    # ==================== FAMILIES ====================

    def _children_by_family(self, family_id: str | None = None) -> dict[str, list[str]]:
        if family_id is None:
            rows = self.conn.execute(
                "SELECT family_id, child_id FROM family_child ORDER BY family_id, position"
            )
        else:
            rows = self.conn.execute(
                "SELECT family_id, child_id FROM family_child WHERE family_id = ? ORDER BY position",
                (family_id,),
            )
        children: dict[str, list[str]] = {}
        for row in rows:
            children.setdefault(row["family_id"], []).append(row["child_id"])
        return children

    def _row_to_family(self, row: sqlite3.Row, child_ids: list[str]) -> Family:
        return Family(
            id=row["id"],
            spouse1_id=row["spouse1_id"],
            spouse2_id=row["spouse2_id"],
            child_ids=child_ids,
            marriage=date_place(row["marriage_date"], row["marriage_place"]),
            divorce=date_place(row["divorce_date"], row["divorce_place"]),
            union_type=row["union_type"],
            rev=row["rev"],
            deleted=bool(row["deleted"]),
            created_at=_time(row["created_at"]),
            updated_at=_time(row["updated_at"]),
        )

    def get_family(self, family_id: str) -> Family | None:
        row = self.conn.execute("SELECT * FROM family WHERE id = ?", (family_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_family(row, self._children_by_family(family_id).get(family_id, []))

    def get_all_families(self, include_deleted: bool = False) -> list[Family]:
        query = "SELECT * FROM family"
        if not include_deleted:
            query += " WHERE deleted = 0"
        query += " ORDER BY rowid"
        children = self._children_by_family()
        return [
            self._row_to_family(row, children.get(row["id"], []))
            for row in self.conn.execute(query).fetchall()
        ]

    def put_family(self, family: Family) -> Family:
        """Insert or overwrite a family and its ordered child list."""
        check_choice(family.union_type, FAMILY_TYPES, "family type")
        _check_family(family)
        # Collapse repeated children, first occurrence keeps its birth order
        family.child_ids = list(dict.fromkeys(family.child_ids))
        marriage_date, marriage_place = _event_columns(family.marriage)
        divorce_date, divorce_place = _event_columns(family.divorce)
        with self.transaction():
            self.conn.execute(
                """
                INSERT INTO family
                (id, rev, deleted, created_at, updated_at, spouse1_id, spouse2_id,
                 marriage_date, marriage_place, divorce_date, divorce_place, union_type)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    rev = excluded.rev,
                    deleted = excluded.deleted,
                    created_at = excluded.created_at,
                    updated_at = excluded.updated_at,
                    spouse1_id = excluded.spouse1_id,
                    spouse2_id = excluded.spouse2_id,
                    marriage_date = excluded.marriage_date,
                    marriage_place = excluded.marriage_place,
                    divorce_date = excluded.divorce_date,
                    divorce_place = excluded.divorce_place,
                    union_type = excluded.union_type
                """,
                (
                    family.id,
                    family.rev,
                    int(family.deleted),
                    family.created_at.isoformat(),
                    family.updated_at.isoformat(),
                    family.spouse1_id,
                    family.spouse2_id,
                    marriage_date,
                    marriage_place,
                    divorce_date,
                    divorce_place,
                    family.union_type,
                ),
            )
            self.conn.execute("DELETE FROM family_child WHERE family_id = ?", (family.id,))
            self.conn.executemany(
                "INSERT INTO family_child (family_id, child_id, position) VALUES (?, ?, ?)",
                [(family.id, child_id, position) for position, child_id in enumerate(family.child_ids)],
            )
            self._changed.add(FAMILIES)
        return family

    def create_family(
        self,
        spouse1_id: str | None = None,
        spouse2_id: str | None = None,
        union_type: str = UNKNOWN,
        marriage_date: str | None = None,
        marriage_place: str | None = None,
        divorce_date: str | None = None,
        divorce_place: str | None = None,
        child_ids: Iterable[str] = (),
    ) -> Family:
        family = Family(
            id=new_id(),
            spouse1_id=spouse1_id,
            spouse2_id=spouse2_id,
            child_ids=list(child_ids),
            marriage=date_place(marriage_date, marriage_place),
            divorce=date_place(divorce_date, divorce_place),
            union_type=union_type,
        )
        logger.debug("Creating family %s (%s + %s)", family.id, spouse1_id, spouse2_id)
        return self.put_family(family)

    def _require_family(self, family_id: str) -> Family:
        family = self.get_family(family_id)
        if family is None:
            raise NotFoundError(f"Family not found: {family_id}")
        return family

    def update_family_child_ids(self, family_id: str, child_ids: Iterable[str]) -> Family:
        family = self._require_family(family_id)
        family.child_ids = list(child_ids)
        _touch(family)
        return self.put_family(family)

    def add_child_to_family(self, family_id: str, child_id: str) -> Family:
        family = self._require_family(family_id)
        if child_id in family.child_ids:
            return family
        return self.update_family_child_ids(family_id, [*family.child_ids, child_id])

    def remove_child_from_family(self, family_id: str, child_id: str) -> Family:
        family = self._require_family(family_id)
        return self.update_family_child_ids(
            family_id, [c for c in family.child_ids if c != child_id]
        )

    def get_or_create_family(
        self, spouse_a_id: str | None, spouse_b_id: str | None = None, union_type: str = UNKNOWN
    ) -> Family:
        """Return the family of an unordered spouse pair, creating it when missing."""
        pair = [s for s in (spouse_a_id, spouse_b_id) if s]
        if not pair:
            raise ValueError("At least one spouse is required to create a family")
        a = pair[0]
        b = pair[1] if len(pair) > 1 else None
        if a == b:
            raise ValueError(f"Person {a} cannot be married to themselves")

        for family in self.get_all_families():
            if family.has_spouses(a, b):
                return family
        return self.create_family(spouse1_id=a, spouse2_id=b, union_type=union_type)

    def delete_family(self, family_id: str, hard: bool = False) -> None:
        if hard:
            with self.transaction():
                self.conn.execute("DELETE FROM family WHERE id = ?", (family_id,))
                self.conn.execute("DELETE FROM family_child WHERE family_id = ?", (family_id,))
                self._changed.add(FAMILIES)
            return
        family = self._require_family(family_id)
        family.deleted = True
        _touch(family)
        self.put_family(family)

    # ==================== TREES ====================

    def _row_to_tree(self, row: sqlite3.Row) -> FamilyTree:
        return FamilyTree(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            root_person_id=row["root_person_id"],
            rev=row["rev"],
            deleted=bool(row["deleted"]),
            created_at=_time(row["created_at"]),
            updated_at=_time(row["updated_at"]),
        )

    def get_tree(self, tree_id: str) -> FamilyTree | None:
        row = self.conn.execute("SELECT * FROM tree WHERE id = ?", (tree_id,)).fetchone()
        return self._row_to_tree(row) if row else None

    def get_all_trees(self, include_deleted: bool = False) -> list[FamilyTree]:
        query = "SELECT * FROM tree"
        if not include_deleted:
            query += " WHERE deleted = 0"
        query += " ORDER BY rowid"
        return [self._row_to_tree(row) for row in self.conn.execute(query)]

    def put_tree(self, tree: FamilyTree) -> FamilyTree:
        with self.transaction():
            self.conn.execute(
                """
                INSERT INTO tree
                (id, rev, deleted, created_at, updated_at, name, description, root_person_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    rev = excluded.rev,
                    deleted = excluded.deleted,
                    created_at = excluded.created_at,
                    updated_at = excluded.updated_at,
                    name = excluded.name,
                    description = excluded.description,
                    root_person_id = excluded.root_person_id
                """,
                (
                    tree.id,
                    tree.rev,
                    int(tree.deleted),
                    tree.created_at.isoformat(),
                    tree.updated_at.isoformat(),
                    tree.name,
                    tree.description,
                    tree.root_person_id,
                ),
            )
            self._changed.add(TREES)
        return tree

    def create_tree(
        self, name: str, description: str | None = None, root_person_id: str | None = None
    ) -> FamilyTree:
        return self.put_tree(
            FamilyTree(id=new_id(), name=name, description=description, root_person_id=root_person_id)
        )

    def update_tree(self, tree_id: str, **changes) -> FamilyTree:
        unknown = set(changes) - TREE_UPDATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown tree fields: {', '.join(sorted(unknown))}")
        tree = self.get_tree(tree_id)
        if tree is None:
            raise NotFoundError(f"Tree not found: {tree_id}")
        for name, value in changes.items():
            setattr(tree, name, value)
        _touch(tree)
        return self.put_tree(tree)

    def delete_tree(self, tree_id: str, hard: bool = False) -> None:
        if hard:
            with self.transaction():
                self.conn.execute("DELETE FROM tree WHERE id = ?", (tree_id,))
                self._changed.add(TREES)
            return
        tree = self.get_tree(tree_id)
        if tree is None:
            raise NotFoundError(f"Tree not found: {tree_id}")
        tree.deleted = True
        _touch(tree)
        self.put_tree(tree)

    # ==================== SETTINGS ====================

    def get_settings(self) -> Settings:
        row = self.conn.execute("SELECT * FROM settings WHERE id = ?", (SETTINGS_ID,)).fetchone()
        if row is None:
            return Settings()
        return Settings(
            id=row["id"],
            layout_orientation=row["layout_orientation"],
            theme=row["theme"],
            has_seen_install_prompt=bool(row["has_seen_install_prompt"]),
            last_backup_date=_time(row["last_backup_date"]),
            last_viewed_tree_id=row["last_viewed_tree_id"],
            last_viewed_person_id=row["last_viewed_person_id"],
        )

    def update_settings(self, **changes) -> Settings:
        allowed = {f.name for f in fields(Settings)} - {"id"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        if "layout_orientation" in changes:
            check_choice(changes["layout_orientation"], ORIENTATIONS, "orientation")
        if "theme" in changes:
            check_choice(changes["theme"], THEMES, "theme")

        settings = self.get_settings()
        for name, value in changes.items():
            setattr(settings, name, value)

        with self.transaction():
            self.conn.execute(
                """
                INSERT OR REPLACE INTO settings
                (id, layout_orientation, theme, has_seen_install_prompt, last_backup_date,
                 last_viewed_tree_id, last_viewed_person_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    settings.id,
                    settings.layout_orientation,
                    settings.theme,
                    int(settings.has_seen_install_prompt),
                    settings.last_backup_date.isoformat() if settings.last_backup_date else None,
                    settings.last_viewed_tree_id,
                    settings.last_viewed_person_id,
                ),
            )
            self._changed.add(SETTINGS)
        return settings

    # ==================== BULK ====================

    def clear_all(self) -> None:
        """Permanently delete every person, family and tree."""
        with self.transaction():
            self.conn.execute("DELETE FROM family_child")
            self.conn.execute("DELETE FROM family")
            self.conn.execute("DELETE FROM person")
            self.conn.execute("DELETE FROM tree")
            self._changed.update((PERSONS, FAMILIES, TREES))
        logger.info("Cleared all persons, families and trees")
