"""Relationship lookups (parents, spouses, children, siblings) and relationship editing."""

from collections.abc import Iterable
from dataclasses import dataclass, field
import logging

from database import FamilyStore, NotFoundError
from models import Family, Person


logger = logging.getLogger(__name__)


@dataclass
class FamilyIndex:
    """Per-person views over a list of families, built once and reused."""

    spouse_families: dict[str, list[Family]] = field(default_factory=dict)
    birth_families: dict[str, list[Family]] = field(default_factory=dict)

    @classmethod
    def build(cls, families: Iterable[Family]) -> "FamilyIndex":
        index = cls()
        for family in families:
            if family.deleted:
                continue
            for spouse_id in family.spouse_ids:
                index.spouse_families.setdefault(spouse_id, []).append(family)
            for child_id in family.child_ids:
                index.birth_families.setdefault(child_id, []).append(family)
        return index

    def spouse_families_of(self, person_id: str) -> list[Family]:
        return self.spouse_families.get(person_id, [])

    def birth_family_of(self, person_id: str) -> Family | None:
        """The first family listing the person as a child."""
        families = self.birth_families.get(person_id)
        return families[0] if families else None

    def multiple_birth_families(self) -> dict[str, list[Family]]:
        return {pid: fams for pid, fams in self.birth_families.items() if len(fams) > 1}


@dataclass
class PersonRelations:
    person: Person
    parents: list[Person]
    spouses: list[Person]
    children: list[Person]
    siblings: list[Person]
    spouse_families: list[Family]
    birth_family: Family | None


def get_person_relations(
    person_id: str, persons: Iterable[Person], families: Iterable[Family]
) -> PersonRelations | None:
    """
    Collect the immediate relatives of a person.

    Returns None when the person is unknown or deleted. A person without a
    birth family or without spouse families gets empty collections.
    """
    person_map = {p.id: p for p in persons if not p.deleted}
    person = person_map.get(person_id)
    if person is None:
        return None

    index = FamilyIndex.build(families)
    spouse_families = index.spouse_families_of(person_id)
    birth_family = index.birth_family_of(person_id)

    def lookup(ids: Iterable[str | None]) -> list[Person]:
        # Keep first occurrence order, drop unknown and deleted ids
        return [person_map[i] for i in dict.fromkeys(ids) if i in person_map]

    parents = lookup(birth_family.spouse_ids) if birth_family else []
    spouses = lookup(f.other_spouse(person_id) for f in spouse_families)
    children = lookup(c for f in spouse_families for c in f.child_ids)
    siblings = (
        lookup(c for c in birth_family.child_ids if c != person_id) if birth_family else []
    )

    return PersonRelations(
        person=person,
        parents=parents,
        spouses=spouses,
        children=children,
        siblings=siblings,
        spouse_families=spouse_families,
        birth_family=birth_family,
    )


def load_person_relations(store: FamilyStore, person_id: str) -> PersonRelations | None:
    return get_person_relations(person_id, store.get_all_persons(), store.get_all_families())


def search_persons(persons: Iterable[Person], query: str) -> list[Person]:
    """
    Filter persons by a case-insensitive substring of their name, birth name,
    birth place or death place. A blank query matches everyone. Deleted
    persons never match.
    """
    persons = [p for p in persons if not p.deleted]
    needle = query.strip().lower()
    if not needle:
        return persons

    def matches(person: Person) -> bool:
        fields = [
            f"{person.given_names} {person.surname}",
            person.birth_name,
            person.birth.place if person.birth else None,
            person.death.place if person.death else None,
        ]
        return any(needle in f.lower() for f in fields if f)

    return [p for p in persons if matches(p)]


# ============================================================================
# Relationship editing
# ============================================================================


def link_parents_to_child(store: FamilyStore, parent_ids: list[str], child_id: str) -> Family | None:
    """Ensure a child belongs to the family of the given one or two parents."""
    parent_ids = [p for p in parent_ids if p][:2]
    if not parent_ids:
        return None
    if child_id in parent_ids:
        raise ValueError(f"Person {child_id} cannot be their own parent")

    with store.transaction():
        family = store.get_or_create_family(*parent_ids)
        return store.add_child_to_family(family.id, child_id)


def link_spouse_and_children(
    store: FamilyStore, person_id: str, spouse_id: str | None = None, child_ids: Iterable[str] = ()
) -> Family | None:
    """Link a person to an optional spouse and children, creating a single-parent family if needed."""
    child_ids = list(child_ids)
    if not spouse_id and not child_ids:
        return None

    with store.transaction():
        family = store.get_or_create_family(person_id, spouse_id)
        for child_id in child_ids:
            family = store.add_child_to_family(family.id, child_id)
        return family


def reconcile_relations(
    store: FamilyStore,
    person_id: str,
    parent_ids: Iterable[str] = (),
    spouse_id: str | None = None,
    child_ids: Iterable[str] = (),
) -> None:
    """
    Bring the stored families in line with the desired relatives of a person.

    1. If the desired parents differ from the current birth family's spouses,
       the person is removed from that family.
    2. The person is linked into the (reused or new) family of the desired parents.
    3. Children no longer desired are removed from every family where the
       person is a spouse.
    4. Desired children are added to the family of the person and the spouse.
    """
    desired_parents = [p for p in parent_ids if p][:2]
    desired_children = list(dict.fromkeys(child_ids))
    if person_id in desired_parents or person_id in desired_children:
        raise ValueError(f"Person {person_id} cannot be their own parent or child")

    with store.transaction():
        current = load_person_relations(store, person_id)
        if current is None:
            raise NotFoundError(f"Person not found: {person_id}")

        birth_family = current.birth_family
        if birth_family is not None:
            same_parents = set(birth_family.spouse_ids) == set(desired_parents)
            if not same_parents and person_id in birth_family.child_ids:
                logger.debug("Unlinking %s from birth family %s", person_id, birth_family.id)
                store.remove_child_from_family(birth_family.id, person_id)

        link_parents_to_child(store, desired_parents, person_id)

        desired_set = set(desired_children)
        for family in current.spouse_families:
            stale = [c for c in family.child_ids if c not in desired_set]
            for child_id in stale:
                store.remove_child_from_family(family.id, child_id)

        link_spouse_and_children(store, person_id, spouse_id, desired_children)
