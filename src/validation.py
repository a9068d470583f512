"""Consistency checks for family tree data."""

from collections.abc import Iterable

import networkx as nx

from graph import PARENT_OF, build_graph
from models import Family, Person
from parsing import extract_year, parse_date_string
from relations import FamilyIndex


MIN_PARENT_AGE = 12


def validate_tree(persons: Iterable[Person], families: Iterable[Family]) -> list[str]:
    """
    Validate persons and families for:
    - Cycles in parent-child relationships
    - Impossible ages (child born before parent, parent younger than 12)
    - Death before birth
    - Persons listed as a child in more than one family
    - Spouses listed as children of their own family
    - Family references to unknown persons

    Returns a list of warning messages.
    """
    persons = [p for p in persons if not p.deleted]
    families = [f for f in families if not f.deleted]
    names = {p.id: p.full_name for p in persons}
    warnings: list[str] = []

    G = build_graph(persons, families)

    # Check for dangling references (nodes without person data)
    for family in families:
        for person_id in [*family.spouse_ids, *family.child_ids]:
            if person_id not in names:
                warnings.append(f"Family {family.id} references unknown person {person_id}")

    for family in families:
        for spouse_id in family.spouse_ids:
            if spouse_id in family.child_ids:
                warnings.append(
                    f"Impossible: {names.get(spouse_id, spouse_id)} is a child of their own family {family.id}"
                )

    parent_graph = nx.DiGraph(
        [(u, v) for u, v, d in G.edges(data=True) if d.get("relationship_type") == PARENT_OF]
    )
    try:
        cycle = nx.find_cycle(parent_graph, orientation="original")
        cycle_names = [names.get(edge[0], edge[0]) for edge in cycle]
        warnings.append(f"Cycle detected in parent-child relationships: {cycle_names}")
    except nx.NetworkXNoCycle:
        pass

    for person_id, birth_families in FamilyIndex.build(families).multiple_birth_families().items():
        family_ids = ", ".join(f.id for f in birth_families)
        warnings.append(
            f"Ambiguous: {names.get(person_id, person_id)} is a child in several families ({family_ids}); "
            f"using {birth_families[0].id}"
        )

    # Free-form dates are normalized to ISO first so they compare as strings
    births = {p.id: parse_date_string(p.birth.date) for p in persons if p.birth}
    for parent, child, data in G.edges(data=True):
        if data.get("relationship_type") != PARENT_OF:
            continue
        parent_birth = births.get(parent)
        child_birth = births.get(child)
        if not parent_birth or not child_birth:
            continue

        if child_birth < parent_birth:
            warnings.append(f"Impossible: {names[child]} born before parent {names[parent]}")
        elif extract_year(child_birth) - extract_year(parent_birth) < MIN_PARENT_AGE:
            warnings.append(
                f"Suspicious: {names[parent]} was less than {MIN_PARENT_AGE} years "
                f"old when {names[child]} was born"
            )

    for person in persons:
        birth = births.get(person.id)
        death = parse_date_string(person.death.date) if person.death else None
        if birth and death and death < birth:
            warnings.append(f"Impossible: {person.full_name} died before being born")

    return warnings
