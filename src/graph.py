"""NetworkX graph building for family data and laid-out trees."""

from collections.abc import Iterable

import networkx as nx

from layout import PARENT_CHILD_EDGE, SPOUSE_EDGE, LayoutEdge, LayoutNode
from models import Family, Person


PARENT_OF = "PARENT_OF"
SPOUSE_OF = "SPOUSE_OF"


def build_graph(persons: Iterable[Person], families: Iterable[Family]) -> nx.DiGraph:
    """
    Build a directed relationship graph from persons and families.

    PARENT_OF edges go parent -> child, SPOUSE_OF edges spouse1 -> spouse2.
    Deleted entities are left out; references to unknown persons are kept as
    bare nodes so that callers can report them.
    """
    G = nx.DiGraph()

    # Note: use 'person_name' instead of 'name' to avoid conflict with pydot
    for person in persons:
        if person.deleted:
            continue
        G.add_node(
            person.id,
            person_name=person.full_name,
            sex=person.sex,
            birth_date=person.birth.date if person.birth else None,
            death_date=person.death.date if person.death else None,
            given_name=person.given_names,
            surname=person.surname,
        )

    for family in families:
        if family.deleted:
            continue
        spouses = family.spouse_ids
        if len(spouses) == 2:
            G.add_edge(spouses[0], spouses[1], relationship_type=SPOUSE_OF, family_id=family.id)
        for child_id in family.child_ids:
            for parent_id in spouses:
                G.add_edge(parent_id, child_id, relationship_type=PARENT_OF, family_id=family.id)

    return G


def build_layout_graph(nodes: Iterable[LayoutNode], edges: Iterable[LayoutEdge]) -> nx.DiGraph:
    """Directed graph over layout node ids; edges keep their layout kind."""
    H = nx.DiGraph()
    for node in nodes:
        H.add_node(node.id, kind=node.kind, person_ids=node.person_ids)
    for edge in edges:
        if edge.source in H and edge.target in H:
            H.add_edge(edge.source, edge.target, kind=edge.kind)
    return H


def parent_child_subgraph(H: nx.DiGraph) -> nx.DiGraph:
    """Only the parent-child edges of a layout graph, with every node kept."""
    P = nx.DiGraph()
    P.add_nodes_from(H.nodes)
    P.add_edges_from((u, v) for u, v, d in H.edges(data=True) if d.get("kind") == PARENT_CHILD_EDGE)
    return P


def spouse_pairs(H: nx.DiGraph) -> list[tuple[str, str]]:
    """Spouse edges of a layout graph as (source, target) pairs."""
    return [(u, v) for u, v, d in H.edges(data=True) if d.get("kind") == SPOUSE_EDGE]
