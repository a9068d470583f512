"""Tests for the recursive tree layout and couple compaction."""

from dataclasses import replace

import pytest

from layout import (
    COUPLE_NODE,
    LAYOUT_CONFIG,
    MOBILE,
    PARENT_CHILD_EDGE,
    PERSON_NODE,
    SPOUSE_EDGE,
    LayoutEngine,
    couple_node_id,
    generate_tree_layout,
)
from models import HORIZONTAL, Family, Person


def people(*ids):
    return [Person(id=i, given_names=i.title()) for i in ids]


def edge_set(result):
    return {(e.source, e.target, e.kind) for e in result.edges}


@pytest.fixture
def nuclear():
    """William + Elizabeth with their son John."""
    persons = people("william", "elizabeth", "john")
    families = [Family(id="f1", spouse1_id="william", spouse2_id="elizabeth", child_ids=["john"])]
    return persons, families


class TestDescendants:
    """Tests for placing a root and everyone below it."""

    def test_parent_above_child_and_spouse_beside(self, nuclear):
        result = generate_tree_layout(*nuclear, root_person_id="william")
        positions = result.positions()
        assert positions["john"] == (0, 220)
        assert positions["william"] == (0, 0)
        assert positions["elizabeth"] == (220, 0)
        assert edge_set(result) == {
            ("william", "elizabeth", SPOUSE_EDGE),
            ("william", "john", PARENT_CHILD_EDGE),
            ("elizabeth", "john", PARENT_CHILD_EDGE),
        }

    def test_parent_centred_over_children(self):
        persons = people("p", "a", "b")
        families = [Family(id="f", spouse1_id="p", child_ids=["a", "b"])]
        positions = generate_tree_layout(persons, families, "p").positions()
        assert positions["a"] == (0, 220)
        assert positions["b"] == (240, 220)
        assert positions["p"] == (120, 0)

    def test_root_flag(self, nuclear):
        result = generate_tree_layout(*nuclear, root_person_id="john")
        assert [n.id for n in result.nodes if n.is_root] == ["john"]

    def test_two_spouses_get_two_spouse_edges(self):
        persons = people("p", "s1", "s2")
        families = [
            Family(id="f1", spouse1_id="p", spouse2_id="s1"),
            Family(id="f2", spouse1_id="s2", spouse2_id="p"),
        ]
        result = generate_tree_layout(persons, families, "p")
        spouse_edges = [e for e in result.edges if e.kind == SPOUSE_EDGE]
        assert {(e.source, e.target) for e in spouse_edges} == {("p", "s1"), ("p", "s2")}
        positions = result.positions()
        assert positions["s1"] == (220, 0)
        assert positions["s2"] == (440, 0)

    def test_edge_ids(self, nuclear):
        result = generate_tree_layout(*nuclear, root_person_id="william")
        assert {e.id for e in result.edges} == {"william-elizabeth", "william-john", "elizabeth-john"}


class TestAncestors:
    """Tests for stacking parents above the root."""

    def test_parents_offset_around_child(self, nuclear):
        result = generate_tree_layout(*nuclear, root_person_id="john")
        positions = result.positions()
        assert positions["john"] == (0, 0)
        assert positions["william"] == (-110, -220)
        assert positions["elizabeth"] == (110, -220)
        assert ("william", "elizabeth", SPOUSE_EDGE) in edge_set(result)

    def test_grandparents_do_not_overlap(self):
        persons = people("me", "dad", "mum", "gf1", "gm1", "gf2", "gm2")
        families = [
            Family(id="f0", spouse1_id="dad", spouse2_id="mum", child_ids=["me"]),
            Family(id="f1", spouse1_id="gf1", spouse2_id="gm1", child_ids=["dad"]),
            Family(id="f2", spouse1_id="gf2", spouse2_id="gm2", child_ids=["mum"]),
        ]
        result = generate_tree_layout(persons, families, "me")
        grandparents = [n for n in result.nodes if n.y == -440]
        xs = sorted(n.x for n in grandparents)
        assert len(xs) == 4
        config = LAYOUT_CONFIG["desktop"]
        assert all(b - a >= config.node_width for a, b in zip(xs, xs[1:]))

    def test_single_parent(self):
        persons = people("kid", "mum")
        families = [Family(id="f", spouse2_id="mum", child_ids=["kid"])]
        positions = generate_tree_layout(persons, families, "kid").positions()
        assert positions["mum"] == (0, -220)

    def test_single_parent_branch_does_not_share_a_slot(self):
        persons = people("me", "dad", "mum", "gran", "gf2", "gm2")
        families = [
            Family(id="f0", spouse1_id="dad", spouse2_id="mum", child_ids=["me"]),
            Family(id="f1", spouse2_id="gran", child_ids=["dad"]),
            Family(id="f2", spouse1_id="gf2", spouse2_id="gm2", child_ids=["mum"]),
        ]
        positions = generate_tree_layout(persons, families, "me").positions()
        assert positions["gran"] == (-110, -440)
        assert positions["gf2"] == (-330, -440)
        assert positions["gm2"] == (330, -440)
        assert len(set(positions.values())) == len(positions)


class TestCoupleCompaction:
    """Tests for merging a couple with children into one node."""

    def test_couple_node_replaces_both_spouses(self, nuclear):
        result = generate_tree_layout(*nuclear, root_person_id="william", compact_couples=True)
        couple_id = couple_node_id("william", "elizabeth")
        assert [n.id for n in result.nodes] == ["john", couple_id]

        couple = result.node(couple_id)
        assert couple.kind == COUPLE_NODE
        assert couple.person_ids == ("william", "elizabeth")
        assert couple.is_root
        assert couple.y < result.node("john").y

        assert [(e.source, e.target, e.kind) for e in result.edges] == [(couple_id, "john", PARENT_CHILD_EDGE)]

    def test_couple_id_is_order_independent(self):
        assert couple_node_id("b", "a") == couple_node_id("a", "b") == "couple_a_b"

    def test_childless_couple_is_not_merged(self):
        persons = people("a", "b")
        families = [Family(id="f", spouse1_id="a", spouse2_id="b")]
        result = generate_tree_layout(persons, families, "a", compact_couples=True)
        assert {n.kind for n in result.nodes} == {PERSON_NODE}
        assert len(result.nodes) == 2

    def test_remarried_person_is_not_merged(self):
        persons = people("p", "s1", "s2", "c1", "c2")
        families = [
            Family(id="f1", spouse1_id="p", spouse2_id="s1", child_ids=["c1"]),
            Family(id="f2", spouse1_id="p", spouse2_id="s2", child_ids=["c2"]),
        ]
        result = generate_tree_layout(persons, families, "p", compact_couples=True)
        assert all(n.kind == PERSON_NODE for n in result.nodes)
        assert len(result.nodes) == 5

    def test_parents_of_root_become_a_couple(self, nuclear):
        result = generate_tree_layout(*nuclear, root_person_id="john", compact_couples=True)
        couple_id = couple_node_id("william", "elizabeth")
        assert [n.id for n in result.nodes] == ["john", couple_id]
        assert edge_set(result) == {(couple_id, "john", PARENT_CHILD_EDGE)}

    def test_no_person_is_placed_twice(self):
        persons = people("gp1", "gp2", "p", "s", "c1", "c2", "loner")
        families = [
            Family(id="f0", spouse1_id="gp1", spouse2_id="gp2", child_ids=["p"]),
            Family(id="f1", spouse1_id="p", spouse2_id="s", child_ids=["c1", "c2"]),
        ]
        result = generate_tree_layout(persons, families, "gp1", compact_couples=True)
        placed = [pid for n in result.nodes for pid in n.person_ids]
        assert sorted(placed) == sorted(p.id for p in persons)
        assert len(placed) == len(set(placed))
        assert len(result.nodes) == len(persons) - 2


class TestLayoutProperties:
    """Tests for the general guarantees of a layout."""

    def test_empty_input(self):
        result = generate_tree_layout([], [])
        assert result.nodes == []
        assert result.edges == []

    def test_idempotent(self, nuclear):
        first = generate_tree_layout(*nuclear, root_person_id="william", compact_couples=True)
        second = generate_tree_layout(*nuclear, root_person_id="william", compact_couples=True)
        assert first == second

    def test_engine_can_be_rerun(self, nuclear):
        engine = LayoutEngine(*nuclear)
        assert engine.run("john") == engine.run("john")

    def test_one_node_per_person_without_compaction(self):
        persons = people("a", "b", "c", "d", "e")
        families = [
            Family(id="f1", spouse1_id="a", spouse2_id="b", child_ids=["c"]),
            Family(id="f2", spouse1_id="c", child_ids=["d"]),
        ]
        result = generate_tree_layout(persons, families, "c")
        assert sorted(n.id for n in result.nodes) == ["a", "b", "c", "d", "e"]

    def test_deleted_entities_are_ignored(self, nuclear):
        persons, families = nuclear
        persons[1].deleted = True
        result = generate_tree_layout(persons, families, "william")
        assert {n.id for n in result.nodes} == {"william", "john"}
        assert edge_set(result) == {("william", "john", PARENT_CHILD_EDGE)}

        families[0].deleted = True
        result = generate_tree_layout(persons, families, "william")
        assert result.edges == []

    def test_unknown_root_gives_empty_layout(self, nuclear):
        result = generate_tree_layout(*nuclear, root_person_id="ghost")
        assert result.nodes == []
        assert result.edges == []

    def test_deleted_root_gives_empty_layout(self, nuclear):
        persons, families = nuclear
        persons = [replace(p, deleted=True) if p.id == "william" else p for p in persons]
        assert generate_tree_layout(persons, families, root_person_id="william").nodes == []

    def test_no_root_uses_first_person(self, nuclear):
        result = generate_tree_layout(*nuclear)
        assert result.node("william").is_root

    def test_orphans_in_grid_right_of_tree(self):
        persons = people("root", "o1", "o2", "o3", "o4")
        positions = generate_tree_layout(persons, [], "root").positions()
        assert positions["root"] == (0, 0)
        assert positions["o1"] == (300, 0)
        assert positions["o2"] == (540, 0)
        assert positions["o3"] == (780, 0)
        assert positions["o4"] == (300, 160)

    def test_orphan_spouses_are_still_linked(self):
        persons = people("root", "a", "b")
        families = [Family(id="f", spouse1_id="a", spouse2_id="b")]
        result = generate_tree_layout(persons, families, "root")
        assert edge_set(result) == {("a", "b", SPOUSE_EDGE)}

    def test_multiple_birth_families_do_not_crash(self):
        persons = people("x", "p1", "p2")
        families = [
            Family(id="f1", spouse1_id="p1", child_ids=["x"]),
            Family(id="f2", spouse1_id="p2", child_ids=["x"]),
        ]
        result = generate_tree_layout(persons, families, "x")
        assert result.node("p1").y == -220
        assert {n.id for n in result.nodes} == {"x", "p1", "p2"}

    def test_descent_cycle_does_not_recurse_forever(self):
        persons = people("a", "b")
        families = [
            Family(id="f1", spouse1_id="a", child_ids=["b"]),
            Family(id="f2", spouse1_id="b", child_ids=["a"]),
        ]
        result = generate_tree_layout(persons, families, "a")
        assert sorted(n.id for n in result.nodes) == ["a", "b"]


class TestOrientationAndProfile:
    """Tests for horizontal layouts and the mobile profile."""

    def test_horizontal_swaps_axes(self, nuclear):
        result = generate_tree_layout(*nuclear, root_person_id="william", orientation=HORIZONTAL)
        positions = result.positions()
        assert positions["william"] == (0, 0)
        assert positions["john"] == (240, 0)
        assert positions["elizabeth"] == (0, 140)
        assert all(n.orientation == HORIZONTAL for n in result.nodes)

    def test_mobile_profile_is_denser(self, nuclear):
        result = generate_tree_layout(*nuclear, root_person_id="william", profile=MOBILE)
        positions = result.positions()
        assert positions["john"] == (0, 150)
        assert positions["elizabeth"] == (150, 0)
        assert all(n.compact for n in result.nodes)

    def test_invalid_orientation(self, nuclear):
        with pytest.raises(ValueError):
            generate_tree_layout(*nuclear, orientation="diagonal")

    def test_invalid_profile(self, nuclear):
        with pytest.raises(ValueError):
            generate_tree_layout(*nuclear, profile="tablet")
