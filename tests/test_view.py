"""Tests for the live tree view."""

import pytest

from autolayout import NETWORKX_ENGINE
from models import HORIZONTAL, VERTICAL
from view import TreeView


@pytest.fixture
def view(store):
    v = TreeView(store, compact_couples=False, engine=NETWORKX_ENGINE)
    yield v
    v.close()


def positions(result):
    return {n.id: (n.x, n.y) for n in result.nodes}


class TestTreeView:
    """Tests for lazy re-layout and the once-per-session auto-arrange."""

    def test_empty_store(self, view):
        result = view.render()
        assert result.nodes == []
        assert not view.dirty

    def test_first_populated_render_is_auto_arranged(self, view, couple_with_child):
        william, elizabeth, john, _ = couple_with_child
        assert view.dirty
        result = positions(view.render())
        assert result[william.id] == (0, 0)
        assert result[elizabeth.id] == (240, 0)
        assert result[john.id] == (120, 220)

    def test_later_changes_use_the_recursive_layout(self, view, couple_with_child, store):
        william, elizabeth, john, _ = couple_with_child
        view.render()
        store.update_person(john.id, notes="changed")
        assert view.dirty
        result = positions(view.render())
        assert result[john.id] == (0, 220)
        assert result[elizabeth.id] == (220, 0)

    def test_render_is_cached_until_a_change(self, view, couple_with_child):
        first = view.render()
        assert view.render() is first

    def test_explicit_auto_arrange(self, view, couple_with_child, store):
        _, _, john, _ = couple_with_child
        view.render()
        store.update_person(john.id, notes="changed")
        view.render()
        result = positions(view.auto_arrange())
        assert result[john.id] == (120, 220)

    def test_toggle_orientation_persists_and_relays(self, view, couple_with_child, store):
        _, _, john, _ = couple_with_child
        view.render()
        assert view.toggle_orientation() == HORIZONTAL
        assert store.get_settings().layout_orientation == HORIZONTAL
        assert view.dirty
        result = view.render()
        assert all(n.orientation == HORIZONTAL for n in result.nodes)
        assert positions(result)[john.id] == (240, 0)
        assert view.toggle_orientation() == VERTICAL

    def test_unrelated_settings_do_not_relayout(self, view, couple_with_child, store):
        view.render()
        store.update_settings(theme="dark")
        assert not view.dirty

    def test_set_root(self, view, couple_with_child, store):
        _, _, john, _ = couple_with_child
        view.render()
        view.set_root(john.id)
        result = view.render()
        assert result.node(john.id).is_root
        assert store.get_settings().last_viewed_person_id == john.id

    def test_close_stops_updates(self, store, couple_with_child):
        with TreeView(store, engine=NETWORKX_ENGINE) as v:
            v.render()
        store.create_person("Late")
        assert not v.dirty

    def test_render_graph(self, view, couple_with_child):
        graph = view.render_graph()
        assert len(graph["nodes"]) == 3
        assert {e["data"]["relationshipType"] for e in graph["edges"]} == {"spouse", "parent-child"}
