"""A live, laid-out view of the stored family tree."""

import logging

from autolayout import DOT_ENGINE, auto_arrange
from database import FAMILIES, PERSONS, SETTINGS, FamilyStore
from layout import DESKTOP, LayoutResult, generate_tree_layout
from models import HORIZONTAL, VERTICAL
from plotting import to_render_graph


logger = logging.getLogger(__name__)


class TreeView:
    """
    Keeps a layout in step with the store.

    The layout is recomputed lazily on the next `render()` after persons,
    families or the orientation setting change. The first render of a
    populated tree also runs auto-arrange once; later re-layouts use the
    recursive layout until `auto_arrange()` is called again.
    """

    def __init__(
        self,
        store: FamilyStore,
        root_person_id: str | None = None,
        profile: str = DESKTOP,
        compact_couples: bool = True,
        engine: str = DOT_ENGINE,
    ):
        self.store = store
        self.root_person_id = root_person_id
        self.profile = profile
        self.compact_couples = compact_couples
        self.engine = engine

        self._result: LayoutResult | None = None
        self._orientation: str | None = None
        self._dirty = True
        self._arranged_once = False
        self._unsubscribe = store.subscribe(self._on_change)

    def _on_change(self, changed: set[str]) -> None:
        if changed & {PERSONS, FAMILIES}:
            self._dirty = True
        elif SETTINGS in changed and self.orientation != self._orientation:
            self._dirty = True

    @property
    def orientation(self) -> str:
        return self.store.get_settings().layout_orientation

    @property
    def dirty(self) -> bool:
        return self._dirty

    def render(self) -> LayoutResult:
        if not self._dirty and self._result is not None:
            return self._result

        orientation = self.orientation
        result = generate_tree_layout(
            self.store.get_all_persons(),
            self.store.get_all_families(),
            root_person_id=self.root_person_id,
            orientation=orientation,
            profile=self.profile,
            compact_couples=self.compact_couples,
        )
        self._orientation = orientation
        self._dirty = False
        self._result = result

        if result.nodes and not self._arranged_once:
            self._arranged_once = True
            self._result = self._arrange(result)
        return self._result

    def render_graph(self) -> dict:
        result = self.render()
        return to_render_graph(result.nodes, result.edges)

    def _arrange(self, result: LayoutResult) -> LayoutResult:
        logger.debug("Auto-arranging %d nodes", len(result.nodes))
        nodes = auto_arrange(result.nodes, result.edges, self._orientation, self.profile, self.engine)
        return LayoutResult(nodes=nodes, edges=list(result.edges))

    def auto_arrange(self) -> LayoutResult:
        self._result = self._arrange(self.render())
        return self._result

    def toggle_orientation(self) -> str:
        """Switch between vertical and horizontal and persist the choice."""
        orientation = HORIZONTAL if self.orientation == VERTICAL else VERTICAL
        self.store.update_settings(layout_orientation=orientation)
        return orientation

    def set_root(self, person_id: str | None) -> None:
        self.root_person_id = person_id
        self._dirty = True
        if person_id:
            self.store.update_settings(last_viewed_person_id=person_id)

    def close(self) -> None:
        self._unsubscribe()

    def __enter__(self) -> "TreeView":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
