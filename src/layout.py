"""
Family tree layout engine.

Positions person nodes (and, optionally, compound couple nodes) together with
the spouse and parent-child edges between them. The layout starts at a root
person: its descendants are placed first, parents centred over their
children, then its ancestors are stacked above it. Everyone not reached from
the root ends up in a grid beside the main tree.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
import logging

from models import HORIZONTAL, ORIENTATIONS, VERTICAL, Family, Person, check_choice
from relations import FamilyIndex


logger = logging.getLogger(__name__)

PERSON_NODE = "person"
COUPLE_NODE = "couple"

SPOUSE_EDGE = "spouse"
PARENT_CHILD_EDGE = "parent-child"

DESKTOP = "desktop"
MOBILE = "mobile"
PROFILES = (DESKTOP, MOBILE)

ORPHANS_PER_ROW = 3


@dataclass(frozen=True)
class LayoutConfig:
    node_width: float
    node_height: float
    horizontal_spacing: float
    vertical_spacing: float
    spouse_spacing: float


LAYOUT_CONFIG = {
    DESKTOP: LayoutConfig(
        node_width=180, node_height=100, horizontal_spacing=60, vertical_spacing=120, spouse_spacing=40
    ),
    MOBILE: LayoutConfig(
        node_width=130, node_height=70, horizontal_spacing=30, vertical_spacing=80, spouse_spacing=20
    ),
}


def get_layout_config(profile: str) -> LayoutConfig:
    return LAYOUT_CONFIG[check_choice(profile, PROFILES, "density profile")]


@dataclass
class LayoutNode:
    id: str
    kind: str
    x: float
    y: float
    persons: tuple[Person, ...]
    is_root: bool = False
    compact: bool = False
    orientation: str = VERTICAL

    @property
    def person_ids(self) -> tuple[str, ...]:
        return tuple(p.id for p in self.persons)

    @property
    def position(self) -> tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class LayoutEdge:
    id: str
    source: str
    target: str
    kind: str


@dataclass
class LayoutResult:
    nodes: list[LayoutNode] = field(default_factory=list)
    edges: list[LayoutEdge] = field(default_factory=list)

    def node(self, node_id: str) -> LayoutNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_for_person(self, person_id: str) -> LayoutNode | None:
        for node in self.nodes:
            if person_id in node.person_ids:
                return node
        return None

    def positions(self) -> dict[str, tuple[float, float]]:
        return {node.id: node.position for node in self.nodes}


def couple_node_id(person_a_id: str, person_b_id: str) -> str:
    """Order-independent id of the compound node for a spouse pair."""
    first, second = sorted((person_a_id, person_b_id))
    return f"couple_{first}_{second}"


def edge_id(source: str, target: str) -> str:
    return f"{source}-{target}"


@dataclass(frozen=True)
class Axes:
    """Distances along the sibling axis and the generation axis."""

    extent: float
    sibling_gap: float
    spouse_offset: float
    generation_step: float


def layout_axes(config: LayoutConfig, orientation: str) -> Axes:
    if orientation == HORIZONTAL:
        return Axes(
            extent=config.node_height,
            sibling_gap=config.horizontal_spacing,
            spouse_offset=config.node_height + config.spouse_spacing,
            generation_step=config.node_width + config.horizontal_spacing,
        )
    return Axes(
        extent=config.node_width,
        sibling_gap=config.horizontal_spacing,
        spouse_offset=config.node_width + config.spouse_spacing,
        generation_step=config.node_height + config.vertical_spacing,
    )


class LayoutEngine:
    """
    Recursive descendant/ancestor placement.

    Coordinates are computed as (breadth, depth): breadth runs along a
    generation (siblings, spouses) and depth across generations. Vertical
    orientation maps them to (x, y), horizontal to (y, x). A person is placed
    at most once, so the first placement wins when the data reaches someone
    through several paths.
    """

    def __init__(
        self,
        persons: Iterable[Person],
        families: Iterable[Family],
        orientation: str = VERTICAL,
        profile: str = DESKTOP,
        compact_couples: bool = False,
    ):
        self.orientation = check_choice(orientation, ORIENTATIONS, "orientation")
        self.config = get_layout_config(profile)
        self.compact = profile == MOBILE
        self.compact_couples = compact_couples
        self.axes = layout_axes(self.config, self.orientation)

        self.persons = [p for p in persons if not p.deleted]
        self.person_map = {p.id: p for p in self.persons}
        self.families = [f for f in families if not f.deleted]
        self.index = FamilyIndex.build(self.families)

        self._reset()

    def _reset(self) -> None:
        self._root_id: str | None = None
        self._nodes: dict[str, LayoutNode] = {}
        self._node_of: dict[str, str] = {}
        self._edges: dict[tuple[str, str], LayoutEdge] = {}
        self._visiting: set[str] = set()
        self._occupied: set[tuple[float, float]] = set()

    def run(self, root_person_id: str | None = None) -> LayoutResult:
        self._reset()
        if not self.persons:
            return LayoutResult()

        if root_person_id:
            root = self.person_map.get(root_person_id)
            if root is None:
                logger.warning("Root person %s not found, nothing to lay out", root_person_id)
                return LayoutResult()
        else:
            root = self.persons[0]
        self._root_id = root.id

        self._layout_descendants(root.id, 0.0, 0.0)
        root_node = self._nodes[self._node_of[root.id]]
        self._layout_ancestors(root.id, self._breadth(root_node), self._depth(root_node))
        self._place_orphans()
        self._link_remaining()

        return LayoutResult(nodes=list(self._nodes.values()), edges=list(self._edges.values()))

    # ==================== PLACEMENT ====================

    def _breadth(self, node: LayoutNode) -> float:
        return node.x if self.orientation == VERTICAL else node.y

    def _depth(self, node: LayoutNode) -> float:
        return node.y if self.orientation == VERTICAL else node.x

    def _add_node(self, node_id: str, kind: str, person_ids: list[str], x: float, y: float) -> str:
        node = LayoutNode(
            id=node_id,
            kind=kind,
            x=x,
            y=y,
            persons=tuple(self.person_map[pid] for pid in person_ids),
            is_root=self._root_id in person_ids,
            compact=self.compact,
            orientation=self.orientation,
        )
        self._nodes[node_id] = node
        self._occupied.add((x, y))
        for pid in person_ids:
            self._node_of[pid] = node_id
        return node_id

    def _place(self, person_ids: list[str], breadth: float, depth: float) -> str:
        if len(person_ids) == 2:
            node_id, kind = couple_node_id(*person_ids), COUPLE_NODE
        else:
            node_id, kind = person_ids[0], PERSON_NODE
        if self.orientation == VERTICAL:
            return self._add_node(node_id, kind, person_ids, breadth, depth)
        return self._add_node(node_id, kind, person_ids, depth, breadth)

    def _free_breadth(self, breadth: float, depth: float, direction: float) -> float:
        """First breadth from `breadth` outward (by `direction` sign) with no node at this depth."""
        step = self.axes.spouse_offset if direction >= 0 else -self.axes.spouse_offset
        while self._slot(breadth, depth) in self._occupied:
            breadth += step
        return breadth

    def _slot(self, breadth: float, depth: float) -> tuple[float, float]:
        return (breadth, depth) if self.orientation == VERTICAL else (depth, breadth)

    def _connect(self, source_person: str, target_person: str, kind: str) -> None:
        source = self._node_of.get(source_person)
        target = self._node_of.get(target_person)
        if source is None or target is None or source == target:
            return
        if (source, target) in self._edges:
            return
        if kind == SPOUSE_EDGE and (target, source) in self._edges:
            return
        self._edges[(source, target)] = LayoutEdge(
            id=edge_id(source, target), source=source, target=target, kind=kind
        )

    def _single_family_spouse(self, person_id: str, family: Family) -> bool:
        families = self.index.spouse_families_of(person_id)
        return len(families) == 1 and families[0] is family

    def _couple_family(self, person_id: str, families: list[Family]) -> Family | None:
        """The family to draw as one couple node, if the person qualifies."""
        if not self.compact_couples or len(families) != 1:
            return None
        family = families[0]
        spouse_id = family.other_spouse(person_id)
        if (
            not spouse_id
            or spouse_id == person_id
            or spouse_id not in self.person_map
            or spouse_id in self._node_of
            or not self._single_family_spouse(spouse_id, family)
        ):
            return None
        if not any(c in self.person_map for c in family.child_ids):
            return None
        return family

    # ==================== DESCENDANTS ====================

    def _layout_descendants(self, person_id: str, start: float, depth: float) -> float:
        """Place a person's descendants, then the person and spouses; return the far breadth edge."""
        if person_id not in self.person_map or person_id in self._node_of:
            return start

        families = self.index.spouse_families_of(person_id)
        cursor = start
        placed_children: list[str] = []
        # Guards against descent cycles in bad data
        self._visiting.add(person_id)
        for family in families:
            for child_id in family.child_ids:
                if child_id not in self.person_map or child_id in self._node_of or child_id in self._visiting:
                    continue
                end = self._layout_descendants(child_id, cursor, depth + self.axes.generation_step)
                placed_children.append(child_id)
                cursor = end + self.axes.sibling_gap
        self._visiting.discard(person_id)

        child_nodes = list(dict.fromkeys(self._node_of[c] for c in placed_children if c in self._node_of))
        if child_nodes:
            breadths = [self._breadth(self._nodes[n]) for n in child_nodes]
            own = (min(breadths) + max(breadths)) / 2
            end = cursor - self.axes.sibling_gap
        else:
            own = start
            end = start
        end = max(end, own + self.axes.extent)
        if person_id in self._node_of:
            # Already placed as the spouse of a descendant
            return end

        couple = self._couple_family(person_id, families)
        if couple is not None:
            node_id = self._place(couple.spouse_ids, own, depth)
            for child_id in couple.child_ids:
                self._connect(person_id, child_id, PARENT_CHILD_EDGE)
            logger.debug("Placed couple node %s", node_id)
            return end

        self._place([person_id], own, depth)
        slot = 0
        for family in families:
            spouse_id = family.other_spouse(person_id)
            if spouse_id == person_id or spouse_id not in self.person_map:
                spouse_id = None
            if spouse_id is not None:
                if spouse_id not in self._node_of:
                    slot += 1
                    self._place([spouse_id], own + slot * self.axes.spouse_offset, depth)
                self._connect(person_id, spouse_id, SPOUSE_EDGE)
            for child_id in family.child_ids:
                self._connect(person_id, child_id, PARENT_CHILD_EDGE)
                if spouse_id is not None:
                    self._connect(spouse_id, child_id, PARENT_CHILD_EDGE)

        return max(end, own + slot * self.axes.spouse_offset + self.axes.extent)

    # ==================== ANCESTORS ====================

    def _layout_ancestors(self, person_id: str, breadth: float, depth: float, generation: int = 1) -> None:
        """Stack birth-family parents above a person, recursing through grandparents."""
        family = self.index.birth_family_of(person_id)
        if family is None:
            return
        parent_ids = [p for p in family.spouse_ids if p in self.person_map and p != person_id]
        if not parent_ids:
            return

        parent_depth = depth - self.axes.generation_step
        # Spread doubles per generation
        spread = self.axes.spouse_offset * 2 ** (generation - 1)
        offsets = [0.0] if len(parent_ids) == 1 else [-spread / 2, spread / 2]

        placed_now: list[tuple[str, float]] = []
        if (
            self.compact_couples
            and len(parent_ids) == 2
            and not any(p in self._node_of for p in parent_ids)
            and all(self._single_family_spouse(p, family) for p in parent_ids)
        ):
            breadth = self._free_breadth(breadth, parent_depth, 1)
            self._place(parent_ids, breadth, parent_depth)
            placed_now = [(p, breadth + offset) for p, offset in zip(parent_ids, offsets)]
        else:
            for parent_id, offset in zip(parent_ids, offsets):
                if parent_id not in self._node_of:
                    # Single-parent branches and repeated ancestors can land on a taken slot
                    slot = self._free_breadth(breadth + offset, parent_depth, offset)
                    self._place([parent_id], slot, parent_depth)
                    placed_now.append((parent_id, slot))

        for parent_id in parent_ids:
            self._connect(parent_id, person_id, PARENT_CHILD_EDGE)
        if len(parent_ids) == 2:
            self._connect(parent_ids[0], parent_ids[1], SPOUSE_EDGE)

        for parent_id, slot in placed_now:
            self._layout_ancestors(parent_id, slot, parent_depth, generation + 1)

    # ==================== LEFTOVERS ====================

    def _place_orphans(self) -> None:
        """Grid (three per row) to the right of the main layout for everyone not reached."""
        orphans = [p.id for p in self.persons if p.id not in self._node_of]
        if not orphans:
            return
        logger.debug("Placing %d persons not connected to the root", len(orphans))

        config = self.config
        root_node = self._nodes[self._node_of[self._root_id]]
        origin_x = max(n.x for n in self._nodes.values()) + config.node_width + config.horizontal_spacing * 2
        origin_y = root_node.y

        for i, person_id in enumerate(orphans):
            row, column = divmod(i, ORPHANS_PER_ROW)
            self._add_node(
                person_id,
                PERSON_NODE,
                [person_id],
                origin_x + column * (config.node_width + config.horizontal_spacing),
                origin_y + row * (config.node_height + config.vertical_spacing / 2),
            )

    def _link_remaining(self) -> None:
        """Add relationship edges between placed nodes that no pass has connected."""
        for family in self.families:
            parents = [p for p in family.spouse_ids if p in self.person_map]
            if len(parents) == 2:
                self._connect(parents[0], parents[1], SPOUSE_EDGE)
            for child_id in family.child_ids:
                for parent_id in parents:
                    self._connect(parent_id, child_id, PARENT_CHILD_EDGE)


def generate_tree_layout(
    persons: Iterable[Person],
    families: Iterable[Family],
    root_person_id: str | None = None,
    orientation: str = VERTICAL,
    profile: str = DESKTOP,
    compact_couples: bool = False,
) -> LayoutResult:
    """Lay out persons and families around a root person. Pure: same input, same output."""
    engine = LayoutEngine(persons, families, orientation, profile, compact_couples)
    return engine.run(root_person_id)
