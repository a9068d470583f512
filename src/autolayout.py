"""
Auto-arrange: recompute node positions with a layered graph layout.

The primary layout can leave overlapping subtrees behind; this pass ranks
nodes into generations and orders each generation to reduce crossings. Only
positions change, node ids and edges stay as they are.
"""

from collections.abc import Sequence
import dataclasses
import logging
import shlex

import networkx as nx
import pydot

from graph import build_layout_graph, parent_child_subgraph, spouse_pairs
from layout import DESKTOP, LayoutEdge, LayoutNode, get_layout_config, layout_axes
from models import HORIZONTAL, ORIENTATIONS, VERTICAL, check_choice


logger = logging.getLogger(__name__)

DOT_ENGINE = "dot"
NETWORKX_ENGINE = "networkx"
ENGINES = (DOT_ENGINE, NETWORKX_ENGINE)

POINTS_PER_INCH = 72
ORDERING_SWEEPS = 4


def auto_arrange(
    nodes: Sequence[LayoutNode],
    edges: Sequence[LayoutEdge],
    orientation: str = VERTICAL,
    profile: str = DESKTOP,
    engine: str = DOT_ENGINE,
) -> list[LayoutNode]:
    """
    Return copies of `nodes` with positions recomputed by a layered layout.

    Couple nodes are sized like individual nodes. When Graphviz is not
    available the networkx engine is used instead.
    """
    check_choice(orientation, ORIENTATIONS, "orientation")
    check_choice(engine, ENGINES, "layout engine")
    if not nodes:
        return []

    if engine == DOT_ENGINE:
        try:
            positions = dot_positions(nodes, edges, orientation, profile)
        except OSError as e:
            logger.warning("Graphviz dot unavailable (%s); using networkx layout", e)
            positions = layered_positions(nodes, edges, orientation, profile)
    else:
        positions = layered_positions(nodes, edges, orientation, profile)

    return [
        dataclasses.replace(node, x=positions[node.id][0], y=positions[node.id][1], orientation=orientation)
        for node in nodes
    ]


# ============================================================================
# Graphviz
# ============================================================================


def build_dot_graph(
    nodes: Sequence[LayoutNode], edges: Sequence[LayoutEdge], orientation: str, profile: str
) -> tuple[pydot.Dot, dict[str, str]]:
    """
    Build a pydot graph for the layout. Node ids are replaced by short aliases
    (n0, n1, ...) so Graphviz never has to quote them.

    Returns the graph and a mapping alias -> node id.
    """
    config = get_layout_config(profile)
    aliases = {node.id: f"n{i}" for i, node in enumerate(nodes)}

    P = pydot.Dot(graph_type="digraph")
    P.set("rankdir", "TB" if orientation == VERTICAL else "LR")
    P.set("nodesep", f"{config.horizontal_spacing / POINTS_PER_INCH:.3f}")
    P.set("ranksep", f"{config.vertical_spacing / POINTS_PER_INCH:.3f}")

    for node in nodes:
        P.add_node(
            pydot.Node(
                aliases[node.id],
                shape="box",
                fixedsize="true",
                width=f"{config.node_width / POINTS_PER_INCH:.3f}",
                height=f"{config.node_height / POINTS_PER_INCH:.3f}",
            )
        )

    H = build_layout_graph(nodes, edges)
    for u, v in parent_child_subgraph(H).edges:
        P.add_edge(pydot.Edge(aliases[u], aliases[v]))

    # Spouses share a rank; the edge keeps them next to each other
    for i, (a, b) in enumerate(spouse_pairs(H)):
        P.add_edge(pydot.Edge(aliases[a], aliases[b], constraint="false", dir="none"))
        sg = pydot.Subgraph(f"spouses_{i}", rank="same")
        sg.add_node(pydot.Node(aliases[a]))
        sg.add_node(pydot.Node(aliases[b]))
        P.add_subgraph(sg)

    return P, {alias: node_id for node_id, alias in aliases.items()}


def parse_plain_output(output: str, aliases: dict[str, str]) -> dict[str, tuple[float, float]]:
    """
    Read node centres from Graphviz "plain" output and convert them to
    top-left pixel positions with the y axis pointing down.
    """
    graph_height = 0.0
    positions: dict[str, tuple[float, float]] = {}
    for line in output.splitlines():
        parts = shlex.split(line)
        if not parts:
            continue
        if parts[0] == "graph":
            graph_height = float(parts[3])
        elif parts[0] == "node":
            name, x, y, width, height = parts[1], *map(float, parts[2:6])
            if name not in aliases:
                continue
            left = (x - width / 2) * POINTS_PER_INCH
            top = (graph_height - y - height / 2) * POINTS_PER_INCH
            positions[aliases[name]] = (round(left, 2), round(top, 2))
    return positions


def dot_positions(
    nodes: Sequence[LayoutNode], edges: Sequence[LayoutEdge], orientation: str, profile: str
) -> dict[str, tuple[float, float]]:
    P, aliases = build_dot_graph(nodes, edges, orientation, profile)
    output = P.create(prog="dot", format="plain")
    if isinstance(output, bytes):
        output = output.decode("utf-8")
    positions = parse_plain_output(output, aliases)
    missing = [node.id for node in nodes if node.id not in positions]
    if missing:
        raise ValueError(f"Graphviz did not position nodes: {missing}")
    return positions


# ============================================================================
# NetworkX
# ============================================================================


def assign_ranks(H: nx.DiGraph) -> dict[str, int]:
    """
    Generation rank per node: parents above children, spouses on one rank.

    Ranks come from the condensation of the parent-child graph, so cycles in
    bad data collapse onto one rank instead of failing.
    """
    P = parent_child_subgraph(H)
    C = nx.condensation(P)
    mapping = C.graph["mapping"]

    component_rank: dict[int, int] = {}
    for rank, components in enumerate(nx.topological_generations(C)):
        for component in components:
            component_rank[component] = rank
    ranks = {node: component_rank[mapping[node]] for node in H.nodes}

    pairs = spouse_pairs(H)
    # Bounded relaxation: spouse pulls can push children further down
    for _ in range(H.number_of_nodes() + 1):
        changed = False
        for a, b in pairs:
            top = max(ranks[a], ranks[b])
            if ranks[a] != top or ranks[b] != top:
                ranks[a] = ranks[b] = top
                changed = True
        for u, v in P.edges:
            if mapping[u] != mapping[v] and ranks[v] <= ranks[u]:
                ranks[v] = ranks[u] + 1
                changed = True
        if not changed:
            break

    lowest = min(ranks.values())
    return {node: rank - lowest for node, rank in ranks.items()}


def order_layers(H: nx.DiGraph, ranks: dict[str, int]) -> list[list[str]]:
    """Order nodes inside each rank with barycentre sweeps, keeping spouses adjacent."""
    layers: list[list[str]] = [[] for _ in range(max(ranks.values()) + 1)]
    for node in H.nodes:
        layers[ranks[node]].append(node)

    P = parent_child_subgraph(H)

    def sweep(layer: list[str], neighbours, index: dict[str, int]) -> list[str]:
        def key(item: tuple[int, str]) -> float:
            position, node = item
            linked = [index[n] for n in neighbours(node) if n in index]
            return sum(linked) / len(linked) if linked else float(position)

        return [node for _, node in sorted(enumerate(layer), key=key)]

    for _ in range(ORDERING_SWEEPS):
        for i in range(1, len(layers)):
            above = {node: pos for pos, node in enumerate(layers[i - 1])}
            layers[i] = sweep(layers[i], P.predecessors, above)
        for i in range(len(layers) - 2, -1, -1):
            below = {node: pos for pos, node in enumerate(layers[i + 1])}
            layers[i] = sweep(layers[i], P.successors, below)

    for a, b in spouse_pairs(H):
        layer = layers[ranks[a]]
        if ranks[a] == ranks[b] and abs(layer.index(a) - layer.index(b)) > 1:
            layer.remove(b)
            layer.insert(layer.index(a) + 1, b)

    return layers


def layered_positions(
    nodes: Sequence[LayoutNode], edges: Sequence[LayoutEdge], orientation: str, profile: str
) -> dict[str, tuple[float, float]]:
    """Pure-networkx layered layout, each rank centred on the widest one."""
    axes = layout_axes(get_layout_config(profile), orientation)
    H = build_layout_graph(nodes, edges)
    layers = order_layers(H, assign_ranks(H))

    step = axes.extent + axes.sibling_gap
    widest = max(len(layer) for layer in layers)

    positions: dict[str, tuple[float, float]] = {}
    for rank, layer in enumerate(layers):
        shift = (widest - len(layer)) * step / 2
        for i, node in enumerate(layer):
            breadth = shift + i * step
            depth = rank * axes.generation_step
            if orientation == HORIZONTAL:
                positions[node] = (depth, breadth)
            else:
                positions[node] = (breadth, depth)
    return positions
