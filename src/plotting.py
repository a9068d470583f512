"""Render adapter and matplotlib plotting for laid-out family trees."""

from collections.abc import Sequence
from pathlib import Path

import matplotlib.pyplot as plt
from matplotlib.patches import FancyBboxPatch

from layout import (
    COUPLE_NODE,
    DESKTOP,
    PARENT_CHILD_EDGE,
    SPOUSE_EDGE,
    LayoutEdge,
    LayoutNode,
    get_layout_config,
)
from models import FEMALE, MALE, Person, person_to_dict
from parsing import extract_year


EDGE_STYLES = {
    SPOUSE_EDGE: {"stroke": "#f472b6", "strokeWidth": 3, "strokeDasharray": "5,5"},
    PARENT_CHILD_EDGE: {"stroke": "#94a3b8", "strokeWidth": 2},
}

SEX_COLORS = {MALE: "lightblue", FEMALE: "lightpink"}
DEFAULT_COLOR = "lightgray"
ROOT_BORDER = "#2563eb"


def to_render_graph(nodes: Sequence[LayoutNode], edges: Sequence[LayoutEdge]) -> dict:
    """
    Translate layout output into the node/edge dicts a canvas renderer consumes.

    Person data is embedded without photos.
    """
    render_nodes = []
    for node in nodes:
        if node.kind == COUPLE_NODE:
            data = {
                "person1": person_to_dict(node.persons[0], include_photos=False),
                "person2": person_to_dict(node.persons[1], include_photos=False),
            }
        else:
            data = {"person": person_to_dict(node.persons[0], include_photos=False)}
        data.update(isRoot=node.is_root, compact=node.compact, orientation=node.orientation)
        render_nodes.append(
            {
                "id": node.id,
                "type": node.kind,
                "position": {"x": node.x, "y": node.y},
                "data": data,
            }
        )

    render_edges = [
        {
            "id": edge.id,
            "source": edge.source,
            "target": edge.target,
            "type": "smoothstep",
            "data": {"relationshipType": edge.kind},
            "style": dict(EDGE_STYLES[edge.kind]),
        }
        for edge in edges
    ]
    return {"nodes": render_nodes, "edges": render_edges}


def person_label(person: Person) -> str:
    birth_year = extract_year(person.birth.date) if person.birth else None
    death_year = extract_year(person.death.date) if person.death else None
    years = f"{birth_year or ''}-{death_year or ''}" if birth_year or death_year else ""
    return "\n".join(p for p in (person.given_names, person.surname, years) if p)


def node_label(node: LayoutNode) -> str:
    if node.kind == COUPLE_NODE:
        first, second = node.persons
        return f"{first.full_name}\n&\n{second.full_name}"
    return person_label(node.persons[0])


def node_color(node: LayoutNode) -> str:
    return SEX_COLORS.get(node.persons[0].sex, DEFAULT_COLOR) if node.kind != COUPLE_NODE else DEFAULT_COLOR


def plot_layout(
    nodes: Sequence[LayoutNode],
    edges: Sequence[LayoutEdge],
    profile: str = DESKTOP,
    output_path: Path | None = None,
):
    """
    Draw the laid-out tree: rounded boxes coloured by sex, grey parent-child
    lines and dashed pink spouse lines.

    Args:
        nodes: Positioned nodes (top-left corner coordinates)
        edges: Edges between node ids
        profile: Density profile that sizes the boxes
        output_path: Image file to write (format from the extension). If None, displays interactively.
    """
    config = get_layout_config(profile)
    width, height = config.node_width, config.node_height
    centers = {node.id: (node.x + width / 2, node.y + height / 2) for node in nodes}

    fig, ax = plt.subplots(figsize=(20, 16))

    for edge in edges:
        if edge.source not in centers or edge.target not in centers:
            continue
        style = EDGE_STYLES[edge.kind]
        (x1, y1), (x2, y2) = centers[edge.source], centers[edge.target]
        ax.plot(
            [x1, x2],
            [y1, y2],
            color=style["stroke"],
            linewidth=style["strokeWidth"] / 2,
            linestyle="--" if "strokeDasharray" in style else "-",
            zorder=1,
        )

    for node in nodes:
        ax.add_patch(
            FancyBboxPatch(
                (node.x, node.y),
                width,
                height,
                boxstyle="round,pad=0,rounding_size=8",
                facecolor=node_color(node),
                edgecolor=ROOT_BORDER if node.is_root else "darkgray",
                linewidth=2 if node.is_root else 1,
                zorder=2,
            )
        )
        ax.text(
            node.x + width / 2,
            node.y + height / 2,
            node_label(node),
            ha="center",
            va="center",
            fontsize=8,
            zorder=3,
        )

    if nodes:
        xs = [n.x for n in nodes]
        ys = [n.y for n in nodes]
        ax.set_xlim(min(xs) - width / 2, max(xs) + width * 1.5)
        # Screen coordinates: y grows downwards
        ax.set_ylim(max(ys) + height * 1.5, min(ys) - height / 2)
    ax.set_aspect("equal")
    ax.axis("off")
    fig.tight_layout()

    if output_path:
        fig.savefig(output_path)
        plt.close(fig)
        print(f"Graph saved to {output_path}")
    else:
        plt.show()
