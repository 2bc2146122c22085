"""Concept graph store and visualization payload."""

import logging
from collections import defaultdict

from .config import GROUP_COLORS
from .models import ConceptNode, ConceptRelation, GraphSnapshot

logger = logging.getLogger(__name__)


class GraphStore:
    """Append/merge-only store of concept nodes and weighted relations.

    Nodes are deduplicated by id, first write wins. Relations are never
    deduplicated (parallel edges are kept) but relations whose endpoints are
    not in the store are dropped at merge time, so every snapshot is safe to
    lay out.
    """

    def __init__(self):
        self._nodes = {}
        self._links = []

    def __len__(self):
        return len(self._nodes)

    def __contains__(self, node_id):
        return node_id in self._nodes

    def get(self, node_id):
        return self._nodes.get(node_id)

    @property
    def link_count(self):
        return len(self._links)

    def merge(self, nodes, relations):
        """Merge proposed nodes and relations.

        Args:
            nodes: iterable of ConceptNode (or dicts in service shape)
            relations: iterable of ConceptRelation (or dicts)

        Returns:
            (added_nodes, added_relations) counts.
        """
        added_nodes = 0
        for node in nodes:
            if not isinstance(node, ConceptNode):
                node = ConceptNode.model_validate(node)
            if node.id in self._nodes:
                continue
            self._nodes[node.id] = node
            added_nodes += 1

        added_links = 0
        dropped = 0
        for rel in relations:
            if not isinstance(rel, ConceptRelation):
                rel = ConceptRelation.model_validate(rel)
            if rel.source not in self._nodes or rel.target not in self._nodes:
                dropped += 1
                continue
            self._links.append(rel)
            added_links += 1

        if dropped:
            logger.debug("Dropped %d dangling relations", dropped)
        return added_nodes, added_links

    def snapshot(self):
        return GraphSnapshot(nodes=tuple(self._nodes.values()),
                             links=tuple(self._links))


def prepare_viz_data(snapshot, positions=None):
    """Prepare graph data for a force-directed view.

    Args:
        snapshot: GraphSnapshot
        positions: optional dict node_id -> (x, y) from the layout engine

    Returns dict with "nodes" and "links".
    """
    positions = positions or {}
    degree = defaultdict(int)
    for link in snapshot.links:
        degree[link.source] += 1
        degree[link.target] += 1

    nodes = []
    for n in snapshot.nodes:
        entry = {
            "id": n.id,
            "group": n.group,
            "val": n.weight,
            "desc": n.description,
            "color": GROUP_COLORS[n.group % len(GROUP_COLORS)],
            "degree": degree.get(n.id, 0),
        }
        if n.id in positions:
            entry["x"], entry["y"] = positions[n.id]
        nodes.append(entry)

    links = [
        {"source": link.source, "target": link.target, "value": link.strength}
        for link in snapshot.links
    ]
    return {"nodes": nodes, "links": links}
