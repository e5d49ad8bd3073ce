"""Graph model: adjacency maps and root trigger discovery.

Pure functions of the node and edge lists. Edges that reference unknown
node ids are skipped; malformed input yields empty results, never an
exception.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from core.constants import NodeKind
from core.utils import sanitize_node_id
from workflow.models import Edge, Node


Adjacency = Dict[str, List[str]]


def _valid_edges(nodes: List[Node], edges: Iterable[Edge]) -> List[Edge]:
    known = {node.id for node in nodes}
    return [e for e in edges if e.source in known and e.target in known]


def build_adjacency(nodes: Iterable[Node], edges: Iterable[Edge]) -> Tuple[Adjacency, Adjacency]:
    """Build (by_source, by_target) neighbor lists, preserving edge order."""
    by_source: Adjacency = {}
    by_target: Adjacency = {}
    for edge in _valid_edges(list(nodes), edges):
        by_source.setdefault(edge.source, []).append(edge.target)
        by_target.setdefault(edge.target, []).append(edge.source)
    return by_source, by_target


def find_root_triggers(nodes: Iterable[Node], edges: Iterable[Edge]) -> List[str]:
    """Ids of trigger nodes without any incoming edge, in node order."""
    nodes = list(nodes)
    has_incoming = {edge.target for edge in _valid_edges(nodes, edges)}
    return [
        node.id
        for node in nodes
        if node.kind == NodeKind.TRIGGER.value and node.id not in has_incoming
    ]


def find_sanitized_collisions(nodes: Iterable[Node]) -> Dict[str, List[str]]:
    """Group distinct raw node ids that share one sanitized output key."""
    groups: Dict[str, List[str]] = {}
    for node in nodes:
        ids = groups.setdefault(sanitize_node_id(node.id), [])
        if node.id not in ids:
            ids.append(node.id)
    return {key: ids for key, ids in groups.items() if len(ids) > 1}


@dataclass
class WorkflowGraph:
    """Node lookup plus adjacency maps for one execution."""

    nodes: Dict[str, Node] = field(default_factory=dict)
    by_source: Adjacency = field(default_factory=dict)
    by_target: Adjacency = field(default_factory=dict)
    roots: List[str] = field(default_factory=list)

    @classmethod
    def build(cls, nodes: List[Node], edges: List[Edge]) -> "WorkflowGraph":
        by_source, by_target = build_adjacency(nodes, edges)
        return cls(
            nodes={node.id: node for node in nodes},
            by_source=by_source,
            by_target=by_target,
            roots=find_root_triggers(nodes, edges),
        )

    def successors(self, node_id: str) -> List[str]:
        return self.by_source.get(node_id, [])

    def predecessors(self, node_id: str) -> List[str]:
        return self.by_target.get(node_id, [])
