# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

from typing import Dict, List, Optional, Union

import networkx as nx

from coreason_olo.core.canvas import CanvasEdge, CanvasGraph, CanvasNode, NodeRole, edge_id
from coreason_olo.utils.logger import logger

START_NODE_ID = "node-start"
END_NODE_ID = "node-end"
CAPABILITY_PREFIX = "cap-"


class PlacementError(Exception):
    """Raised when a connection would give a group a second child of the same structural family."""

    def __init__(self, group_id: str, family: str) -> None:
        super().__init__(f"This group may have only one {family} as a direct child.")
        self.group_id = group_id
        self.family = family


class CanvasTopology:
    """Read-only structural view over a Canvas Graph.

    Nodes and edges are loaded into a networkx DiGraph once; every query is a
    traversal over that adjacency and never changes the canvas.
    """

    def __init__(self, canvas: CanvasGraph) -> None:
        self.canvas = canvas
        self.graph = nx.DiGraph()
        for node in canvas.nodes:
            self.graph.add_node(node.id, node=node, role=node.role)
        for edge in canvas.edges:
            if edge.source not in self.graph or edge.target not in self.graph:
                logger.debug(f"Ignoring dangling edge {edge.id}")
                continue
            self.graph.add_edge(edge.source, edge.target, id=edge.id)

    def node(self, node_id: str) -> Optional[CanvasNode]:
        if node_id not in self.graph:
            return None
        node: CanvasNode = self.graph.nodes[node_id]["node"]
        return node

    def role(self, node_id: str) -> Optional[NodeRole]:
        if node_id not in self.graph:
            return None
        role: NodeRole = self.graph.nodes[node_id]["role"]
        return role

    def successors(self, node_id: str) -> List[str]:
        """Targets of the node's outgoing edges, in edge insertion order."""
        if node_id not in self.graph:
            return []
        return list(self.graph.successors(node_id))

    def start_node(self) -> Optional[str]:
        if self.role(START_NODE_ID) is NodeRole.START:
            return START_NODE_ID
        for node_id, role in self.graph.nodes(data="role"):
            if role is NodeRole.START:
                return str(node_id)
        return None

    def end_node(self) -> Optional[str]:
        if self.role(END_NODE_ID) is NodeRole.END:
            return END_NODE_ID
        for node_id, role in self.graph.nodes(data="role"):
            if role is NodeRole.END:
                return str(node_id)
        return None

    def capability_of(self, node_id: str) -> Optional[str]:
        """Capability name a main-flow node stands for, if any."""
        node = self.node(node_id)
        if node is None or node.role is not NodeRole.GROUP:
            return None
        declared = node.data.get("_capability")
        if isinstance(declared, str) and declared:
            return declared
        if node_id.startswith(CAPABILITY_PREFIX) and len(node_id) > len(CAPABILITY_PREFIX):
            return node_id[len(CAPABILITY_PREFIX) :]
        return None

    # -- Placement ---------------------------------------------------------

    def can_place_as_child(
        self,
        group_id: str,
        kind: Union[NodeRole, str],
        replacing_edge_id: Optional[str] = None,
    ) -> bool:
        """Checks whether a node of the given kind may become a direct child of a group.

        A group holds at most one child of the condition family and at most one
        child of the parallel family. Non-group parents accept anything.

        Args:
            group_id: The would-be parent node.
            kind: The proposed child's role, or its raw pluginId.
            replacing_edge_id: An existing edge that the new connection replaces.

        Returns:
            bool: True if the placement is allowed.
        """
        return self._blocking_family(group_id, kind, replacing_edge_id) is None

    def check_connection(self, source: str, target: str, replacing_edge_id: Optional[str] = None) -> None:
        """Validates a proposed edge source -> target.

        Raises:
            PlacementError: If the source is a group that already holds a child of
                the target's family.
        """
        target_role = self.role(target)
        if target_role is None:
            return
        family = self._blocking_family(source, target_role, replacing_edge_id)
        if family is not None:
            raise PlacementError(source, family)

    def placement_violations(self, group_id: str) -> List[str]:
        """Families of which a group already holds more than one direct child."""
        if self.role(group_id) is not NodeRole.GROUP:
            return []
        counts: Dict[str, int] = {}
        for child in self.successors(group_id):
            family = self.graph.nodes[child]["role"].family
            if family is not None:
                counts[family] = counts.get(family, 0) + 1
        return [family for family, count in counts.items() if count > 1]

    def _blocking_family(
        self, group_id: str, kind: Union[NodeRole, str], replacing_edge_id: Optional[str]
    ) -> Optional[str]:
        if self.role(group_id) is not NodeRole.GROUP:
            return None
        role = kind if isinstance(kind, NodeRole) else NodeRole.from_plugin_id(kind)
        family = role.family
        if family is None:
            return None
        for child in self.successors(group_id):
            if replacing_edge_id is not None and self.graph.edges[group_id, child].get("id") == replacing_edge_id:
                continue
            if self.graph.nodes[child]["role"].family == family:
                return family
        return None

    # -- Traversal ---------------------------------------------------------

    def main_flow(self) -> List[str]:
        """Capability node ids along the Start -> End chain, in order.

        From each node, the next step is a capability node of a different
        capability (ids starting with "cap-" preferred) or the End node. A
        revisited node stops the walk.
        """
        current = self.start_node()
        if current is None:
            return []
        flow: List[str] = []
        visited = {current}
        current_capability: Optional[str] = None
        while True:
            step = self._next_main_step(current, current_capability)
            if step is None or step in visited or self.role(step) is NodeRole.END:
                break
            visited.add(step)
            flow.append(step)
            current = step
            current_capability = self.capability_of(step)
        return flow

    def _next_main_step(self, node_id: str, current_capability: Optional[str]) -> Optional[str]:
        preferred: List[str] = []
        others: List[str] = []
        end: Optional[str] = None
        for target in self.successors(node_id):
            if self.role(target) is NodeRole.END:
                end = end or target
                continue
            capability = self.capability_of(target)
            if capability is None or capability == current_capability:
                continue
            # Content groups carry the same _capability as their parent, so only
            # a different capability moves the main flow forward.
            if target.startswith(CAPABILITY_PREFIX):
                preferred.append(target)
            else:
                others.append(target)
        if preferred:
            return preferred[0]
        if others:
            return others[0]
        return end

    def longest_chain(self) -> List[str]:
        """Longest simple Start -> End chain, Start and End included.

        Uses the DAG longest path over nodes lying on some Start -> End path;
        falls back to a greedy walk when End is missing or the graph is cyclic.
        """
        start = self.start_node()
        if start is None:
            return []
        end = self.end_node()
        if end is not None and nx.has_path(self.graph, start, end):
            on_path = (nx.descendants(self.graph, start) & nx.ancestors(self.graph, end)) | {start, end}
            sub = self.graph.subgraph(on_path)
            if nx.is_directed_acyclic_graph(sub):
                return [str(n) for n in nx.dag_longest_path(sub)]
        return self._greedy_chain(start)

    def _greedy_chain(self, start: str) -> List[str]:
        chain = [start]
        seen = {start}
        current = start
        while True:
            step = next(
                (t for t in self.successors(current) if t not in seen and self.role(t) is not NodeRole.END),
                None,
            )
            if step is None:
                break
            seen.add(step)
            chain.append(step)
            current = step
        return chain


def connect(
    canvas: CanvasGraph,
    source: str,
    target: str,
    replacing_edge_id: Optional[str] = None,
) -> CanvasGraph:
    """Returns a new canvas with source -> target added, or replacing the given edge.

    The input canvas is never modified.

    Raises:
        PlacementError: If the connection would violate the group placement rule.
    """
    topology = CanvasTopology(canvas)
    topology.check_connection(source, target, replacing_edge_id)
    updated = canvas.model_copy(deep=True)
    new_edge = CanvasEdge(source=source, target=target)
    if replacing_edge_id is not None:
        for idx, edge in enumerate(updated.edges):
            if edge.id == replacing_edge_id:
                updated.edges[idx] = new_edge
                break
        else:
            updated.edges.append(new_edge)
    elif not any(e.source == source and e.target == target for e in updated.edges):
        updated.edges.append(new_edge)
    # A rewired edge may duplicate an existing one.
    seen = set()
    deduped = []
    for edge in updated.edges:
        key = (edge.source, edge.target)
        if key in seen:
            continue
        seen.add(key)
        deduped.append(edge)
    updated.edges = deduped
    logger.debug(f"Connected {edge_id(source, target)}")
    return updated


def disconnect(canvas: CanvasGraph, edge: str) -> CanvasGraph:
    """Returns a new canvas without the given edge id."""
    updated = canvas.model_copy(deep=True)
    updated.edges = [e for e in updated.edges if e.id != edge]
    return updated
