# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from coreason_olo.core.canvas import CanvasGraph, NodeRole
from coreason_olo.core.document import (
    BranchGroup,
    ElseIfBranch,
    PluginRef,
    Stage,
    TimeoutDefaults,
    apply_root,
)
from coreason_olo.core.interfaces import ComponentCatalog
from coreason_olo.engine.resolver import PluginRefResolver
from coreason_olo.engine.topology import CanvasTopology
from coreason_olo.utils.logger import logger

DEFAULT_CAPABILITY = "default"
NodeProperties = Mapping[str, Mapping[str, Any]]

_TRAILING_INDEX = re.compile(r"(\d+)$")


def _index_suffix(node_id: str) -> Optional[int]:
    match = _TRAILING_INDEX.search(node_id)
    return int(match.group(1)) if match else None


def _ordered_by_suffix(node_ids: List[str]) -> List[str]:
    """Sorts by numeric id suffix; ids without one keep insertion order after the rest."""
    keyed = [(_index_suffix(n), pos, n) for pos, n in enumerate(node_ids)]
    keyed.sort(key=lambda item: (item[0] is None, item[0] if item[0] is not None else 0, item[1]))
    return [n for _, _, n in keyed]


class GraphFolder:
    """
    Folds a canvas back into a pipeline's capability -> Stage map.

    The fold regenerates the whole root from the canvas every time. Anything it
    cannot interpret is dropped with a warning; it never raises for a malformed
    canvas.
    """

    def __init__(self, catalog: Optional[ComponentCatalog] = None) -> None:
        self.catalog = catalog

    def fold(
        self,
        canvas: CanvasGraph,
        node_properties: Optional[NodeProperties] = None,
        timeout_defaults: Optional[TimeoutDefaults] = None,
    ) -> Dict[str, Stage]:
        topology = CanvasTopology(canvas)
        resolver = PluginRefResolver(self.catalog, timeout_defaults)
        properties: NodeProperties = node_properties or {}

        main_flow = topology.main_flow()
        if not main_flow:
            return self._fold_default_chain(topology, resolver, properties)

        root: Dict[str, Stage] = {}
        for cap_id in main_flow:
            capability = topology.capability_of(cap_id)
            if capability is None or capability in root:
                continue
            try:
                stage = self._fold_capability(topology, resolver, properties, cap_id, capability)
            except (ValidationError, ValueError) as e:
                logger.warning(f"Omitting capability {capability}: {e}")
                continue
            if stage is not None:
                root[capability] = stage
        return root

    def _fold_default_chain(
        self, topology: CanvasTopology, resolver: PluginRefResolver, properties: NodeProperties
    ) -> Dict[str, Stage]:
        children: List[PluginRef] = []
        for node_id in topology.longest_chain():
            node = topology.node(node_id)
            if node is None or node.role is not NodeRole.PLUGIN:
                continue
            children.append(resolver.resolve(node, None, properties.get(node_id)))
        if not children:
            return {}
        logger.info(f"No capability chain found; folded {len(children)} plugin(s) into '{DEFAULT_CAPABILITY}'")
        return {DEFAULT_CAPABILITY: Stage(execution_mode="SYNC", children=children)}

    def _fold_capability(
        self,
        topology: CanvasTopology,
        resolver: PluginRefResolver,
        properties: NodeProperties,
        cap_id: str,
        capability: str,
    ) -> Optional[Stage]:
        if topology.placement_violations(cap_id):
            logger.warning(f"Omitting capability {capability}: placement rule violated at {cap_id}")
            return None

        cap_node = topology.node(cap_id)
        cap_data = cap_node.data if cap_node is not None else {}
        policies = {
            key: cap_data[key]
            for key in ("asyncCompletionPolicy", "asyncOutputMergePolicy")
            if cap_data.get(key) is not None
        }

        groups: List[str] = []
        forks: List[str] = []
        for target in topology.successors(cap_id):
            role = topology.role(target)
            if role is NodeRole.GROUP and topology.capability_of(target) in (None, capability):
                if target.startswith("cap-"):
                    continue
                groups.append(target)
            elif role is NodeRole.FORK:
                forks.append(target)

        preferred_group = f"grp-{capability}"
        if groups:
            group_id = preferred_group if preferred_group in groups else groups[0]
            return self._fold_group(topology, resolver, properties, group_id, capability, cap_data, policies)
        if forks:
            children = self._fold_fork(topology, resolver, properties, forks[0], capability)
            return Stage.model_validate({"executionMode": "ASYNC", "children": children, **policies})

        logger.debug(f"Capability {capability} has no group or fork; omitted")
        return None

    def _fold_group(
        self,
        topology: CanvasTopology,
        resolver: PluginRefResolver,
        properties: NodeProperties,
        group_id: str,
        capability: str,
        cap_data: Mapping[str, Any],
        policies: Dict[str, Any],
    ) -> Optional[Stage]:
        if topology.placement_violations(group_id):
            logger.warning(f"Omitting capability {capability}: placement rule violated at {group_id}")
            return None

        group_node = topology.node(group_id)
        mode = group_node.data.get("executionMode") if group_node is not None else None
        if mode not in ("SYNC", "ASYNC"):
            mode = cap_data.get("executionMode") if cap_data.get("executionMode") in ("SYNC", "ASYNC") else "SYNC"

        targets = topology.successors(group_id)
        conditions = [t for t in targets if topology.role(t) is NodeRole.CONDITION]
        if conditions:
            branch = self._fold_condition(topology, resolver, properties, conditions[0], capability)
            return Stage.model_validate({"executionMode": mode, **branch, **policies})

        forks = [t for t in targets if topology.role(t) is NodeRole.FORK]
        if forks:
            children = self._fold_fork(topology, resolver, properties, forks[0], capability)
            return Stage.model_validate({"executionMode": mode, "children": children, **policies})

        children = self._plugins_under(topology, resolver, properties, group_id, capability)
        return Stage.model_validate({"executionMode": mode, "children": children, **policies})

    def _fold_fork(
        self,
        topology: CanvasTopology,
        resolver: PluginRefResolver,
        properties: NodeProperties,
        fork_id: str,
        capability: str,
    ) -> List[PluginRef]:
        lanes = [
            t for t in topology.successors(fork_id) if topology.role(t) in (NodeRole.GROUP, NodeRole.PLUGIN)
        ]
        children: List[PluginRef] = []
        for lane_id in _ordered_by_suffix(lanes):
            if topology.role(lane_id) is NodeRole.PLUGIN:
                plugin_id: Optional[str] = lane_id
            else:
                plugin_id = next(
                    (t for t in topology.successors(lane_id) if topology.role(t) is NodeRole.PLUGIN), None
                )
            if plugin_id is None:
                continue
            node = topology.node(plugin_id)
            if node is not None:
                children.append(resolver.resolve(node, capability, properties.get(plugin_id)))
        return children

    def _plugins_under(
        self,
        topology: CanvasTopology,
        resolver: PluginRefResolver,
        properties: NodeProperties,
        parent_id: str,
        capability: str,
    ) -> List[PluginRef]:
        children: List[PluginRef] = []
        for target in topology.successors(parent_id):
            node = topology.node(target)
            if node is not None and node.role is NodeRole.PLUGIN:
                children.append(resolver.resolve(node, capability, properties.get(target)))
        return children

    def _fold_condition(
        self,
        topology: CanvasTopology,
        resolver: PluginRefResolver,
        properties: NodeProperties,
        cond_id: str,
        capability: str,
    ) -> Dict[str, Any]:
        cond_node = topology.node(cond_id)
        condition = cond_node.data.get("conditionPlugin") if cond_node is not None else None
        if not condition:
            stored = properties.get(cond_id) or {}
            condition = stored.get("name") or condition
        if not isinstance(condition, str):
            # A condition node keeps the stage conditional even before a plugin is chosen.
            condition = ""

        then_group: Optional[str] = None
        else_group: Optional[str] = None
        elif_groups: List[str] = []
        for target in topology.successors(cond_id):
            kind = self._branch_kind(topology, target)
            if kind == "then" and then_group is None:
                then_group = target
            elif kind == "else" and else_group is None:
                else_group = target
            elif kind == "elif":
                elif_groups.append(target)

        branch: Dict[str, Any] = {"condition": condition}
        then_children = self._branch_children(topology, resolver, properties, then_group, capability)
        if then_children:
            branch["thenGroup"] = BranchGroup(children=then_children)
        elseif_branches: List[ElseIfBranch] = []
        for elif_id in _ordered_by_suffix(elif_groups):
            elif_node = topology.node(elif_id)
            elif_condition = elif_node.data.get("conditionPlugin") if elif_node is not None else None
            elif_children = self._branch_children(topology, resolver, properties, elif_id, capability)
            elseif_branches.append(
                ElseIfBranch(
                    condition=elif_condition if isinstance(elif_condition, str) else None,
                    then_group=BranchGroup(children=elif_children) if elif_children else None,
                )
            )
        if elseif_branches:
            branch["elseifBranches"] = elseif_branches
        else_children = self._branch_children(topology, resolver, properties, else_group, capability)
        if else_children:
            branch["elseGroup"] = BranchGroup(children=else_children)
        return branch

    def _branch_children(
        self,
        topology: CanvasTopology,
        resolver: PluginRefResolver,
        properties: NodeProperties,
        branch_id: Optional[str],
        capability: str,
    ) -> List[PluginRef]:
        if branch_id is None:
            return []
        return self._plugins_under(topology, resolver, properties, branch_id, capability)

    @staticmethod
    def _branch_kind(topology: CanvasTopology, node_id: str) -> Optional[str]:
        node = topology.node(node_id)
        if node is None or node.role is not NodeRole.GROUP:
            return None
        hint = node.data.get("_branch")
        if hint in ("then", "else", "elif"):
            return str(hint)
        for prefix in ("then", "else", "elif"):
            if node_id.startswith(f"{prefix}-"):
                return prefix
        return None


def fold_into_document(
    document: Mapping[str, Any],
    pipeline_name: str,
    canvas: CanvasGraph,
    node_properties: Optional[NodeProperties] = None,
    catalog: Optional[ComponentCatalog] = None,
) -> Tuple[Dict[str, Any], Dict[str, Stage]]:
    """Folds the canvas and writes the result over the pipeline's root.

    Activity timeout defaults are read from the document itself.

    Returns:
        Tuple[Dict[str, Any], Dict[str, Stage]]: The new document and the folded root.
    """
    root = GraphFolder(catalog).fold(canvas, node_properties, TimeoutDefaults.from_document(document))
    return apply_root(document, pipeline_name, root), root
