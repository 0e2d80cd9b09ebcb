# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel

from coreason_olo.core.canvas import CanvasEdge, CanvasGraph, CanvasNode, PluginKey, Position
from coreason_olo.core.document import PluginRef, Stage, load_root, parse_document, select_pipeline
from coreason_olo.engine.topology import END_NODE_ID, START_NODE_ID
from coreason_olo.utils.logger import logger


class LayoutSettings(BaseModel):
    """Fixed geometry of the systematic layout."""

    node_width: float = 140
    node_height: float = 44
    gap_x: float = 50
    main_row_y: float = 40
    origin_x: float = 30
    cap_to_group_dy: float = 70
    group_to_content_dy: float = 58
    swim_lane_dy: float = 52

    @property
    def step_x(self) -> float:
        return self.node_width + self.gap_x

    def capability_center_x(self, index: int) -> float:
        """Center of the index-th capability; slot 0 of the main row is Start."""
        return self.origin_x + self.step_x * (index + 1) + self.node_width / 2


def minimal_canvas(settings: Optional[LayoutSettings] = None) -> CanvasGraph:
    """Start connected straight to End, so the canvas is never blank."""
    settings = settings or LayoutSettings()
    return CanvasGraph(
        nodes=[
            CanvasNode(
                id=START_NODE_ID,
                plugin_id="start",
                position=Position(x=settings.origin_x, y=settings.main_row_y),
                data={"label": "Start"},
            ),
            CanvasNode(
                id=END_NODE_ID,
                plugin_id="end",
                position=Position(x=settings.origin_x + settings.step_x, y=settings.main_row_y),
                data={"label": "End"},
            ),
        ],
        edges=[CanvasEdge(source=START_NODE_ID, target=END_NODE_ID)],
    )


def merge_positions(computed: CanvasGraph, previous: Optional[CanvasGraph]) -> CanvasGraph:
    """Keeps previous positions for node ids present in both graphs.

    Structure and edges always come from the computed graph.
    """
    if previous is None or not previous.nodes:
        return computed
    known = {node.id: node.position for node in previous.nodes}
    merged = computed.model_copy(deep=True)
    for node in merged.nodes:
        if node.id in known:
            node.position = known[node.id].model_copy()
    return merged


def plugin_node_data(child: PluginRef) -> Dict[str, Any]:
    """Data bag of a plugin node; keeps everything the fold needs to rebuild the child."""
    data: Dict[str, Any] = {"label": child.label, "_pluginName": child.name}
    if child.plugin_type is not None:
        data["_pluginType"] = child.plugin_type
    if child.id:
        data["_pluginId"] = child.id
    if child.version:
        data["_pluginVersion"] = child.version
    data.update(child.timeouts())
    return data


class _CanvasBuilder:
    def __init__(self) -> None:
        self.nodes: List[CanvasNode] = []
        self.edges: List[CanvasEdge] = []

    def node(self, node_id: str, plugin_id: str, x: float, y: float, data: Dict[str, Any]) -> str:
        self.nodes.append(CanvasNode(id=node_id, plugin_id=plugin_id, position=Position(x=x, y=y), data=data))
        return node_id

    def edge(self, source: str, target: str) -> None:
        self.edges.append(CanvasEdge(source=source, target=target))

    def plugin(self, node_id: str, child: PluginRef, x: float, y: float) -> str:
        plugin_id = PluginKey.for_child(child.name, child.id, child.version, child.plugin_type).format()
        return self.node(node_id, plugin_id, x, y, plugin_node_data(child))

    def build(self) -> CanvasGraph:
        return CanvasGraph(nodes=self.nodes, edges=self.edges)


class GraphProjector:
    """
    Projects a pipeline's capability tree onto a positioned canvas.

    The pipeline is the source of truth for structure; a previous canvas only
    contributes node positions.
    """

    def __init__(self, settings: Optional[LayoutSettings] = None) -> None:
        self.settings = settings or LayoutSettings()

    def project_document(
        self,
        document: Union[str, bytes, Mapping[str, Any], None],
        pipeline_name: Optional[str] = None,
        previous: Optional[CanvasGraph] = None,
    ) -> CanvasGraph:
        """Projects the named pipeline (or the first one) of a Pipeline Document.

        Malformed documents and documents without pipelines yield the minimal
        Start -> End canvas.
        """
        parsed = parse_document(document)
        if parsed is None:
            return merge_positions(minimal_canvas(self.settings), previous)
        _, pipeline = select_pipeline(parsed, pipeline_name)
        return self.project_pipeline(pipeline, previous)

    def project_pipeline(
        self, pipeline: Optional[Mapping[str, Any]], previous: Optional[CanvasGraph] = None
    ) -> CanvasGraph:
        root = load_root(pipeline)
        if not root:
            return merge_positions(minimal_canvas(self.settings), previous)
        return merge_positions(self.project_root(root), previous)

    def project_root(self, root: Mapping[str, Stage]) -> CanvasGraph:
        s = self.settings
        builder = _CanvasBuilder()

        x = s.origin_x
        builder.node(START_NODE_ID, "start", x, s.main_row_y, {"label": "Start"})
        x += s.step_x
        cap_ids: List[str] = []
        for capability, stage in root.items():
            data: Dict[str, Any] = {
                "label": capability,
                "_capability": capability,
                "executionMode": stage.execution_mode,
            }
            if stage.async_completion_policy is not None:
                data["asyncCompletionPolicy"] = stage.async_completion_policy
            if stage.async_output_merge_policy is not None:
                data["asyncOutputMergePolicy"] = stage.async_output_merge_policy
            cap_ids.append(builder.node(f"cap-{capability}", "group", x, s.main_row_y, data))
            x += s.step_x
        builder.node(END_NODE_ID, "end", x, s.main_row_y, {"label": "End"})

        previous_id = START_NODE_ID
        for cap_id in cap_ids:
            builder.edge(previous_id, cap_id)
            previous_id = cap_id
        builder.edge(previous_id, END_NODE_ID)

        for index, (capability, stage) in enumerate(root.items()):
            self._project_content(builder, index, capability, stage)

        logger.debug(f"Projected {len(root)} capabilities into {len(builder.nodes)} nodes")
        return builder.build()

    def _project_content(self, builder: _CanvasBuilder, index: int, capability: str, stage: Stage) -> None:
        s = self.settings
        cap_id = f"cap-{capability}"
        center_x = s.capability_center_x(index)
        left_x = center_x - s.node_width / 2
        group_y = s.main_row_y + s.cap_to_group_dy
        content_y = group_y + s.group_to_content_dy
        children = stage.children or []

        if stage.execution_mode == "ASYNC" and len(children) > 1:
            self._project_fork(builder, capability, stage, cap_id, left_x, content_y)
            return

        group_id = builder.node(
            f"grp-{capability}",
            "group",
            left_x,
            group_y,
            {"label": "Group", "executionMode": stage.execution_mode, "_capability": capability},
        )
        builder.edge(cap_id, group_id)

        if stage.is_branch:
            self._project_condition(builder, capability, stage, group_id, center_x, content_y)
        elif len(children) == 1:
            plugin_id = builder.plugin(f"plg-{capability}-0", children[0], left_x, content_y)
            builder.edge(group_id, plugin_id)
        elif len(children) > 1:
            self._project_fork(builder, capability, stage, group_id, left_x, content_y)

    def _project_fork(
        self, builder: _CanvasBuilder, capability: str, stage: Stage, parent_id: str, x: float, content_y: float
    ) -> None:
        s = self.settings
        children = stage.children or []
        is_sync = stage.execution_mode == "SYNC"
        fork_id = builder.node(
            f"fork-{capability}",
            "fork",
            x,
            content_y,
            {
                "label": "Sync (Fork)" if is_sync else "ASYNC FORK",
                "executionMode": stage.execution_mode,
                "_capability": capability,
            },
        )
        join_y = content_y + s.swim_lane_dy + len(children) * s.swim_lane_dy * 2
        join_id = builder.node(
            f"join-{capability}", "reducer", x, join_y, {"label": "Join (Reducer)", "_capability": capability}
        )
        builder.edge(parent_id, fork_id)

        for i, child in enumerate(children):
            lane_y = content_y + s.swim_lane_dy + i * s.swim_lane_dy * 2
            lane_id = builder.node(f"lane-{capability}-{i}", "group", x, lane_y, {"label": "Group", "_swimLane": is_sync})
            plugin_id = builder.plugin(f"plg-{capability}-{i}", child, x, lane_y + s.swim_lane_dy)
            builder.edge(fork_id, lane_id)
            builder.edge(lane_id, plugin_id)
            builder.edge(plugin_id, join_id)

    def _project_condition(
        self,
        builder: _CanvasBuilder,
        capability: str,
        stage: Stage,
        group_id: str,
        center_x: float,
        content_y: float,
    ) -> None:
        s = self.settings
        cond_id = builder.node(
            f"cond-{capability}",
            "condition",
            center_x - s.node_width / 2,
            content_y,
            {"label": "If/Else", "conditionPlugin": stage.condition},
        )
        builder.edge(group_id, cond_id)

        # (node id, data, plugin id infix, children) per branch, left to right
        branches = [
            (
                f"then-{capability}",
                {"label": "Then", "_branch": "then"},
                "then",
                stage.then_group.children if stage.then_group else [],
            )
        ]
        for k, branch in enumerate(stage.elseif_branches or []):
            branches.append(
                (
                    f"elif-{capability}-{k}",
                    {"label": "Else If", "_branch": "elif", "conditionPlugin": branch.condition},
                    f"elif{k}",
                    branch.then_group.children if branch.then_group else [],
                )
            )
        branches.append(
            (
                f"else-{capability}",
                {"label": "Else", "_branch": "else"},
                "else",
                stage.else_group.children if stage.else_group else [],
            )
        )

        row_width = len(branches) * s.node_width + (len(branches) - 1) * s.gap_x
        branch_y = content_y + s.swim_lane_dy
        for k, (branch_id, data, infix, children) in enumerate(branches):
            x = center_x - row_width / 2 + k * s.step_x
            builder.node(branch_id, "group", x, branch_y, data)
            builder.edge(cond_id, branch_id)
            for i, child in enumerate(children):
                plugin_id = builder.plugin(
                    f"plg-{capability}-{infix}-{i}", child, x, branch_y + (i + 1) * s.swim_lane_dy
                )
                builder.edge(branch_id, plugin_id)
