# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

import copy
import json
import time
from typing import Any, Dict, Mapping, Optional

from coreason_olo.core.canvas import CanvasGraph, CanvasNode, Position
from coreason_olo.core.document import Stage, parse_document, select_pipeline
from coreason_olo.core.interfaces import (
    ComponentCatalog,
    ConfigRecord,
    ConfigStore,
    DraftStore,
    InProgressPayload,
    TemplateRecord,
)
from coreason_olo.engine.folding import fold_into_document
from coreason_olo.engine.projection import GraphProjector
from coreason_olo.engine.topology import connect, disconnect
from coreason_olo.events.autosave import DRAFT_SAVE_DELAY_SECONDS, DraftAutosaver, SaveCoordinator
from coreason_olo.utils.logger import logger

NEW_PIPELINE_DEFAULTS: Dict[str, Any] = {"root": {}, "defaultTimeoutSeconds": 6000, "defaultAsyncCompletionPolicy": "ALL"}


class EditorSession:
    """
    One open editor: a Pipeline Document, the canvas of its selected pipeline and
    the per-node properties edited alongside it.

    Structural edits go through placement validation. Every change schedules a
    debounced draft save when a draft store is attached.
    """

    def __init__(
        self,
        document: Optional[Mapping[str, Any]] = None,
        catalog: Optional[ComponentCatalog] = None,
        config_store: Optional[ConfigStore] = None,
        draft_store: Optional[DraftStore] = None,
        projector: Optional[GraphProjector] = None,
        draft_delay: float = DRAFT_SAVE_DELAY_SECONDS,
    ) -> None:
        self.document: Dict[str, Any] = copy.deepcopy(dict(document)) if document else {"pipelines": {}}
        self.catalog = catalog
        self.config_store = config_store
        self.projector = projector or GraphProjector()
        self.node_properties: Dict[str, Dict[str, Any]] = {}
        self.template_id: Optional[str] = None
        self.config_name: Optional[str] = None
        self.pipeline_name: Optional[str] = None
        self.canvas = CanvasGraph()
        self.saves = SaveCoordinator()
        self.autosaver: Optional[DraftAutosaver[InProgressPayload]] = (
            DraftAutosaver(draft_store.set_in_progress, draft_delay) if draft_store is not None else None
        )
        self._project(None)

    # -- Document level ----------------------------------------------------

    def select_pipeline(self, name: Optional[str]) -> CanvasGraph:
        """Switches to a pipeline (the first one when name is unknown) and re-projects it."""
        self._project(name)
        self._touch()
        return self.canvas

    def _project(self, name: Optional[str]) -> None:
        selected, _ = select_pipeline(parse_document(self.document), name)
        # Positions carry over only within the same pipeline.
        previous = self.canvas if selected == self.pipeline_name else None
        self.pipeline_name = selected
        self.canvas = self.projector.project_document(self.document, selected, previous=previous)

    def apply_template(self, template: TemplateRecord) -> CanvasGraph:
        """Loads a template's document and, when it has one, its stored canvas."""
        self.template_id = template.id
        self.document = parse_document(template.config_json) or {"pipelines": {}}
        self.node_properties = {}
        self.canvas = CanvasGraph()
        stored = self._parse_canvas(template.canvas_json)
        self._project(None)
        if stored is not None and stored.nodes:
            self.canvas = stored
        self._touch()
        return self.canvas

    def restore(self, draft: InProgressPayload) -> CanvasGraph:
        """Reopens an auto-saved draft."""
        self.template_id = draft.template_id
        self.config_name = draft.config_name
        self.document = parse_document(draft.config_json) or {"pipelines": {}}
        stored = self._parse_canvas(draft.canvas_json)
        self.node_properties = {}
        self.canvas = CanvasGraph()
        self._project(draft.selected_pipeline_id)
        if stored is not None and stored.nodes:
            # The draft may hold edits not yet folded into the document.
            self.canvas = stored
        return self.canvas

    def add_pipeline(self, name: Optional[str] = None) -> str:
        """Adds an empty pipeline, or selects it if the name already exists."""
        pipelines = self.document.setdefault("pipelines", {})
        trimmed = name.strip() if name else ""
        if trimmed and trimmed in pipelines:
            self.select_pipeline(trimmed)
            return trimmed
        if not trimmed:
            trimmed = f"pipeline-{len(pipelines) + 1}"
            while trimmed in pipelines:
                trimmed = f"pipeline-{int(time.time() * 1000)}"
        pipelines[trimmed] = copy.deepcopy(NEW_PIPELINE_DEFAULTS)
        self.select_pipeline(trimmed)
        return trimmed

    def delete_pipeline(self) -> Optional[str]:
        """Removes the selected pipeline and selects the first remaining one."""
        pipelines = self.document.get("pipelines") or {}
        if self.pipeline_name is not None:
            pipelines.pop(self.pipeline_name, None)
        self.canvas = CanvasGraph()
        self.select_pipeline(None)
        return self.pipeline_name

    def update_pipeline_defaults(
        self, timeout_seconds: Optional[float] = None, completion_policy: Optional[str] = None
    ) -> None:
        if self.pipeline_name is None:
            return
        pipeline = self.document.setdefault("pipelines", {}).setdefault(self.pipeline_name, {"root": {}})
        if timeout_seconds is not None:
            pipeline["defaultTimeoutSeconds"] = timeout_seconds
        if completion_policy is not None:
            pipeline["defaultAsyncCompletionPolicy"] = completion_policy
        self._touch()

    # -- Canvas edits ------------------------------------------------------

    def connect(self, source: str, target: str, replacing_edge_id: Optional[str] = None) -> CanvasGraph:
        """Adds an edge after placement validation; PlacementError leaves the canvas untouched."""
        self.canvas = connect(self.canvas, source, target, replacing_edge_id)
        self._touch()
        return self.canvas

    def disconnect(self, edge_id: str) -> CanvasGraph:
        self.canvas = disconnect(self.canvas, edge_id)
        self._touch()
        return self.canvas

    def add_node(self, node: CanvasNode) -> CanvasGraph:
        if self.canvas.node(node.id) is not None:
            raise ValueError(f"Node already exists: {node.id}")
        self.canvas = self.canvas.model_copy(update={"nodes": [*self.canvas.nodes, node]}, deep=True)
        self._touch()
        return self.canvas

    def remove_node(self, node_id: str) -> CanvasGraph:
        self.canvas = CanvasGraph(
            nodes=[n for n in self.canvas.nodes if n.id != node_id],
            edges=[e for e in self.canvas.edges if node_id not in (e.source, e.target)],
        )
        self.node_properties.pop(node_id, None)
        self._touch()
        return self.canvas

    def move_node(self, node_id: str, x: float, y: float) -> None:
        node = self.canvas.node(node_id)
        if node is None:
            raise KeyError(node_id)
        node.position = Position(x=x, y=y)
        self._touch()

    def update_properties(self, node_id: str, properties: Mapping[str, Any]) -> None:
        """Merges edited properties (id, version, name, pluginType, timeouts) for a node."""
        self.node_properties.setdefault(node_id, {}).update(properties)
        self._touch()

    # -- Fold / save -------------------------------------------------------

    def sync_document(self) -> Dict[str, Stage]:
        """Folds the canvas into the selected pipeline's root."""
        if self.pipeline_name is None:
            return {}
        self.document, root = fold_into_document(
            self.document, self.pipeline_name, self.canvas, self.node_properties, self.catalog
        )
        return root

    def reproject(self) -> CanvasGraph:
        """Rebuilds the canvas structure from the document, keeping node positions."""
        self.canvas = self.projector.project_document(self.document, self.pipeline_name, previous=self.canvas)
        return self.canvas

    def draft(self) -> InProgressPayload:
        return InProgressPayload(
            template_id=self.template_id,
            config_name=self.config_name,
            canvas_json=json.dumps(self.canvas.to_json()),
            config_json=json.dumps(self.document),
            selected_pipeline_id=self.pipeline_name,
        )

    async def save(self, name: Optional[str] = None) -> bool:
        """Folds the canvas and stores the document under the given (or current) name.

        Returns:
            bool: False when a newer save of the same name superseded this one.
        """
        target = (name or self.config_name or "").strip()
        if not target:
            raise ValueError("Config name is required")
        if self.config_store is None:
            raise RuntimeError("No config store attached to this session")
        self.sync_document()
        record = ConfigRecord(
            name=target,
            template_id=self.template_id,
            config_json=json.dumps(self.document),
            canvas_json=json.dumps(self.canvas.to_json()),
        )
        store = self.config_store
        saved = await self.saves.save(target, lambda: store.upsert(record))
        if saved:
            self.config_name = target
            logger.info(f"Saved config {target}")
        return saved

    async def flush_draft(self) -> None:
        """Saves the pending draft without waiting for the debounce delay."""
        if self.autosaver is not None:
            await self.autosaver.flush()

    async def aclose(self) -> None:
        if self.autosaver is not None:
            await self.autosaver.aclose()

    def _touch(self) -> None:
        if self.autosaver is not None:
            self.autosaver.schedule(self.draft())

    @staticmethod
    def _parse_canvas(raw: Optional[str]) -> Optional[CanvasGraph]:
        if not raw:
            return None
        try:
            return CanvasGraph.model_validate_json(raw)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable canvas: {e}")
            return None
