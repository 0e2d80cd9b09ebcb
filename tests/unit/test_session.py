# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

import asyncio
import copy
import json
from typing import Any, Dict
from unittest.mock import AsyncMock

import pytest

from coreason_olo.core.canvas import CanvasGraph, CanvasNode
from coreason_olo.core.interfaces import ConfigRecord, InProgressPayload, TemplateRecord
from coreason_olo.core.session import NEW_PIPELINE_DEFAULTS, EditorSession
from coreason_olo.engine.projection import GraphProjector
from coreason_olo.engine.topology import PlacementError


def test_opens_first_pipeline(mixed_document: Dict[str, Any]) -> None:
    session = EditorSession(mixed_document)
    assert session.pipeline_name == "main"
    assert session.canvas.node("cap-FILTER") is not None
    assert session.autosaver is None


def test_empty_session_has_minimal_canvas() -> None:
    session = EditorSession()
    assert session.pipeline_name is None
    assert session.canvas.node_ids() == ["node-start", "node-end"]
    assert session.sync_document() == {}


def test_edit_then_sync(single_document: Dict[str, Any]) -> None:
    session = EditorSession(single_document)
    session.update_properties("plg-MODEL-0", {"name": "a.b.Bar", "startToCloseSeconds": 99})
    root = session.sync_document()

    child = (root["MODEL"].children or [])[0]
    assert child.name == "a.b.Bar"
    assert session.document["pipelines"]["main"]["root"]["MODEL"]["children"][0]["startToCloseSeconds"] == 99
    # the caller's document is not mutated
    assert single_document["pipelines"]["main"]["root"]["MODEL"]["children"][0]["name"] == "a.b.Foo"


def test_connect_rejects_second_condition(conditional_document: Dict[str, Any]) -> None:
    session = EditorSession(conditional_document)
    session.add_node(CanvasNode(id="cond-extra", plugin_id="condition"))
    before = list(session.canvas.edges)

    with pytest.raises(PlacementError):
        session.connect("grp-FILTER", "cond-extra")
    assert session.canvas.edges == before


def test_node_edits(single_document: Dict[str, Any]) -> None:
    session = EditorSession(single_document)
    session.add_node(CanvasNode(id="p2", plugin_id="x.Second"))
    with pytest.raises(ValueError):
        session.add_node(CanvasNode(id="p2", plugin_id="x.Second"))

    session.connect("grp-MODEL", "p2")
    assert [c.name for c in session.sync_document()["MODEL"].children or []] == ["a.b.Foo", "x.Second"]

    session.move_node("p2", 10, 20)
    assert session.canvas.node("p2").position.x == 10  # type: ignore[union-attr]
    with pytest.raises(KeyError):
        session.move_node("ghost", 0, 0)

    session.disconnect("e-grp-MODEL-p2")
    session.remove_node("plg-MODEL-0")
    assert session.sync_document()["MODEL"].children == []
    assert all("plg-MODEL-0" not in (e.source, e.target) for e in session.canvas.edges)


def test_reproject_keeps_positions(single_document: Dict[str, Any]) -> None:
    session = EditorSession(single_document)
    session.move_node("plg-MODEL-0", 500, 600)
    canvas = session.reproject()
    assert canvas.node("plg-MODEL-0").position.x == 500  # type: ignore[union-attr]


def test_pipeline_management(single_document: Dict[str, Any]) -> None:
    session = EditorSession(single_document)
    name = session.add_pipeline()
    assert name == "pipeline-2"
    assert session.pipeline_name == "pipeline-2"
    assert session.document["pipelines"]["pipeline-2"] == NEW_PIPELINE_DEFAULTS

    assert session.add_pipeline(" main ") == "main"
    assert session.pipeline_name == "main"

    session.update_pipeline_defaults(timeout_seconds=120, completion_policy="FIRST_SUCCESS")
    assert session.document["pipelines"]["main"]["defaultTimeoutSeconds"] == 120
    assert session.document["pipelines"]["main"]["defaultAsyncCompletionPolicy"] == "FIRST_SUCCESS"

    assert session.delete_pipeline() == "pipeline-2"
    assert list(session.document["pipelines"]) == ["pipeline-2"]


def test_apply_template_uses_stored_canvas() -> None:
    stored = CanvasGraph.model_validate({"nodes": [{"id": "n1", "pluginId": "retriever"}], "edges": []})
    template = TemplateRecord(id="tpl", name="T", canvas_json=json.dumps(stored.to_json()), config_json="{}")
    session = EditorSession()
    canvas = session.apply_template(template)

    assert session.template_id == "tpl"
    assert canvas.node_ids() == ["n1"]


def test_apply_template_projects_document(mixed_document: Dict[str, Any]) -> None:
    template = TemplateRecord(id="file", name="F", config_json=json.dumps(mixed_document))
    canvas = EditorSession().apply_template(template)
    assert canvas.node("cap-ACCESS") is not None


def test_restore_draft(mixed_document: Dict[str, Any]) -> None:
    original = EditorSession(mixed_document)
    original.move_node("cap-MODEL", 1, 2)
    draft = original.draft()

    restored = EditorSession()
    restored.restore(draft)
    assert restored.pipeline_name == "main"
    assert restored.canvas.node("cap-MODEL").position.x == 1  # type: ignore[union-attr]
    assert restored.document == original.document


@pytest.mark.asyncio  # type: ignore
async def test_edits_schedule_debounced_draft(single_document: Dict[str, Any]) -> None:
    drafts = AsyncMock()
    session = EditorSession(single_document, draft_store=drafts, draft_delay=0.02)
    session.move_node("plg-MODEL-0", 1, 1)
    session.move_node("plg-MODEL-0", 2, 2)
    await asyncio.sleep(0.1)

    drafts.set_in_progress.assert_awaited_once()
    payload: InProgressPayload = drafts.set_in_progress.await_args[0][0]
    assert payload.selected_pipeline_id == "main"
    canvas = CanvasGraph.model_validate_json(payload.canvas_json or "{}")
    assert canvas.node("plg-MODEL-0").position.x == 2  # type: ignore[union-attr]
    await session.aclose()


@pytest.mark.asyncio  # type: ignore
async def test_save(single_document: Dict[str, Any]) -> None:
    store = AsyncMock()
    session = EditorSession(single_document, config_store=store)
    session.update_properties("plg-MODEL-0", {"name": "a.b.Saved"})

    assert await session.save("cfg")
    record: ConfigRecord = store.upsert.await_args[0][0]
    assert record.name == "cfg"
    assert "a.b.Saved" in (record.config_json or "")
    assert session.config_name == "cfg"

    # reuses the current name
    assert await session.save()
    assert store.upsert.await_count == 2


@pytest.mark.asyncio  # type: ignore
async def test_save_requires_name_and_store(single_document: Dict[str, Any]) -> None:
    with pytest.raises(ValueError):
        await EditorSession(single_document, config_store=AsyncMock()).save("  ")
    with pytest.raises(RuntimeError):
        await EditorSession(single_document).save("cfg")


def test_edits_without_running_loop_keep_draft_pending(single_document: Dict[str, Any]) -> None:
    drafts = AsyncMock()
    session = EditorSession(single_document, draft_store=drafts)

    session.add_node(CanvasNode(id="p2", plugin_id="x.Second"))
    session.connect("grp-MODEL", "p2")
    session.move_node("p2", 5, 5)
    session.update_properties("p2", {"name": "x.Renamed"})
    session.disconnect("e-grp-MODEL-p2")
    session.remove_node("p2")
    session.select_pipeline("main")

    assert session.canvas.node("p2") is None
    assert session.autosaver is not None and session.autosaver.has_pending
    drafts.set_in_progress.assert_not_awaited()

    asyncio.run(session.flush_draft())
    drafts.set_in_progress.assert_awaited_once()


def test_switching_pipelines_does_not_carry_positions(single_document: Dict[str, Any]) -> None:
    document = copy.deepcopy(single_document)
    document["pipelines"]["alt"] = copy.deepcopy(single_document["pipelines"]["main"])
    fresh = GraphProjector().project_document(document, "alt")

    session = EditorSession(document)
    session.move_node("cap-MODEL", 900, 900)
    session.select_pipeline("alt")
    moved = session.canvas.node("cap-MODEL")
    expected = fresh.node("cap-MODEL")
    assert moved is not None and expected is not None
    assert (moved.position.x, moved.position.y) == (expected.position.x, expected.position.y)

    session.move_node("cap-MODEL", 700, 700)
    session.select_pipeline("alt")
    assert session.canvas.node("cap-MODEL").position.x == 700  # type: ignore[union-attr]
