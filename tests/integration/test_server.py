# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

import json
from pathlib import Path
from typing import Any, Dict, Generator, Tuple
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from coreason_olo.server import app

Client = Tuple[TestClient, AsyncMock]


@pytest.fixture  # type: ignore
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    components = tmp_path / "components"
    (components / "flows").mkdir(parents=True)
    (components / "capability").mkdir()
    (components / "plugins").mkdir()
    (components / "flows" / "start.json").write_text(json.dumps({"name": "Start", "type": "flow"}))
    (components / "plugins" / "retriever.json").write_text(
        json.dumps({"name": "Retriever", "type": "plugin", "category": "Search", "properties": {"type": "object"}})
    )
    templates = tmp_path / "template"
    templates.mkdir()
    (templates / "engine-config-basic.json").write_text('{"pipelines": {"main": {"root": {}}}}')

    monkeypatch.setenv("OLO_DATABASE_PATH", str(tmp_path / "olo.db"))
    monkeypatch.setenv("OLO_COMPONENTS_DIR", str(components))
    monkeypatch.setenv("OLO_PLUGINS_DIR", str(components / "plugins"))
    monkeypatch.setenv("OLO_TEMPLATES_DIR", str(templates))
    return tmp_path


@pytest.fixture  # type: ignore
def client(workspace: Path) -> Generator[Client, None, None]:
    with patch("coreason_olo.server.redis.from_url") as mock_from_url:
        mock_redis = AsyncMock()
        mock_redis.get.return_value = None
        mock_redis.keys.return_value = []
        mock_from_url.return_value = mock_redis
        with TestClient(app) as c:
            yield c, mock_redis


def test_health_and_index(client: Client) -> None:
    c, _ = client
    assert c.get("/health").json() == {"status": "healthy"}
    index = c.get("/api").json()
    assert "POST /api/canvas/fold" in index["endpoints"]


def test_components(client: Client) -> None:
    c, _ = client
    ids = [d["id"] for d in c.get("/api/components").json()]
    assert {"start", "retriever"} <= set(ids)

    palette = c.get("/api/components/palette").json()
    assert [d["id"] for d in palette["Search"]] == ["retriever"]

    assert c.get("/api/components/retriever/schema").json()["properties"] == {"type": "object"}
    assert c.get("/api/components/missing/schema").status_code == 404


def test_create_capability(client: Client, workspace: Path) -> None:
    c, _ = client
    resp = c.post("/api/components/capabilities", json={"id": "ranking", "name": "Ranking"})
    assert resp.status_code == 200
    assert resp.json()["id"] == "RANKING"
    assert (workspace / "components" / "capability" / "RANKING.json").exists()

    assert c.post("/api/components/capabilities", json={"id": "ranking"}).status_code == 400
    assert c.post("/api/components/capabilities", json={"id": "no way!"}).status_code == 400


def test_templates(client: Client) -> None:
    c, _ = client
    templates = c.get("/api/templates").json()
    ids = {t["id"] for t in templates}
    assert {"engine-config-basic", "tpl-empty", "tpl-rag"} <= ids

    basic = c.get("/api/templates/engine-config-basic").json()
    assert basic["name"] == "Basic"
    assert basic["builtIn"] is True
    assert c.get("/api/templates/nope").status_code == 404


def test_config_lifecycle(client: Client) -> None:
    c, mock_redis = client
    body = {"name": "cfg", "configJson": '{"pipelines":{}}', "canvasJson": '{"nodes":[],"edges":[]}'}
    saved = c.post("/api/configs", json=body)
    assert saved.status_code == 200
    assert saved.json()["configJson"] == '{"pipelines":{}}'
    mock_redis.set.assert_awaited()

    assert [r["name"] for r in c.get("/api/configs").json()] == ["cfg"]
    assert c.get("/api/configs/cfg").json()["canvasJson"] == '{"nodes":[],"edges":[]}'

    assert c.delete("/api/configs/cfg").status_code == 204
    mock_redis.delete.assert_awaited_once_with("olo:config:cfg")
    assert c.get("/api/configs/cfg").status_code == 404


def test_config_falls_back_to_redis(client: Client) -> None:
    c, mock_redis = client
    mock_redis.get.return_value = json.dumps({"configJson": '{"from": "redis"}', "canvasJson": None})
    resp = c.get("/api/configs/remote")
    assert resp.status_code == 200
    assert resp.json()["configJson"] == '{"from": "redis"}'


def test_config_requires_name(client: Client) -> None:
    c, _ = client
    assert c.post("/api/configs", json={"name": ""}).status_code == 422


def test_engine_configs(client: Client) -> None:
    c, mock_redis = client
    raw = '{ "pipelines": {} }'
    resp = c.post("/api/configs/engine/save", json={"name": "prod", "configJson": raw})
    assert resp.status_code == 200
    mock_redis.set.assert_awaited_with("olo:engine:config:prod", raw)

    assert c.post("/api/configs/engine/save", json={"name": " ", "configJson": "{}"}).status_code == 400
    assert c.post("/api/configs/engine/save", json={"name": "x", "configJson": "[]"}).status_code == 400

    mock_redis.keys.return_value = ["olo:engine:config:prod", "olo:engine:config:dev"]
    assert c.get("/api/configs/engine").json() == ["dev", "prod"]

    mock_redis.get.return_value = raw
    fetched = c.get("/api/configs/engine/prod")
    assert fetched.status_code == 200
    assert fetched.text == raw

    mock_redis.get.return_value = None
    assert c.get("/api/configs/engine/missing").status_code == 404


def test_in_progress(client: Client) -> None:
    c, mock_redis = client
    assert c.get("/api/configs/inprogress").status_code == 204

    draft = {"templateId": "tpl-rag", "configName": None, "canvasJson": "{}", "configJson": "{}", "selectedPipelineId": "main"}
    assert c.put("/api/configs/inprogress", json=draft).status_code == 200
    stored = mock_redis.set.await_args[0][1]

    mock_redis.get.return_value = stored
    resp = c.get("/api/configs/inprogress")
    assert resp.status_code == 200
    assert resp.json()["selectedPipelineId"] == "main"


def test_store_unavailable_is_503(client: Client) -> None:
    c, mock_redis = client
    mock_redis.get.side_effect = RedisConnectionError("down")
    resp = c.get("/api/configs/inprogress")
    assert resp.status_code == 503
    assert resp.json() == {"error": "Store unavailable", "message": "Redis unavailable"}

    # a miss in the primary store with redis down is still "not found"
    assert c.get("/api/configs/unknown").status_code == 404


def test_project_fold_connect(client: Client) -> None:
    c, _ = client
    document: Dict[str, Any] = {
        "pipelines": {
            "main": {
                "root": {
                    "FILTER": {
                        "type": "GROUP",
                        "executionMode": "SYNC",
                        "condition": "cond.Plugin",
                        "thenGroup": {"children": [{"type": "PLUGIN", "name": "a.Yes", "pluginType": "FilterPlugin"}]},
                    }
                }
            }
        }
    }
    canvas = c.post("/api/canvas/project", json={"document": document}).json()
    ids = [n["id"] for n in canvas["nodes"]]
    assert "cond-FILTER" in ids

    folded = c.post("/api/canvas/fold", json={"document": document, "pipelineId": "main", "canvas": canvas}).json()
    stage = folded["pipelines"]["main"]["root"]["FILTER"]
    assert stage["condition"] == "cond.Plugin"
    assert stage["thenGroup"]["children"][0]["name"] == "a.Yes"
    assert "children" not in stage

    canvas["nodes"].append({"id": "cond-2", "pluginId": "condition", "position": {"x": 0, "y": 0}, "data": {}})
    rejected = c.post("/api/canvas/connect", json={"canvas": canvas, "source": "grp-FILTER", "target": "cond-2"})
    assert rejected.status_code == 409
    assert "only one IF/Iterator" in rejected.json()["detail"]

    accepted = c.post("/api/canvas/connect", json={"canvas": canvas, "source": "cond-FILTER", "target": "cond-2"})
    assert accepted.status_code == 200
    assert any(e["id"] == "e-cond-FILTER-cond-2" for e in accepted.json()["edges"])


def test_project_malformed_document(client: Client) -> None:
    c, _ = client
    canvas = c.post("/api/canvas/project", json={"document": "not json"}).json()
    assert [n["id"] for n in canvas["nodes"]] == ["node-start", "node-end"]
    assert c.post("/api/canvas/fold", json={"document": {}, "canvas": canvas}).status_code == 400
