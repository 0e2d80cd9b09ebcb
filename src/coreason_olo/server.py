# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Union

import redis.asyncio as redis
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from coreason_olo.core.canvas import CanvasGraph
from coreason_olo.core.document import parse_document, select_pipeline
from coreason_olo.core.interfaces import ConfigRecord, InProgressPayload, StoreUnavailableError
from coreason_olo.engine.folding import fold_into_document
from coreason_olo.engine.projection import GraphProjector
from coreason_olo.engine.topology import PlacementError, connect
from coreason_olo.infrastructure.catalog import CatalogError, FileComponentCatalog
from coreason_olo.infrastructure.redis_store import RedisConfigStore
from coreason_olo.infrastructure.settings import Settings
from coreason_olo.infrastructure.sql_store import SqliteConfigStore
from coreason_olo.infrastructure.templates import FileTemplateSource, TemplateService
from coreason_olo.services import ConfigService
from coreason_olo.utils.logger import logger


# --- Data Models ---
class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class EngineConfigUpsertRequest(_Request):
    name: Optional[str] = None
    config_json: Optional[str] = Field(default=None, alias="configJson")


class CapabilityCreateRequest(_Request):
    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None


class ProjectRequest(_Request):
    document: Union[Dict[str, Any], str, None] = None
    pipeline_id: Optional[str] = Field(default=None, alias="pipelineId")
    previous: Optional[CanvasGraph] = None


class FoldRequest(_Request):
    document: Union[Dict[str, Any], str, None] = None
    pipeline_id: Optional[str] = Field(default=None, alias="pipelineId")
    canvas: CanvasGraph
    node_properties: Optional[Dict[str, Dict[str, Any]]] = Field(default=None, alias="nodeProperties")


class ConnectRequest(_Request):
    canvas: CanvasGraph
    source: str
    target: str
    replace_edge_id: Optional[str] = Field(default=None, alias="replaceEdgeId")


# --- Global State ---
settings: Settings = Settings()
redis_client: Optional[redis.Redis] = None
sql_store: Optional[SqliteConfigStore] = None
catalog: Optional[FileComponentCatalog] = None
template_source: Optional[FileTemplateSource] = None
projector = GraphProjector()


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    # Startup
    global settings, redis_client, sql_store, catalog, template_source
    settings = Settings.from_env()
    try:
        redis_client = redis.from_url(settings.redis_url, decode_responses=True)
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")

    sql_store = SqliteConfigStore(settings.database_path)
    sql_store.init_db()
    catalog = FileComponentCatalog(settings.components_dir, settings.plugins_dir).load()
    template_source = FileTemplateSource(settings.templates_dir).load()

    yield

    # Shutdown
    if redis_client:
        await redis_client.aclose()
    redis_client = None


app = FastAPI(title="OLO Config API", lifespan=lifespan)


@app.exception_handler(StoreUnavailableError)  # type: ignore
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.warning(f"Store unavailable: {exc}")
    return JSONResponse(status_code=503, content={"error": "Store unavailable", "message": str(exc)})


def _redis_store() -> RedisConfigStore:
    if redis_client is None:
        raise StoreUnavailableError("Redis unavailable")
    return RedisConfigStore(redis_client)


def _primary_store() -> SqliteConfigStore:
    if sql_store is None:
        raise StoreUnavailableError("Database not initialised")
    return sql_store


def _catalog() -> FileComponentCatalog:
    if catalog is None:
        raise HTTPException(status_code=503, detail="Component catalog not loaded")
    return catalog


def _config_service() -> ConfigService:
    secondary = RedisConfigStore(redis_client) if redis_client is not None else None
    return ConfigService(_primary_store(), secondary)


def _template_service() -> TemplateService:
    files = template_source or FileTemplateSource(settings.templates_dir)
    return TemplateService(files, sql_store)


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


@app.get("/health")  # type: ignore
async def health() -> Dict[str, str]:
    return {"status": "healthy"}


@app.get("/api")  # type: ignore
async def api_index() -> Dict[str, Any]:
    return {
        "message": "OLO Config API",
        "endpoints": {
            "GET /api/components": "List components",
            "GET /api/components/palette": "Plugins grouped by category",
            "GET /api/components/{id}/schema": "Get component schema",
            "POST /api/components/capabilities": "Create capability template",
            "GET /api/templates": "List templates",
            "GET /api/configs": "List configs",
            "GET /api/configs/{name}": "Get config",
            "POST /api/configs": "Upsert config",
            "POST /api/configs/engine/save": "Save engine config",
            "GET /api/configs/engine": "List engine config names",
            "GET /api/configs/inprogress": "Get in-progress draft",
            "POST /api/canvas/project": "Project a pipeline onto a canvas",
            "POST /api/canvas/fold": "Fold a canvas back into the document",
            "POST /api/canvas/connect": "Add a validated connection",
        },
    }


# --- Components ---
@app.get("/api/components")  # type: ignore
async def list_components() -> List[Dict[str, Any]]:
    return [_dump(item) for item in _catalog().list()]


@app.get("/api/components/palette")  # type: ignore
async def component_palette() -> Dict[str, List[Dict[str, Any]]]:
    return {category: [_dump(item) for item in items] for category, items in _catalog().palette().items()}


@app.get("/api/components/{component_id}/schema")  # type: ignore
async def component_schema(component_id: str) -> Dict[str, Any]:
    schema = _catalog().get_schema(component_id)
    if schema is None:
        raise HTTPException(status_code=404, detail="Component not found")
    return schema


@app.post("/api/components/capabilities")  # type: ignore
async def create_capability(req: CapabilityCreateRequest) -> Dict[str, Any]:
    try:
        created = _catalog().create_capability(req.id, req.name, req.description)
    except CatalogError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return _dump(created)


# --- Templates ---
@app.get("/api/templates")  # type: ignore
async def list_templates() -> List[Dict[str, Any]]:
    return [_dump(t) for t in await _template_service().list_all()]


@app.get("/api/templates/{template_id}")  # type: ignore
async def get_template(template_id: str) -> Dict[str, Any]:
    template = await _template_service().get(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Template not found")
    return _dump(template)


# --- Configs ---
@app.get("/api/configs")  # type: ignore
async def list_configs() -> List[Dict[str, Any]]:
    return [_dump(c) for c in await _config_service().list_all()]


@app.post("/api/configs")  # type: ignore
async def upsert_config(record: ConfigRecord) -> Dict[str, Any]:
    return _dump(await _config_service().upsert(record))


@app.post("/api/configs/engine/save")  # type: ignore
async def save_engine_config(req: EngineConfigUpsertRequest) -> Dict[str, Any]:
    if req.name is None or not req.name.strip():
        raise HTTPException(status_code=400, detail="Engine config name is required")
    try:
        await _redis_store().upsert_engine_config(req.name.strip(), req.config_json)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return _dump(req)


@app.get("/api/configs/engine")  # type: ignore
async def list_engine_configs() -> List[str]:
    return await _redis_store().list_engine_config_names()


@app.get("/api/configs/engine/{name}")  # type: ignore
async def get_engine_config(name: str) -> Response:
    raw = await _redis_store().get_engine_config(name)
    if raw is None:
        raise HTTPException(status_code=404, detail="Engine config not found")
    return Response(content=raw, media_type="application/json")


@app.get("/api/configs/inprogress")  # type: ignore
async def get_in_progress() -> Response:
    payload = await _redis_store().get_in_progress()
    if payload is None:
        return Response(status_code=204)
    return JSONResponse(content=payload.model_dump(by_alias=True))


@app.put("/api/configs/inprogress")  # type: ignore
async def put_in_progress(payload: InProgressPayload) -> Dict[str, Any]:
    await _redis_store().set_in_progress(payload)
    return payload.model_dump(by_alias=True)


@app.get("/api/configs/{name}")  # type: ignore
async def get_config(name: str) -> Dict[str, Any]:
    record = await _config_service().get(name)
    if record is None:
        raise HTTPException(status_code=404, detail="Config not found")
    return _dump(record)


@app.delete("/api/configs/{name}", status_code=204)  # type: ignore
async def delete_config(name: str) -> Response:
    await _config_service().delete(name)
    return Response(status_code=204)


# --- Canvas ---
@app.post("/api/canvas/project")  # type: ignore
async def project_canvas(req: ProjectRequest) -> Dict[str, Any]:
    return projector.project_document(req.document, req.pipeline_id, req.previous).to_json()


@app.post("/api/canvas/fold")  # type: ignore
async def fold_canvas(req: FoldRequest) -> Dict[str, Any]:
    document = parse_document(req.document)
    if document is None:
        raise HTTPException(status_code=400, detail="Document has no pipelines")
    pipeline_name, _ = select_pipeline(document, req.pipeline_id)
    pipeline_name = req.pipeline_id or pipeline_name
    if pipeline_name is None:
        raise HTTPException(status_code=400, detail="No pipeline selected")
    updated, _ = fold_into_document(document, pipeline_name, req.canvas, req.node_properties, catalog)
    return updated


@app.post("/api/canvas/connect")  # type: ignore
async def connect_canvas(req: ConnectRequest) -> Dict[str, Any]:
    try:
        updated = connect(req.canvas, req.source, req.target, req.replace_edge_id)
    except PlacementError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return updated.to_json()
