# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

from pathlib import Path

import pytest

from coreason_olo.infrastructure.sql_store import SqliteConfigStore
from coreason_olo.infrastructure.templates import (
    FILE_TEMPLATE_DESCRIPTION,
    FileTemplateSource,
    TemplateService,
    template_name,
)


@pytest.fixture  # type: ignore
def templates_dir(tmp_path: Path) -> Path:
    folder = tmp_path / "template"
    folder.mkdir()
    (folder / "engine-config-rag-basic.json").write_text('{"pipelines": {"main": {"root": {}}}}')
    (folder / "custom.json").write_text('{"other": true}')
    (folder / "broken.json").write_text("{")
    return folder


def test_template_name() -> None:
    assert template_name("engine-config-rag-basic") == "Rag basic"
    assert template_name("custom") == "Custom"
    assert template_name("") == ""


def test_file_source(templates_dir: Path) -> None:
    source = FileTemplateSource(templates_dir).load()
    templates = {t.id: t for t in source.list()}

    assert set(templates) == {"engine-config-rag-basic", "custom"}
    rag = templates["engine-config-rag-basic"]
    assert rag.name == "Rag basic"
    assert rag.description == FILE_TEMPLATE_DESCRIPTION
    assert rag.config_json == '{"pipelines": {"main": {"root": {}}}}'
    assert rag.built_in
    assert templates["custom"].description == ""
    assert source.get("custom") is not None
    assert source.get("nope") is None


def test_missing_folder(tmp_path: Path) -> None:
    assert FileTemplateSource(tmp_path / "absent").load().list() == []


@pytest.mark.asyncio  # type: ignore
async def test_service_merges_files_and_database(templates_dir: Path, tmp_path: Path) -> None:
    store = SqliteConfigStore(tmp_path / "olo.db")
    store.init_db()
    service = TemplateService(FileTemplateSource(templates_dir).load(), store)

    names = [t.name for t in await service.list_all()]
    assert names == sorted(names, key=str.lower)
    assert {"Rag basic", "Custom", "Empty", "RAG Pipeline"} == set(names)

    assert (await service.get("custom")) is not None
    tpl = await service.get("tpl-empty")
    assert tpl is not None and tpl.name == "Empty"
    assert await service.get("nope") is None


@pytest.mark.asyncio  # type: ignore
async def test_service_without_store(templates_dir: Path) -> None:
    service = TemplateService(FileTemplateSource(templates_dir).load())
    assert len(await service.list_all()) == 2
    assert await service.get("tpl-empty") is None
