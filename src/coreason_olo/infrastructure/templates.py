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
from typing import List, Optional, Union

from coreason_olo.core.interfaces import TemplateRecord, TemplateStore
from coreason_olo.utils.logger import logger

ENGINE_CONFIG_PREFIX = "engine-config-"
FILE_TEMPLATE_DESCRIPTION = "Pipeline config from template folder"


def template_name(stem: str) -> str:
    """'engine-config-rag-basic' -> 'Rag basic'."""
    name = stem[len(ENGINE_CONFIG_PREFIX) :].replace("-", " ") if stem.startswith(ENGINE_CONFIG_PREFIX) else stem
    return name[:1].upper() + name[1:]


class FileTemplateSource:
    """
    Read-only templates from a folder of engine config JSON files.
    """

    def __init__(self, templates_dir: Union[str, Path]) -> None:
        self.templates_dir = Path(templates_dir)
        self._templates: List[TemplateRecord] = []

    def load(self) -> "FileTemplateSource":
        self._templates = []
        if not self.templates_dir.is_dir():
            logger.warning(f"Templates dir not found: {self.templates_dir}. No file templates will be available.")
            return self
        for path in sorted(self.templates_dir.glob("*.json")):
            if not path.is_file():
                continue
            try:
                content = path.read_text(encoding="utf-8")
                parsed = json.loads(content)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to load template {path.name}: {e}")
                continue
            has_pipelines = isinstance(parsed, dict) and "pipelines" in parsed
            self._templates.append(
                TemplateRecord(
                    id=path.stem,
                    name=template_name(path.stem),
                    description=FILE_TEMPLATE_DESCRIPTION if has_pipelines else "",
                    config_json=content,
                    canvas_json=None,
                    built_in=True,
                )
            )
            logger.info(f"Loaded template from file: {path.stem}")
        if not self._templates:
            logger.warning(f"No templates loaded from {self.templates_dir}")
        return self

    def list(self) -> List[TemplateRecord]:
        return list(self._templates)

    def get(self, template_id: str) -> Optional[TemplateRecord]:
        return next((t for t in self._templates if t.id == template_id), None)


class TemplateService:
    """Templates from the template folder first, then the database."""

    def __init__(self, files: FileTemplateSource, store: Optional[TemplateStore] = None) -> None:
        self.files = files
        self.store = store

    async def list_all(self) -> List[TemplateRecord]:
        out = self.files.list()
        seen = {t.id for t in out}
        if self.store is not None:
            for template in await self.store.list_templates():
                if template.id not in seen:
                    out.append(template)
                    seen.add(template.id)
        out.sort(key=lambda t: t.name.lower())
        return out

    async def get(self, template_id: str) -> Optional[TemplateRecord]:
        found = self.files.get(template_id)
        if found is not None or self.store is None:
            return found
        return await self.store.get_template(template_id)
