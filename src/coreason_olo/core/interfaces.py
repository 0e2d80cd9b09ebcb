# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field


class StoreUnavailableError(Exception):
    """Raised when a persistence backend cannot be reached (distinct from 'not found')."""

    pass


class ConfigNotFoundError(Exception):
    """Raised when a named configuration does not exist in any store."""

    pass


class ComponentDescriptor(BaseModel):
    """
    One entry of the component catalog (flow, control, capability or plugin).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str
    display_name: Optional[str] = Field(default=None, alias="displayName")
    description: Optional[str] = None
    icon: str = "extension"
    type: str = "plugin"
    category: Optional[str] = None
    plugin_id: Optional[str] = Field(default=None, alias="pluginId")
    version: Optional[str] = None
    class_name: Optional[str] = Field(default=None, alias="className")
    plugin_type: Optional[str] = Field(default=None, alias="pluginType")
    capability: Optional[List[str]] = None


class ConfigRecord(BaseModel):
    """
    A named configuration: the engine document plus the editor layout, both raw JSON text.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    template_id: Optional[str] = Field(default=None, alias="templateId")
    canvas_json: Optional[str] = Field(default=None, alias="canvasJson")
    config_json: Optional[str] = Field(default=None, alias="configJson")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class TemplateRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: Optional[str] = None
    canvas_json: Optional[str] = Field(default=None, alias="canvasJson")
    config_json: Optional[str] = Field(default=None, alias="configJson")
    built_in: bool = Field(default=False, alias="builtIn")


class InProgressPayload(BaseModel):
    """
    Auto-saved editor draft, kept in a single fixed slot.
    """

    model_config = ConfigDict(populate_by_name=True)

    template_id: Optional[str] = Field(default=None, alias="templateId")
    config_name: Optional[str] = Field(default=None, alias="configName")
    canvas_json: Optional[str] = Field(default=None, alias="canvasJson")
    config_json: Optional[str] = Field(default=None, alias="configJson")
    selected_pipeline_id: Optional[str] = Field(default=None, alias="selectedPipelineId")


class ComponentCatalog(Protocol):
    """
    Interface for the component/plugin catalog.
    """

    def list(self) -> List[ComponentDescriptor]:
        """Lists every known component."""
        ...

    def get(self, component_id: str) -> Optional[ComponentDescriptor]:
        """Returns one component descriptor, or None on a miss."""
        ...

    def get_schema(self, component_id: str) -> Optional[Dict[str, Any]]:
        """Returns the raw descriptor holding the JSON-Schema property form."""
        ...


class ConfigStore(Protocol):
    """
    Interface for durable storage of named configurations.
    """

    async def upsert(self, record: ConfigRecord) -> ConfigRecord:
        """Creates or replaces a configuration by name."""
        ...

    async def get(self, name: str) -> Optional[ConfigRecord]:
        """Returns the configuration, or None when it does not exist."""
        ...

    async def delete(self, name: str) -> None:
        """Deletes a configuration by name; missing names are ignored."""
        ...

    async def list_names(self) -> List[str]:
        """Lists stored configuration names."""
        ...


class DraftStore(Protocol):
    """
    Interface for the single in-progress draft slot.
    """

    async def set_in_progress(self, payload: InProgressPayload) -> None:
        """Replaces the draft."""
        ...

    async def get_in_progress(self) -> Optional[InProgressPayload]:
        """Returns the draft, or None when there is none."""
        ...


class TemplateStore(Protocol):
    """
    Interface for template persistence.
    """

    async def list_templates(self) -> List[TemplateRecord]:
        """Lists stored templates."""
        ...

    async def get_template(self, template_id: str) -> Optional[TemplateRecord]:
        """Returns a template by id."""
        ...
