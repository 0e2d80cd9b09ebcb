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
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from coreason_olo.core.interfaces import ComponentDescriptor
from coreason_olo.engine.resolver import plugin_type_for_capability
from coreason_olo.utils.logger import logger

FLOWS_SUBDIR = "flows"
CONTROL_SUBDIR = "control"
CAPABILITY_SUBDIR = "capability"
PLUGIN_YAML_NAMES = ("plugin.yaml", "plugin.yml")
UNDEFINED_CATEGORY = "Undefined"

_CAPABILITY_ID = re.compile(r"^[A-Za-z0-9_]+$")


class CatalogError(Exception):
    """Raised when a catalog operation cannot be carried out (bad id, duplicate, IO failure)."""

    pass


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def _text(value: Any) -> Optional[str]:
    return None if value is None else str(value).strip()


def _yaml_plugin_type(plugin: Dict[str, Any]) -> str:
    """Declared pluginType, else derived from the first capability; ModelPlugin by default."""
    declared = plugin.get("pluginType")
    if declared is not None and str(declared).strip():
        return str(declared).strip()
    capability = plugin.get("capability")
    if isinstance(capability, list):
        capability = capability[0] if capability else None
    if capability is None:
        return "ModelPlugin"
    return plugin_type_for_capability(str(capability).strip().upper()) or "ModelPlugin"


def parse_plugin_yaml(content: str, source: str = "<plugin.yaml>") -> List[Dict[str, Any]]:
    """Turns a plugin.yaml document into UI plugin descriptors.

    Accepts `plugins: [{plugin: {...}}]` as well as bare plugin objects in the
    list. Entries without `id` and `name` are skipped.
    """
    if not content or not content.strip():
        return []
    data = yaml.safe_load(content.lstrip("\ufeff"))
    if not isinstance(data, dict):
        logger.debug(f"Plugin YAML is not a mapping: {source}")
        return []
    plugins = data.get("plugins")
    if not isinstance(plugins, list):
        logger.warning(f"Plugin YAML has no 'plugins' list: {source}")
        return []

    out: List[Dict[str, Any]] = []
    for i, item in enumerate(plugins):
        if not isinstance(item, dict):
            continue
        plugin = item.get("plugin", item)
        if not isinstance(plugin, dict):
            continue
        if plugin.get("id") is None and plugin.get("name") is None:
            continue
        yaml_id = _text(plugin.get("id")) or f"plugin-{i}"
        descriptor: Dict[str, Any] = {
            "pluginId": yaml_id,
            "id": yaml_id,
            "name": _text(plugin.get("name")) or yaml_id,
        }
        for key in ("displayName", "version", "className"):
            if plugin.get(key) is not None:
                descriptor[key] = _text(plugin[key])
        declared_type = plugin.get("pluginType")
        if declared_type is not None and not str(declared_type).strip():
            descriptor["pluginType"] = ""
        else:
            descriptor["pluginType"] = _yaml_plugin_type(plugin)
        if isinstance(plugin.get("capability"), list):
            descriptor["capability"] = [str(c) for c in plugin["capability"] if c is not None]
        descriptor["description"] = _text(plugin.get("description")) or ""
        descriptor["type"] = "plugin"
        descriptor["category"] = _text(plugin.get("category")) or "plugin"
        descriptor["icon"] = "extension"

        props: Dict[str, Any] = {}
        required: List[str] = []
        for field in plugin.get("inputs") or []:
            if not isinstance(field, dict) or field.get("name") is None:
                continue
            field_name = str(field["name"])
            prop: Dict[str, Any] = {"type": _text(field.get("type")) or "string", "title": field_name}
            if field.get("description") is not None:
                prop["description"] = _text(field["description"])
            if _truthy(field.get("required")):
                required.append(field_name)
            props[field_name] = prop
        descriptor["properties"] = {"type": "object", "properties": props, "required": required}
        out.append(descriptor)
    return out


def capability_template(capability_id: str, display_name: str, description: str) -> Dict[str, Any]:
    """Descriptor written for a newly created capability."""
    return {
        "id": capability_id,
        "name": display_name,
        "description": description,
        "icon": "account_tree",
        "type": "capability",
        "category": "capability",
        "properties": {
            "type": "object",
            "properties": {
                "executionMode": {
                    "type": "string",
                    "title": "Execution mode",
                    "enum": ["SYNC", "ASYNC"],
                    "default": "SYNC",
                },
                "asyncCompletionPolicy": {
                    "type": "string",
                    "title": "Completion mode (when Async)",
                    "enum": ["ALL", "FIRST_SUCCESS", "FIRST_FAILURE", "ALL_SETTLED"],
                    "default": "ALL",
                },
                "asyncOutputMergePolicy": {
                    "type": "string",
                    "title": "Async merge policy",
                    "enum": ["LAST_WINS", "FIRST_WINS", "PREFIX_BY_ACTIVITY"],
                    "default": "LAST_WINS",
                },
                "label": {"type": "string", "title": "Label", "default": display_name},
                "plugins": {
                    "type": "array",
                    "title": "Plugins",
                    "description": "One or more plugins in this capability",
                    "minItems": 1,
                    "items": {"type": "string", "title": "Plugin ID"},
                },
                "groups": {
                    "type": "array",
                    "title": "Groups",
                    "description": "One or more groups in this capability",
                    "minItems": 1,
                    "items": {"type": "object", "title": "Group"},
                },
            },
            "required": ["executionMode"],
        },
    }


class FileComponentCatalog:
    """
    Component catalog backed by descriptor folders on disk.

    Flow and control components, capability templates, JSON plugin descriptors and
    plugin.yaml files are read once by load(); lookups are served from memory.
    """

    def __init__(self, components_dir: Union[str, Path], plugins_dir: Optional[Union[str, Path]] = None) -> None:
        self.components_dir = Path(components_dir)
        self.plugins_dir = Path(plugins_dir) if plugins_dir is not None else self.components_dir / "plugins"
        self._schemas: Dict[str, Dict[str, Any]] = {}
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def capability_dir(self) -> Path:
        return self.components_dir / CAPABILITY_SUBDIR

    def load(self) -> "FileComponentCatalog":
        self._schemas.clear()
        flows = self.components_dir / FLOWS_SUBDIR
        self._load_json_dir(flows if flows.is_dir() else self.components_dir, "component")
        self._load_json_dir(self.components_dir / CONTROL_SUBDIR, "component")
        self._load_json_dir(self.capability_dir, "capability")
        self._load_json_dir(self.plugins_dir, "plugin")
        self._load_plugin_yaml_files()
        self._ready = True
        logger.info(f"Loaded {len(self._schemas)} components/capabilities/plugins total")
        return self

    def _load_json_dir(self, directory: Path, kind: str) -> None:
        if not directory.is_dir():
            logger.debug(f"{kind} dir not found: {directory}")
            return
        for path in sorted(directory.glob("*.json")):
            if path.is_file():
                self._load_json_file(path, kind)

    def _load_json_file(self, path: Path, kind: str) -> None:
        try:
            content = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load {kind} {path.name}: {e}")
            return
        if not isinstance(content, dict):
            logger.warning(f"Skipping {kind} {path.name}: descriptor is not an object")
            return
        self._schemas[path.stem] = content
        logger.debug(f"Loaded {kind} schema: {path.stem}")

    def _load_plugin_yaml_files(self) -> None:
        if not self.plugins_dir.is_dir():
            return
        candidates = sorted(p for p in self.plugins_dir.rglob("*") if p.is_file() and p.name.lower() in PLUGIN_YAML_NAMES)
        for path in candidates:
            base_id = path.parent.name or "plugin"
            try:
                descriptors = parse_plugin_yaml(path.read_text(encoding="utf-8"), str(path))
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load plugin YAML from {path}: {e}")
                continue
            if not descriptors:
                logger.warning(f"No plugin definitions parsed from YAML: {path}")
            for descriptor in descriptors:
                catalog_id = self._unique_id(f"{base_id}__{descriptor['pluginId']}")
                self._schemas[catalog_id] = descriptor
                logger.info(f"Loaded plugin from YAML: {catalog_id} (from {path})")

    def _unique_id(self, candidate: str) -> str:
        catalog_id = candidate
        suffix = 0
        while catalog_id in self._schemas:
            catalog_id = f"{candidate}_{suffix}"
            suffix += 1
        return catalog_id

    def _describe(self, component_id: str, raw: Dict[str, Any]) -> ComponentDescriptor:
        values = {k: v for k, v in raw.items() if k not in ("id", "properties")}
        values.setdefault("name", component_id)
        if values.get("name") is None:
            values["name"] = component_id
        values.setdefault("type", "plugin")
        if values.get("icon") is None:
            values["icon"] = "extension"
        if isinstance(values.get("capability"), list):
            values["capability"] = [str(c) for c in values["capability"] if c is not None]
        else:
            values.pop("capability", None)
        for key in ("name", "displayName", "description", "type", "category", "pluginId", "version", "className", "pluginType"):
            if values.get(key) is not None and not isinstance(values[key], str):
                values[key] = str(values[key])
        return ComponentDescriptor.model_validate({"id": component_id, **values})

    def list(self) -> List[ComponentDescriptor]:
        items = [self._describe(cid, raw) for cid, raw in self._schemas.items()]
        items.sort(key=lambda d: (d.type, d.name))
        return items

    def get(self, component_id: str) -> Optional[ComponentDescriptor]:
        raw = self._schemas.get(component_id)
        return self._describe(component_id, raw) if raw is not None else None

    def get_schema(self, component_id: str) -> Optional[Dict[str, Any]]:
        return self._schemas.get(component_id)

    def palette(self) -> Dict[str, List[ComponentDescriptor]]:
        """Plugin entries grouped by category; entries without one land in 'Undefined'."""
        groups: Dict[str, List[ComponentDescriptor]] = {}
        for item in self.list():
            if item.type != "plugin":
                continue
            groups.setdefault(item.category or UNDEFINED_CATEGORY, []).append(item)
        return groups

    def create_capability(
        self, capability_id: Optional[str], name: Optional[str] = None, description: Optional[str] = None
    ) -> ComponentDescriptor:
        """Writes a new capability template to components/capability/{ID}.json and registers it.

        Raises:
            CatalogError: If the id is blank, not alphanumeric/underscore, already
                exists, or the file cannot be written.
        """
        if capability_id is None or not capability_id.strip():
            raise CatalogError("Capability id is required")
        safe_id = re.sub(r"\s+", "_", capability_id.strip().upper())
        if not _CAPABILITY_ID.match(safe_id):
            raise CatalogError("Capability id must be alphanumeric or underscore")

        path = self.capability_dir / f"{safe_id}.json"
        if path.exists() or safe_id in self._schemas:
            raise CatalogError(f"Capability already exists: {safe_id}")

        display_name = name.strip() if name and name.strip() else safe_id
        text = description.strip() if description else ""
        template = capability_template(safe_id, display_name, text)
        try:
            self.capability_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(template, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to create capability {safe_id}: {e}")
            raise CatalogError(f"Failed to create capability: {e}") from e

        self._schemas[safe_id] = template
        logger.info(f"Created capability template: {path}")
        return self._describe(safe_id, template)
