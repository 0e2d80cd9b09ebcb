# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

from typing import Any, Dict, Mapping, Optional

from coreason_olo.core.canvas import CanvasNode, PluginKey
from coreason_olo.core.document import TIMEOUT_FIELDS, PluginRef, TimeoutDefaults
from coreason_olo.core.interfaces import ComponentCatalog

CAPABILITY_TO_PLUGIN_TYPE: Dict[str, str] = {
    "MODEL": "ModelPlugin",
    "MEMORY": "MemoryPlugin",
    "CACHING": "CachingPlugin",
    "RETRIEVAL": "VectorStorePlugin",
    "VECTOR_STORE": "VectorStorePlugin",
    "TOOL": "ToolPlugin",
    "MCP": "MCPPlugin",
    "FILTER": "FilterPlugin",
    "REFINEMENT": "RefinementPlugin",
    "ACCESS": "AccessControlPlugin",
    "ACCESS_CONTROL": "AccessControlPlugin",
}


def plugin_type_for_capability(capability: Optional[str]) -> Optional[str]:
    if not capability:
        return None
    return CAPABILITY_TO_PLUGIN_TYPE.get(capability) or CAPABILITY_TO_PLUGIN_TYPE.get(capability.upper())


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class PluginRefResolver:
    """
    Recovers the PluginRef behind a canvas plugin node.

    Sources, highest priority first: persisted per-node properties and node data
    hints, the component catalog, the structural PluginKey encoded in the node's
    pluginId, and finally the raw pluginId. A catalog miss is never an error.
    """

    def __init__(
        self,
        catalog: Optional[ComponentCatalog] = None,
        timeout_defaults: Optional[TimeoutDefaults] = None,
    ) -> None:
        self.catalog = catalog
        self.timeout_defaults = timeout_defaults or TimeoutDefaults()

    def resolve(
        self,
        node: CanvasNode,
        capability: Optional[str] = None,
        stored: Optional[Mapping[str, Any]] = None,
    ) -> PluginRef:
        stored = stored if isinstance(stored, Mapping) else {}
        data = node.data
        plugin_id = node.effective_plugin_id

        ref_id = _text(stored.get("id")) or _text(data.get("_pluginId"))
        version = _text(stored.get("version")) or _text(data.get("_pluginVersion"))
        name = _text(stored.get("name")) or _text(data.get("_pluginName"))
        plugin_type = _text(stored.get("pluginType"))
        if plugin_type is None:
            plugin_type = _text(data.get("_pluginType"))

        entry = self.catalog.get(plugin_id) if self.catalog is not None and plugin_id else None
        if entry is not None:
            if entry.plugin_id is not None:
                ref_id = entry.plugin_id
            if entry.version is not None:
                version = entry.version
            if entry.class_name is not None:
                name = entry.class_name
            if entry.plugin_type is not None:
                plugin_type = entry.plugin_type

        if not name:
            parsed = PluginKey.parse(plugin_id)
            if parsed is not None:
                ref_id = ref_id or parsed.id
                version = version or parsed.version
                name = parsed.name
        if not name:
            name = plugin_id or "plugin"

        if plugin_type is None:
            plugin_type = plugin_type_for_capability(capability)

        values: Dict[str, Any] = {
            "type": "PLUGIN",
            "id": ref_id or None,
            "version": version or None,
            "name": name,
            "pluginType": plugin_type,
        }
        values.update(self.timeouts(stored, data))
        return PluginRef.model_validate(values)

    def timeouts(self, stored: Mapping[str, Any], data: Mapping[str, Any]) -> Dict[str, Any]:
        defaults = self.timeout_defaults.as_dict()
        resolved: Dict[str, Any] = {}
        for field in TIMEOUT_FIELDS:
            if _number(stored.get(field)):
                resolved[field] = stored[field]
            elif _number(data.get(field)):
                resolved[field] = data[field]
            else:
                resolved[field] = defaults[field]
        return resolved
