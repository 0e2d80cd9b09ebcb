# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

from typing import Any, Dict, List, Optional

from coreason_olo.core.canvas import CanvasNode
from coreason_olo.core.document import TimeoutDefaults
from coreason_olo.core.interfaces import ComponentDescriptor
from coreason_olo.engine.resolver import PluginRefResolver, plugin_type_for_capability


class StubCatalog:
    def __init__(self, entries: List[ComponentDescriptor]) -> None:
        self.entries = {e.id: e for e in entries}

    def list(self) -> List[ComponentDescriptor]:
        return list(self.entries.values())

    def get(self, component_id: str) -> Optional[ComponentDescriptor]:
        return self.entries.get(component_id)

    def get_schema(self, component_id: str) -> Optional[Dict[str, Any]]:
        return None


def test_plugin_type_for_capability() -> None:
    assert plugin_type_for_capability("RETRIEVAL") == "VectorStorePlugin"
    assert plugin_type_for_capability("tool") == "ToolPlugin"
    assert plugin_type_for_capability("UNKNOWN") is None
    assert plugin_type_for_capability(None) is None


def test_catalog_hit_supplies_identity() -> None:
    catalog = StubCatalog(
        [
            ComponentDescriptor.model_validate(
                {
                    "id": "llm__openai",
                    "name": "openai",
                    "pluginId": "openai",
                    "version": "3.1",
                    "className": "acme.llm.OpenAIPlugin",
                    "pluginType": "ModelPlugin",
                }
            )
        ]
    )
    ref = PluginRefResolver(catalog).resolve(CanvasNode(id="n", plugin_id="llm__openai"), "TOOL")
    assert ref.id == "openai"
    assert ref.version == "3.1"
    assert ref.name == "acme.llm.OpenAIPlugin"
    assert ref.plugin_type == "ModelPlugin"


def test_catalog_miss_falls_back_to_key() -> None:
    resolver = PluginRefResolver(StubCatalog([]))
    ref = resolver.resolve(CanvasNode(id="n", plugin_id="acme-2.0__x.y.Thing"), "MEMORY")
    assert (ref.id, ref.version, ref.name) == ("acme", "2.0", "x.y.Thing")
    assert ref.plugin_type == "MemoryPlugin"


def test_raw_id_used_as_name() -> None:
    ref = PluginRefResolver().resolve(CanvasNode(id="n", plugin_id="opaque-thing"))
    assert ref.name == "opaque-thing"
    assert ref.id is None
    assert ref.plugin_type is None

    assert PluginRefResolver().resolve(CanvasNode(id="n")).name == "plugin"


def test_stored_properties_win_over_data() -> None:
    node = CanvasNode(id="n", plugin_id="x", data={"_pluginName": "from.Data", "_pluginType": "ToolPlugin"})
    ref = PluginRefResolver().resolve(node, "MODEL", {"name": "from.Props", "pluginType": ""})
    assert ref.name == "from.Props"
    assert ref.plugin_type == ""


def test_timeouts_resolution_order() -> None:
    resolver = PluginRefResolver(timeout_defaults=TimeoutDefaults(start_to_close_seconds=5))
    out = resolver.timeouts({"scheduleToStartSeconds": 1}, {"scheduleToStartSeconds": 2, "scheduleToCloseSeconds": 3})
    assert out == {"scheduleToStartSeconds": 1, "startToCloseSeconds": 5, "scheduleToCloseSeconds": 3}
    # booleans are not numbers
    assert resolver.timeouts({"scheduleToStartSeconds": True}, {})["scheduleToStartSeconds"] == 60
