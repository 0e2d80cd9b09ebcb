# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class NodeRole(str, Enum):
    """
    Structural role of a canvas node, decoded from its pluginId.
    """

    START = "start"
    END = "end"
    GROUP = "group"
    FORK = "fork"
    JOIN = "reducer"
    CONDITION = "condition"
    LOOP = "loop"
    PLUGIN = "plugin"

    @classmethod
    def from_plugin_id(cls, plugin_id: Optional[str]) -> "NodeRole":
        return _ROLE_BY_PLUGIN_ID.get((plugin_id or "").strip(), cls.PLUGIN)

    @property
    def is_structural(self) -> bool:
        return self is not NodeRole.PLUGIN

    @property
    def family(self) -> Optional[str]:
        """Placement family of the role, if it belongs to one."""
        if self in CONDITION_FAMILY:
            return "IF/Iterator"
        if self in PARALLEL_FAMILY:
            return "Fork/Join"
        return None


_ROLE_BY_PLUGIN_ID: Dict[str, NodeRole] = {
    "start": NodeRole.START,
    "end": NodeRole.END,
    "group": NodeRole.GROUP,
    "fork": NodeRole.FORK,
    "reducer": NodeRole.JOIN,
    "join": NodeRole.JOIN,
    "condition": NodeRole.CONDITION,
    "loop": NodeRole.LOOP,
    "iterator": NodeRole.LOOP,
}

CONDITION_FAMILY: FrozenSet[NodeRole] = frozenset({NodeRole.CONDITION, NodeRole.LOOP})
PARALLEL_FAMILY: FrozenSet[NodeRole] = frozenset({NodeRole.FORK, NodeRole.JOIN})
RESERVED_PLUGIN_IDS: FrozenSet[str] = frozenset(_ROLE_BY_PLUGIN_ID)


class PluginKey(BaseModel):
    """
    Composite plugin identity encoded into a plugin node's pluginId.

    Format: "{id}-{version}__{name}" when there is an id, else the bare name.
    The version slot is always written (empty when unset) so the id may itself
    end in a version-like suffix. Versions must not contain "-" and ids must not
    contain "__".
    """

    model_config = ConfigDict(frozen=True)

    name: str
    id: Optional[str] = None
    version: Optional[str] = None

    def format(self) -> str:
        if self.id:
            return f"{self.id}-{self.version or ''}__{self.name}"
        return self.name

    @classmethod
    def for_child(
        cls,
        name: Optional[str],
        plugin_id: Optional[str] = None,
        version: Optional[str] = None,
        plugin_type: Optional[str] = None,
    ) -> "PluginKey":
        return cls(name=name or plugin_type or "plugin", id=plugin_id or None, version=version or None)

    @classmethod
    def parse(cls, key: Optional[str]) -> Optional["PluginKey"]:
        """Inverse of format() for keys carrying an id; None for anything else."""
        if not key or not isinstance(key, str):
            return None
        idx = key.find("__")
        if idx <= 0:
            return None
        left = key[:idx].strip()
        name = key[idx + 2 :].strip()
        if not name or not left:
            return None
        plugin_id, dash, version = left.rpartition("-")
        if not dash or not plugin_id:
            # Hand-written key without a version slot.
            return cls(name=name, id=left)
        return cls(name=name, id=plugin_id, version=version or None)


class Position(BaseModel):
    x: float = 0.0
    y: float = 0.0


class CanvasNode(BaseModel):
    """
    A positioned node on the editing canvas.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    plugin_id: str = Field(default="", alias="pluginId")
    position: Position = Field(default_factory=Position)
    data: Dict[str, Any] = Field(default_factory=dict)
    type: Optional[str] = None

    @property
    def effective_plugin_id(self) -> str:
        """The editor keeps pluginId inside data; it wins over the top-level field."""
        from_data = self.data.get("pluginId")
        if isinstance(from_data, str) and from_data:
            return from_data
        return self.plugin_id

    @property
    def role(self) -> NodeRole:
        return NodeRole.from_plugin_id(self.effective_plugin_id)


class CanvasEdge(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = ""
    source: str
    target: str

    @model_validator(mode="after")
    def derive_id(self) -> "CanvasEdge":
        if not self.id:
            self.id = edge_id(self.source, self.target)
        return self


class CanvasGraph(BaseModel):
    """
    The editable node/edge projection of one pipeline.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    nodes: List[CanvasNode] = Field(default_factory=list)
    edges: List[CanvasEdge] = Field(default_factory=list)

    def node(self, node_id: str) -> Optional[CanvasNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_ids(self) -> List[str]:
        return [n.id for n in self.nodes]

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def edge_id(source: str, target: str) -> str:
    return f"e-{source}-{target}"
