# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

import copy
import json
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from coreason_olo.utils.logger import logger

Number = Union[int, float]
ExecutionMode = Literal["SYNC", "ASYNC"]
AsyncCompletionPolicy = Literal["ALL", "FIRST_SUCCESS", "FIRST_FAILURE", "ALL_SETTLED"]
AsyncOutputMergePolicy = Literal["LAST_WINS", "FIRST_WINS", "PREFIX_BY_ACTIVITY"]

TIMEOUT_FIELDS: Tuple[str, ...] = ("scheduleToStartSeconds", "startToCloseSeconds", "scheduleToCloseSeconds")


class PluginRef(BaseModel):
    """
    One configured invocation of a plugin inside a Stage.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str = "PLUGIN"
    id: Optional[str] = None
    version: Optional[str] = None
    name: str
    # None = unset, "" = explicitly empty
    plugin_type: Optional[str] = Field(default=None, alias="pluginType")
    schedule_to_start_seconds: Optional[Number] = Field(default=None, alias="scheduleToStartSeconds")
    start_to_close_seconds: Optional[Number] = Field(default=None, alias="startToCloseSeconds")
    schedule_to_close_seconds: Optional[Number] = Field(default=None, alias="scheduleToCloseSeconds")

    @property
    def label(self) -> str:
        """Simple class name of the fully-qualified plugin name."""
        return plugin_label(self.name)

    def timeouts(self) -> Dict[str, Number]:
        dumped = self.model_dump(by_alias=True, exclude_none=True)
        return {k: dumped[k] for k in TIMEOUT_FIELDS if k in dumped}


class BranchGroup(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    children: List[PluginRef] = Field(default_factory=list)


class ElseIfBranch(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    condition: Optional[str] = None
    then_group: Optional[BranchGroup] = Field(default=None, alias="thenGroup")


class Stage(BaseModel):
    """
    The content of one capability: either a plain child list or a conditional branch.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str = "GROUP"
    execution_mode: ExecutionMode = Field(default="SYNC", alias="executionMode")
    async_completion_policy: Optional[AsyncCompletionPolicy] = Field(default=None, alias="asyncCompletionPolicy")
    async_output_merge_policy: Optional[AsyncOutputMergePolicy] = Field(
        default=None, alias="asyncOutputMergePolicy"
    )
    children: Optional[List[PluginRef]] = None
    condition: Optional[str] = None
    then_group: Optional[BranchGroup] = Field(default=None, alias="thenGroup")
    else_group: Optional[BranchGroup] = Field(default=None, alias="elseGroup")
    elseif_branches: Optional[List[ElseIfBranch]] = Field(default=None, alias="elseifBranches")

    @model_validator(mode="after")
    def check_branch_or_children(self) -> "Stage":
        if self.condition is not None and self.children:
            raise ValueError("A stage has either a condition or children, never both.")
        if self.condition is not None:
            self.children = None
        elif self.children is None:
            self.children = []
        return self

    @property
    def is_branch(self) -> bool:
        return self.condition is not None

    def to_document(self) -> Dict[str, Any]:
        """Serializes to the Pipeline Document wire shape."""
        return self.model_dump(by_alias=True, exclude_none=True)


class TimeoutDefaults(BaseModel):
    """
    Per-plugin activity timeout defaults (seconds).
    """

    model_config = ConfigDict(populate_by_name=True)

    schedule_to_start_seconds: Number = Field(default=60, alias="scheduleToStartSeconds")
    start_to_close_seconds: Number = Field(default=30, alias="startToCloseSeconds")
    schedule_to_close_seconds: Number = Field(default=300, alias="scheduleToCloseSeconds")

    @classmethod
    def from_document(cls, document: Optional[Mapping[str, Any]]) -> "TimeoutDefaults":
        """Reads activity.defaultTimeouts, keeping the constant for any non-numeric value."""
        activity = document.get("activity") if isinstance(document, Mapping) else None
        declared = activity.get("defaultTimeouts") if isinstance(activity, Mapping) else None
        if not isinstance(declared, Mapping):
            return cls()
        values = {k: v for k, v in declared.items() if k in TIMEOUT_FIELDS and _is_number(v)}
        return cls.model_validate(values)

    def as_dict(self) -> Dict[str, Number]:
        return self.model_dump(by_alias=True)


class Pipeline(BaseModel):
    """
    One execution tree plus scheduling defaults. Unknown fields pass through.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    root: Dict[str, Stage] = Field(default_factory=dict)
    default_timeout_seconds: Optional[Number] = Field(default=None, alias="defaultTimeoutSeconds")
    default_async_completion_policy: Optional[AsyncCompletionPolicy] = Field(
        default=None, alias="defaultAsyncCompletionPolicy"
    )


def plugin_label(name: Optional[str]) -> str:
    if not name or not isinstance(name, str):
        return "Plugin"
    return name.split(".")[-1] or name


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_document(raw: Union[str, bytes, Mapping[str, Any], None]) -> Optional[Dict[str, Any]]:
    """
    Parses a Pipeline Document leniently.

    Returns None for unparseable JSON, non-object documents or a missing/non-object
    "pipelines" mapping.
    """
    if raw is None:
        return None
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Pipeline document is not valid JSON: {e}")
            return None
    if not isinstance(raw, Mapping):
        return None
    pipelines = raw.get("pipelines")
    if not isinstance(pipelines, Mapping):
        return None
    return dict(raw)


def select_pipeline(
    document: Optional[Mapping[str, Any]], pipeline_name: Optional[str] = None
) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
    """Returns (name, raw pipeline) for the named pipeline, else the first one."""
    if not document:
        return None, None
    pipelines = document.get("pipelines")
    if not isinstance(pipelines, Mapping) or not pipelines:
        return None, None
    if pipeline_name is not None and isinstance(pipelines.get(pipeline_name), Mapping):
        return pipeline_name, dict(pipelines[pipeline_name])
    name, pipeline = next(iter(pipelines.items()))
    if not isinstance(pipeline, Mapping):
        return name, None
    return name, dict(pipeline)


def _legacy_child(child: Any) -> Dict[str, Any]:
    if isinstance(child, str):
        return {"type": "PLUGIN", "name": child, "pluginType": child}
    if isinstance(child, Mapping) and "name" in child:
        out: Dict[str, Any] = {"type": "PLUGIN", "name": child.get("name") or "plugin"}
        if child.get("id"):
            out["id"] = child["id"]
        if child.get("version"):
            out["version"] = child["version"]
        out["pluginType"] = child.get("pluginType") if child.get("pluginType") is not None else "plugin"
        return out
    return {"type": "PLUGIN", "name": "plugin", "pluginType": "plugin"}


def stages_to_root(stages: List[Any]) -> Dict[str, Dict[str, Any]]:
    """
    Normalizes the legacy `stages` array into the capability -> stage shape.

    Only the first group of each stage is read.
    """
    root: Dict[str, Dict[str, Any]] = {}
    for entry in stages:
        if not isinstance(entry, Mapping) or not entry.get("stage"):
            continue
        groups = entry.get("groups") if isinstance(entry.get("groups"), list) else []
        first = groups[0] if groups and isinstance(groups[0], Mapping) else {}
        children = first.get("children") if isinstance(first.get("children"), list) else []
        root[str(entry["stage"])] = {
            "type": "GROUP",
            "executionMode": first.get("executionMode") or "SYNC",
            "children": [_legacy_child(c) for c in children],
        }
    return root


def raw_root(pipeline: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Picks root, then rootByCapability, then the normalized legacy stages."""
    if not isinstance(pipeline, Mapping):
        return {}
    for key in ("root", "rootByCapability"):
        candidate = pipeline.get(key)
        if isinstance(candidate, Mapping) and len(candidate) > 0:
            return dict(candidate)
    stages = pipeline.get("stages")
    if isinstance(stages, list) and stages:
        return stages_to_root(stages)
    return {}


def load_root(pipeline: Optional[Mapping[str, Any]]) -> Dict[str, Stage]:
    """
    Validates a pipeline's stages one by one, preserving capability order.

    A stage that fails validation is skipped and logged; the rest still load.
    """
    root: Dict[str, Stage] = {}
    for capability, raw_stage in raw_root(pipeline).items():
        if not isinstance(raw_stage, Mapping):
            continue
        try:
            root[str(capability)] = Stage.model_validate(raw_stage)
        except ValidationError as e:
            logger.warning(f"Skipping malformed stage {capability}: {e.error_count()} validation error(s)")
    return root


def root_to_document(root: Mapping[str, Stage]) -> Dict[str, Dict[str, Any]]:
    return {capability: stage.to_document() for capability, stage in root.items()}


def apply_root(document: Mapping[str, Any], pipeline_name: str, root: Mapping[str, Stage]) -> Dict[str, Any]:
    """
    Returns a copy of the document with the pipeline's root replaced wholesale.

    All other document and pipeline fields are kept as they are.
    """
    updated = copy.deepcopy(dict(document)) if document else {}
    pipelines = updated.get("pipelines")
    if not isinstance(pipelines, dict):
        pipelines = {}
    pipeline = dict(pipelines.get(pipeline_name) or {})
    pipeline["root"] = root_to_document(root)
    pipelines[pipeline_name] = pipeline
    updated["pipelines"] = pipelines
    return updated
