# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

from typing import Any, Dict

import pytest

pytest_plugins = ("pytest_asyncio",)

TIMEOUTS = {"scheduleToStartSeconds": 10, "startToCloseSeconds": 20, "scheduleToCloseSeconds": 30}


def plugin(name: str, plugin_type: str = "ModelPlugin", **extra: Any) -> Dict[str, Any]:
    """A fully specified PLUGIN child, so folding it back adds nothing."""
    return {"type": "PLUGIN", "name": name, "pluginType": plugin_type, **TIMEOUTS, **extra}


@pytest.fixture  # type: ignore[misc]
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture  # type: ignore
def single_document() -> Dict[str, Any]:
    return {
        "pipelines": {
            "main": {
                "root": {
                    "MODEL": {
                        "type": "GROUP",
                        "executionMode": "SYNC",
                        "children": [plugin("a.b.Foo")],
                    }
                },
                "defaultTimeoutSeconds": 6000,
                "defaultAsyncCompletionPolicy": "ALL",
            }
        }
    }


@pytest.fixture  # type: ignore
def async_document() -> Dict[str, Any]:
    return {
        "pipelines": {
            "main": {
                "root": {
                    "RETRIEVAL": {
                        "type": "GROUP",
                        "executionMode": "ASYNC",
                        "asyncCompletionPolicy": "FIRST_SUCCESS",
                        "asyncOutputMergePolicy": "LAST_WINS",
                        "children": [plugin("X", "VectorStorePlugin"), plugin("Y", "VectorStorePlugin")],
                    }
                }
            }
        }
    }


@pytest.fixture  # type: ignore
def conditional_document() -> Dict[str, Any]:
    return {
        "pipelines": {
            "main": {
                "root": {
                    "FILTER": {
                        "type": "GROUP",
                        "executionMode": "SYNC",
                        "condition": "cond.Plugin",
                        "thenGroup": {"children": [plugin("then.Yes", "FilterPlugin")]},
                        "elseGroup": {"children": [plugin("else.No", "FilterPlugin")]},
                    }
                }
            }
        }
    }


@pytest.fixture  # type: ignore
def mixed_document() -> Dict[str, Any]:
    """Four capabilities covering single, sync fork, async fork and an elseif branch."""
    return {
        "activity": {"defaultTimeouts": dict(TIMEOUTS)},
        "pipelines": {
            "main": {
                "root": {
                    "ACCESS": {
                        "type": "GROUP",
                        "executionMode": "SYNC",
                        "children": [plugin("acl.Check", "AccessControlPlugin", id="acl", version="1.0")],
                    },
                    "MODEL": {
                        "type": "GROUP",
                        "executionMode": "SYNC",
                        "children": [plugin("m.First"), plugin("m.Second")],
                    },
                    "RETRIEVAL": {
                        "type": "GROUP",
                        "executionMode": "ASYNC",
                        "asyncCompletionPolicy": "ALL",
                        "children": [plugin("r.A", "VectorStorePlugin"), plugin("r.B", "VectorStorePlugin")],
                    },
                    "FILTER": {
                        "type": "GROUP",
                        "executionMode": "SYNC",
                        "condition": "cond.Main",
                        "thenGroup": {"children": [plugin("f.Then", "FilterPlugin")]},
                        "elseifBranches": [
                            {"condition": "cond.Other", "thenGroup": {"children": [plugin("f.Elif", "FilterPlugin")]}}
                        ],
                        "elseGroup": {"children": [plugin("f.Else", "FilterPlugin")]},
                    },
                },
                "defaultTimeoutSeconds": 6000,
            }
        },
    }
