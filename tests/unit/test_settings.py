# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

import pytest

from coreason_olo.infrastructure.settings import Settings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("REDIS_URL", "OLO_DATABASE_PATH", "OLO_COMPONENTS_DIR", "OLO_PLUGINS_DIR", "OLO_TEMPLATES_DIR"):
        monkeypatch.delenv(var, raising=False)
    settings = Settings.from_env()
    assert settings.redis_url == "redis://localhost:6379"
    assert settings.database_path == "olo.db"
    assert settings.plugins_dir == "components/plugins"
    assert settings.templates_dir == "template"


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REDIS_URL", "redis://cache:6380/1")
    monkeypatch.setenv("OLO_DATABASE_PATH", "/data/olo.db")
    monkeypatch.setenv("OLO_COMPONENTS_DIR", "/srv/components")
    monkeypatch.setenv("OLO_LOG_LEVEL", "DEBUG")
    settings = Settings.from_env()
    assert settings.redis_url == "redis://cache:6380/1"
    assert settings.database_path == "/data/olo.db"
    assert settings.components_dir == "/srv/components"
    assert settings.log_level == "DEBUG"
