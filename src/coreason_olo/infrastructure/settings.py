# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

import os

from pydantic import BaseModel


class Settings(BaseModel):
    """Runtime settings, read from environment variables."""

    redis_url: str = "redis://localhost:6379"
    database_path: str = "olo.db"
    components_dir: str = "components"
    plugins_dir: str = "components/plugins"
    templates_dir: str = "template"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            redis_url=os.getenv("REDIS_URL", defaults.redis_url),
            database_path=os.getenv("OLO_DATABASE_PATH", defaults.database_path),
            components_dir=os.getenv("OLO_COMPONENTS_DIR", defaults.components_dir),
            plugins_dir=os.getenv("OLO_PLUGINS_DIR", defaults.plugins_dir),
            templates_dir=os.getenv("OLO_TEMPLATES_DIR", defaults.templates_dir),
            log_level=os.getenv("OLO_LOG_LEVEL", defaults.log_level),
        )
