# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_maco

from typing import List, Optional

from coreason_olo.core.interfaces import ConfigRecord, ConfigStore, StoreUnavailableError
from coreason_olo.infrastructure.sql_store import SqliteConfigStore
from coreason_olo.utils.logger import logger


class ConfigService:
    """
    Named configurations over a primary store, mirrored to a secondary store.

    Reads fall back to the secondary store when the primary has no such name.
    """

    def __init__(self, primary: SqliteConfigStore, secondary: Optional[ConfigStore] = None) -> None:
        self.primary = primary
        self.secondary = secondary

    async def upsert(self, record: ConfigRecord) -> ConfigRecord:
        saved = await self.primary.upsert(record)
        if self.secondary is not None:
            await self.secondary.upsert(saved)
        return saved

    async def get(self, name: str) -> Optional[ConfigRecord]:
        """Primary first, then the secondary store.

        An unreachable secondary counts as a miss; an unreachable primary raises.
        """
        found = await self.primary.get(name)
        if found is not None or self.secondary is None:
            return found
        try:
            return await self.secondary.get(name)
        except StoreUnavailableError as e:
            logger.warning(f"Secondary store unavailable while looking up {name}: {e}")
            return None

    async def delete(self, name: str) -> None:
        await self.primary.delete(name)
        if self.secondary is None:
            return
        try:
            await self.secondary.delete(name)
        except StoreUnavailableError as e:
            logger.warning(f"Secondary store unavailable when deleting {name}: {e}")

    async def list_all(self) -> List[ConfigRecord]:
        return await self.primary.list_all()

    async def list_names(self) -> List[str]:
        return await self.primary.list_names()
