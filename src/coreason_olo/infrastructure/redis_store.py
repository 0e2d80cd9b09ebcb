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
from typing import List, Optional

import redis.asyncio as redis
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from redis.exceptions import RedisError

from coreason_olo.core.interfaces import ConfigRecord, InProgressPayload, StoreUnavailableError
from coreason_olo.utils.logger import logger

CONFIG_KEY_PREFIX = "olo:config:"
ENGINE_CONFIG_KEY_PREFIX = "olo:engine:config:"
INPROGRESS_KEY = "olo:ui:inprogress-template"
CONFIG_TTL_SECONDS = 30 * 24 * 3600
INPROGRESS_TTL_SECONDS = 7 * 24 * 3600


class ConfigPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    config_json: Optional[str] = Field(default=None, alias="configJson")
    canvas_json: Optional[str] = Field(default=None, alias="canvasJson")


class RedisConfigStore:
    """
    Key/value mirror of named configurations, engine configs and the draft slot.

    Any Redis failure surfaces as StoreUnavailableError; a missing key is None.
    """

    def __init__(self, redis_client: redis.Redis) -> None:
        self.redis = redis_client

    async def upsert(self, record: ConfigRecord) -> ConfigRecord:
        payload = ConfigPayload(config_json=record.config_json, canvas_json=record.canvas_json)
        try:
            await self.redis.set(
                f"{CONFIG_KEY_PREFIX}{record.name}",
                payload.model_dump_json(by_alias=True),
                ex=CONFIG_TTL_SECONDS,
            )
        except RedisError as e:
            logger.warning(f"Redis unavailable when upserting config {record.name}: {e}")
            raise StoreUnavailableError("Redis unavailable") from e
        logger.debug(f"Upserted config to Redis: {record.name}")
        return record

    async def get(self, name: str) -> Optional[ConfigRecord]:
        try:
            raw = await self.redis.get(f"{CONFIG_KEY_PREFIX}{name}")
        except RedisError as e:
            logger.warning(f"Redis unavailable when getting config {name}: {e}")
            raise StoreUnavailableError("Redis unavailable") from e
        if raw is None:
            return None
        try:
            payload = ConfigPayload.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Failed to deserialize Redis config for {name}")
            return None
        return ConfigRecord(name=name, config_json=payload.config_json, canvas_json=payload.canvas_json)

    async def delete(self, name: str) -> None:
        try:
            await self.redis.delete(f"{CONFIG_KEY_PREFIX}{name}")
        except RedisError as e:
            logger.warning(f"Redis unavailable when deleting config {name}: {e}")
            raise StoreUnavailableError("Redis unavailable") from e

    async def list_names(self) -> List[str]:
        return await self._names(CONFIG_KEY_PREFIX)

    async def list_engine_config_names(self) -> List[str]:
        """Names stored under olo:engine:config:*, sorted."""
        return await self._names(ENGINE_CONFIG_KEY_PREFIX)

    async def _names(self, prefix: str) -> List[str]:
        try:
            keys = await self.redis.keys(f"{prefix}*")
        except RedisError as e:
            logger.warning(f"Redis unavailable when listing {prefix}*: {e}")
            raise StoreUnavailableError("Redis unavailable") from e
        names = []
        for key in keys or []:
            text = key.decode("utf-8") if isinstance(key, bytes) else str(key)
            if len(text) > len(prefix):
                names.append(text[len(prefix) :])
        return sorted(names)

    async def get_engine_config(self, name: str) -> Optional[str]:
        """Returns the stored engine config JSON exactly as it was saved."""
        try:
            raw = await self.redis.get(f"{ENGINE_CONFIG_KEY_PREFIX}{name}")
        except RedisError as e:
            logger.warning(f"Redis unavailable when getting engine config {name}: {e}")
            raise StoreUnavailableError("Redis unavailable") from e
        if raw is None or not str(raw).strip():
            return None
        return raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)

    async def upsert_engine_config(self, name: Optional[str], config_json: Optional[str]) -> str:
        """Stores an engine config verbatim after checking it is a JSON object.

        Raises:
            ValueError: If the name is blank or the payload is not a JSON object.
            StoreUnavailableError: If Redis cannot be reached.
        """
        if name is None or not name.strip():
            raise ValueError("Engine config name is required")
        raw = config_json if config_json is not None and config_json.strip() else "{}"
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid engine config JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise ValueError("Invalid engine config JSON: expected an object")
        key = f"{ENGINE_CONFIG_KEY_PREFIX}{name.strip()}"
        try:
            await self.redis.set(key, raw)
        except RedisError as e:
            logger.warning(f"Redis unavailable when upserting engine config {name}: {e}")
            raise StoreUnavailableError("Redis unavailable") from e
        logger.debug(f"Upserted engine config to Redis: {key}")
        return key

    async def set_in_progress(self, payload: InProgressPayload) -> None:
        try:
            await self.redis.set(INPROGRESS_KEY, payload.model_dump_json(by_alias=True), ex=INPROGRESS_TTL_SECONDS)
        except RedisError as e:
            logger.warning(f"Redis unavailable when saving in-progress template: {e}")
            raise StoreUnavailableError("Redis unavailable") from e
        logger.debug("Persisted in-progress template to Redis")

    async def get_in_progress(self) -> Optional[InProgressPayload]:
        try:
            raw = await self.redis.get(INPROGRESS_KEY)
        except RedisError as e:
            logger.warning(f"Redis unavailable when getting in-progress template: {e}")
            raise StoreUnavailableError("Redis unavailable") from e
        if raw is None:
            return None
        try:
            return InProgressPayload.model_validate_json(raw)
        except ValidationError:
            logger.warning("Failed to deserialize in-progress payload")
            return None
