from config import REDIS_HOST, REDIS_PORT
import json
import logging
from datetime import date, datetime

import redis.asyncio as redis
from redis.exceptions import RedisError

redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, decode_responses=True)

logger = logging.getLogger(__name__)


def _encode(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


async def set_cache(key: str, value, expire: int = 60):
    logger.info(f"Setting cache for key: {key} with expire time: {expire}")
    try:
        await redis_client.set(key, json.dumps(value, default=_encode), ex=expire)
    except RedisError as exc:
        logger.warning(f"Could not write cache key {key}: {exc}")


async def get_cache(key: str):
    logger.info(f"Getting cache for key: {key}")
    try:
        data = await redis_client.get(key)
    except RedisError as exc:
        logger.warning(f"Could not read cache key {key}: {exc}")
        return None
    if data:
        logger.info(f"Cache hit for key: {key}")
        return json.loads(data)
    logger.info(f"Cache miss for key: {key}")
    return None


async def delete_cache(key: str):
    try:
        await redis_client.delete(key)
    except RedisError as exc:
        logger.warning(f"Could not delete cache key {key}: {exc}")


async def delete_cache_prefix(prefix: str):
    try:
        keys = [key async for key in redis_client.scan_iter(match=f"{prefix}*")]
        if keys:
            await redis_client.delete(*keys)
    except RedisError as exc:
        logger.warning(f"Could not delete cache keys under {prefix}: {exc}")
