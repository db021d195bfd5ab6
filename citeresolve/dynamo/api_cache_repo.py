from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Optional

from boto3.dynamodb.types import Binary
from botocore.exceptions import ClientError

from ..logging_setup import get_logger, log_event
from .client import get_dynamo_resource
from .tables import API_CACHE_TABLE

logger = get_logger(__name__)


def _strip_nones(d: Dict[str, Any]) -> Dict[str, Any]:
    """Return a shallow copy of dict without None values (DynamoDB rejects None)."""
    return {k: v for k, v in d.items() if v is not None}


def _expires_at_epoch_seconds(ttl_seconds: int, now: Optional[dt.datetime] = None) -> int:
    now = now or dt.datetime.now(dt.timezone.utc)
    return int((now + dt.timedelta(seconds=ttl_seconds)).timestamp())


def _payload_bytes(payload: Any) -> Optional[bytes]:
    if payload is None:
        return None
    if isinstance(payload, Binary):
        return bytes(payload.value)
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return None


class ApiCacheRepo:
    """
    Cache table helper implementing ``get``/``put`` over bytes. Items are keyed by
    cache_key and carry an ``expires_at`` epoch that DynamoDB TTL eventually sweeps;
    since the sweep can lag by hours, reads also check it and delete stale items.
    """
    def __init__(self, table_name: Optional[str] = None) -> None:
        ddb = get_dynamo_resource()
        self.t_cache = ddb.Table(table_name or API_CACHE_TABLE)

    def get(self, cache_key: str) -> Optional[bytes]:
        item = self.t_cache.get_item(Key={"cache_key": cache_key}).get("Item")
        if not item:
            return None
        if not self.is_fresh(item):
            self._evict(cache_key)
            return None
        return _payload_bytes(item.get("payload"))

    def put(self, cache_key: str, value: bytes, ttl_seconds: int, *, source: Optional[str] = None) -> None:
        now = dt.datetime.now(dt.timezone.utc)
        item = {
            "cache_key": cache_key,
            "payload": Binary(bytes(value)),
            "source": source or cache_key.split(":", 1)[0],
            "cached_at": now.isoformat(),
            "expires_at": _expires_at_epoch_seconds(int(ttl_seconds), now),
        }
        self.t_cache.put_item(Item=_strip_nones(item))

    def is_fresh(self, item: Optional[Dict[str, Any]], *, now: Optional[dt.datetime] = None) -> bool:
        if not item:
            return False
        exp = item.get("expires_at")
        if exp is None:
            return False
        now = now or dt.datetime.now(dt.timezone.utc)
        try:
            return int(exp) > int(now.timestamp())
        except (TypeError, ValueError):
            return False

    def _evict(self, cache_key: str) -> None:
        try:
            self.t_cache.delete_item(Key={"cache_key": cache_key})
        except ClientError as e:
            log_event(logger, logging.WARNING, "api_cache eviction failed", cache_key=cache_key, error=str(e))
