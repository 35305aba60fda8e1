"""Short-lived Redis cache of eligible candidate id lists.

Only ids are cached. Scores are recomputed on every request, so a hit answers
"who is eligible" and never "how compatible".
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import List, Optional, Sequence

from stellr.domain.matching.models import CandidateFilters
from stellr.infra.redis import RedisProxy, redis_client
from stellr.obs import metrics as obs_metrics
from stellr.settings import settings

logger = logging.getLogger(__name__)


class CandidateListCache:
    """Fail-open JSON cache keyed by viewer, normalized filters and page."""

    def __init__(
        self,
        redis: RedisProxy | None = None,
        *,
        namespace: str | None = None,
        ttl_seconds: float | None = None,
    ) -> None:
        self.redis = redis or redis_client
        self.namespace = namespace or settings.match_list_cache_namespace
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.match_list_cache_ttl_seconds

    def key(self, viewer_id: str, filters: CandidateFilters, limit: int, offset: int) -> str:
        payload = json.dumps(
            {"viewer": viewer_id, "filters": filters.normalized(), "limit": limit, "offset": offset},
            sort_keys=True,
            separators=(",", ":"),
        )
        return f"{self.namespace}{hashlib.sha256(payload.encode('utf-8')).hexdigest()}"

    async def get(self, viewer_id: str, filters: CandidateFilters, limit: int, offset: int) -> Optional[List[str]]:
        key = self.key(viewer_id, filters, limit, offset)
        try:
            raw = await self.redis.get(key)
        except Exception:
            logger.warning("match_list_cache_read_failed", exc_info=True)
            obs_metrics.inc_list_cache("error")
            return None
        if not raw:
            obs_metrics.inc_list_cache("miss")
            return None
        try:
            decoded = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
            ids = json.loads(decoded)
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("match_list_cache_corrupt", extra={"cache_key": key})
            obs_metrics.inc_list_cache("miss")
            return None
        if not isinstance(ids, list):
            obs_metrics.inc_list_cache("miss")
            return None
        obs_metrics.inc_list_cache("hit")
        return [str(item) for item in ids]

    async def put(
        self,
        viewer_id: str,
        filters: CandidateFilters,
        limit: int,
        offset: int,
        ids: Sequence[str],
        ttl: float | None = None,
    ) -> None:
        # An empty list is never cached so newly eligible users show up immediately
        if not ids:
            return
        ttl_seconds = ttl if ttl is not None else self.ttl_seconds
        key = self.key(viewer_id, filters, limit, offset)
        try:
            await self.redis.set(key, json.dumps(list(ids)), px=max(1, int(ttl_seconds * 1000)))
        except Exception:
            logger.warning("match_list_cache_write_failed", exc_info=True)
            obs_metrics.inc_list_cache("error")
