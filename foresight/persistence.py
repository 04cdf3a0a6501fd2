"""
Snapshot-Persistenz in Redis.

Patterns liegen als Hash (Pattern-ID -> JSON), das Rolling Window der
Beobachtungen als ein JSON-Blob. Ohne Redis arbeitet alles rein im
Speicher weiter; Fehler werden geloggt, nie an die Engine durchgereicht.
"""

import json
import logging
from typing import Optional

import redis.asyncio as aioredis

from .constants import REDIS_KEY_OBSERVATIONS, REDIS_KEY_PATTERNS, REDIS_SNAPSHOT_TTL

logger = logging.getLogger(__name__)


class SnapshotStore:

    def __init__(self, ttl_seconds: int = REDIS_SNAPSHOT_TTL):
        self.redis: Optional[aioredis.Redis] = None
        self.ttl = ttl_seconds
        self.last_saved: Optional[dict] = None

    async def initialize(self, redis_client: Optional[aioredis.Redis] = None):
        self.redis = redis_client
        logger.info("SnapshotStore initialisiert (%s)", "Redis" if self.redis else "nur Speicher")

    @property
    def available(self) -> bool:
        return self.redis is not None

    async def save(self, snapshot: dict) -> bool:
        """Speichert {"patterns": {...}, "observations": [...]}."""
        if not self.redis:
            return False
        patterns = snapshot.get("patterns", {})
        observations = snapshot.get("observations", [])
        try:
            pipe = self.redis.pipeline()
            pipe.delete(REDIS_KEY_PATTERNS)
            if patterns:
                pipe.hset(REDIS_KEY_PATTERNS,
                          mapping={pid: json.dumps(p) for pid, p in patterns.items()})
                pipe.expire(REDIS_KEY_PATTERNS, self.ttl)
            pipe.setex(REDIS_KEY_OBSERVATIONS, self.ttl, json.dumps(observations))
            await pipe.execute()
        except Exception as e:
            logger.warning("Snapshot speichern fehlgeschlagen: %s", e)
            return False

        self.last_saved = {"patterns": len(patterns), "observations": len(observations)}
        logger.debug("Snapshot gespeichert: %d Patterns, %d Beobachtungen",
                     len(patterns), len(observations))
        return True

    async def load(self) -> Optional[dict]:
        """Laedt den letzten Snapshot oder None."""
        if not self.redis:
            return None
        try:
            raw_patterns = await self.redis.hgetall(REDIS_KEY_PATTERNS)
            raw_observations = await self.redis.get(REDIS_KEY_OBSERVATIONS)
        except Exception as e:
            logger.warning("Snapshot laden fehlgeschlagen: %s", e)
            return None

        patterns = {}
        for pattern_id, data in (raw_patterns or {}).items():
            if isinstance(pattern_id, bytes):
                pattern_id = pattern_id.decode()
            if isinstance(data, bytes):
                data = data.decode()
            try:
                patterns[pattern_id] = json.loads(data)
            except json.JSONDecodeError:
                logger.warning("Pattern '%s' im Snapshot defekt, uebersprungen", pattern_id)

        observations = []
        if raw_observations:
            if isinstance(raw_observations, bytes):
                raw_observations = raw_observations.decode()
            try:
                observations = json.loads(raw_observations)
            except json.JSONDecodeError:
                logger.warning("Beobachtungs-Snapshot defekt, starte leer")

        if not patterns and not observations:
            return None
        return {"patterns": patterns, "observations": observations}

    async def clear(self):
        if not self.redis:
            return
        try:
            await self.redis.delete(REDIS_KEY_PATTERNS, REDIS_KEY_OBSERVATIONS)
        except Exception as e:
            logger.warning("Snapshot loeschen fehlgeschlagen: %s", e)
