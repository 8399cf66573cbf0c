"""Content-addressed cache for expensive tool calls."""

from __future__ import annotations

import hashlib
import json
import logging
import re
import unicodedata
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from agentchat.db import Database
from agentchat.models import CacheEntry

LOGGER = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=7)

_SPLIT_RE = re.compile(r"[\W_]+", flags=re.UNICODE)

STOP_WORDS = frozenset(
    {
        "a", "about", "an", "and", "are", "as", "at", "be", "by", "can", "could", "d", "did",
        "do", "does", "for", "from", "how", "i", "in", "is", "it", "ll", "m", "me", "my", "of",
        "on", "or", "please", "re", "s", "t", "tell", "that", "the", "this", "to", "ve", "was",
        "what", "whats", "when", "where", "which", "who", "why", "will", "with", "you",
    }
)


def normalize_query(query: str) -> str:
    """Reduce a query to its cache identity.

    Casing, punctuation, repeated whitespace and English stop words do not
    change the result. A query made only of stop words keeps them so it does
    not collapse to the empty string. The function is idempotent.
    """
    text = unicodedata.normalize("NFKC", query)
    text = unicodedata.normalize("NFKC", text.casefold())
    tokens = [t for t in _SPLIT_RE.split(text) if t]
    content = [t for t in tokens if t not in STOP_WORDS]
    return " ".join(content or tokens)


def hash_query(normalized_query: str) -> str:
    return hashlib.sha256(normalized_query.encode("utf-8")).hexdigest()


class QueryCache:
    """TTL cache keyed by the hash of a normalized query.

    Entries expire a fixed time after they were written; reads never extend
    that. Concurrent misses may both store a result and the last write wins.
    """

    def __init__(
        self,
        db: Database,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = db
        self._ttl = ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, query: str) -> CacheEntry | None:
        normalized = normalize_query(query)
        query_hash = hash_query(normalized)
        now = self._clock()
        try:
            row = self._db.get_cache_row(query_hash, now)
            if row is not None:
                self._db.touch_cache_row(query_hash, now)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Cache lookup failed for %r, treating as a miss", normalized)
            return None

        if row is None:
            LOGGER.info("Cache miss for %r", normalized)
            return None

        LOGGER.info("Cache hit for %r (hits=%d)", normalized, row["hit_count"] + 1)
        return CacheEntry(
            query_hash=query_hash,
            normalized_query=row["normalized_query"],
            result=json.loads(row["result_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            hit_count=int(row["hit_count"]) + 1,
            last_accessed_at=now,
        )

    def put(self, query: str, result: Any, ttl: timedelta | None = None) -> None:
        """Store ``result``; storage failures are logged and swallowed."""

        normalized = normalize_query(query)
        now = self._clock()
        try:
            self._db.upsert_cache_row(
                query_hash=hash_query(normalized),
                normalized_query=normalized,
                result=result,
                created_at=now,
                expires_at=now + (ttl if ttl is not None else self._ttl),
            )
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to store cache entry for %r", normalized)
