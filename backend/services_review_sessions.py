"""
In-memory store for duplicate review sessions.

Each reviewer/browser pair owns one `DuplicateReviewController`. Entries expire
after `REVIEW_SESSION_TTL_SECONDS` of inactivity; reading an entry refreshes it.

Usage:
    from services_review_sessions import get_review_store

    controller = get_review_store().get_or_create(user_id, session_id, factory)
"""
import logging
import time
from threading import Lock
from typing import Any, Callable, Dict, Optional, Tuple

from config import REVIEW_SESSION_TTL_SECONDS
from services_duplicate_review import DuplicateReviewController

logger = logging.getLogger("lesson_admin")

SessionKey = Tuple[str, str]


class ReviewSessionStore:
    def __init__(self, ttl_seconds: int = REVIEW_SESSION_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._sessions: Dict[SessionKey, Dict[str, Any]] = {}
        self._lock = Lock()
        self._stats = {"hits": 0, "misses": 0, "evictions": 0}

    def _expired(self, entry: Dict[str, Any], now: float) -> bool:
        return now > entry["expires_at"]

    def get(self, reviewer_id: str, session_id: str) -> Optional[DuplicateReviewController]:
        key = (reviewer_id, session_id)
        now = time.time()
        with self._lock:
            entry = self._sessions.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return None
            if self._expired(entry, now):
                del self._sessions[key]
                self._stats["misses"] += 1
                self._stats["evictions"] += 1
                return None
            entry["expires_at"] = now + self.ttl_seconds
            self._stats["hits"] += 1
            return entry["controller"]

    def put(self, reviewer_id: str, session_id: str, controller: DuplicateReviewController) -> None:
        with self._lock:
            self._sessions[(reviewer_id, session_id)] = {
                "controller": controller,
                "expires_at": time.time() + self.ttl_seconds,
            }

    def get_or_create(
        self,
        reviewer_id: str,
        session_id: str,
        factory: Callable[[], DuplicateReviewController],
    ) -> DuplicateReviewController:
        controller = self.get(reviewer_id, session_id)
        if controller is None:
            controller = factory()
            self.put(reviewer_id, session_id, controller)
            logger.info(f"Started duplicate review session for reviewer {reviewer_id}")
        return controller

    def discard(self, reviewer_id: str, session_id: str) -> None:
        with self._lock:
            self._sessions.pop((reviewer_id, session_id), None)

    def cleanup_expired(self) -> int:
        """Remove expired sessions. Returns the number removed."""
        now = time.time()
        with self._lock:
            expired = [key for key, entry in self._sessions.items() if self._expired(entry, now)]
            for key in expired:
                del self._sessions[key]
            self._stats["evictions"] += len(expired)
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._stats["hits"] + self._stats["misses"]
            hit_rate = (self._stats["hits"] / total * 100) if total > 0 else 0
            return {
                **self._stats,
                "size": len(self._sessions),
                "hit_rate": round(hit_rate, 2),
            }


_store = ReviewSessionStore()


def get_review_store() -> ReviewSessionStore:
    return _store
