# services/rate_limiter.py
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone, timedelta
from typing import Callable, Dict, Optional, Tuple

from models.meal_scan_schemas import RateLimitState, RateLimitResult

def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        print(f"⚠️ Ignoring non-integer {name}={value!r}, using {default}")
        return default

# Fixed-window limits per feature: (env var, default) for limit and window
RATE_LIMITS = {
    "meal_analysis": {
        "limit": ("MEAL_SCAN_RATE_LIMIT", 10),
        "window_seconds": ("MEAL_SCAN_RATE_WINDOW_SECONDS", 60),
    },
    "api": {
        "limit": ("API_RATE_LIMIT", 60),
        "window_seconds": ("API_RATE_WINDOW_SECONDS", 60),
    },
}

def rate_limit_config(feature: str) -> Dict[str, int]:
    """Current limit and window for a feature, read from the environment at call time"""
    return {
        setting: _env_int(env_name, default)
        for setting, (env_name, default) in RATE_LIMITS[feature].items()
    }

def rate_limit_key(feature: str, identity: str) -> str:
    return f"{feature}:{identity}"

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

class RateLimitStore(ABC):
    """Backing store whose increment must be atomic per key"""

    @abstractmethod
    async def increment(self, key: str, limit: int, window_seconds: int, now: datetime) -> Tuple[RateLimitState, bool]:
        """
        Start a new window if the current one is over, then advance the count
        unless it already reached the limit. Returns the state after the call
        and whether this call was admitted.
        """

class InMemoryRateLimitStore(RateLimitStore):
    """Per-process counters. Only correct when a single instance serves traffic."""

    def __init__(self):
        self._states: Dict[str, RateLimitState] = {}
        self._lock = threading.Lock()

    async def increment(self, key: str, limit: int, window_seconds: int, now: datetime) -> Tuple[RateLimitState, bool]:
        with self._lock:
            state = self._states.get(key)
            if state is None or now >= state.reset_time:
                state = RateLimitState(
                    key=key,
                    window_start=now,
                    count=0,
                    limit=limit,
                    window_seconds=window_seconds,
                )
                self._states[key] = state

            admitted = state.count < limit
            if admitted:
                state.count += 1

            return state.model_copy(), admitted

    def get_state(self, key: str, now: datetime) -> Optional[RateLimitState]:
        """Current state for a key; an elapsed window reads as count 0"""
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return None
            if now >= state.reset_time:
                return state.model_copy(update={"count": 0, "window_start": now})
            return state.model_copy()

    def purge_expired(self, now: datetime) -> int:
        """Drop keys whose window has finished"""
        with self._lock:
            expired = [key for key, state in self._states.items() if now >= state.reset_time]
            for key in expired:
                del self._states[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._states)

class SupabaseRateLimitStore(RateLimitStore):
    """
    Shared counters for multi-instance deployments. The window roll-over,
    compare and increment all happen inside the increment_rate_limit SQL
    function (see sql/meal_scans.sql) so concurrent instances cannot both
    take the last slot.
    """

    def __init__(self, client):
        self.client = client

    async def increment(self, key: str, limit: int, window_seconds: int, now: datetime) -> Tuple[RateLimitState, bool]:
        response = self.client.rpc("increment_rate_limit", {
            "p_key": key,
            "p_limit": limit,
            "p_window_seconds": window_seconds,
            "p_now": now.isoformat(),
        }).execute()

        row = response.data[0] if isinstance(response.data, list) else response.data
        if not row:
            raise ValueError(f"increment_rate_limit returned no row for {key}")

        state = RateLimitState(
            key=key,
            window_start=datetime.fromisoformat(str(row["window_start"]).replace("Z", "+00:00")),
            count=int(row["count"]),
            limit=limit,
            window_seconds=window_seconds,
        )
        return state, bool(row["allowed"])

class RateLimiter:
    def __init__(
        self,
        store: RateLimitStore,
        limit: int,
        window_seconds: int,
        clock: Callable[[], datetime] = utc_now,
    ):
        if store is None:
            raise ValueError("RateLimiter requires a backing store")
        if limit < 1 or window_seconds < 1:
            raise ValueError("Rate limit and window must both be positive")

        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock

    @classmethod
    def for_feature(cls, feature: str, store: RateLimitStore, clock: Callable[[], datetime] = utc_now) -> "RateLimiter":
        config = rate_limit_config(feature)
        return cls(store, config["limit"], config["window_seconds"], clock=clock)

    async def check(self, key: str) -> RateLimitResult:
        """Admit or deny one call for key, consuming a slot when admitted"""
        now = self.clock()
        try:
            state, admitted = await self.store.increment(key, self.limit, self.window_seconds, now)
        except Exception as e:
            # Store outage: admit the call
            print(f"❌ Rate limit store error for {key}, admitting request: {e}")
            return RateLimitResult(
                allowed=True,
                remaining=self.limit - 1,
                reset_time=now + timedelta(seconds=self.window_seconds),
            )

        return RateLimitResult(
            allowed=admitted,
            remaining=max(0, self.limit - state.count),
            reset_time=state.reset_time,
        )

# Global instances - initialized on startup in main.py
_rate_limit_store = None
_meal_scan_rate_limiter = None

def create_rate_limit_store() -> RateLimitStore:
    """Pick the counter store from RATE_LIMIT_STORE (memory or supabase)"""
    backend = os.getenv("RATE_LIMIT_STORE", "memory").lower()

    if backend == "memory":
        return InMemoryRateLimitStore()
    if backend == "supabase":
        from services.supabase_service import get_supabase_service
        return SupabaseRateLimitStore(get_supabase_service().client)

    raise ValueError(f"Unknown RATE_LIMIT_STORE '{backend}' (use 'memory' or 'supabase')")

def get_rate_limit_store() -> RateLimitStore:
    global _rate_limit_store
    if _rate_limit_store is None:
        _rate_limit_store = create_rate_limit_store()
    return _rate_limit_store

def get_meal_scan_rate_limiter() -> RateLimiter:
    global _meal_scan_rate_limiter
    if _meal_scan_rate_limiter is None:
        _meal_scan_rate_limiter = RateLimiter.for_feature("meal_analysis", get_rate_limit_store())
    return _meal_scan_rate_limiter

def init_rate_limiter():
    """Initialize the rate limit store and the meal scan limiter"""
    global _rate_limit_store, _meal_scan_rate_limiter
    _rate_limit_store = create_rate_limit_store()
    _meal_scan_rate_limiter = RateLimiter.for_feature("meal_analysis", _rate_limit_store)
    print(f"✅ Rate limiter initialized ({type(_rate_limit_store).__name__}, "
          f"{_meal_scan_rate_limiter.limit} scans / {_meal_scan_rate_limiter.window_seconds}s)")
    return _meal_scan_rate_limiter
