# services/background_tasks.py

import asyncio
from services.rate_limiter import InMemoryRateLimitStore, get_rate_limit_store, utc_now

RATE_LIMIT_SWEEP_SECONDS = 5 * 60

def sweep_rate_limit_store() -> int:
    """Drop finished rate-limit windows so idle users don't accumulate in memory"""
    store = get_rate_limit_store()
    if not isinstance(store, InMemoryRateLimitStore):
        # Shared stores roll windows over in SQL
        return 0

    removed = store.purge_expired(utc_now())
    if removed:
        print(f"🧹 Removed {removed} expired rate limit window(s), {len(store)} active")
    return removed

async def schedule_rate_limit_sweeps():
    """Run the rate-limit sweep every five minutes"""
    while True:
        await asyncio.sleep(RATE_LIMIT_SWEEP_SECONDS)
        try:
            sweep_rate_limit_store()
        except Exception as e:
            print(f"❌ Error sweeping rate limit store: {e}")

def start_background_tasks():
    """Start periodic maintenance tasks"""
    return asyncio.create_task(schedule_rate_limit_sweeps())
