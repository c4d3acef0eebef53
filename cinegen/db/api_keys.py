"""Per-user Leonardo API key lookup."""

import asyncio
import logging
from typing import Optional

from cinegen.db.supabase_client import get_supabase

logger = logging.getLogger(__name__)


def get_leonardo_api_key(user_id: str) -> Optional[str]:
    """Read ``users.leonardo_api_key`` for a user; None when unset."""
    response = (
        get_supabase()
        .table("users")
        .select("leonardo_api_key")
        .eq("id", user_id)
        .limit(1)
        .execute()
    )
    rows = response.data or []
    if not rows:
        logger.warning(f"No user row for {user_id}")
        return None
    key = rows[0].get("leonardo_api_key")
    return key or None


async def load_leonardo_api_key(user_id: str) -> Optional[str]:
    return await asyncio.to_thread(get_leonardo_api_key, user_id)
