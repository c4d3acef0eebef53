"""Supabase access for the service: one service-role client, bucket handles."""

import logging
from typing import Optional

from supabase import create_client, Client
from cinegen.config import settings

logger = logging.getLogger(__name__)

_client: Client | None = None


def get_supabase() -> Client:
    """Lazily create the service-role client (storage uploads, users table)."""
    global _client
    if _client is None:
        if not settings.supabase_url or not settings.supabase_service_role_key:
            raise RuntimeError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set to use storage"
            )
        logger.info(f"Connecting to Supabase at {settings.supabase_url}")
        _client = create_client(settings.supabase_url, settings.supabase_service_role_key)
    return _client


def storage_bucket(name: Optional[str] = None):
    """Storage file API for ``name`` (defaults to ``settings.storage_bucket``)."""
    return get_supabase().storage.from_(name or settings.storage_bucket)


def reset_supabase() -> None:
    global _client
    _client = None
