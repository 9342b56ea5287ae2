"""Supabase client for the hosted record store.

One service-role client is shared per process; serverless invocations reuse
it across warm starts.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field
from supabase import create_client, Client
from supabase.client import ClientOptions

from taskdesk.utils.errors import SupabaseError
from taskdesk.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

_client: Optional[Client] = None


class SupabaseSettings(BaseModel):
    url: str = Field(..., min_length=1)
    service_role_key: str = Field(..., min_length=1)
    schema_name: str = Field(default="public", description="Postgres schema holding the task tables")
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    @classmethod
    def from_env(cls) -> "SupabaseSettings":
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
        if not url or not key:
            raise SupabaseError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        return cls(
            url=url,
            service_role_key=key,
            schema_name=os.environ.get("SUPABASE_SCHEMA", "public"),
            request_timeout_seconds=float(os.environ.get("REPOSITORY_TIMEOUT_SECONDS", "10")),
        )


def create_service_client(settings: SupabaseSettings) -> Client:
    """Build a client for server-side use: no user session, no token refresh."""
    options = ClientOptions(
        schema=settings.schema_name,
        postgrest_client_timeout=settings.request_timeout_seconds,
        auto_refresh_token=False,
        persist_session=False,
    )
    return create_client(settings.url, settings.service_role_key, options)


def get_supabase_client() -> Client:
    """Shared client, created on first use from the environment."""
    global _client

    if _client is None:
        settings = SupabaseSettings.from_env()
        _client = create_service_client(settings)
        logger.info("Supabase client initialized", schema=settings.schema_name)

    return _client


def reset_supabase_client() -> None:
    """Forget the shared client so the next call rebuilds it."""
    global _client
    _client = None


class SupabaseClient:
    """Async context manager yielding an injected client or the shared one."""

    def __init__(self, client: Optional[Client] = None):
        self.client: Optional[Client] = client

    async def __aenter__(self) -> Client:
        if self.client is None:
            self.client = get_supabase_client()
        return self.client

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            logger.error(
                "Supabase operation error",
                error=str(exc_val),
                error_type=exc_type.__name__
            )
        return False
