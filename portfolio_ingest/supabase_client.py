from __future__ import annotations

import base64
import json
import logging

import httpx
from postgrest.constants import DEFAULT_POSTGREST_CLIENT_TIMEOUT

from supabase import Client, ClientOptions, create_client

from .errors import ConfigurationError
from .settings import Settings, SupabaseMode, get_settings, normalize_mode

logger = logging.getLogger(__name__)


def _client_options(timeout: float = DEFAULT_POSTGREST_CLIENT_TIMEOUT) -> ClientOptions:
    """Client options sharing one httpx client for storage and table calls."""
    options = ClientOptions()
    options.httpx_client = httpx.Client(timeout=httpx.Timeout(timeout))
    return options


def get_supabase_credentials(settings: Settings | None = None) -> tuple[str, str]:
    settings = settings or get_settings()
    url = settings.SUPABASE_URL.strip()
    key = settings.SUPABASE_SERVICE_ROLE_KEY.strip()
    missing = [
        name
        for name, value in {
            "SUPABASE_URL": url,
            "SUPABASE_SERVICE_ROLE_KEY": key,
        }.items()
        if not value
    ]
    if missing:
        raise ConfigurationError(
            f"Missing Supabase credential(s) for '{settings.SUPABASE_MODE}' environment: "
            + ", ".join(missing)
        )
    return url, key


def _jwt_claims(token: str) -> dict:
    """Decode the unverified payload segment of a JWT."""
    _, _, rest = token.partition(".")
    payload, _, _ = rest.partition(".")
    if not payload:
        raise ValueError("token has no payload segment")
    claims = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))
    if not isinstance(claims, dict):
        raise ValueError("token payload is not an object")
    return claims


def require_service_role(key: str) -> None:
    """Raise ``ConfigurationError`` unless ``key`` is a service_role JWT."""
    try:
        role = _jwt_claims(key).get("role")
    except ValueError as exc:
        raise ConfigurationError(f"SUPABASE_SERVICE_ROLE_KEY is not a readable JWT: {exc}") from exc
    if role != "service_role":
        raise ConfigurationError(
            f"SUPABASE_SERVICE_ROLE_KEY carries role={role!r}; a service_role key is required"
        )


def create_supabase_client(
    settings: Settings | None = None, env: str | None = None
) -> Client:
    """Create a service-role client for the configured (or overridden) environment."""
    settings = settings or get_settings()
    mode: SupabaseMode = normalize_mode(env) if env else settings.SUPABASE_MODE
    url, key = get_supabase_credentials(settings)
    require_service_role(key)
    client = create_client(url, key, options=_client_options())
    logger.info("supabase_client_ready env=%s bucket=%s", mode, settings.STORAGE_BUCKET)
    return client
