from __future__ import annotations

import base64
import json

import pytest

from portfolio_ingest import supabase_client
from portfolio_ingest.errors import ConfigurationError
from portfolio_ingest.supabase_client import (
    _jwt_claims,
    create_supabase_client,
    get_supabase_credentials,
    require_service_role,
)
from tests.fakes import make_settings


def _jwt(claims: dict) -> str:
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    return f"header.{payload}.signature"


def test_missing_credentials_are_named():
    with pytest.raises(ConfigurationError) as excinfo:
        get_supabase_credentials(make_settings(SUPABASE_URL="https://x.supabase.co"))
    assert "SUPABASE_SERVICE_ROLE_KEY" in str(excinfo.value)
    assert "SUPABASE_URL" not in str(excinfo.value).split(":", 1)[1]


def test_credentials_are_stripped():
    settings = make_settings(SUPABASE_URL=" https://x.supabase.co ", SUPABASE_SERVICE_ROLE_KEY=" key ")
    assert get_supabase_credentials(settings) == ("https://x.supabase.co", "key")


def test_service_role_key_is_required():
    require_service_role(_jwt({"role": "service_role"}))
    with pytest.raises(ConfigurationError):
        require_service_role(_jwt({"role": "anon"}))
    with pytest.raises(ConfigurationError):
        require_service_role("not-a-jwt")


def test_create_client_passes_options(monkeypatch):
    calls = []
    monkeypatch.setattr(
        supabase_client, "create_client", lambda url, key, options: calls.append((url, key, options)) or "client"
    )
    key = _jwt({"role": "service_role"})
    settings = make_settings(SUPABASE_URL="https://x.supabase.co", SUPABASE_SERVICE_ROLE_KEY=key)

    assert create_supabase_client(settings) == "client"
    (url, passed_key, options), = calls
    assert (url, passed_key) == ("https://x.supabase.co", key)
    assert options.httpx_client is not None


def test_jwt_claims_rejects_non_object_payload():
    payload = base64.urlsafe_b64encode(b"[1, 2]").decode().rstrip("=")
    with pytest.raises(ValueError):
        _jwt_claims(f"header.{payload}.sig")
    assert _jwt_claims(_jwt({"role": "anon", "ref": "abc"}))["ref"] == "abc"
