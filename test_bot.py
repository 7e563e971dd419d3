#!/usr/bin/env python3
"""
WhatsApp Group Bot Test Suite
Offline smoke tests for configuration, imports and the WAHA session check
"""

import sys
from pathlib import Path

import pytest

# Add current directory to path for bot imports
sys.path.insert(0, str(Path(__file__).parent))

from wagroupbot import BASE, Config, create_app, make_session, startup_health_check


def test_imports():
    """Test that all required modules can be imported"""
    print("📦 Testing module imports...")

    required_modules = [
        'aiohttp',
        'dotenv',
        'cachetools',
        'asyncio',
        'json',
        'logging',
    ]

    failed_imports = []
    for module in required_modules:
        try:
            __import__(module)
            print(f"  ✅ {module}")
        except ImportError:
            print(f"  ❌ {module}")
            failed_imports.append(module)

    assert not failed_imports, f"Missing dependencies: {', '.join(failed_imports)}"


def test_bot_configuration():
    """Test bot configuration defaults"""
    print("⚙️ Testing bot configuration...")

    assert BASE, "WAHA base URL not configured"
    assert not BASE.endswith("/")
    assert Config.HTTP_MAX_ATTEMPTS >= 1
    assert Config.HTTP_BACKOFF_BASE >= 0
    assert Config.WAHA_SESSION
    print(f"  ✅ WAHA: {BASE} (session '{Config.WAHA_SESSION}')")


def test_invalid_retry_budget_is_rejected(monkeypatch):
    monkeypatch.setattr(Config, "HTTP_MAX_ATTEMPTS", 0)
    with pytest.raises(ValueError):
        Config.validate_config()


def test_app_routes():
    app = create_app(bot_id="628000000000@c.us")
    paths = {r.resource.canonical for r in app.router.routes()}
    assert {"/event", "/health"} <= paths


@pytest.mark.asyncio
async def test_session_creation():
    """Test that we can create and close HTTP sessions properly"""
    session = make_session(api_key="secret")
    assert session.headers["X-Api-Key"] == "secret"
    await session.close()


@pytest.mark.asyncio
async def test_startup_health_check(waha):
    """Test the WAHA session check against the local fake server"""
    assert await startup_health_check(waha.api) is True


@pytest.mark.asyncio
async def test_startup_health_check_unknown_session(waha):
    waha.api.waha_session = "ghost"
    waha.api.base_url = waha.api.base_url + "/missing"
    assert await startup_health_check(waha.api) is False
