"""
Pytest configuration and fixtures.
"""

import json

import pytest
import os
from unittest.mock import patch


@pytest.fixture(autouse=True)
def mock_env_vars():
    """Mock environment variables for tests."""
    env_vars = {
        "PUBLIC_HOST": "test.ngrok.io",
        "PORT": "7860",
        "LOG_LEVEL": "DEBUG",
        "OPENAI_API_KEY": "test_openai_key",
        "OPENAI_REALTIME_MODEL": "gpt-4o-mini-realtime-preview",
        "OPENAI_REALTIME_VOICE": "alloy",
        "ROUTE_DESTINATIONS": "JAY,ROBERTO,OFFICE",
        "STREAM_SECRET": "",
    }

    with patch.dict(os.environ, env_vars):
        # Clear config cache
        from src.bridge.config import get_config
        get_config.cache_clear()
        yield
        get_config.cache_clear()


@pytest.fixture
def twilio_start_message():
    """Sample Twilio start message."""
    return json.dumps({
        "event": "start",
        "streamSid": "MZ123456",
        "start": {
            "streamSid": "MZ123456",
            "callSid": "CA123",
            "accountSid": "AC345678",
            "tracks": ["inbound"],
            "customParameters": {},
        }
    })


@pytest.fixture
def twilio_stop_message():
    """Sample Twilio stop message."""
    return json.dumps({
        "event": "stop",
        "streamSid": "MZ123456",
    })
