import re

from main import create_app
from relay.api import HEARTBEAT_KEY, RELAY_KEY
from relay.config import load_settings
from relay.utils import generate_access_key

KEY_PATTERN = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}$")


def test_defaults_generate_a_key():
    settings = load_settings({})
    assert KEY_PATTERN.match(settings.access_key)
    assert settings.generated_key
    assert settings.port == 3000
    assert settings.host == "0.0.0.0"
    assert settings.log_level == "INFO"
    assert settings.heartbeat == 20.0


def test_environment_overrides():
    settings = load_settings({
        "ACCESS_KEY": "KEY1",
        "PORT": "8080",
        "SERVER_HOST": "127.0.0.1",
        "LOG_LEVEL": "debug",
        "WS_HEARTBEAT": "0",
    })
    assert settings.access_key == "KEY1"
    assert not settings.generated_key
    assert settings.port == 8080
    assert settings.host == "127.0.0.1"
    assert settings.log_level == "DEBUG"
    assert settings.heartbeat is None


def test_generated_keys_differ():
    keys = {generate_access_key() for _ in range(20)}
    assert len(keys) == 20
    assert all(KEY_PATTERN.match(k) for k in keys)


def test_create_app_wires_relay():
    app = create_app(load_settings({"ACCESS_KEY": "KEY1", "WS_HEARTBEAT": "5"}))
    assert app[RELAY_KEY].access_key == "KEY1"
    assert app[HEARTBEAT_KEY] == 5.0
