from __future__ import annotations

import json

import pytest

from api import BASE_URL, LOGIN_PATH
from app import build_api
from config import Config, PollConfig
from conftest import FakeRequests


def test_defaults() -> None:
    config = Config()
    assert config.device_id is None
    assert config.base_url == BASE_URL
    assert config.poll.active_interval_sec == 2
    assert config.poll.idle_interval_sec == 10


def test_load_missing_file_gives_defaults(tmp_path) -> None:
    config = Config.load(str(tmp_path / "nope.json"))
    assert config.username == ""
    assert config.name == "Garage Door"


def test_save_and_load_round_trip(tmp_path) -> None:
    config = Config(
        username="me@example.com",
        password="pw",
        device_id=555,
        name="Barn",
        poll=PollConfig(active_interval_sec=3, idle_interval_sec=30),
        data_dir=str(tmp_path),
    )
    config.save()

    with open(config.config_file) as f:
        raw = json.load(f)
    assert "security_token" not in raw

    loaded = Config.load(config.config_file)
    assert loaded.username == "me@example.com"
    assert loaded.device_id == 555
    assert loaded.name == "Barn"
    assert loaded.poll.idle_interval_sec == 30
    assert loaded.security_token == ""
    assert loaded.data_dir == str(tmp_path)


def test_preset_security_token_is_read(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"security_token": "preset", "device_id": "42"}))

    config = Config.load(str(path))

    assert config.security_token == "preset"
    assert config.device_id == 42


def test_preset_security_token_survives_save(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"username": "me@example.com", "security_token": "preset"}))

    config = Config.load(str(path))
    config.name = "Barn"
    config.save()

    reloaded = Config.load(str(path))
    assert reloaded.security_token == "preset"
    assert reloaded.name == "Barn"


@pytest.mark.asyncio
async def test_login_token_is_not_persisted(tmp_path) -> None:
    config = Config(username="me@example.com", password="pw", data_dir=str(tmp_path))
    api = build_api(config, None)  # type: ignore[arg-type]
    api._request = FakeRequests(  # type: ignore[method-assign]
        {LOGIN_PATH: {"ReturnCode": "0", "SecurityToken": "from-login"}}
    )

    assert await api.async_get_security_token() == "from-login"
    config.save()

    with open(config.config_file) as f:
        raw = json.load(f)
    assert "security_token" not in raw
    assert config.security_token == ""


def test_env_overrides() -> None:
    config = Config(username="file-user")
    config.apply_env({"MYQ_PASSWORD": "env-pw", "MYQ_DEVICE_ID": "7"})

    assert config.username == "file-user"
    assert config.password == "env-pw"
    assert config.device_id == 7
