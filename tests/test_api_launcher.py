import json

import pytest

from api.launcher import build_config, resolve_bind_host


@pytest.mark.parametrize(
    "candidate,expected",
    [(None, "127.0.0.1"), ("localhost", "127.0.0.1"), ("::1", "127.0.0.1"), ("127.0.0.2", "127.0.0.2")],
)
def test_resolve_bind_host_accepts_loopback(candidate, expected):
    assert resolve_bind_host(candidate) == expected


def test_resolve_bind_host_refuses_lan_addresses():
    with pytest.raises(ValueError):
        resolve_bind_host("0.0.0.0")


def test_build_config_reads_api_block(tmp_path):
    (tmp_path / "settings.json").write_text(
        json.dumps({"api": {"port": 9100, "api_key": "k", "cors_origins": ["http://localhost:3000"]}}),
        encoding="utf-8",
    )

    host, port, config = build_config(tmp_path)
    try:
        assert (host, port) == ("127.0.0.1", 9100)
        assert config.api_key == "k"
        assert list(config.cors_origins) == ["http://localhost:3000"]
        assert config.service.working_dir == tmp_path
        assert (tmp_path / "backups").is_dir()
    finally:
        config.service.close()
