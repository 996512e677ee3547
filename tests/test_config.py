"""Tests for RemoteConfig defaults, environment loading and key resolution."""

import dataclasses

import pytest

from remote_session.config import RemoteConfig


def test_defaults():
    config = RemoteConfig()

    assert config.key_name == "id_rsa"
    assert config.key_passphrase is None
    assert config.ignore_known_hosts is False
    assert config.session_connect_timeout == 5000
    assert config.ssh_port == 22
    assert (config.terminal_height, config.terminal_width) == (24, 132)
    assert (config.terminal_h_resolution, config.terminal_v_resolution) == (924, 216)
    assert config.completion_check_interval == 100
    assert config.disconnect_check_attempts == 600
    assert config.disconnect_check_interval == 100
    assert config.channel_check_interval == 100
    assert config.channel_buffer_size == 102400


def test_config_is_immutable():
    config = RemoteConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.ssh_port = 2222


def test_pixel_resolution_follows_geometry():
    config = RemoteConfig(terminal_height=40, terminal_width=100)
    assert config.terminal_h_resolution == 700
    assert config.terminal_v_resolution == 360


def test_from_env_overrides():
    config = RemoteConfig.from_env({
        "REMOTE_SSH_KEY_NAME": "id_ed25519",
        "REMOTE_SSH_KEY_PASS": "phrase",
        "REMOTE_SSH_PORT_NUMBER": "2222",
        "REMOTE_IGNORE_KNOWN_HOSTS": "true",
        "REMOTE_CHANNEL_BUFFER_SIZE": "4096",
        "REMOTE_TERMINAL_WIDTH": "80",
    })

    assert config.key_name == "id_ed25519"
    assert config.key_passphrase == "phrase"
    assert config.ssh_port == 2222
    assert config.ignore_known_hosts is True
    assert config.channel_buffer_size == 4096
    assert config.terminal_h_resolution == 560


def test_from_env_invalid_values_keep_defaults():
    config = RemoteConfig.from_env({
        "REMOTE_SSH_PORT_NUMBER": "invalid",
        "REMOTE_IGNORE_KNOWN_HOSTS": "maybe",
    })
    assert config.ssh_port == 22
    assert config.ignore_known_hosts is False


def test_from_env_empty_environment():
    assert RemoteConfig.from_env({}) == RemoteConfig()


def test_rejects_non_positive_buffer():
    with pytest.raises(ValueError):
        RemoteConfig(channel_buffer_size=0)


class TestKeyResolution:
    """Private key lookup: explicit path first, then the SSH folder."""

    def test_key_in_ssh_folder(self, tmp_path):
        (tmp_path / "id_rsa").write_text("key")
        config = RemoteConfig(ssh_dir=str(tmp_path))
        assert config.key_path() == tmp_path / "id_rsa"

    def test_explicit_key_path(self, tmp_path):
        key = tmp_path / "deploy_key"
        key.write_text("key")
        config = RemoteConfig(key_name=str(key), ssh_dir=str(tmp_path / "missing"))
        assert config.key_path() == key

    def test_missing_key(self, tmp_path):
        config = RemoteConfig(ssh_dir=str(tmp_path))
        assert config.key_path() is None

    def test_empty_key_name(self, tmp_path):
        config = RemoteConfig(key_name="", ssh_dir=str(tmp_path))
        assert config.key_path() is None

    def test_known_hosts(self, tmp_path):
        config = RemoteConfig(ssh_dir=str(tmp_path))
        assert config.known_hosts_path() is None
        (tmp_path / "known_hosts").write_text("")
        assert config.known_hosts_path() == tmp_path / "known_hosts"
