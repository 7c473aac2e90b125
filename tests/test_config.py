"""
Tests for configuration loading.
"""

from pathlib import Path

import pytest

from medialib.core.config import (
    Config,
    ScannerConfig,
    create_default_config,
    get_data_dir,
    load_config,
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.delenv("MEDIALIB_DATA_DIR", raising=False)
    monkeypatch.delenv("MEDIALIB_LOG_LEVEL", raising=False)


class TestLoadConfig:
    """Test load_config with files on disk."""

    def test_creates_default_file(self, tmp_path):
        path = tmp_path / "config.toml"

        config = load_config(path)

        assert path.read_text().strip() == create_default_config()
        assert config.scanner.batch_size == 100
        assert config.scanner.rating_batch_size == 50

    def test_default_file_parses_to_defaults(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(create_default_config())

        config = load_config(path)

        assert config.scanner == ScannerConfig()
        assert config.logging.level == "INFO"

    def test_values_from_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(
            """
[library]
cache_file = "~/cache.json"

[scanner]
supported_formats = [".MP3", ".flac"]
batch_size = 10

[logging]
level = "debug"
"""
        )

        config = load_config(path)

        assert config.cache_path == Path("~/cache.json").expanduser()
        assert config.scanner.supported_formats == [".mp3", ".flac"]
        assert config.scanner.batch_size == 10
        assert config.scanner.rating_batch_size == 50
        assert config.logging.level == "DEBUG"

    def test_invalid_scanner_section_uses_defaults(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[scanner]\nbatch_size = 0\n")

        assert load_config(path).scanner == ScannerConfig()

    def test_broken_toml_uses_defaults(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[scanner\n")

        assert load_config(path).scanner == ScannerConfig()

    def test_log_level_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text('[logging]\nlevel = "INFO"\n')
        monkeypatch.setenv("MEDIALIB_LOG_LEVEL", "warning")

        assert load_config(path).logging.level == "WARNING"


class TestPaths:
    def test_default_locations(self, tmp_path):
        config = Config()
        assert config.cache_path == tmp_path / "data" / "medialib" / "media-cache.json"
        assert config.directories_path == tmp_path / "config" / "medialib" / "directories.json"
        assert config.legacy_directories_path.name == "directories.txt"

    def test_data_dir_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEDIALIB_DATA_DIR", str(tmp_path / "elsewhere"))
        assert get_data_dir() == tmp_path / "elsewhere"
        assert Config().log_path == tmp_path / "elsewhere" / "medialib.log"


class TestScannerValidation:
    def test_extension_needs_dot(self):
        with pytest.raises(ValueError):
            ScannerConfig(supported_formats=["mp3"]).validate()

    def test_inbox_size(self):
        with pytest.raises(ValueError):
            ScannerConfig(inbox_size=0).validate()
