"""Unit tests for settings and logging setup."""

import logging
from pathlib import Path

import pytest

from safepreview.config import Settings, get_settings
from safepreview.utils.logging_config import setup_logging


class TestSettings:
    """Test derived settings."""

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_defaults(self):
        settings = Settings()
        assert settings.MAX_IMAGE_SIZE == 2 * 1024 * 1024
        assert settings.MAX_REDIRECTS == 3
        assert settings.DECRYPT_CHUNK_MODE in ("streaming", "reseed")

    def test_allowed_domains_parsing(self):
        settings = Settings()
        settings.ALLOWED_DOMAINS_RAW = " Messenger.com, ,www.messenger.com "
        assert settings.allowed_domains == ["messenger.com", "www.messenger.com"]

    def test_empty_allowed_domains(self):
        settings = Settings()
        settings.ALLOWED_DOMAINS_RAW = ""
        assert settings.allowed_domains == []

    def test_encrypted_path(self, tmp_path):
        settings = Settings()
        settings.ENCRYPTED_DIR = str(tmp_path / "enc")
        assert settings.encrypted_path() == tmp_path / "enc"
        assert settings.encrypted_path("encrypted.txt") == tmp_path / "enc" / "encrypted.txt"


class TestSetupLogging:
    """Test setup_logging()."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_console_only(self):
        setup_logging(log_level="DEBUG")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert logging.getLogger('aiohttp').level == logging.WARNING

    def test_file_logging(self, tmp_path):
        log_dir = tmp_path / "logs"

        setup_logging(log_level="INFO", log_to_file=True, log_dir=str(log_dir))
        logging.getLogger("safepreview.test").error("something broke")
        for handler in logging.getLogger().handlers:
            handler.flush()

        names = sorted(path.name for path in Path(log_dir).iterdir())
        assert len(names) == 2
        assert any(name.startswith("safepreview_errors_") for name in names)
        error_log = next(log_dir.glob("safepreview_errors_*.log"))
        assert "something broke" in error_log.read_text()

    def test_unknown_level_falls_back_to_info(self):
        setup_logging(log_level="chatty")
        assert logging.getLogger().level == logging.INFO
