"""Tests for loguru-based catalog logging."""

from loguru import logger

from library_catalog.config import CatalogConfig


class TestSetupLogging:
    def setup_method(self):
        logger.remove()

    def teardown_method(self):
        logger.remove()

    def _config(self, tmp_path, monkeypatch, **kwargs):
        for var in ["DB_PATH", "CACHE_DIR", "LOG_DIR", "LOG_LEVEL"]:
            monkeypatch.delenv(var, raising=False)
        return CatalogConfig(_env_file=None, log_dir=tmp_path / "logs", **kwargs)

    def test_setup_creates_log_dir(self, tmp_path, monkeypatch):
        config = self._config(tmp_path, monkeypatch)
        config.setup_logging()
        assert (tmp_path / "logs").exists()

    def test_setup_adds_file_sink(self, tmp_path, monkeypatch):
        config = self._config(tmp_path, monkeypatch)
        config.setup_logging()
        logger.bind(stage="test").info("hello from test")
        content = (tmp_path / "logs" / "catalog.log").read_text()
        assert "hello from test" in content

    def test_stage_context_in_output(self, tmp_path, monkeypatch):
        config = self._config(tmp_path, monkeypatch)
        config.setup_logging()
        logger.bind(stage="reconcile").info("matching")
        content = (tmp_path / "logs" / "catalog.log").read_text()
        assert "reconcile" in content

    def test_default_stage_empty(self, tmp_path, monkeypatch):
        config = self._config(tmp_path, monkeypatch)
        config.setup_logging()
        logger.info("no stage bound")
        content = (tmp_path / "logs" / "catalog.log").read_text()
        assert "no stage bound" in content

    def test_file_sink_keeps_debug(self, tmp_path, monkeypatch):
        config = self._config(tmp_path, monkeypatch, log_level="WARNING")
        config.setup_logging()
        logger.bind(stage="test").debug("debug detail")
        content = (tmp_path / "logs" / "catalog.log").read_text()
        assert "debug detail" in content
