"""Unit tests for the clean command."""
import argparse
import zlib

import pytest

from swapdeploy.commands import clean as clean_command
from swapdeploy.core import RealFileSystemService
from swapdeploy.deploy import DeploymentHistory
from swapdeploy.units import CodeUnit, SqliteCacheBackend
from swapdeploy.utils.config import CONFIG_ENV_VAR


def parse(*argv):
    parser = argparse.ArgumentParser()
    clean_command.setup_parser(parser)
    return parser.parse_args(list(argv))


class TestCleanCommand:
    """Test cache and history cleanup."""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path, monkeypatch):
        self.cache_path = tmp_path / "cache" / "units.db"
        self.history = DeploymentHistory(tmp_path / "history", RealFileSystemService())
        config = tmp_path / "swapdeploy.yaml"
        config.write_text(
            f"cache:\n  path: {self.cache_path}\n"
            f"deploy:\n  history_dir: {tmp_path / 'history'}\n"
        )
        monkeypatch.setenv(CONFIG_ENV_VAR, str(config))

        archive = tmp_path / "base.apk"
        archive.write_bytes(b"x")
        self.archive = archive

    def populate_cache(self):
        backend = SqliteCacheBackend(self.cache_path)
        backend.put("app/views.py", 7, [CodeUnit("app.views.f", "app/views.py", zlib.crc32(b"f"))])
        backend.close()

    def cached(self):
        backend = SqliteCacheBackend(self.cache_path)
        try:
            return backend.get("app/views.py", 7)
        finally:
            backend.close()

    def test_nothing_to_clean(self, capsys):
        assert clean_command.execute(parse()) == 0

        assert "Nothing to clean." in capsys.readouterr().out

    def test_default_cleans_everything(self, capsys):
        self.populate_cache()
        self.history.record("com.example.app", [self.archive])

        assert clean_command.execute(parse()) == 0

        out = capsys.readouterr().out
        assert "Unit cache" in out
        assert "Deployment history (1 package(s))" in out
        assert self.cached() == []
        assert self.history.previous("com.example.app") is None

    def test_cache_only(self):
        self.populate_cache()
        self.history.record("com.example.app", [self.archive])

        clean_command.execute(parse("--cache"))

        assert self.cached() == []
        assert self.history.previous("com.example.app") is not None

    def test_history_only(self):
        self.populate_cache()
        self.history.record("com.example.app", [self.archive])

        clean_command.execute(parse("--history"))

        assert len(self.cached()) == 1
        assert self.history.previous("com.example.app") is None

    def test_single_package(self, capsys):
        self.history.record("com.example.one", [self.archive])
        self.history.record("com.example.two", [self.archive])

        clean_command.execute(parse("--package", "com.example.one"))

        assert "Deployment history of com.example.one" in capsys.readouterr().out
        assert self.history.previous("com.example.one") is None
        assert self.history.previous("com.example.two") is not None

    def test_bad_config(self, tmp_path, capsys):
        assert clean_command.execute(parse("--config", str(tmp_path / "missing.yaml"))) == 1

        assert "Error:" in capsys.readouterr().out
