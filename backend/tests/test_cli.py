"""Tests for the vector store CLI: argument parsing and command handlers."""

import argparse
import dataclasses
import json
from pathlib import Path
from unittest.mock import patch

import pytest

from cli import build_parser, cmd_add, cmd_clear, cmd_ingest, cmd_init, cmd_repair, cmd_search, cmd_stats, main
from conftest import FakeEmbeddings
from document_source import JsonDatasetSource
from kv import MemoryKVStore
from store_manager import StoreManager


@pytest.fixture
def cli_env(test_settings):
    """Datasets on disk plus a shared KV so separate commands see one cache."""
    for domain, texts in {"nrl": ["Broncos beat Storm 24-12", "Cleary kicks late field goal"],
                          "afl": ["Cats win the flag", "Swans top the ladder"]}.items():
        folder = Path(test_settings.DATA_DIR) / domain
        folder.mkdir(parents=True)
        (folder / "news.json").write_text(json.dumps([{"text": t} for t in texts]), encoding="utf-8")

    kv = MemoryKVStore()
    embeddings = FakeEmbeddings()

    def _build():
        return StoreManager(embeddings, JsonDatasetSource(test_settings.DATA_DIR), kv, test_settings)

    with patch("cli._build_manager", side_effect=_build):
        yield kv, embeddings, test_settings


# ═══════════════════════════════════════════════════════════════════════════
#  Argument parsing
# ═══════════════════════════════════════════════════════════════════════════

class TestCliArgparse:
    def setup_method(self):
        self.parser = build_parser()

    def test_ingest_defaults(self):
        args = self.parser.parse_args(["ingest"])
        assert args.domain is None
        assert args.force is False

    def test_ingest_domain_force(self):
        args = self.parser.parse_args(["ingest", "nrl", "--force"])
        assert args.domain == "nrl"
        assert args.force is True

    def test_search_basic(self):
        args = self.parser.parse_args(["search", "top try scorer"])
        assert args.query == "top try scorer"
        assert args.domain is None
        assert args.k == 5

    def test_search_with_domain_and_k(self):
        args = self.parser.parse_args(["search", "q", "-d", "afl", "-k", "3"])
        assert args.domain == "afl"
        assert args.k == 3

    def test_add_many_texts(self):
        args = self.parser.parse_args(["add", "one", "two", "--domain", "nrl"])
        assert args.texts == ["one", "two"]
        assert args.domain == "nrl"

    def test_repair_requires_domain(self):
        with pytest.raises(SystemExit):
            self.parser.parse_args(["repair"])

    def test_dev_port_is_int(self):
        args = self.parser.parse_args(["dev", "--port", "9000"])
        assert args.port == 9000

    def test_no_command_prints_help(self, capsys):
        main([])
        assert "usage" in capsys.readouterr().out.lower()


# ═══════════════════════════════════════════════════════════════════════════
#  Commands
# ═══════════════════════════════════════════════════════════════════════════

class TestCmdIngest:
    def test_ingest_all(self, cli_env, caplog):
        kv, _, _ = cli_env
        with caplog.at_level("INFO", logger="vector-cli"):
            cmd_ingest(argparse.Namespace(domain=None, force=False))
        assert "ready" in caplog.text
        assert len(kv) == 2

    def test_second_ingest_uses_cache(self, cli_env):
        _, embeddings, _ = cli_env
        cmd_ingest(argparse.Namespace(domain="nrl", force=False))
        calls = embeddings.batch_calls
        cmd_ingest(argparse.Namespace(domain="nrl", force=False))
        assert embeddings.batch_calls == calls

    def test_force_rebuilds(self, cli_env):
        _, embeddings, _ = cli_env
        cmd_ingest(argparse.Namespace(domain="nrl", force=False))
        calls = embeddings.batch_calls
        cmd_ingest(argparse.Namespace(domain="nrl", force=True))
        assert embeddings.batch_calls == calls * 2

    def test_degraded_store_exits_nonzero(self, cli_env):
        _, embeddings, _ = cli_env
        embeddings.fail_batches = {1, 2, 3}
        with pytest.raises(SystemExit) as exc:
            cmd_ingest(argparse.Namespace(domain="nrl", force=False))
        assert exc.value.code == 1


class TestCmdSearch:
    def test_prints_ranked_results(self, cli_env, capsys):
        cmd_search(argparse.Namespace(query="Cats win the flag", domain="afl", k=2))
        out = capsys.readouterr().out
        assert "1. [afl] Cats win the flag" in out
        assert "Sim: 1.0000" in out

    def test_no_results(self, cli_env, capsys):
        cmd_search(argparse.Namespace(query="anything", domain="cricket", k=5))
        assert "No results." in capsys.readouterr().out

    def test_long_text_truncated(self, cli_env, capsys):
        _, _, s = cli_env
        long_text = "x" * 120
        (Path(s.DATA_DIR) / "nrl" / "long.json").write_text(json.dumps([long_text]), encoding="utf-8")
        cmd_search(argparse.Namespace(query=long_text, domain="nrl", k=1))
        out = capsys.readouterr().out
        assert "[nrl] " + "x" * 67 + "...\n" in out


class TestCmdMaintenance:
    def test_add(self, cli_env, caplog):
        with caplog.at_level("INFO", logger="vector-cli"):
            cmd_add(argparse.Namespace(texts=["Round 5 preview"], domain="nrl"))
        assert "Added 1 document(s) to nrl" in caplog.text

    def test_added_text_found_by_a_later_command(self, cli_env, capsys):
        cmd_add(argparse.Namespace(texts=["Round 5 preview"], domain="nrl"))
        capsys.readouterr()
        cmd_search(argparse.Namespace(query="Round 5 preview", domain="nrl", k=1))
        assert "1. [nrl] Round 5 preview" in capsys.readouterr().out

    def test_clear_domain(self, cli_env, caplog):
        kv, _, _ = cli_env
        cmd_ingest(argparse.Namespace(domain=None, force=False))
        with caplog.at_level("INFO", logger="vector-cli"):
            cmd_clear(argparse.Namespace(domain="afl"))
        assert "Removed 1 cache record(s) for afl" in caplog.text
        assert len(kv) == 1

    def test_repair_without_cache_exits_nonzero(self, cli_env):
        with pytest.raises(SystemExit) as exc:
            cmd_repair(argparse.Namespace(domain="nrl"))
        assert exc.value.code == 1

    def test_repair_after_ingest(self, cli_env, caplog):
        cmd_ingest(argparse.Namespace(domain="nrl", force=False))
        with caplog.at_level("INFO", logger="vector-cli"):
            cmd_repair(argparse.Namespace(domain="nrl"))
        assert "Repaired nrl store" in caplog.text

    def test_stats(self, cli_env, capsys):
        cmd_stats(argparse.Namespace())
        out = capsys.readouterr().out
        assert "nrl" in out and "afl" in out
        assert "documents" in out


class TestCmdInit:
    def test_creates_domain_dirs(self, test_settings, monkeypatch, tmp_path, caplog):
        s = dataclasses.replace(test_settings, DATA_DIR=str(tmp_path / "fresh"))
        monkeypatch.setattr("settings.settings", s)
        with patch("cli.shutil.copy"), caplog.at_level("INFO", logger="vector-cli"):
            cmd_init(argparse.Namespace())
        assert (tmp_path / "fresh" / "nrl").is_dir()
        assert (tmp_path / "fresh" / "afl").is_dir()
        assert "Next steps" in caplog.text

    def test_existing_dirs_reported(self, test_settings, monkeypatch, tmp_path, caplog):
        (tmp_path / "data" / "nrl").mkdir(parents=True)
        (tmp_path / "data" / "nrl" / "a.json").write_text("[]", encoding="utf-8")
        monkeypatch.setattr("settings.settings", test_settings)
        with patch("cli.shutil.copy"), caplog.at_level("INFO", logger="vector-cli"):
            cmd_init(argparse.Namespace())
        assert "already exists (1 dataset file(s))" in caplog.text


class TestBuildManager:
    def test_memory_backend_warns(self, test_settings, monkeypatch, caplog):
        from cli import _build_manager

        monkeypatch.setattr("settings.settings", test_settings)
        with patch("store_manager.create_store_manager") as create:
            with caplog.at_level("WARNING", logger="vector-cli"):
                _build_manager()
        create.assert_called_once_with(test_settings)
        assert "KV_BACKEND=memory" in caplog.text

    def test_persistent_backend_is_quiet(self, test_settings, monkeypatch, caplog):
        from cli import _build_manager

        monkeypatch.setattr("settings.settings", dataclasses.replace(test_settings, KV_BACKEND="redis"))
        with patch("store_manager.create_store_manager"):
            with caplog.at_level("WARNING", logger="vector-cli"):
                _build_manager()
        assert "KV_BACKEND=memory" not in caplog.text
