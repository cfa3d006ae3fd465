"""Tests for JSON dataset and static document sources."""

import json

import pytest

from document_source import JsonDatasetSource, StaticDocumentSource, record_to_document, render_record


def _write(tmp_path, domain, name, data):
    folder = tmp_path / domain
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestRecordToDocument:
    def test_text_record(self):
        doc = record_to_document({"text": " Markets: FTS ", "type": "markets"}, "nrl", "a.json")
        assert doc.text == "Markets: FTS"
        assert doc.metadata == {"type": "markets", "domain": "nrl", "source": "a.json"}

    def test_stats_record_rendered(self):
        doc = record_to_document({"player": "A. Johnston", "tries": 21}, "nrl", "p.json")
        assert doc.text == "player: A. Johnston, tries: 21"
        assert doc.metadata["tries"] == 21

    def test_nested_metadata_merged(self):
        doc = record_to_document({"text": "x", "metadata": {"round": 4}}, "afl", "m.json")
        assert doc.metadata["round"] == 4
        assert doc.metadata["domain"] == "afl"

    def test_plain_string(self):
        assert record_to_document("hello", "nrl", "s.json").text == "hello"

    def test_empty_records_skipped(self):
        assert record_to_document({"text": "   "}, "nrl", "e.json") is None
        assert record_to_document(42, "nrl", "e.json") is None

    def test_render_skips_empty_values(self):
        assert render_record({"a": 1, "b": None, "c": "", "d": [1, 2]}) == "a: 1, d: [1, 2]"


class TestJsonDatasetSource:
    @pytest.mark.asyncio
    async def test_reads_sorted_files(self, tmp_path):
        _write(tmp_path, "nrl", "b.json", [{"text": "second"}])
        _write(tmp_path, "nrl", "a.json", [{"text": "first"}, {"text": "also first"}])
        docs = await JsonDatasetSource(tmp_path).list_documents("NRL")
        assert [d.text for d in docs] == ["first", "also first", "second"]
        assert all(d.metadata["domain"] == "nrl" for d in docs)

    @pytest.mark.asyncio
    async def test_single_object_file(self, tmp_path):
        _write(tmp_path, "afl", "one.json", {"text": "solo"})
        assert [d.text for d in await JsonDatasetSource(tmp_path).list_documents("afl")] == ["solo"]

    @pytest.mark.asyncio
    async def test_missing_domain(self, tmp_path):
        source = JsonDatasetSource(tmp_path)
        assert await source.list_documents("nba") == []
        assert await source.dataset_texts("nba") == []

    @pytest.mark.asyncio
    async def test_max_documents_cap(self, tmp_path):
        _write(tmp_path, "nrl", "a.json", [{"text": f"d{i}"} for i in range(10)])
        docs = await JsonDatasetSource(tmp_path, max_documents=3).list_documents("nrl")
        assert len(docs) == 3

    @pytest.mark.asyncio
    async def test_unreadable_file_skipped(self, tmp_path):
        _write(tmp_path, "nrl", "a.json", [{"text": "good"}])
        (tmp_path / "nrl" / "b.json").write_text("{broken", encoding="utf-8")
        assert [d.text for d in await JsonDatasetSource(tmp_path).list_documents("nrl")] == ["good"]

    @pytest.mark.asyncio
    async def test_invalid_utf8_file_skipped(self, tmp_path):
        _write(tmp_path, "nrl", "a.json", [{"text": "good"}])
        (tmp_path / "nrl" / "b.json").write_bytes(b'[{"text": "\xff\xfe"}]')
        source = JsonDatasetSource(tmp_path)
        assert [d.text for d in await source.list_documents("nrl")] == ["good"]
        # Still part of the dataset fingerprint, so fixing the file triggers a rebuild.
        assert len(await source.dataset_texts("nrl")) == 2

    @pytest.mark.asyncio
    async def test_directory_named_like_a_dataset_skipped(self, tmp_path):
        _write(tmp_path, "nrl", "a.json", [{"text": "good"}])
        (tmp_path / "nrl" / "archive.json").mkdir()
        source = JsonDatasetSource(tmp_path)
        assert [d.text for d in await source.list_documents("nrl")] == ["good"]
        assert len(await source.dataset_texts("nrl")) == 1

    @pytest.mark.asyncio
    async def test_dataset_texts_are_raw_file_contents(self, tmp_path):
        path = _write(tmp_path, "nrl", "a.json", [{"text": "x"}])
        assert await JsonDatasetSource(tmp_path).dataset_texts("nrl") == [path.read_text(encoding="utf-8")]


class TestStaticDocumentSource:
    @pytest.mark.asyncio
    async def test_documents_and_fingerprint(self):
        source = StaticDocumentSource({"NRL": [{"text": "a"}, "b"]})
        docs = await source.list_documents("nrl")
        assert [d.text for d in docs] == ["a", "b"]
        assert docs[0].metadata["source"] == "memory"
        texts = await source.dataset_texts("nrl")
        assert len(texts) == 1 and len(texts[0]) == 32
        assert await source.dataset_texts("afl") == []
