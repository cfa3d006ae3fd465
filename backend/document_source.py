"""Document sources — where each domain's corpus comes from.

``JsonDatasetSource`` reads static JSON datasets laid out as:

    DATA_DIR/
      nrl/
        overview.json     [{"text": "...", "type": "general"}, ...]
        players.json      [{"player": "...", "team": "...", "tries": 9}, ...]
      afl/
        ...

Each file holds a list of records (or a single object).  A record with a
string ``text`` field is used verbatim; any other record is rendered as
``key: value`` pairs so tabular stats still embed meaningfully.  Scalar
fields become metadata, alongside ``domain`` and ``source`` (file name).

``dataset_texts`` returns the raw file contents in the same order, for
content hashing: editing any file changes the domain's cache key.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from hashing import json_fingerprint
from store import Document

logger = logging.getLogger(__name__)

_SCALARS = (str, int, float, bool)


class DocumentSource(ABC):
    """Yields the documents and raw dataset text for a domain."""

    @abstractmethod
    async def list_documents(self, domain: str) -> list[Document]:
        ...

    @abstractmethod
    async def dataset_texts(self, domain: str) -> list[str]:
        """Raw serialized datasets, stable order.  Empty when none exist."""
        ...


def render_record(record: dict) -> str:
    """``key: value`` rendering for records without a ``text`` field."""
    parts = []
    for key, value in record.items():
        if key == "metadata" or value is None or value == "":
            continue
        if isinstance(value, (list, dict)):
            value = json.dumps(value, ensure_ascii=False)
        parts.append(f"{key}: {value}")
    return ", ".join(parts)


def record_to_document(record: Any, domain: str, source: str) -> Document | None:
    """Normalize one raw record.  Returns None for records with no content."""
    if isinstance(record, str):
        text, meta = record, {}
    elif isinstance(record, dict):
        text = record.get("text")
        if not isinstance(text, str):
            text = render_record(record)
        meta = {k: v for k, v in record.items() if k != "text" and isinstance(v, _SCALARS)}
        if isinstance(record.get("metadata"), dict):
            meta.update(record["metadata"])
    else:
        return None
    text = text.strip()
    if not text:
        return None
    meta["domain"] = domain
    meta["source"] = source
    return Document(text=text, metadata=meta)


class JsonDatasetSource(DocumentSource):
    """Per-domain directories of ``*.json`` files under ``data_dir``."""

    def __init__(self, data_dir: str | Path, max_documents: int = 0):
        self.data_dir = Path(data_dir)
        self.max_documents = max_documents

    def _files(self, domain: str) -> list[Path]:
        folder = self.data_dir / domain.lower()
        if not folder.is_dir():
            return []
        return sorted(folder.glob("*.json"))

    def _read_texts(self, domain: str) -> list[str]:
        texts = []
        for path in self._files(domain):
            try:
                texts.append(path.read_bytes().decode("utf-8", errors="replace"))
            except OSError as e:
                logger.error(f"Skipping unreadable dataset {path}: {e}")
        return texts

    def _load(self, domain: str) -> list[Document]:
        docs: list[Document] = []
        for path in self._files(domain):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.error(f"Skipping unreadable dataset {path}: {e}")
                continue
            records = data if isinstance(data, list) else [data]
            for record in records:
                doc = record_to_document(record, domain.lower(), path.name)
                if doc is not None:
                    docs.append(doc)
        if self.max_documents and len(docs) > self.max_documents:
            logger.info(f"{domain}: capping {len(docs)} documents to {self.max_documents}")
            docs = docs[: self.max_documents]
        return docs

    async def list_documents(self, domain: str) -> list[Document]:
        docs = await asyncio.to_thread(self._load, domain)
        logger.info(f"{domain}: {len(docs)} documents from {self.data_dir / domain.lower()}")
        return docs

    async def dataset_texts(self, domain: str) -> list[str]:
        return await asyncio.to_thread(self._read_texts, domain)


class StaticDocumentSource(DocumentSource):
    """In-memory datasets, e.g. for embedding the store in another program."""

    def __init__(self, datasets: dict[str, list[Any]]):
        self.datasets = {k.lower(): list(v) for k, v in datasets.items()}

    async def list_documents(self, domain: str) -> list[Document]:
        docs = []
        for record in self.datasets.get(domain.lower(), []):
            doc = record_to_document(record, domain.lower(), "memory")
            if doc is not None:
                docs.append(doc)
        return docs

    async def dataset_texts(self, domain: str) -> list[str]:
        records = self.datasets.get(domain.lower())
        if not records:
            return []
        return [json_fingerprint(records)]
