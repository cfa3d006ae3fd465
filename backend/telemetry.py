"""Search telemetry — one structured record per search call.

``StoreManager.search`` never raises: an embedding outage, a missing store
or a dimension mismatch all come back as ``[]``.  These records are how
those outcomes stay visible.

Records per search:
  - Domain requested, limit, query length
  - Per-store method used ("pq" | "exact" | "none")
  - Result count and best similarity
  - Latency for embedding and for scoring
  - Error kind when the search degraded to an empty result

Usage:
    from telemetry import SearchTelemetry, TelemetryStore

    t = SearchTelemetry(domain="nrl", limit=5, query_chars=len(query))
    t.mark("embed_start")
    ...
    t.mark("embed_end")
    t.finalize()
    TelemetryStore.append(t)

    TelemetryStore.export_jsonl("telemetry_log.jsonl")
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections import Counter
from dataclasses import asdict, dataclass, field
from pathlib import Path
from threading import Lock

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  SEARCH TELEMETRY RECORD
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class SearchTelemetry:
    # ── Identity ──────────────────────────────────────────────────────────
    trace_id: str = field(default_factory=lambda: str(uuid.uuid4())[:12])
    timestamp: float = field(default_factory=time.time)
    domain: str = ""                  # "" = all domains
    limit: int = 0
    query_chars: int = 0

    # ── Outcome ───────────────────────────────────────────────────────────
    methods: dict[str, str] = field(default_factory=dict)   # domain → "pq" | "exact" | "none"
    result_count: int = 0
    best_similarity: float = 0.0
    error: str = ""                   # "", "empty_query", "embedding", "no_store", "dimension"

    # ── Latencies ─────────────────────────────────────────────────────────
    latency_embed_ms: float = 0.0
    latency_search_ms: float = 0.0
    latency_total_ms: float = 0.0

    _marks: dict = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self._marks.setdefault("start", time.perf_counter())

    def mark(self, label: str) -> None:
        self._marks[label] = time.perf_counter()

    def _elapsed(self, start: str, end: str) -> float:
        s = self._marks.get(start)
        e = self._marks.get(end)
        if s is not None and e is not None:
            return round((e - s) * 1000, 2)
        return 0.0

    def record_method(self, domain: str, method: str) -> None:
        self.methods[domain] = method

    def record_results(self, similarities: list[float]) -> None:
        self.result_count = len(similarities)
        self.best_similarity = round(max(similarities), 4) if similarities else 0.0

    def record_error(self, kind: str) -> None:
        self.error = kind

    def finalize(self) -> None:
        """Compute latencies from marks."""
        self.mark("end")
        self.latency_embed_ms = self._elapsed("embed_start", "embed_end")
        self.latency_search_ms = self._elapsed("search_start", "search_end")
        self.latency_total_ms = self._elapsed("start", "end")

    def to_dict(self) -> dict:
        """Serializable dict (excludes internal marks)."""
        return {k: v for k, v in asdict(self).items() if not k.startswith("_")}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


# ═══════════════════════════════════════════════════════════════════════════
#  TELEMETRY STORE — in-memory ring buffer + JSONL export
# ═══════════════════════════════════════════════════════════════════════════

class TelemetryStore:
    """Thread-safe in-memory telemetry store with JSONL export.

    Keeps the last ``max_records`` entries.
    """

    _records: list[SearchTelemetry] = []
    _lock = Lock()
    _max_records: int = 1000

    @classmethod
    def configure(cls, max_records: int = 1000) -> None:
        cls._max_records = max(1, max_records)

    @classmethod
    def append(cls, record: SearchTelemetry) -> None:
        with cls._lock:
            cls._records.append(record)
            if len(cls._records) > cls._max_records:
                cls._records = cls._records[-cls._max_records:]

    @classmethod
    def recent(cls, n: int = 20) -> list[dict]:
        if n <= 0:
            return []
        with cls._lock:
            return [r.to_dict() for r in cls._records[-n:]]

    @classmethod
    def clear(cls) -> None:
        with cls._lock:
            cls._records.clear()

    @classmethod
    def summary(cls) -> dict:
        """Aggregate counts: searches, errors by kind, methods used, mean latency."""
        with cls._lock:
            records = list(cls._records)
        if not records:
            return {"searches": 0, "errors": {}, "methods": {}, "avg_latency_ms": 0.0, "empty_results": 0}
        errors = Counter(r.error for r in records if r.error)
        methods = Counter(m for r in records for m in r.methods.values())
        return {
            "searches": len(records),
            "errors": dict(errors),
            "methods": dict(methods),
            "avg_latency_ms": round(sum(r.latency_total_ms for r in records) / len(records), 2),
            "empty_results": sum(1 for r in records if r.result_count == 0),
        }

    @classmethod
    def export_jsonl(cls, path: str | Path) -> int:
        """Write all records to a JSONL file. Returns count written."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with cls._lock:
            records = list(cls._records)
        with open(path, "w", encoding="utf-8") as f:
            for r in records:
                f.write(r.to_json() + "\n")
        logger.info(f"Telemetry: exported {len(records)} records to {path}")
        return len(records)
