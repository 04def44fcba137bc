"""Diagnostics sink for dropped events and reducer diagnostics.

Keeps a bounded in-memory history (oldest evicted first) and can also
append one JSON line per record to a file. Payloads are redacted before
they are stored or written.
"""
from __future__ import annotations

import json
import logging
import time
from collections import deque
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from voicecall.shared.log_redaction import redact_value

from .call_events import Unrecognized

logger = logging.getLogger("voicecall.diagnostics")

DEFAULT_CAPACITY = 100


@dataclass
class DiagnosticRecord:
    """One diagnostic entry."""
    category: str          # "unrecognized" | "reducer" | "router"
    reason: str
    detail: Any
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DiagnosticsSink:
    """Bounded diagnostics history with optional JSONL mirroring."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, jsonl_path: Optional[str] = None) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._records: Deque[DiagnosticRecord] = deque(maxlen=capacity)
        self._counts: Dict[str, int] = {}
        self._jsonl_path = Path(jsonl_path) if jsonl_path else None
        if self._jsonl_path is not None:
            try:
                self._jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error("diagnostics: cannot create log dir %s: %s", self._jsonl_path.parent, e)

    def record_unrecognized(self, event: Unrecognized) -> DiagnosticRecord:
        """Record a dropped payload. Never surfaced to the user."""
        return self.record("unrecognized", event.reason, redact_value(event.raw))

    def record_reducer(self, args: Dict[str, Any]) -> DiagnosticRecord:
        """Record an EmitDiagnostic command from the call reducer."""
        detail = {k: v for k, v in args.items() if k != "reason"}
        return self.record("reducer", str(args.get("reason", "unknown")), detail)

    def record(self, category: str, reason: str, detail: Any = None) -> DiagnosticRecord:
        record = DiagnosticRecord(category=category, reason=reason, detail=detail, timestamp=time.time())
        self._records.append(record)
        key = f"{category}:{reason}"
        self._counts[key] = self._counts.get(key, 0) + 1
        self._write(record)
        return record

    def _write(self, record: DiagnosticRecord) -> None:
        if self._jsonl_path is None:
            return
        try:
            line = json.dumps(record.to_dict(), default=str, ensure_ascii=False)
            with open(self._jsonl_path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as exc:
            logger.warning("diagnostics jsonl write failed (%s): %s", self._jsonl_path, exc)

    def recent(self, n: int = 20) -> List[DiagnosticRecord]:
        """Return the last n records, oldest first."""
        if n <= 0:
            return []
        return list(self._records)[-n:]

    def count(self, category: Optional[str] = None) -> int:
        if category is None:
            return sum(self._counts.values())
        prefix = f"{category}:"
        return sum(v for k, v in self._counts.items() if k.startswith(prefix))

    def stats(self) -> Dict[str, Any]:
        return {
            "retained": len(self._records),
            "capacity": self._records.maxlen,
            "total": self.count(),
            "by_reason": dict(sorted(self._counts.items())),
            "jsonl_path": str(self._jsonl_path) if self._jsonl_path else None,
        }

    def clear(self) -> None:
        self._records.clear()
        self._counts.clear()
