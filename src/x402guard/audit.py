"""
Audit sinks for evaluation decisions.

The evaluator emits one AuditRecord per terminal decision to whatever sink it
was constructed with. Sinks are injected rather than looked up globally, so
tests can pass a MemoryAuditSink and inspect exactly what was written.

Formats match what generated middleware writes:
    - json: one JSON object per line
    - csv: header row once, then one row per decision
"""

import csv
import io
import json
import sys
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, TextIO

from x402guard.errors import AuditWriteError
from x402guard.schema import AuditConfig, AuditFormat, Decision, RequestContext


@dataclass(frozen=True)
class AuditRecord:
    """
    One audited decision.

    Field order is the CSV column order.
    """

    timestamp: str
    agent_id: str | None
    wallet_address: str | None
    ip_address: str | None
    endpoint: str | None
    amount: str | None
    allowed: bool
    reason: str
    rule_index: int | None
    rule_type: str | None

    @classmethod
    def from_decision(cls, context: RequestContext, decision: Decision) -> "AuditRecord":
        return cls(
            timestamp=context.timestamp.isoformat(),
            agent_id=context.agent_id,
            wallet_address=context.wallet_address,
            ip_address=context.ip_address,
            endpoint=context.endpoint,
            amount=str(context.amount) if context.amount is not None else None,
            allowed=decision.allowed,
            reason=decision.reason.value,
            rule_index=decision.matched_rule,
            rule_type=decision.rule_type.value if decision.rule_type else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


AUDIT_COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(AuditRecord))


class AuditSink(ABC):
    """Destination for audit records."""

    @abstractmethod
    def write(self, record: AuditRecord) -> None:
        """Persist one record."""

    def close(self) -> None:
        """Release any held resources."""

    def __enter__(self) -> "AuditSink":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class MemoryAuditSink(AuditSink):
    """Keeps records in a list, for tests and in-process inspection."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []
        self._lock = threading.Lock()

    def write(self, record: AuditRecord) -> None:
        with self._lock:
            self.records.append(record)


class _StreamAuditSink(AuditSink):
    """Shared plumbing for sinks that write text lines to a stream or file."""

    def __init__(self, destination: Path | None = None, stream: TextIO | None = None) -> None:
        self.destination = destination
        self._stream = stream
        self._owns_stream = False
        self._started = False
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return str(self.destination) if self.destination else "stdout"

    def write(self, record: AuditRecord) -> None:
        with self._lock:
            try:
                stream = self._open()
                stream.write(self._format(record))
                stream.flush()
            except OSError as e:
                raise AuditWriteError(destination=self.name, underlying_error=str(e)) from e

    def close(self) -> None:
        with self._lock:
            if self._owns_stream and self._stream is not None:
                self._stream.close()
                self._stream = None
                self._owns_stream = False
                self._started = False

    def _open(self) -> TextIO:
        if self._stream is None:
            if self.destination is None:
                self._stream = sys.stdout
            else:
                self.destination.parent.mkdir(parents=True, exist_ok=True)
                self._stream = self.destination.open("a", encoding="utf-8", newline="")
                self._owns_stream = True
        if not self._started:
            self._started = True
            self._on_open(self._stream)
        return self._stream

    def _on_open(self, stream: TextIO) -> None:
        pass

    @abstractmethod
    def _format(self, record: AuditRecord) -> str:
        """Render one record as text, newline included."""


class JsonLinesAuditSink(_StreamAuditSink):
    """One compact JSON object per line."""

    def _format(self, record: AuditRecord) -> str:
        return json.dumps(record.to_dict(), separators=(",", ":")) + "\n"


class CsvAuditSink(_StreamAuditSink):
    """CSV rows; the header is written when the destination starts empty."""

    def _on_open(self, stream: TextIO) -> None:
        starts_empty = True
        if self.destination is not None and self.destination.exists():
            starts_empty = self.destination.stat().st_size == 0
        if starts_empty:
            stream.write(_csv_line(AUDIT_COLUMNS))

    def _format(self, record: AuditRecord) -> str:
        row = record.to_dict()
        return _csv_line(_csv_cell(row[column]) for column in AUDIT_COLUMNS)


def build_audit_sink(config: AuditConfig, stream: TextIO | None = None) -> AuditSink:
    """
    Create the sink an AuditConfig describes.

    Args:
        config: Audit section of a policy file
        stream: Overrides stdout for stdout destinations (tests, CLI capture)
    """
    destination = None if config.writes_to_stdout else Path(config.destination or "")
    if config.format == AuditFormat.CSV:
        return CsvAuditSink(destination=destination, stream=stream if destination is None else None)
    return JsonLinesAuditSink(destination=destination, stream=stream if destination is None else None)


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _csv_line(cells: Any) -> str:
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(list(cells))
    return buffer.getvalue()
