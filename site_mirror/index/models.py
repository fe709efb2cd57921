# site_mirror/index/models.py
"""
Batches and export outcomes for the bulk index client.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from site_mirror.crawler.models import PageCapture


class BulkBatch(Sequence[PageCapture]):
    """Fixed, non-empty group of captures sent in one bulk request.

    Membership is frozen at construction; the size never exceeds *max_size*
    and a URL appears at most once.
    """

    __slots__ = ("_captures", "max_size")

    def __init__(self, captures: Iterable[PageCapture], max_size: int) -> None:
        items = tuple(captures)
        if not items:
            raise ValueError("bulk batch must not be empty")
        if len(items) > max_size:
            raise ValueError(f"bulk batch of {len(items)} exceeds the maximum of {max_size}")
        if len({c.url for c in items}) != len(items):
            raise ValueError("bulk batch contains the same URL twice")
        self._captures: Tuple[PageCapture, ...] = items
        self.max_size = max_size

    def __getitem__(self, index):
        return self._captures[index]

    def __len__(self) -> int:
        return len(self._captures)

    def __iter__(self) -> Iterator[PageCapture]:
        return iter(self._captures)

    def __repr__(self) -> str:
        return f"BulkBatch(size={len(self)}, max_size={self.max_size})"

    @property
    def ids(self) -> List[str]:
        return [c.url for c in self._captures]


def chunk_captures(
    captures: Iterable[PageCapture], batch_size: int, max_size: Optional[int] = None
) -> List[BulkBatch]:
    """Split captures into batches of *batch_size*, dropping repeated URLs."""
    limit = max_size if max_size is not None else batch_size
    if batch_size < 1 or batch_size > limit:
        raise ValueError(f"batch_size must be between 1 and {limit}")
    unique: Dict[str, PageCapture] = {}
    for capture in captures:
        unique.setdefault(capture.url, capture)
    pages = list(unique.values())
    return [BulkBatch(pages[i:i + batch_size], limit) for i in range(0, len(pages), batch_size)]


@dataclass(frozen=True, slots=True)
class Success:
    took_ms: int

    @property
    def failed_ids(self) -> Tuple[str, ...]:
        return ()


@dataclass(frozen=True, slots=True)
class PartialFailure:
    """Most items landed; ``failed_ids`` must be retried or reported."""

    took_ms: int
    failed_ids: Tuple[str, ...]
    errors: Dict[str, str] = field(default_factory=dict, compare=False)


@dataclass(frozen=True, slots=True)
class Fatal:
    """Nothing in the batch can be trusted to have been written."""

    error: str
    took_ms: Optional[int] = None
    status: Optional[int] = None

    @property
    def failed_ids(self) -> Tuple[str, ...]:
        return ()


ExportResult = Union[Success, PartialFailure, Fatal]


@dataclass(slots=True)
class BatchOutcome:
    number: int
    size: int
    result: ExportResult
    attempts: int = 1


@dataclass(slots=True)
class ExportReport:
    """Per-batch outcomes of one export run."""

    outcomes: List[BatchOutcome] = field(default_factory=list)

    @property
    def documents_sent(self) -> int:
        return sum(o.size for o in self.outcomes)

    @property
    def failed_ids(self) -> List[str]:
        return [i for o in self.outcomes for i in o.result.failed_ids]

    @property
    def fatal_batches(self) -> List[BatchOutcome]:
        return [o for o in self.outcomes if isinstance(o.result, Fatal)]

    @property
    def ok(self) -> bool:
        return all(isinstance(o.result, Success) for o in self.outcomes)

    def as_dict(self) -> Dict[str, object]:
        batches = []
        for o in self.outcomes:
            entry: Dict[str, object] = {
                "batch": o.number,
                "size": o.size,
                "attempts": o.attempts,
                "outcome": type(o.result).__name__,
                "took_ms": o.result.took_ms,
            }
            if isinstance(o.result, PartialFailure):
                entry["failed_ids"] = list(o.result.failed_ids)
            elif isinstance(o.result, Fatal):
                entry["error"] = o.result.error
            batches.append(entry)
        return {
            "documents_sent": self.documents_sent,
            "batches": batches,
            "failed_ids": self.failed_ids,
            "fatal_batches": len(self.fatal_batches),
        }
