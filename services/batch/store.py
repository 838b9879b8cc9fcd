# services/batch/store.py
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Iterable, List, Optional, Tuple
from uuid import uuid4

from services.batch.domain import BatchSnapshot, BatchStatus, DocumentPair

logger = logging.getLogger(__name__)

Publisher = Callable[[BatchSnapshot], None]


def new_pair(side_a: Optional[bytes], side_b: Optional[bytes]) -> DocumentPair:
    return DocumentPair(doc_id=uuid4().hex, side_a=side_a, side_b=side_b)


class BatchStore:
    """
    Holds the current BatchSnapshot. Every mutator derives a new snapshot from
    the previous one plus exactly one change and publishes it.

    Pairs are addressed by doc_id, never by position, so a result that
    arrives for a deleted document finds nothing and is dropped.
    All methods are synchronous: on a single event loop each call is atomic
    with respect to other tasks.
    """

    def __init__(self, on_change: Optional[Publisher] = None) -> None:
        self._snapshot = BatchSnapshot()
        self._subscribers: List[Publisher] = []
        self._generation = 0
        if on_change is not None:
            self._subscribers.append(on_change)

    @property
    def snapshot(self) -> BatchSnapshot:
        return self._snapshot

    @property
    def generation(self) -> int:
        """Bumped whenever the whole batch is replaced or cleared."""
        return self._generation

    def subscribe(self, fn: Publisher) -> None:
        self._subscribers.append(fn)

    def get(self, doc_id: str) -> Optional[DocumentPair]:
        return self._snapshot.get(doc_id)

    def _publish(self, snap: BatchSnapshot) -> BatchSnapshot:
        self._snapshot = snap
        for fn in self._subscribers:
            fn(snap)
        return snap

    def load(self, pairs: Iterable[DocumentPair]) -> BatchSnapshot:
        """Replace the whole batch (new scan)."""
        self._generation += 1
        return self._publish(replace(self._snapshot, pairs=tuple(pairs)))

    def update(self, doc_id: str, fn: Callable[[DocumentPair], DocumentPair]) -> Optional[DocumentPair]:
        """
        Apply fn to the pair with doc_id. Returns the new pair, or None when
        the document is no longer part of the batch.
        """
        pairs = self._snapshot.pairs
        for i, p in enumerate(pairs):
            if p.doc_id == doc_id:
                new = fn(p)
                if new is p:
                    return p
                self._publish(replace(self._snapshot, pairs=pairs[:i] + (new,) + pairs[i + 1:]))
                return new

        logger.debug("Discarding update for removed document %s", doc_id)
        return None

    def update_pairs(self, fn: Callable[[Tuple[DocumentPair, ...]], Tuple[DocumentPair, ...]]) -> BatchSnapshot:
        """Apply a transform that needs more than one pair at a time."""
        pairs = fn(self._snapshot.pairs)
        if pairs is self._snapshot.pairs:
            return self._snapshot
        return self._publish(replace(self._snapshot, pairs=tuple(pairs)))

    def set_status(self, kind: str, message: str = "") -> BatchSnapshot:
        return self._publish(replace(self._snapshot, status=BatchStatus(kind=kind, message=message)))

    def remove(self, doc_id: str) -> bool:
        pairs = self._snapshot.pairs
        kept = tuple(p for p in pairs if p.doc_id != doc_id)
        if len(kept) == len(pairs):
            return False
        self._publish(replace(self._snapshot, pairs=kept))
        return True

    def clear(self) -> BatchSnapshot:
        self._generation += 1
        return self._publish(BatchSnapshot())
