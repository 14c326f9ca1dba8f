"""
Key Rotation — Batch re-encryption of stored envelopes under a new key version.

Walks the host's envelope store in bounded batches ordered by item id,
re-encrypting every envelope that is not under the current key version.
Each item is replaced independently (compare-and-swap on the host side), so
one failing record never aborts the batch. The sweep is resumable: the
report carries the last processed item id as a checkpoint, and ``cancel()``
stops it at the next item boundary. Items already at the current version
are skipped, which makes repeated runs idempotent.

Security Note:
    Plaintext exists in memory only during re-encryption of each item.
    Never log plaintext or envelope contents.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, Protocol
from collections.abc import Sequence

from ..exceptions import EncryptionError
from .cache import request_cache
from .context import EncryptionContext
from .manager import EncryptionManager

logger = logging.getLogger("navigator.fieldcrypt")


@dataclass(frozen=True)
class StoredEnvelope:
    """One encrypted value as held by the host store."""

    item_id: str
    context: EncryptionContext
    envelope: bytes
    aad_fields: tuple[str, ...] = ()


class EnvelopeStore(Protocol):
    """Host persistence interface used by the rotator."""

    def scan(self, after: Optional[str], limit: int) -> Sequence[StoredEnvelope]:
        """Return up to ``limit`` items with ``item_id > after``, ordered by id."""

    def replace(self, item: StoredEnvelope, new_envelope: bytes) -> bool:
        """Atomically swap ``item.envelope`` for ``new_envelope``.

        Return False when the stored value no longer equals ``item.envelope``.
        """


@dataclass
class RotationFailure:
    item_id: str
    error: str
    message: str


@dataclass
class RotationReport:
    total: int = 0
    rotated: int = 0
    skipped: int = 0
    errors: int = 0
    batches: int = 0
    checkpoint: Optional[str] = None
    completed: bool = False
    cancelled: bool = False
    failures: list[RotationFailure] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "rotated": self.rotated,
            "skipped": self.skipped,
            "errors": self.errors,
            "batches": self.batches,
            "checkpoint": self.checkpoint,
            "completed": self.completed,
            "cancelled": self.cancelled,
        }


class KeyRotator:
    """Re-encrypt a store's envelopes under the manager's current key version."""

    def __init__(
        self,
        manager: EncryptionManager,
        store: EnvelopeStore,
        batch_size: Optional[int] = None,
    ) -> None:
        self._manager = manager
        self._store = store
        self._batch_size = batch_size or manager.config.rotation_batch_size
        if self._batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop the sweep at the next item boundary.

        A cancel issued before ``rotate()`` starts stops that run before its
        first item. The request is consumed when the run returns.
        """
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def rotate_item(self, item: StoredEnvelope) -> bool:
        """Rotate one item. Return True if replaced, False if skipped.

        Raises:
            EncryptionError: if the item cannot be decrypted or re-encrypted.
        """
        if not self._manager.needs_rotation(item.envelope):
            return False
        new_envelope = self._manager.reencrypt(
            item.envelope, item.context, item.aad_fields
        )
        return self._store.replace(item, new_envelope)

    def rotate(
        self,
        checkpoint: Optional[str] = None,
        max_batches: Optional[int] = None,
    ) -> RotationReport:
        """Rotate every stored envelope after ``checkpoint``.

        Args:
            checkpoint: resume after this item id (from a previous report).
            max_batches: stop after this many batches (report stays resumable).

        Returns:
            RotationReport with counters, collected failures and checkpoint.
        """
        report = RotationReport(checkpoint=checkpoint)
        current = self._manager.key_ring.current_version

        logger.info(
            "Starting key rotation to %s (batch_size=%d, checkpoint=%s)",
            current, self._batch_size, checkpoint,
        )
        try:
            self._sweep(report, max_batches)
        finally:
            self._cancelled.clear()

        if report.cancelled:
            logger.info(
                "Key rotation cancelled at checkpoint %s", report.checkpoint,
            )
        logger.info("Key rotation finished: %s", report.as_dict())
        return report

    def _sweep(self, report: RotationReport, max_batches: Optional[int]) -> None:
        while True:
            if self._cancelled.is_set():
                report.cancelled = True
                return
            if max_batches is not None and report.batches >= max_batches:
                return
            rows = self._store.scan(report.checkpoint, self._batch_size)
            if not rows:
                report.completed = True
                return

            report.batches += 1
            logger.info(
                "Processing batch %d (%d items)", report.batches, len(rows),
            )

            with request_cache():
                for item in rows:
                    if self._cancelled.is_set():
                        report.cancelled = True
                        return
                    report.total += 1
                    try:
                        if self.rotate_item(item):
                            report.rotated += 1
                        else:
                            report.skipped += 1
                    except Exception as err:
                        meta = err.metadata() if isinstance(err, EncryptionError) else {}
                        logger.error(
                            "Error rotating item id=%s (%s): %s",
                            item.item_id, meta, type(err).__name__,
                        )
                        report.errors += 1
                        report.failures.append(
                            RotationFailure(item.item_id, type(err).__name__, str(err))
                        )
                    report.checkpoint = item.item_id
