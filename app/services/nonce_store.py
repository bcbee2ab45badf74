"""
Replay nonce store (idempotency store keyed by nonce).

``reserve`` is the atomic check-and-insert: of any number of concurrent
redemptions carrying the same nonce, or the same proof re-framed under another
nonce, at most one gets past it. The others get ReplayDetected.

Lifecycle of a reservation:
    reserve -> mark_settled      ledger confirmed the transfer
    reserve -> mark_ambiguous    outcome unknown, kept consumed
    reserve -> release           ledger definitively rejected, nonce usable again
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ReplayDetected
from app.models.auth import (
    STATUS_AMBIGUOUS,
    STATUS_PENDING,
    STATUS_SETTLED,
    ReplayNonce,
)

logger = logging.getLogger(__name__)


class NonceStore(ABC):
    @abstractmethod
    def reserve(self, nonce: str, proof_digest: str) -> None:
        """Consume *nonce*; raise ReplayDetected if it or the proof was seen."""

    @abstractmethod
    def mark_settled(self, nonce: str, signature: str) -> None: ...

    @abstractmethod
    def mark_ambiguous(self, nonce: str, signature: Optional[str] = None) -> None: ...

    @abstractmethod
    def release(self, nonce: str) -> None: ...

    @abstractmethod
    def status(self, nonce: str) -> Optional[str]: ...


class SqlNonceStore(NonceStore):
    """Database-backed store; the primary key and unique digest do the locking."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def reserve(self, nonce: str, proof_digest: str) -> None:
        self.db.add(
            ReplayNonce(
                nonce=nonce,
                proof_digest=proof_digest,
                status=STATUS_PENDING,
                consumed_at=int(time.time()),
            )
        )
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.info("replay rejected for nonce %s", nonce)
            raise ReplayDetected("QR code has already been redeemed") from exc

    def _get(self, nonce: str) -> Optional[ReplayNonce]:
        return self.db.query(ReplayNonce).filter(ReplayNonce.nonce == nonce).first()

    def mark_settled(self, nonce: str, signature: str) -> None:
        record = self._get(nonce)
        if record is None:
            raise KeyError(nonce)
        record.status = STATUS_SETTLED
        record.signature = signature
        self.db.commit()

    def mark_ambiguous(self, nonce: str, signature: Optional[str] = None) -> None:
        record = self._get(nonce)
        if record is None:
            raise KeyError(nonce)
        record.status = STATUS_AMBIGUOUS
        record.signature = signature
        self.db.commit()

    def release(self, nonce: str) -> None:
        self.db.query(ReplayNonce).filter(ReplayNonce.nonce == nonce).delete()
        self.db.commit()

    def status(self, nonce: str) -> Optional[str]:
        record = self._get(nonce)
        return record.status if record else None


@dataclass
class _Entry:
    proof_digest: str
    status: str
    consumed_at: int
    signature: Optional[str] = None


class MemoryNonceStore(NonceStore):
    """Process-local store for single-instance deployments and tests."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._entries: Dict[str, _Entry] = {}
        self._digests: Dict[str, str] = {}

    def reserve(self, nonce: str, proof_digest: str) -> None:
        with self._lock:
            if nonce in self._entries or proof_digest in self._digests:
                raise ReplayDetected("QR code has already been redeemed")
            self._entries[nonce] = _Entry(proof_digest, STATUS_PENDING, int(time.time()))
            self._digests[proof_digest] = nonce

    def mark_settled(self, nonce: str, signature: str) -> None:
        with self._lock:
            entry = self._entries[nonce]
            entry.status = STATUS_SETTLED
            entry.signature = signature

    def mark_ambiguous(self, nonce: str, signature: Optional[str] = None) -> None:
        with self._lock:
            entry = self._entries[nonce]
            entry.status = STATUS_AMBIGUOUS
            entry.signature = signature

    def release(self, nonce: str) -> None:
        with self._lock:
            entry = self._entries.pop(nonce, None)
            if entry is not None:
                self._digests.pop(entry.proof_digest, None)

    def status(self, nonce: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(nonce)
            return entry.status if entry else None
