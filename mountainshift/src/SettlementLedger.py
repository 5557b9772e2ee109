"""SettlementLedger: replay protection for settlements keyed by deposit.

A deposit is identified by its chain and lowercase transaction hash. The
service reserves the key before verifying the deposit, records the result
once the payout is confirmed, and releases the reservation if the swap fails
before any payout was attempted.

Resubmitting a completed deposit returns the recorded result without paying
again; resubmitting while a settlement is in flight is rejected.

Completed entries can be persisted to a JSON file so replay protection
survives restarts. In-flight reservations are never persisted.

.. code-block:: python

    >>> ledger = SettlementLedger()
    >>> key = SettlementLedger.key("arbitrum", "0xABC")
    >>> ledger.begin(key) is None
    True
    >>> ledger.complete(key, {"finalTxHash": "0x01"})
    >>> ledger.begin(key)
    {'finalTxHash': '0x01'}
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from .errors import DuplicateSettlementError

logger = logging.getLogger(__name__)

IN_PROGRESS = "in_progress"
COMPLETED = "completed"


class SettlementLedger:
    """Idempotency ledger.

    :ivar path: Optional JSON file holding completed settlements.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        """Initialize the ledger, loading completed entries from ``path``.

        :param path: JSON persistence file, or None for memory only.
        """
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._in_progress: set[str] = set()
        self._completed: dict[str, dict[str, Any]] = {}

        if self.path and self.path.exists():
            with open(self.path, "r") as file:
                self._completed = json.load(file)
            logger.info(f"Loaded {len(self._completed)} settlements from {self.path}")

    @staticmethod
    def key(chain: str, tx_hash: str) -> str:
        """Build the ledger key for a deposit (e.g., ``arbitrum:0xabc...``)."""
        return f"{chain.lower()}:{tx_hash.strip().lower()}"

    def status(self, key: str) -> str | None:
        """Return IN_PROGRESS, COMPLETED or None for an unknown key."""
        with self._lock:
            if key in self._completed:
                return COMPLETED
            if key in self._in_progress:
                return IN_PROGRESS
            return None

    def begin(self, key: str) -> dict[str, Any] | None:
        """Reserve a deposit for settlement.

        :param key: Ledger key.
        :returns: None if the key was reserved, or the recorded result if the
            deposit was already settled.
        :raises DuplicateSettlementError: If a settlement is in progress.
        """
        with self._lock:
            if key in self._completed:
                logger.info(f"Settlement {key} already completed; replaying result")
                return self._completed[key]
            if key in self._in_progress:
                raise DuplicateSettlementError(f"settlement already in progress: {key}")
            self._in_progress.add(key)
            return None

    def complete(self, key: str, result: dict[str, Any]) -> None:
        """Record a finished settlement.

        :param key: Ledger key.
        :param result: JSON-serializable settlement result.
        """
        with self._lock:
            self._in_progress.discard(key)
            self._completed[key] = result
            if self.path:
                self._save()

    def release(self, key: str) -> None:
        """Drop a reservation so the deposit can be resubmitted."""
        with self._lock:
            self._in_progress.discard(key)

    def _save(self) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w") as file:
            json.dump(self._completed, file, indent=2, sort_keys=True)
        os.replace(tmp, self.path)

    def __len__(self) -> int:
        return len(self._completed)
