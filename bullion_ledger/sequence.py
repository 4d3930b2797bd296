"""
Transaction id allocator

Monotonic counters persisted in storage and advanced by compare-and-swap.
"""

from typing import Dict, Any

from .storage import StorageInterface, StorageError
from .exceptions import SequenceError
from .logging_config import get_logger, log_action


logger = get_logger("bullion.ledger")


class SequenceGenerator:
    """Produces ids like TXN00000001 from a named storage counter"""

    def __init__(
        self,
        storage: StorageInterface,
        prefix: str = "TXN",
        width: int = 8,
        name: str = "transaction",
        max_retries: int = 5
    ):
        self.storage = storage
        self.prefix = prefix
        self.width = width
        self.name = name
        self.max_retries = max_retries
        self.table_name = "sequences"

    def _next_value(self) -> int:
        for _ in range(self.max_retries):
            current = self.storage.load(self.table_name, self.name)
            if current is None:
                record: Dict[str, Any] = {'id': self.name, 'value': 1, 'version': 1}
                try:
                    self.storage.insert(self.table_name, self.name, record)
                    return 1
                except StorageError:
                    continue

            value = int(current['value']) + 1
            record = {'id': self.name, 'value': value, 'version': current.get('version', 0) + 1}
            if self.storage.compare_and_swap(self.table_name, self.name, current.get('version', 0), record):
                return value

        raise SequenceError(f"Sequence {self.name} is contended; no id allocated")

    def generate_transaction_id(self) -> str:
        """
        Allocate the next id.

        Raises:
            SequenceError: If the counter cannot be advanced
        """
        try:
            value = self._next_value()
        except StorageError as e:
            log_action(logger, "error", "Sequence allocation failed",
                       action="sequence_failed", resource=self.name, exc_info=True)
            raise SequenceError(f"Sequence {self.name} unavailable: {e}") from e
        return f"{self.prefix}{value:0{self.width}d}"
