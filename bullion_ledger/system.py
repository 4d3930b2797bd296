"""
Ledger System wiring

Builds the full component graph over one storage backend. Used by the API,
the command line entry point and the tests.
"""

from typing import Optional

from .config import LedgerConfig, get_config
from .storage import StorageInterface, InMemoryStorage, SQLiteStorage
from .audit import AuditTrail
from .currency import CurrencyRegistry
from .accounts import AccountStore
from .balances import BalanceStore
from .sequence import SequenceGenerator
from .ledger import Registry
from .inventory import InventoryService
from .entries import EntryRepository
from .pdc import PDCLifecycleManager
from .handlers import MetalHandler, CashHandler
from .orchestrator import EntryOrchestrator
from .maturity import MaturityProcessor
from .dates import Today, today_utc


def create_storage(database_url: str) -> StorageInterface:
    """
    Storage backend for a database URL.

    Supports "memory://" and "sqlite:///path/to/file.db" ("sqlite:///:memory:"
    for a private in-memory SQLite database).
    """
    if database_url == "memory://":
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")
    raise ValueError(f"Unsupported database_url: {database_url}")


class LedgerSystem:
    """Bullion ledger with all components initialized"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        config: Optional[LedgerConfig] = None,
        today: Today = today_utc
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.database_url)
        self.today = today

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.currencies = CurrencyRegistry(self.storage)
        self.accounts = AccountStore(self.storage, self.audit_trail)
        self.balances = BalanceStore(self.storage, max_retries=self.config.balance_update_max_retries)
        self.sequence = SequenceGenerator(
            self.storage,
            prefix=self.config.transaction_id_prefix,
            width=self.config.transaction_id_width
        )
        self.registry = Registry(self.storage, self.audit_trail)
        self.inventory = InventoryService(self.storage)
        self.entries = EntryRepository(self.storage)

        self.pdc_manager = PDCLifecycleManager(
            self.storage, self.entries, self.registry, self.balances,
            self.sequence, self.currencies, self.audit_trail, today=today
        )
        self.metal_handler = MetalHandler(
            self.registry, self.balances, self.sequence, self.accounts, self.inventory
        )
        self.cash_handler = CashHandler(
            self.registry, self.balances, self.sequence, self.accounts,
            self.currencies, self.pdc_manager, today=today
        )
        self.orchestrator = EntryOrchestrator(
            self.storage, self.entries, self.metal_handler, self.cash_handler,
            self.pdc_manager, self.registry, self.inventory, self.audit_trail,
            today=today, weight_places=self.config.weight_decimal_places
        )
        self.maturity = MaturityProcessor(
            self.storage, self.entries, self.pdc_manager, self.registry, self.audit_trail,
            today=today, default_actor=self.config.maturity_actor
        )

    def close(self) -> None:
        self.storage.close()
