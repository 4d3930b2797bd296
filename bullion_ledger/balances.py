"""
Balance Store Module

The only mutation path for account balances. Each adjustment is a
read-increment-write on one account document guarded by an optimistic
version check, so two concurrent adjustments never lose an update.
"""

from decimal import Decimal
from datetime import datetime, timezone
from typing import Callable

from .storage import StorageInterface
from .accounts import Account, CashBalance
from .exceptions import BalanceConflictError, NotFoundError
from .logging_config import get_logger, log_action


logger = get_logger("bullion.balances")


class BalanceStore:
    """Increment/decrement access to embedded cash and gold balances"""

    def __init__(self, storage: StorageInterface, max_retries: int = 5):
        self.storage = storage
        self.max_retries = max_retries
        self.table_name = "accounts"

    def _update(self, account_id: str, mutate: Callable[[Account, datetime], Decimal], what: str) -> Decimal:
        for attempt in range(1, self.max_retries + 1):
            data = self.storage.load(self.table_name, account_id) if account_id else None
            if data is None:
                raise NotFoundError(f"Account {account_id} not found", {"account_id": account_id})

            account = Account.from_dict(data)
            expected_version = account.version
            now = datetime.now(timezone.utc)
            new_balance = mutate(account, now)
            account.version = expected_version + 1
            account.updated_at = now

            if self.storage.compare_and_swap(self.table_name, account_id, expected_version, account.to_dict()):
                return new_balance

            log_action(
                logger, "warning", "Balance update conflict, retrying",
                action="balance_conflict", resource=account_id,
                extra={"balance": what, "attempt": attempt}
            )

        raise BalanceConflictError(
            f"Could not update {what} balance of account {account_id} "
            f"after {self.max_retries} attempts",
            {"account_id": account_id}
        )

    def adjust_cash(self, account_id: str, currency_id: str, delta: Decimal) -> Decimal:
        """
        Add delta to the account's balance in one currency, creating the
        balance entry on first use.

        Returns:
            The new balance
        """
        def mutate(account: Account, now: datetime) -> Decimal:
            for balance in account.cash_balance:
                if balance.currency_id == currency_id:
                    balance.amount += delta
                    balance.last_updated = now
                    return balance.amount
            account.cash_balance.append(CashBalance(currency_id=currency_id, amount=delta, last_updated=now))
            return delta

        return self._update(account_id, mutate, f"cash:{currency_id}")

    def adjust_gold(self, account_id: str, delta: Decimal) -> Decimal:
        """
        Add delta grams to the account's gold aggregate.

        Returns:
            The new gold balance in grams
        """
        def mutate(account: Account, now: datetime) -> Decimal:
            account.gold_balance.total_grams += delta
            account.gold_balance.last_updated = now
            return account.gold_balance.total_grams

        return self._update(account_id, mutate, "gold")

    def get_cash(self, account_id: str, currency_id: str) -> Decimal:
        data = self.storage.load(self.table_name, account_id)
        if data is None:
            raise NotFoundError(f"Account {account_id} not found", {"account_id": account_id})
        return Account.from_dict(data).cash_for(currency_id)

    def get_gold(self, account_id: str) -> Decimal:
        data = self.storage.load(self.table_name, account_id)
        if data is None:
            raise NotFoundError(f"Account {account_id} not found", {"account_id": account_id})
        return Account.from_dict(data).gold_balance.total_grams
