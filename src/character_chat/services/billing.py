"""
Billing collaborator interface.

The chat pipeline only needs a balance check before a paid call, a debit
after it and a refund when an exchange is undone. The real points ledger
lives elsewhere; two small implementations are provided here.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from ..core.config import BillingConfig
from ..core.exceptions import InsufficientBalanceError, ValidationError

logger = logging.getLogger(__name__)


class BillingService(ABC):
    """Abstract points collaborator."""

    @abstractmethod
    def get_balance(self, user_id: str) -> Optional[int]:
        """Current balance, or None when balances are not tracked."""

    @abstractmethod
    def check_balance(self, user_id: str, required: int) -> None:
        """Raise `InsufficientBalanceError` if `required` points are unavailable."""

    @abstractmethod
    def debit(self, user_id: str, amount: int, reason: str = "chat") -> Optional[int]:
        """Take `amount` points; raises `InsufficientBalanceError` when short."""

    @abstractmethod
    def refund(self, user_id: str, amount: int, reason: str = "refund") -> Optional[int]:
        """Return `amount` points."""


class UnlimitedBilling(BillingService):
    """Billing disabled: every check passes and nothing is recorded."""

    def get_balance(self, user_id: str) -> Optional[int]:
        return None

    def check_balance(self, user_id: str, required: int) -> None:
        return None

    def debit(self, user_id: str, amount: int, reason: str = "chat") -> Optional[int]:
        return None

    def refund(self, user_id: str, amount: int, reason: str = "refund") -> Optional[int]:
        return None


class InMemoryPointsBilling(BillingService):
    """Process-local point balances, for development and tests."""

    def __init__(self, initial_balance: int = 0, balances: Optional[Dict[str, int]] = None):
        self.initial_balance = initial_balance
        self._balances: Dict[str, int] = dict(balances or {})

    def _balance(self, user_id: str) -> int:
        return self._balances.setdefault(user_id, self.initial_balance)

    def get_balance(self, user_id: str) -> Optional[int]:
        return self._balance(user_id)

    def set_balance(self, user_id: str, balance: int) -> None:
        self._balances[user_id] = balance

    def check_balance(self, user_id: str, required: int) -> None:
        current = self._balance(user_id)
        if current < required:
            raise InsufficientBalanceError(current, required, component="billing")

    def debit(self, user_id: str, amount: int, reason: str = "chat") -> Optional[int]:
        if amount < 0:
            raise ValidationError("amount", amount, "must not be negative")
        self.check_balance(user_id, amount)
        self._balances[user_id] = self._balance(user_id) - amount
        logger.debug(f"Debited {amount} points from {user_id} ({reason})")
        return self._balances[user_id]

    def refund(self, user_id: str, amount: int, reason: str = "refund") -> Optional[int]:
        if amount <= 0:
            return self._balance(user_id)
        self._balances[user_id] = self._balance(user_id) + amount
        logger.debug(f"Refunded {amount} points to {user_id} ({reason})")
        return self._balances[user_id]


def create_billing(config: BillingConfig) -> BillingService:
    """Pick a billing implementation from configuration."""
    if config.enabled:
        return InMemoryPointsBilling(initial_balance=config.initial_balance)
    return UnlimitedBilling()
