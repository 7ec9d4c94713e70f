"""Economy Engine - Pure logic for the coin ledger.

This engine provides stateless functions for:
- Earning coins (balance and lifetime total grow together)
- Spending coins with an overdraft check
- Purchasing shop items from the ledger's purchase list

ARCHITECTURE: This is a pure logic engine with NO Home Assistant dependencies.
All functions are static methods that return a new ledger; the caller persists
it through the sync service.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .. import const

if TYPE_CHECKING:
    from ..type_defs import CoinLedger


class InsufficientCoinsError(Exception):
    """Raised when spending would result in a negative balance.

    Attributes:
        current_balance: Current coin balance
        requested_amount: Amount attempted to spend
        shortfall: How much more is needed (requested - current)
    """

    def __init__(self, current_balance: int, requested_amount: int) -> None:
        """Initialize InsufficientCoinsError."""
        self.current_balance = current_balance
        self.requested_amount = requested_amount
        self.shortfall = requested_amount - current_balance
        super().__init__(
            f"Insufficient coins: balance={current_balance}, "
            f"requested={requested_amount}, shortfall={self.shortfall}"
        )


class PurchaseError(Exception):
    """Raised when a shop item cannot be bought.

    Attributes:
        item_id: The requested item
        reason: Translation key describing the failure
    """

    def __init__(self, item_id: str, reason: str) -> None:
        """Initialize PurchaseError."""
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Cannot purchase '{item_id}': {reason}")


class EconomyEngine:
    """Pure logic engine for coin ledger operations.

    All methods are static - no instance state.
    """

    @staticmethod
    def default_ledger() -> CoinLedger:
        """Return an empty ledger."""
        return {
            const.FIELD_COINS: 0,
            const.FIELD_TOTAL_EARNED: 0,
            const.FIELD_PURCHASES: [],
        }

    @staticmethod
    def normalize_ledger(ledger: Mapping[str, Any] | None) -> CoinLedger:
        """Return a ledger with every field present, ignoring document bookkeeping."""
        if not ledger:
            return EconomyEngine.default_ledger()
        purchases = ledger.get(const.FIELD_PURCHASES)
        return {
            const.FIELD_COINS: int(ledger.get(const.FIELD_COINS) or 0),
            const.FIELD_TOTAL_EARNED: int(ledger.get(const.FIELD_TOTAL_EARNED) or 0),
            const.FIELD_PURCHASES: copy.deepcopy(purchases)
            if isinstance(purchases, list)
            else [],
        }

    @staticmethod
    def add_coins(ledger: Mapping[str, Any] | None, amount: int) -> CoinLedger:
        """Credit coins.

        Raises:
            ValueError: amount is negative.
        """
        if amount < 0:
            raise ValueError(f"Cannot add a negative amount: {amount}")
        result = EconomyEngine.normalize_ledger(ledger)
        result[const.FIELD_COINS] += amount
        result[const.FIELD_TOTAL_EARNED] += amount
        return result

    @staticmethod
    def spend_coins(ledger: Mapping[str, Any] | None, amount: int) -> CoinLedger:
        """Debit coins; totalEarned is unchanged.

        Raises:
            ValueError: amount is negative.
            InsufficientCoinsError: balance is lower than amount.
        """
        if amount < 0:
            raise ValueError(f"Cannot spend a negative amount: {amount}")
        result = EconomyEngine.normalize_ledger(ledger)
        if result[const.FIELD_COINS] < amount:
            raise InsufficientCoinsError(result[const.FIELD_COINS], amount)
        result[const.FIELD_COINS] -= amount
        return result

    @staticmethod
    def purchase_item(ledger: Mapping[str, Any] | None, item_id: str) -> CoinLedger:
        """Buy an item from the ledger's purchase list.

        Raises:
            PurchaseError: Unknown item or already purchased.
            InsufficientCoinsError: The item costs more than the balance.
        """
        result = EconomyEngine.normalize_ledger(ledger)
        item = next(
            (
                purchase
                for purchase in result[const.FIELD_PURCHASES]
                if purchase.get(const.FIELD_ID) == item_id
            ),
            None,
        )
        if item is None:
            raise PurchaseError(item_id, const.TRANS_KEY_ERROR_ITEM_NOT_FOUND)
        if item.get(const.FIELD_PURCHASED):
            raise PurchaseError(item_id, const.TRANS_KEY_ERROR_ITEM_ALREADY_PURCHASED)

        cost = int(item.get(const.FIELD_COST) or 0)
        if result[const.FIELD_COINS] < cost:
            raise InsufficientCoinsError(result[const.FIELD_COINS], cost)

        result[const.FIELD_COINS] -= cost
        item[const.FIELD_PURCHASED] = True
        return result
