# app/services/credits.py
from dataclasses import dataclass
from typing import Optional

from app.core.logging import get_logger
from app.services.store import StudioStore, utcnow

logger = get_logger(__name__)


@dataclass
class DebitResult:
    """Outcome of a debit attempt"""
    success: bool
    new_balance: Optional[int] = None
    error: Optional[str] = None


class CreditLedger:
    """Spendable credit balance per user.

    A debit is one conditional decrement, so two concurrent debits can
    never both succeed when together they exceed the balance. ``ref_id``
    makes a debit idempotent: repeating a call with the same reference
    never charges twice.
    """

    def __init__(self, store: StudioStore):
        self.store = store

    async def get_balance(self, user_id: str) -> int:
        user = await self.store.get_user(user_id)
        return user["credit_units"] if user else 0

    async def grant(self, user_id: str, units: int) -> int:
        """Add credits to a user's balance and return the new balance"""
        if units <= 0:
            raise ValueError("units must be positive")
        async with self.store.transaction() as db:
            await db.execute(
                "UPDATE users SET credit_units = credit_units + ? WHERE id = ?",
                (units, user_id),
            )
        return await self.get_balance(user_id)

    async def debit(
        self,
        user_id: str,
        units: int,
        ref_id: str,
        reason: str = "batch_generation",
        description: Optional[str] = None,
    ) -> DebitResult:
        """
        Debit ``units`` from the user's balance

        Args:
            user_id: Account to charge
            units: Credits to remove
            ref_id: Idempotency reference (the batch item id for batch generations)
            reason: Ledger reason code
            description: Free text stored with the debit

        Returns:
            DebitResult with the balance after the debit, or success=False
            when the balance does not cover ``units``
        """
        async with self.store.transaction() as db:
            cursor = await db.execute(
                "INSERT OR IGNORE INTO credit_debits (ref_id, user_id, units, reason, description, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (ref_id, user_id, units, reason, description, utcnow().isoformat()),
            )
            if cursor.rowcount == 0:
                logger.info(f"Debit {ref_id} already applied, not charging again")
                charged = True
            else:
                cursor = await db.execute(
                    "UPDATE users SET credit_units = credit_units - ? "
                    "WHERE id = ? AND credit_units >= ?",
                    (units, user_id, units),
                )
                charged = cursor.rowcount == 1
                if not charged:
                    await db.execute("DELETE FROM credit_debits WHERE ref_id = ?", (ref_id,))

        balance = await self.get_balance(user_id)
        if not charged:
            logger.warning(f"Debit of {units} for user {user_id} refused: balance {balance}")
            return DebitResult(success=False, new_balance=balance, error="Insufficient credits")

        logger.debug(f"Debited {units} from user {user_id} (ref {ref_id}), balance {balance}")
        return DebitResult(success=True, new_balance=balance)
