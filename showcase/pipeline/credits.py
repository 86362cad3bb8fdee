"""
Credit Ledger.

Per-user integer balance stored on the `users` table. Policy is optimistic
debit + compensating credit: a job reserves its cost before any external call
and refunds it if anything downstream fails.

Every balance change is a compare-and-set update
(`credits = new WHERE id = X AND credits = old`), retried on contention, so
concurrent requests can neither lose an update nor overdraw the balance.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from supabase import Client

from .errors import InsufficientCredits, NotFound, InternalError

logger = logging.getLogger(__name__)

USERS_TABLE = "users"
MAX_CAS_ATTEMPTS = 5


@dataclass
class CreditReservation:
    """Handle the caller keeps so exactly one refund follows a failed job."""
    user_id: str
    amount: int
    reserved: bool = True
    refunded: bool = False


class CreditLedger:
    def __init__(self, client: Client):
        self._sb = client

    async def get_balance(self, user_id: str) -> Optional[int]:
        """Current balance, or None if the user row does not exist."""
        result = (
            self._sb.table(USERS_TABLE)
            .select("credits")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return int(result.data[0].get("credits") or 0)

    async def _apply_delta(self, user_id: str, delta: int) -> int:
        for attempt in range(MAX_CAS_ATTEMPTS):
            balance = await self.get_balance(user_id)
            if balance is None:
                raise NotFound(f"User {user_id} not found")

            new_balance = balance + delta
            if new_balance < 0:
                raise InsufficientCredits(
                    "Not enough credits. Please purchase more credits."
                )

            result = (
                self._sb.table(USERS_TABLE)
                .update({"credits": new_balance})
                .eq("id", user_id)
                .eq("credits", balance)
                .execute()
            )
            if result.data:
                return new_balance

            logger.warning(
                f"Credit update contention for user {user_id} "
                f"(attempt {attempt + 1}/{MAX_CAS_ATTEMPTS})"
            )

        raise InternalError(f"Could not update credits for user {user_id}; try again")

    async def reserve(self, user_id: str, amount: int) -> CreditReservation:
        """
        Atomically debit `amount` credits.

        Raises:
            InsufficientCredits: If the balance is below `amount`.
            NotFound:            If the user has no ledger row.
        """
        new_balance = await self._apply_delta(user_id, -amount)
        logger.info(f"Reserved {amount} credit(s) for user {user_id} (balance={new_balance})")
        return CreditReservation(user_id=user_id, amount=amount)

    async def refund(self, reservation: Optional[CreditReservation]) -> None:
        """Return a reservation's credits. A second call on the same handle is a no-op."""
        if reservation is None or not reservation.reserved or reservation.refunded:
            return
        new_balance = await self._apply_delta(reservation.user_id, reservation.amount)
        reservation.refunded = True
        logger.info(
            f"Refunded {reservation.amount} credit(s) to user {reservation.user_id} "
            f"(balance={new_balance})"
        )

    async def increment(self, user_id: str, amount: int) -> int:
        """Add purchased credits. Returns the new balance."""
        new_balance = await self._apply_delta(user_id, amount)
        logger.info(f"Credited {amount} to user {user_id} (balance={new_balance})")
        return new_balance

    # ── User rows (kept in sync by the identity webhook) ────────────────────

    async def upsert_user(
        self,
        user_id: str,
        email: Optional[str] = None,
        name: Optional[str] = None,
        image: Optional[str] = None,
    ) -> None:
        profile = {"id": user_id, "email": email, "name": name, "image": image}
        existing = (
            self._sb.table(USERS_TABLE).select("id").eq("id", user_id).limit(1).execute()
        )
        if existing.data:
            self._sb.table(USERS_TABLE).update(profile).eq("id", user_id).execute()
        else:
            self._sb.table(USERS_TABLE).insert({**profile, "credits": 0}).execute()
        logger.info(f"User {user_id} synced")

    async def delete_user(self, user_id: str) -> None:
        self._sb.table(USERS_TABLE).delete().eq("id", user_id).execute()
        logger.info(f"User {user_id} deleted")
