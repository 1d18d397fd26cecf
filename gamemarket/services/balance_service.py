# gamemarket/services/balance_service.py
from collections import defaultdict
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from .base_service import BaseService
from ..config import Config
from ..exceptions import NotFoundError, ValidationError
from ..models.seller import BalanceBucket, BalanceEntryType
from ..utils.formatters import to_money

_BUCKET_COLUMNS = {
    BalanceBucket.PENDING: "pending_balance",
    BalanceBucket.AVAILABLE: "available_balance",
}

def fold_ledger(entries: Iterable[Dict[str, Any]]) -> Dict[str, Decimal]:
    """Balance per bucket computed from signed ledger rows"""
    totals = {bucket.value: Decimal(0) for bucket in BalanceBucket}
    for entry in entries:
        totals[BalanceBucket(entry['bucket']).value] += Decimal(entry['amount'])
    return totals

def seller_shares(items: Iterable[Dict[str, Any]]) -> Dict[str, Decimal]:
    """Net amount owed to each seller in an order; store lines are skipped"""
    shares: Dict[str, Decimal] = defaultdict(Decimal)
    for item in items:
        if item.get('seller_id'):
            shares[item['seller_id']] += Decimal(item['net_amount'])
    return dict(shares)

class BalanceService(BaseService):
    """Seller balances as atomic updates plus an append-only ledger"""

    async def _move(self, conn, seller_id: str, bucket: BalanceBucket, amount: Decimal,
                    entry_type: BalanceEntryType, order_id=None, refund_id=None,
                    description: Optional[str] = None) -> Decimal:
        column = _BUCKET_COLUMNS[bucket]
        # single statement, no read-modify-write
        new_balance = await conn.fetchval(f"""
            UPDATE seller_profiles
            SET {column} = {column} + $2, updated_at = NOW()
            WHERE user_id = $1
            RETURNING {column}
        """, seller_id, amount)

        if new_balance is None:
            raise NotFoundError(f"Seller {seller_id} not found", code="seller_not_found")

        await conn.execute("""
            INSERT INTO seller_balance_entries (
                seller_id, entry_type, bucket, amount, balance_after,
                order_id, refund_id, description
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        """, seller_id, entry_type.value, bucket.value, amount, new_balance,
             order_id, refund_id, description)

        self.logger.info(
            f"Balance {entry_type.value} {amount} on {bucket.value} for seller {seller_id} -> {new_balance}"
        )
        return new_balance

    async def credit_sale(self, conn, items: List[Dict[str, Any]], order_id) -> Dict[str, Decimal]:
        """Approved payment: seller shares land in pending balance"""
        shares = seller_shares(items)
        for seller_id, amount in shares.items():
            await self._move(conn, seller_id, BalanceBucket.PENDING, amount,
                             BalanceEntryType.SALE, order_id=order_id,
                             description="Sale awaiting delivery")
        return shares

    async def release_sale(self, conn, items: List[Dict[str, Any]], order_id) -> Dict[str, Decimal]:
        """Delivered order: move seller shares from pending to available"""
        shares = seller_shares(items)
        for seller_id, amount in shares.items():
            await self._move(conn, seller_id, BalanceBucket.PENDING, -amount,
                             BalanceEntryType.RELEASE, order_id=order_id)
            await self._move(conn, seller_id, BalanceBucket.AVAILABLE, amount,
                             BalanceEntryType.RELEASE, order_id=order_id,
                             description="Sale delivered")
        return shares

    async def debit_refund(self, conn, items: List[Dict[str, Any]], order_id, refund_id,
                           delivered: bool) -> Dict[str, Decimal]:
        """Approved refund: take the sale back from whichever bucket holds it"""
        bucket = BalanceBucket.AVAILABLE if delivered else BalanceBucket.PENDING
        shares = seller_shares(items)
        for seller_id, amount in shares.items():
            await self._move(conn, seller_id, bucket, -amount,
                             BalanceEntryType.REFUND, order_id=order_id,
                             refund_id=refund_id, description="Refund approved")
        return shares

    async def withdraw(self, seller_id: str, amount: Decimal) -> Dict[str, Any]:
        """Withdraw from available balance"""
        amount = to_money(amount)
        if amount < Config.MIN_WITHDRAWAL_AMOUNT:
            return ValidationError(
                f"Minimum withdrawal is {Config.MIN_WITHDRAWAL_AMOUNT}",
                code="withdrawal_too_small"
            ).to_result()

        async with self.transaction() as conn:
            # guarded decrement; no row means not enough funds
            new_balance = await conn.fetchval("""
                UPDATE seller_profiles
                SET available_balance = available_balance - $2, updated_at = NOW()
                WHERE user_id = $1 AND available_balance >= $2
                RETURNING available_balance
            """, seller_id, amount)

            if new_balance is None:
                return {
                    "success": False,
                    "error": "Insufficient available balance",
                    "code": "insufficient_balance"
                }

            await conn.execute("""
                INSERT INTO seller_balance_entries (
                    seller_id, entry_type, bucket, amount, balance_after, description
                ) VALUES ($1, $2, $3, $4, $5, $6)
            """, seller_id, BalanceEntryType.WITHDRAWAL.value, BalanceBucket.AVAILABLE.value,
                 -amount, new_balance, "Withdrawal requested")

        self.logger.info(f"Seller {seller_id} withdrew {amount}")
        return {
            "success": True,
            "new_balance": new_balance
        }

    async def get_balance(self, seller_id: str) -> Optional[Dict[str, Any]]:
        async with self.db.pool.acquire() as conn:
            profile = await conn.fetchrow("""
                SELECT user_id, available_balance, pending_balance
                FROM seller_profiles
                WHERE user_id = $1
            """, seller_id)
            return dict(profile) if profile else None

    async def get_entries(self, seller_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Ledger history, newest first"""
        async with self.db.pool.acquire() as conn:
            entries = await conn.fetch("""
                SELECT *
                FROM seller_balance_entries
                WHERE seller_id = $1
                ORDER BY created_at DESC, id DESC
                LIMIT $2
            """, seller_id, limit)
            return [dict(entry) for entry in entries]

    async def reconcile(self, seller_id: str) -> Dict[str, Any]:
        """Compare stored balances with the ledger fold"""
        async with self.db.pool.acquire() as conn:
            profile = await conn.fetchrow("""
                SELECT available_balance, pending_balance
                FROM seller_profiles WHERE user_id = $1
            """, seller_id)
            if not profile:
                return {"success": False, "error": "Seller not found", "code": "seller_not_found"}

            entries = await conn.fetch("""
                SELECT bucket, amount FROM seller_balance_entries WHERE seller_id = $1
            """, seller_id)

        totals = fold_ledger(entries)
        consistent = (
            totals[BalanceBucket.AVAILABLE.value] == profile['available_balance'] and
            totals[BalanceBucket.PENDING.value] == profile['pending_balance']
        )
        if not consistent:
            self.logger.error(f"Ledger mismatch for seller {seller_id}: {totals} vs {dict(profile)}")
        return {
            "success": True,
            "consistent": consistent,
            "ledger": totals,
            "stored": dict(profile)
        }
