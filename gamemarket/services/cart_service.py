# gamemarket/services/cart_service.py
from typing import List, Sequence
from .base_service import BaseService
from ..models.order import CartLine

class CartService(BaseService):
    """Persisted shopping cart per user"""

    async def get_cart(self, user_id: str) -> List[CartLine]:
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT product_id, name, price, quantity, seller_id, seller_name
                FROM cart_items
                WHERE user_id = $1
                ORDER BY added_at
            """, user_id)
            return [CartLine(**dict(row)) for row in rows]

    async def add_item(self, user_id: str, line: CartLine) -> bool:
        """Add a line or bump its quantity"""
        async with self.db.pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO cart_items (
                    user_id, product_id, name, price, quantity, seller_id, seller_name
                ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (user_id, product_id)
                DO UPDATE SET quantity = cart_items.quantity + EXCLUDED.quantity,
                              price = EXCLUDED.price
            """, user_id, line.product_id, line.name, line.price, line.quantity,
                 line.seller_id, line.seller_name)
            return True

    async def remove_item(self, user_id: str, product_id: str) -> bool:
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                DELETE FROM cart_items
                WHERE user_id = $1 AND product_id = $2
            """, user_id, product_id)
            return result == "DELETE 1"

    async def remove_products(self, user_id: str, product_ids: Sequence[str], conn=None):
        """Drop purchased lines once their payment is approved"""
        async with self.transaction(conn) as conn:
            await conn.execute("""
                DELETE FROM cart_items
                WHERE user_id = $1 AND product_id = ANY($2::text[])
            """, user_id, list(product_ids))

    async def clear(self, user_id: str):
        async with self.db.pool.acquire() as conn:
            await conn.execute("DELETE FROM cart_items WHERE user_id = $1", user_id)
