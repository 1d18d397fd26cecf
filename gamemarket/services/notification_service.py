# gamemarket/services/notification_service.py
from typing import Any, Dict, List, Optional
from .base_service import BaseService

ADMIN_AUDIENCE = "admin"

class NotificationService(BaseService):
    """In-app notifications for customers, sellers and admins"""

    async def notify(self, user_id: Optional[str], kind: str, title: str, message: str, conn=None):
        if not user_id:
            return
        async with self.transaction(conn) as conn:
            await conn.execute("""
                INSERT INTO notifications (user_id, kind, title, message)
                VALUES ($1, $2, $3, $4)
            """, str(user_id), kind, title, message)

    async def notify_admins(self, kind: str, title: str, message: str, conn=None):
        """One row for the admin role; every admin caller sees it"""
        async with self.transaction(conn) as conn:
            await conn.execute("""
                INSERT INTO notifications (user_id, audience, kind, title, message)
                VALUES (NULL, $1, $2, $3, $4)
            """, ADMIN_AUDIENCE, kind, title, message)

    async def get_unread(self, user_id: str, is_admin: bool = False, limit: int = 20) -> List[Dict[str, Any]]:
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT *
                FROM notifications
                WHERE is_read = false
                  AND (user_id = $1 OR ($2 AND audience = $3))
                ORDER BY created_at DESC
                LIMIT $4
            """, user_id, is_admin, ADMIN_AUDIENCE, limit)
            return [dict(row) for row in rows]
