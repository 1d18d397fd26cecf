# gamemarket/services/base_service.py
import logging
from contextlib import asynccontextmanager

class BaseService:
    """Base class for services that talk to the database"""

    def __init__(self, db):
        self.db = db
        self.logger = logging.getLogger(self.__class__.__module__)

    @asynccontextmanager
    async def transaction(self, conn=None):
        """Join the caller's transaction, or open a new one"""
        if conn is not None:
            yield conn
            return
        async with self.db.pool.acquire() as new_conn:
            async with new_conn.transaction():
                yield new_conn
