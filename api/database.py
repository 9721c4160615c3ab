"""
Database service layer for the FastAPI application.
"""

from typing import Dict, List

import structlog

from alumni.database import MongoDBManager
from scheduler.differ import diff_snapshots

logger = structlog.get_logger(__name__)


class APIDatabaseService:
    """Read-side database operations for the API."""

    def __init__(self, db_manager: MongoDBManager):
        self.db_manager = db_manager

    async def compare_snapshots(self) -> List[str]:
        """
        Diff the live current and previous alumni collections.

        Nothing is refreshed, sent or rotated.
        """
        try:
            current = await self.db_manager.get_current_alumni()
            previous = await self.db_manager.get_previous_alumni()
            changes = diff_snapshots(current, previous)

            logger.debug(
                "Compared alumni snapshots",
                current=len(current),
                previous=len(previous),
                changes=len(changes)
            )
            return changes

        except Exception as e:
            logger.error("Failed to compare alumni snapshots", error=str(e))
            raise

    async def health_check(self) -> Dict:
        """
        Perform database health check.

        Returns:
            Dictionary with health status
        """
        try:
            await self.db_manager.database.command("ping")
            stats = await self.db_manager.get_database_stats()

            return {
                "status": "healthy",
                **stats
            }
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e)
            }
