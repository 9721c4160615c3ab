"""
Subscription control for the monthly alumni updates.

Keeps the recurring timer alive exactly while at least one subscriber is active.
"""

import asyncio
from typing import Optional

import structlog

from alumni.database import MongoDBManager
from alumni.models import Subscriber
from scheduler.directory import DirectoryLookup, NullDirectory
from scheduler.notifier import Notifier
from scheduler.scheduler_service import SnapshotScheduler

logger = structlog.get_logger(__name__)


class IdentityNotResolved(Exception):
    """Neither the directory nor the request supplied an email."""


class SubscriberNotFound(Exception):
    """No subscriber is stored under the given email."""


class SubscriptionService:
    """
    Subscribe/unsubscribe actions and the timer they control.

    Every action runs under one lock and ends by re-reading the active
    subscriber count from the store and syncing the timer to it.
    """

    def __init__(
        self,
        db_manager: MongoDBManager,
        scheduler: SnapshotScheduler,
        notifier: Notifier,
        directory: Optional[DirectoryLookup] = None
    ):
        self.db_manager = db_manager
        self.scheduler = scheduler
        self.notifier = notifier
        self.directory = directory or NullDirectory()
        self.active_subscribers = 0
        self.logger = logger.bind(component="subscription_service")

        self._lock = asyncio.Lock()

    async def resolve_identity(
        self,
        remote_user: Optional[str],
        email: Optional[str],
        name: Optional[str]
    ) -> Subscriber:
        """
        Work out who is subscribing.

        A directory hit for remote_user wins; otherwise the request's own
        email and name are used.

        Raises:
            IdentityNotResolved: no email from either source
        """
        if remote_user:
            try:
                entry = await self.directory.lookup(remote_user)
            except Exception as e:
                self.logger.error("Directory lookup failed", uid=remote_user, error=str(e))
                entry = None

            if entry is not None:
                return Subscriber(email=entry.email, name=entry.name)
            self.logger.info("Directory entry not found", uid=remote_user)

        if email:
            return Subscriber(email=email, name=name)

        raise IdentityNotResolved("No email found for subscription request")

    async def subscribe(
        self,
        remote_user: Optional[str] = None,
        email: Optional[str] = None,
        name: Optional[str] = None
    ) -> Subscriber:
        identity = await self.resolve_identity(remote_user, email, name)

        async with self._lock:
            subscriber = await self.db_manager.upsert_subscriber(identity.email, identity.name)
            await self._sync_timer()

        self.logger.info("Subscriber opted in", email=subscriber.email, active=self.active_subscribers)

        outcome = await self.notifier.send_single(
            self.notifier.build_welcome(subscriber.email, subscriber.name or identity.name)
        )
        if not outcome.success:
            self.logger.warning("Welcome email not delivered", email=subscriber.email, error=outcome.error)

        return subscriber

    async def unsubscribe(self, email: str) -> None:
        """
        Raises:
            SubscriberNotFound: no subscriber has this email
        """
        async with self._lock:
            found = await self.db_manager.deactivate_subscriber(email)
            if not found:
                raise SubscriberNotFound(email)
            await self._sync_timer()

        self.logger.info("Subscriber opted out", email=email, active=self.active_subscribers)

        outcome = await self.notifier.send_single(self.notifier.build_farewell(email))
        if not outcome.success:
            self.logger.warning("Farewell email not delivered", email=email, error=outcome.error)

    async def is_subscribed(self, email: str) -> bool:
        subscriber = await self.db_manager.find_subscriber(email)
        return bool(subscriber and subscriber.subscribed)

    async def sync_timer(self) -> int:
        """Reconcile the timer with the stored subscribers (startup)."""
        async with self._lock:
            await self._sync_timer()
        return self.active_subscribers

    async def _sync_timer(self) -> None:
        self.active_subscribers = await self.db_manager.count_subscribed()
        if self.active_subscribers > 0:
            self.scheduler.start()
        else:
            self.scheduler.stop()
