"""
Notification fan-out for alumni change descriptions.

This module provides:
- Monthly update, welcome and farewell message composition
- Concurrent per-subscriber delivery with isolated failures
- Client-side rate limiting toward the mail provider
"""

import asyncio
from html import escape
from typing import List, Optional

import structlog
from asyncio_throttle import Throttler

from alumni.models import Subscriber
from scheduler.mailer import ResendMailer
from scheduler.models import DeliveryOutcome, EmailMessage, NotificationReport, SchedulerConfig
from utilities.logger import CycleLogger

logger = structlog.get_logger(__name__)


class Notifier:
    """Composes and delivers subscriber emails."""

    def __init__(self, mailer: ResendMailer, config: SchedulerConfig):
        """
        Initialize notifier.

        Args:
            mailer: Mail provider client
            config: Scheduler configuration (sender, subject, rate limit)
        """
        self.mailer = mailer
        self.config = config
        self.throttler = Throttler(rate_limit=config.mail_rate_limit_per_second)
        self.logger = logger.bind(component="notifier")

    def build_monthly_update(self, subscriber: Subscriber, changes: List[str]) -> EmailMessage:
        """One aggregated message listing every change description."""
        updates = "".join(f"<p>{escape(change)}</p>" for change in changes)
        return EmailMessage(
            sender=self.config.mail_from,
            to=subscriber.email,
            subject=self.config.monthly_subject,
            html=f"<p>Here are the monthly updates:</p>{updates}",
        )

    def build_welcome(self, email: str, name: Optional[str]) -> EmailMessage:
        return EmailMessage(
            sender=self.config.mail_from,
            to=email,
            subject=f"Welcome, {name or email}!",
            html="<p>Thank you for subscribing to our monthly updates!</p>",
        )

    def build_farewell(self, email: str) -> EmailMessage:
        return EmailMessage(
            sender=self.config.mail_from,
            to=email,
            subject="Goodbye!",
            html=(
                "<p>We're sorry to see you go! "
                "You have been unsubscribed from our monthly updates.</p>"
            ),
        )

    async def notify_subscribers(
        self,
        subscribers: List[Subscriber],
        changes: List[str],
        cycle_logger: Optional[CycleLogger] = None
    ) -> NotificationReport:
        """
        Send the monthly update to every subscriber.

        Each delivery is independent: a failure is recorded and logged
        without affecting the others.
        """
        cycle_logger = cycle_logger or CycleLogger("notifier")
        messages = [self.build_monthly_update(s, changes) for s in subscribers]

        outcomes = await asyncio.gather(
            *(self._deliver(message, cycle_logger) for message in messages)
        )

        report = NotificationReport(
            attempted=len(outcomes),
            delivered=sum(1 for o in outcomes if o.success),
            failed=sum(1 for o in outcomes if not o.success),
            outcomes=list(outcomes),
        )

        self.logger.info(
            "Processed subscriber notifications",
            attempted=report.attempted,
            delivered=report.delivered,
            failed=report.failed,
            changes=len(changes)
        )
        return report

    async def send_single(self, message: EmailMessage) -> DeliveryOutcome:
        """Send a one-off message (welcome, farewell) without raising."""
        return await self._deliver(message, CycleLogger("notifier"))

    async def _deliver(self, message: EmailMessage, cycle_logger: CycleLogger) -> DeliveryOutcome:
        try:
            async with self.throttler:
                await self.mailer.send(message)
        except Exception as e:
            cycle_logger.log_delivery(message.to, success=False, error=str(e))
            return DeliveryOutcome(recipient=message.to, success=False, error=str(e))

        cycle_logger.log_delivery(message.to, success=True)
        return DeliveryOutcome(recipient=message.to, success=True)
