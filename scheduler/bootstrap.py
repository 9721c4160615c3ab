"""
Wiring of the scheduler components from application configuration.
"""

from typing import NamedTuple

from alumni.database import MongoDBManager
from alumni.source import SourceClient, SourceRefresher
from scheduler.directory import build_directory
from scheduler.mailer import ResendMailer
from scheduler.models import SchedulerConfig
from scheduler.notifier import Notifier
from scheduler.scheduler_service import SnapshotScheduler
from scheduler.subscriptions import SubscriptionService
from utilities.config import AppConfig


class SchedulerComponents(NamedTuple):
    scheduler: SnapshotScheduler
    subscriptions: SubscriptionService
    mailer: ResendMailer


def build_db_manager(app_config: AppConfig) -> MongoDBManager:
    return MongoDBManager(
        connection_url=app_config.mongodb_url,
        database_name=app_config.mongodb_database,
        alumni_collection=app_config.alumni_collection,
        previous_alumni_collection=app_config.previous_alumni_collection,
        company_collection=app_config.company_collection,
        subscriber_collection=app_config.subscriber_collection,
        lock_collection=app_config.lock_collection
    )


def build_scheduler_config(app_config: AppConfig) -> SchedulerConfig:
    return SchedulerConfig(
        schedule_day=app_config.schedule_day,
        schedule_hour=app_config.schedule_hour,
        schedule_minute=app_config.schedule_minute,
        timezone=app_config.timezone,
        suppress_schedule=app_config.schedule_suppressed(),
        mail_from=app_config.mail_from,
        mail_rate_limit_per_second=app_config.mail_rate_limit_per_second,
        cycle_lease_seconds=app_config.cycle_lease_seconds
    )


def build_components(app_config: AppConfig, db_manager: MongoDBManager) -> SchedulerComponents:
    """Create the scheduler, subscription service and mailer sharing one database manager."""
    scheduler_config = build_scheduler_config(app_config)

    mailer = ResendMailer(
        api_key=app_config.resend_api_key,
        api_url=app_config.resend_api_url,
        timeout=app_config.request_timeout
    )
    notifier = Notifier(mailer, scheduler_config)
    refresher = SourceRefresher(db_manager, SourceClient(app_config))

    scheduler = SnapshotScheduler(scheduler_config, db_manager, refresher, notifier)
    subscriptions = SubscriptionService(
        db_manager,
        scheduler,
        notifier,
        directory=build_directory(app_config.get_directory_entries())
    )
    return SchedulerComponents(scheduler=scheduler, subscriptions=subscriptions, mailer=mailer)
