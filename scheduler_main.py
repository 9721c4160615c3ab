"""
Standalone entry point for the snapshot scheduler.

Usage:
    python scheduler_main.py          # daemon: keep the monthly timer while subscribers exist,
                                      # resyncing it from the subscriber store periodically
    python scheduler_main.py --once   # run one refresh/compare/notify/rotate cycle now and exit
"""

import asyncio
import signal
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

import structlog
from utilities.logger import setup_logging
from utilities.config import config
from scheduler.bootstrap import build_components, build_db_manager


async def main():
    """Start the scheduler in the requested mode."""
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )
    logger = structlog.get_logger(__name__)

    run_once = False
    if len(sys.argv) > 1:
        if sys.argv[1] == '--once':
            run_once = True
        else:
            print(f"Unknown argument: {sys.argv[1]}")
            print("Usage: python scheduler_main.py [--once]")
            sys.exit(1)

    db_manager = build_db_manager(config)
    components = build_components(config, db_manager)
    scheduler = components.scheduler

    try:
        await db_manager.connect()

        if run_once:
            logger.info("Running in RUN ONCE MODE - single cycle")
            result = await scheduler.trigger_now()
            if result.skipped:
                logger.warning("Another process is running a snapshot cycle, nothing done")
                return
            if not result.success:
                logger.error(
                    "Snapshot cycle failed",
                    failed_stage=result.failed_stage.value if result.failed_stage else None,
                    errors=result.errors
                )
                sys.exit(1)
            return

        active = await components.subscriptions.sync_timer()
        logger.info(
            "Running in DAEMON MODE",
            active_subscribers=active,
            timer_active=scheduler.timer_active,
            day=config.schedule_day,
            hour=config.schedule_hour,
            minute=config.schedule_minute,
            timezone=config.timezone
        )

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, stop_event.set)

        # Subscriptions also change through the API process; follow the store
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=config.timer_sync_interval_seconds)
            except asyncio.TimeoutError:
                active = await components.subscriptions.sync_timer()
                logger.debug("Subscription timer resynced", active_subscribers=active,
                             timer_active=scheduler.timer_active)

        logger.info("Received shutdown signal, stopping scheduler")

    except Exception as e:
        logger.error("Scheduler failed", error=str(e))
        sys.exit(1)

    finally:
        scheduler.shutdown()
        await components.mailer.close()
        await db_manager.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
