#!/usr/bin/env python3
"""
Daily Runner Service
Runs the trending tokens broadcast on a cron schedule (UTC) and exposes a
small JSON health endpoint.

Usage:
    python daily_runner.py          # production: SCHEDULE_CRON, default midnight UTC
    python daily_runner.py --test   # every minute, test users only, first run immediately
"""

import sys
import logging
import argparse
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from flask import Flask, jsonify

from broadcast_once import RunMode, build_run
from media.trending import TokenInfoCache
from shared.errors import BroadcastError, ConfigError
from shared.models import RunReport
from shared_config import SystemConfig, configure_logging

logger = logging.getLogger(__name__)

JOB_ID = 'daily-broadcast'


class RunGuard:
    """Non-blocking single-run lock plus the state shown on the health page."""

    def __init__(self):
        self._lock = threading.Lock()
        self.last_run: Optional[datetime] = None
        self.last_result: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def run(self, job: Callable[[], RunReport]) -> Optional[RunReport]:
        """Run `job` unless another run holds the lock. Errors are logged, never raised."""
        if not self._lock.acquire(blocking=False):
            logger.warning("⚠️ Previous broadcast still running, skipping this trigger")
            return None
        try:
            report = job()
            self.last_result = (f"ok: {report.success_count} sent, {report.failure_count} failed"
                                f"{' (dry run)' if report.dry_run else ''}")
            return report
        except BroadcastError as e:
            self.last_result = f"error: {type(e).__name__}: {e}"
            logger.error(f"❌ Broadcast failed: {type(e).__name__}: {e}")
        except Exception as e:
            self.last_result = f"error: {type(e).__name__}: {e}"
            logger.exception(f"❌ Unexpected error in broadcast: {e}")
        finally:
            self.last_run = datetime.now(timezone.utc)
            self._lock.release()
        return None


def create_health_app(guard: RunGuard, mode: str, next_run: Callable[[], Optional[datetime]]) -> Flask:
    app = Flask(__name__)

    @app.route('/')
    def health():
        upcoming = next_run()
        return jsonify({
            'status': 'ok',
            'mode': mode,
            'running': guard.running,
            'last_run': guard.last_run.isoformat() if guard.last_run else None,
            'last_result': guard.last_result,
            'next_run': upcoming.isoformat() if upcoming else None,
        })

    return app


def build_scheduler(job: Callable[[], None], cron: str, test_mode: bool) -> BlockingScheduler:
    scheduler = BlockingScheduler(timezone='UTC')
    if test_mode:
        trigger = IntervalTrigger(minutes=1, timezone='UTC')
        first_run = datetime.now(timezone.utc)
    else:
        trigger = CronTrigger.from_crontab(cron, timezone='UTC')
        first_run = None
    kwargs = {'next_run_time': first_run} if first_run else {}
    scheduler.add_job(job, trigger, id=JOB_ID, max_instances=1, coalesce=True, **kwargs)
    return scheduler


def _start_health_server(app: Flask, port: int):
    thread = threading.Thread(
        target=lambda: app.run(host='0.0.0.0', port=port, debug=False, use_reloader=False),
        name='health-server',
        daemon=True,
    )
    thread.start()
    logger.info(f"🌐 Health endpoint listening on port {port}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Scheduled daily trending tokens broadcast')
    parser.add_argument('--test', action='store_true',
                        help='Run every minute against TEST_USER_IDS only, starting now')
    args = parser.parse_args(argv)

    try:
        config = SystemConfig.load()
    except ConfigError as e:
        configure_logging()
        logger.error(f"❌ Configuration error: {e}")
        return 1

    configure_logging(debug=config.debug, log_to_file=config.log_to_file)
    mode = RunMode.TEST_USERS if args.test else RunMode(config.audience.run_mode)
    config.log_config_summary()

    guard = RunGuard()
    # shared by every run of this process
    cache = TokenInfoCache()

    def job():
        guard.run(lambda: build_run(config, cache=cache).run(mode))

    scheduler = build_scheduler(job, config.scheduler.cron, args.test)

    def next_run():
        scheduled = scheduler.get_job(JOB_ID)
        return getattr(scheduled, 'next_run_time', None)

    _start_health_server(create_health_app(guard, 'test' if args.test else 'production', next_run),
                         config.scheduler.port)

    schedule = 'every minute (TEST MODE)' if args.test else f"cron '{config.scheduler.cron}' UTC"
    logger.info(f"⏰ Scheduler started: {schedule}, mode {mode.value}")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("👋 Scheduler stopped")
    return 0


if __name__ == '__main__':
    sys.exit(main())
