#!/usr/bin/env python3
"""
Centralized Configuration for the Daily Trending-Token Broadcast
Single source of truth for credentials, limits, pacing and scheduling.
Values come from environment variables, after an optional .env file is loaded.
"""

import os
import sys
import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from shared.errors import ConfigError

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
LOG_FILE = 'daily-broadcast.log'
DEFAULT_FALLBACK_IMAGE_URL = 'https://cdn.pixabay.com/photo/2021/05/24/09/15/ethereum-6278326_960_720.png'

RUN_MODES = ('all_users', 'active_users', 'test_users')
AUDIENCE_POLICIES = ('segment_then_recency', 'segment_only', 'recency_only')


def _get(env: Mapping[str, str], name: str, default: str = '') -> str:
    value = env.get(name)
    return default if value is None or value.strip() == '' else value.strip()


def _get_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    return _get(env, name, 'true' if default else 'false').lower() in ('1', 'true', 'yes', 'on')


def _get_int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = _get(env, name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _get(env, name, str(default))
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {value}")
    return value


def _get_choice(env: Mapping[str, str], name: str, default: str, choices) -> str:
    value = _get(env, name, default).lower()
    if value not in choices:
        raise ConfigError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


@dataclass
class MessagingConfig:
    """Messaging platform credentials and pagination settings."""
    auth_token: str = ''
    sender_id: str = ''
    base_url: str = 'https://api.intercom.io'
    page_size: int = 150
    max_pages: int = 0  # 0 = unlimited
    pagination_delay: float = 0.3
    timeout_seconds: int = 30
    max_retries: int = 3

    @classmethod
    def load(cls, env: Mapping[str, str]) -> 'MessagingConfig':
        return cls(
            auth_token=_get(env, 'INTERCOM_TOKEN'),
            sender_id=_get(env, 'INTERCOM_ADMIN_ID'),
            base_url=_get(env, 'INTERCOM_BASE_URL', cls.base_url),
            page_size=_get_int(env, 'PAGE_SIZE', cls.page_size, minimum=1),
            max_pages=_get_int(env, 'MAX_PAGES', cls.max_pages),
            pagination_delay=_get_float(env, 'PAGINATION_DELAY', cls.pagination_delay),
        )


@dataclass
class AudienceConfig:
    """Who receives the broadcast."""
    run_mode: str = 'all_users'
    policy: str = 'segment_then_recency'
    activity_days: int = 30
    max_users: int = 0  # 0 = unlimited
    test_user_ids: List[str] = field(default_factory=list)

    @classmethod
    def load(cls, env: Mapping[str, str]) -> 'AudienceConfig':
        test_ids = [i.strip() for i in _get(env, 'TEST_USER_IDS').split(',') if i.strip()]
        return cls(
            run_mode=_get_choice(env, 'RUN_MODE', cls.run_mode, RUN_MODES),
            policy=_get_choice(env, 'ACTIVE_AUDIENCE_POLICY', cls.policy, AUDIENCE_POLICIES),
            activity_days=_get_int(env, 'ACTIVITY_DAYS', cls.activity_days, minimum=1),
            max_users=_get_int(env, 'MAX_USERS', cls.max_users),
            test_user_ids=test_ids,
        )


@dataclass
class DeliveryConfig:
    """Bulk send limits."""
    concurrency: int = 5
    send_delay: float = 0.2
    deadline_seconds: float = 0  # 0 = no deadline

    @classmethod
    def load(cls, env: Mapping[str, str]) -> 'DeliveryConfig':
        return cls(
            concurrency=_get_int(env, 'BATCH_CONCURRENCY', cls.concurrency, minimum=1),
            send_delay=_get_float(env, 'SEND_DELAY', cls.send_delay),
            deadline_seconds=_get_float(env, 'RUN_DEADLINE_SECONDS', cls.deadline_seconds),
        )


@dataclass
class MediaConfig:
    """Market data, rendering and image hosting."""
    imgbb_api_key: str = ''
    s3_bucket: str = ''
    aws_region: str = 'us-east-1'
    fallback_image_url: str = DEFAULT_FALLBACK_IMAGE_URL
    network: str = 'solana'
    top_tokens: int = 5
    template_path: str = ''
    font_path: str = ''
    output_image_path: str = 'output.png'

    @classmethod
    def load(cls, env: Mapping[str, str]) -> 'MediaConfig':
        return cls(
            imgbb_api_key=_get(env, 'IMGBB_API_KEY'),
            s3_bucket=_get(env, 'S3_BUCKET_NAME'),
            aws_region=_get(env, 'AWS_REGION', cls.aws_region),
            fallback_image_url=_get(env, 'FALLBACK_IMAGE_URL', cls.fallback_image_url),
            network=_get(env, 'TRENDING_NETWORK', cls.network),
            top_tokens=_get_int(env, 'TOP_TOKENS', cls.top_tokens, minimum=1),
            template_path=_get(env, 'TEMPLATE_PATH'),
            font_path=_get(env, 'FONT_PATH'),
            output_image_path=_get(env, 'OUTPUT_IMAGE_PATH', cls.output_image_path),
        )


@dataclass
class SchedulerConfig:
    """Daily runner trigger and health endpoint."""
    cron: str = '0 0 * * *'
    port: int = 3000

    @classmethod
    def load(cls, env: Mapping[str, str]) -> 'SchedulerConfig':
        cron = _get(env, 'SCHEDULE_CRON', cls.cron)
        if len(cron.split()) != 5:
            raise ConfigError(f"SCHEDULE_CRON must have 5 fields, got {cron!r}")
        return cls(cron=cron, port=_get_int(env, 'PORT', cls.port, minimum=1))


class SystemConfig:
    """Main configuration class that aggregates all config sections."""

    def __init__(self, messaging: MessagingConfig, audience: AudienceConfig, delivery: DeliveryConfig,
                 media: MediaConfig, scheduler: SchedulerConfig, dead_letter_table: str = '',
                 dry_run: bool = False, debug: bool = False, log_to_file: bool = False):
        self.messaging = messaging
        self.audience = audience
        self.delivery = delivery
        self.media = media
        self.scheduler = scheduler
        self.dead_letter_table = dead_letter_table
        self.dry_run = dry_run
        self.debug = debug
        self.log_to_file = log_to_file

    @classmethod
    def load(cls, env: Optional[Mapping[str, str]] = None, dotenv_path: Optional[str] = None) -> 'SystemConfig':
        """Load every section. Reads .env into os.environ first when no mapping is given."""
        if env is None:
            load_dotenv(dotenv_path)
            env = os.environ
        return cls(
            messaging=MessagingConfig.load(env),
            audience=AudienceConfig.load(env),
            delivery=DeliveryConfig.load(env),
            media=MediaConfig.load(env),
            scheduler=SchedulerConfig.load(env),
            dead_letter_table=_get(env, 'BIGQUERY_DEAD_LETTER_TABLE'),
            dry_run=_get_bool(env, 'DRY_RUN'),
            debug=_get_bool(env, 'DEBUG'),
            log_to_file=_get_bool(env, 'LOG_TO_FILE') or _get_bool(env, 'GITHUB_ACTIONS'),
        )

    def log_config_summary(self):
        """Log current configuration summary. Secrets are truncated."""
        token = self.messaging.auth_token
        logger.info("🔧 System Configuration:")
        logger.info(f"   Dry Run: {self.dry_run}")
        logger.info(f"   Run Mode: {self.audience.run_mode} (policy: {self.audience.policy})")
        logger.info(f"   Token: {token[:5] + '...' if token else 'NOT SET'}")
        logger.info(f"   Sender ID: {self.messaging.sender_id or 'NOT SET'}")
        logger.info(f"   Page Size: {self.messaging.page_size}, Max Pages: {self.messaging.max_pages or 'unlimited'}")
        logger.info(f"   Pagination Delay: {self.messaging.pagination_delay}s")
        logger.info(f"   Concurrency: {self.delivery.concurrency}, Send Delay: {self.delivery.send_delay}s")
        logger.info(f"   Max Users: {self.audience.max_users or 'unlimited'}")
        hosts = [name for name, enabled in (('S3', self.media.s3_bucket), ('ImgBB', self.media.imgbb_api_key))
                 if enabled]
        logger.info(f"   Image Upload: {' -> '.join(hosts + ['fallback image'])}")
        logger.info(f"   Dead Letters: {self.dead_letter_table or 'disabled'}")


def configure_logging(debug: bool = False, log_to_file: bool = False, log_file: str = LOG_FILE):
    """Console logging always, file logging under GitHub Actions or LOG_TO_FILE."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_to_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # urllib3 retry chatter is only useful when debugging
    logging.getLogger('urllib3').setLevel(logging.DEBUG if debug else logging.WARNING)
