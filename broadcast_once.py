#!/usr/bin/env python3
"""
Daily Trending Tokens Broadcast - single run
Renders today's trending tokens image, publishes it and sends it as an in-app
message to every user, the active users, or a fixed list of test users.

Usage:
    python broadcast_once.py [--mode all_users|active_users|test_users] [--dry-run]
                             [--days N] [--max-users N] [--max-pages N] [--concurrency N] [--debug]
"""

import sys
import time
import uuid
import logging
import argparse
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from shared.api_client import MessagingClient
from shared.bq import DeadLetterLog
from shared.errors import AudienceResolutionError, ConfigError, RenderError, TransportError, UploadError
from shared.models import Recipient, RecipientKind, RunReport
from audience.service import AudiencePolicy, AudienceResolver, cap_recipients
from delivery.service import BulkSender
from media.message import build_message
from media.render import ImageRenderer, RenderedImage
from media.trending import TokenInfoCache, TrendingToken, TrendingTokenFetcher, select_featured_tokens
from media.upload import build_uploader
from shared_config import DEFAULT_FALLBACK_IMAGE_URL, RUN_MODES, SystemConfig, configure_logging

logger = logging.getLogger(__name__)


class RunMode(str, Enum):
    ALL_USERS = 'all_users'
    ACTIVE_USERS = 'active_users'
    TEST_USERS = 'test_users'


@dataclass
class RunSettings:
    """Per-run knobs, already resolved from config and CLI flags."""
    dry_run: bool = False
    activity_days: int = 30
    max_users: int = 0
    concurrency: int = 5
    send_delay: float = 0.2
    deadline_seconds: float = 0
    top_n: int = 5
    fallback_image_url: str = DEFAULT_FALLBACK_IMAGE_URL
    test_user_ids: List[str] = field(default_factory=list)
    output_image_path: str = ''


class BroadcastRun:
    """Sequences one broadcast: image, upload, audience, send, summary."""

    def __init__(self, client: MessagingClient, fetch_tokens: Callable[[], List[TrendingToken]],
                 render: Callable[[List[TrendingToken]], RenderedImage], upload: Callable[[bytes], str],
                 settings: Optional[RunSettings] = None, resolver: Optional[AudienceResolver] = None,
                 sender: Optional[BulkSender] = None, dead_letters: Optional[DeadLetterLog] = None):
        self.client = client
        self.fetch_tokens = fetch_tokens
        self.render = render
        self.upload = upload
        self.settings = settings or RunSettings()
        self.resolver = resolver or AudienceResolver(client)
        self.sender = sender or BulkSender(client)
        self.dead_letters = dead_letters
        self.run_id = uuid.uuid4().hex[:12]

    def prepare_image(self) -> RenderedImage:
        tokens = self.fetch_tokens()
        candidates = select_featured_tokens(tokens)
        logger.info(f"🪙 {len(candidates)} of {len(tokens)} trending tokens qualify for the image")
        rendered = self.render(candidates)
        if self.settings.output_image_path:
            try:
                with open(self.settings.output_image_path, 'wb') as f:
                    f.write(rendered.png_bytes)
                logger.info(f"💾 Image saved as {self.settings.output_image_path}")
            except OSError as e:
                logger.warning(f"⚠️ Could not save image to {self.settings.output_image_path}: {e}")
        return rendered

    def publish_image(self, rendered: RenderedImage) -> str:
        try:
            return self.upload(rendered.png_bytes)
        except UploadError as e:
            logger.warning(f"⚠️ Image upload failed, using fallback image: {e}")
            return self.settings.fallback_image_url

    def resolve_recipients(self, mode: RunMode):
        """Returns (recipients, strategy name)."""
        if mode is RunMode.TEST_USERS:
            ids = self.settings.test_user_ids
            if not ids:
                logger.warning("⚠️ TEST MODE: no TEST_USER_IDS configured")
            logger.info(f"🧪 TEST MODE: sending to {len(ids)} test users only")
            return [Recipient(id=i, kind=RecipientKind.USER) for i in ids], 'test_users'

        if mode is RunMode.ACTIVE_USERS:
            resolved = self.resolver.resolve(self.settings.activity_days)
            recipients, strategy = resolved.recipients, resolved.strategy
        else:
            recipients, strategy = self.client.list_all_recipients(), 'all_users'
        return cap_recipients(recipients, self.settings.max_users), strategy

    def run(self, mode: RunMode = RunMode.ALL_USERS) -> RunReport:
        """
        Execute one broadcast.

        Raises:
            RenderError: no image could be produced
            AudienceResolutionError: active audience could not be determined
            TransportError: the full user listing failed
        """
        mode = RunMode(mode)
        start_time = time.time()
        logger.info("🚀 STARTING DAILY TRENDING TOKENS BROADCAST")
        logger.info(f"Config - Mode: {mode.value}, Dry Run: {self.settings.dry_run}, "
                    f"Max Users: {self.settings.max_users or 'unlimited'}, Run ID: {self.run_id}")

        # Step 1: Image
        rendered = self.prepare_image()

        # Step 2: Publish
        image_url = self.publish_image(rendered)

        # Step 3: Audience
        recipients, strategy = self.resolve_recipients(mode)
        logger.info(f"👥 {len(recipients)} recipients resolved ({strategy})")

        if not recipients:
            report = RunReport(dry_run=self.settings.dry_run, audience_strategy=strategy, image_url=image_url)
            report.duration_seconds = time.time() - start_time
            logger.info("ℹ️ No recipients to message, nothing to send")
            self.log_summary(report)
            return report

        # Step 4: Send
        body = build_message(image_url, rendered.tokens, self.settings.top_n,
                             test_banner=mode is RunMode.TEST_USERS)
        report = self.sender.send(
            recipients,
            body,
            concurrency_limit=self.settings.concurrency,
            dry_run=self.settings.dry_run,
            inter_send_delay=self.settings.send_delay,
            deadline=self.settings.deadline_seconds or None,
        )
        report.total_resolved = len(recipients)
        report.audience_strategy = strategy
        report.image_url = image_url
        report.duration_seconds = time.time() - start_time

        # Step 5: Summary and dead letters
        self.log_summary(report)
        if self.dead_letters and report.failures:
            self.dead_letters.record_failures(report.failures, self.run_id, dry_run=report.dry_run)
        return report

    @staticmethod
    def log_summary(report: RunReport):
        logger.info("=" * 60)
        for line in report.summary_lines():
            logger.info(line)
        logger.info("=" * 60)


def build_run(config: SystemConfig, client: Optional[MessagingClient] = None,
              cache: Optional[TokenInfoCache] = None) -> BroadcastRun:
    """Wire a BroadcastRun from configuration."""
    messaging = config.messaging
    client = client or MessagingClient(
        auth_token=messaging.auth_token,
        sender_id=messaging.sender_id,
        page_size=messaging.page_size,
        max_pages=messaging.max_pages,
        inter_request_delay=messaging.pagination_delay,
        verbose_logging=config.debug,
        base_url=messaging.base_url,
        timeout=messaging.timeout_seconds,
        max_retries=messaging.max_retries,
    )
    fetcher = TrendingTokenFetcher(network=config.media.network, cache=cache)
    renderer = ImageRenderer(top_n=config.media.top_tokens, template_path=config.media.template_path,
                             font_path=config.media.font_path)
    uploader = build_uploader(config.media.imgbb_api_key, config.media.s3_bucket, config.media.aws_region)
    settings = RunSettings(
        dry_run=config.dry_run,
        activity_days=config.audience.activity_days,
        max_users=config.audience.max_users,
        concurrency=config.delivery.concurrency,
        send_delay=config.delivery.send_delay,
        deadline_seconds=config.delivery.deadline_seconds,
        top_n=config.media.top_tokens,
        fallback_image_url=config.media.fallback_image_url,
        test_user_ids=list(config.audience.test_user_ids),
        output_image_path=config.media.output_image_path,
    )
    dead_letters = DeadLetterLog(config.dead_letter_table) if config.dead_letter_table else None
    return BroadcastRun(
        client=client,
        fetch_tokens=fetcher.fetch,
        render=renderer.render,
        upload=uploader.upload,
        settings=settings,
        resolver=AudienceResolver(client, AudiencePolicy(config.audience.policy)),
        dead_letters=dead_letters,
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Send the daily trending tokens message',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--mode', choices=RUN_MODES, default=None,
                        help='Audience to message (default: RUN_MODE or all_users)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Resolve the audience and log what would be sent without sending')
    parser.add_argument('--debug', action='store_true',
                        help='Verbose per-page and per-send logging')
    parser.add_argument('--days', type=int, default=None,
                        help='Activity window in days for active_users mode')
    parser.add_argument('--max-users', type=int, default=None,
                        help='Send to at most N users (0 = unlimited)')
    parser.add_argument('--max-pages', type=int, default=None,
                        help='Fetch at most N pages per listing (0 = unlimited)')
    parser.add_argument('--concurrency', type=int, default=None,
                        help='Sends in flight at once')
    return parser.parse_args(argv)


def apply_overrides(config: SystemConfig, args: argparse.Namespace) -> SystemConfig:
    """CLI flags win over environment values."""
    if args.mode:
        config.audience.run_mode = args.mode
    if args.dry_run:
        config.dry_run = True
    if args.debug:
        config.debug = True
    if args.days is not None:
        if args.days < 1:
            raise ConfigError(f"--days must be >= 1, got {args.days}")
        config.audience.activity_days = args.days
    if args.max_users is not None:
        config.audience.max_users = max(0, args.max_users)
    if args.max_pages is not None:
        config.messaging.max_pages = max(0, args.max_pages)
    if args.concurrency is not None:
        if args.concurrency < 1:
            raise ConfigError(f"--concurrency must be >= 1, got {args.concurrency}")
        config.delivery.concurrency = args.concurrency
    return config


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        config = apply_overrides(SystemConfig.load(), args)
    except ConfigError as e:
        configure_logging()
        logger.error(f"❌ Configuration error: {e}")
        return 1

    configure_logging(debug=config.debug, log_to_file=config.log_to_file)
    config.log_config_summary()

    try:
        build_run(config).run(RunMode(config.audience.run_mode))
    except (ConfigError, AudienceResolutionError, RenderError, TransportError) as e:
        logger.error(f"❌ Broadcast aborted: {type(e).__name__}: {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
