"""
Bulk delivery service.

Fans one message body out to many recipients through a bounded worker pool.
Each send is isolated: a failure is recorded in the RunReport and never
stops the remaining sends. Sends are never retried within a run.
"""

import time
import logging
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from shared.api_client import MessagingClient
from shared.errors import SendError
from shared.models import Recipient, RunReport, SendOutcome, SendStatus

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5
PROGRESS_HEAD = 5
PROGRESS_EVERY = 10


@dataclass(frozen=True)
class SendProgress:
    completed: int
    total: int
    recipient_id: str
    ok: bool


ProgressCallback = Callable[[SendProgress], None]


def should_report_progress(completed: int, total: int) -> bool:
    """First few completions, every 10th, and the last one."""
    return completed <= PROGRESS_HEAD or completed % PROGRESS_EVERY == 0 or completed == total


def log_progress(progress: SendProgress):
    status = "✅" if progress.ok else "❌"
    logger.info(f"{status} Progress: {progress.completed}/{progress.total} (user {progress.recipient_id})")


class BulkSender:
    """Sends one html body to every recipient with at most N sends in flight."""

    def __init__(self, client: MessagingClient):
        self.client = client

    def _send_one(self, recipient: Recipient, html_body: str, inter_send_delay: float) -> SendOutcome:
        try:
            self.client.send_to_one(recipient.id, html_body)
            outcome = SendOutcome(recipient.id, SendStatus.SUCCESS)
        except SendError as e:
            outcome = SendOutcome(recipient.id, SendStatus.FAILURE, str(e))
        except Exception as e:
            outcome = SendOutcome(recipient.id, SendStatus.FAILURE, f"{type(e).__name__}: {e}")

        if inter_send_delay > 0:
            time.sleep(inter_send_delay)
        return outcome

    def _complete(self, report: RunReport, outcome: SendOutcome, recipient: Recipient,
                  total: int, progress: Optional[ProgressCallback]):
        report.record(outcome, recipient.email)
        if outcome.status is SendStatus.FAILURE:
            logger.warning(f"❌ Failed to send to {recipient.label()}: {outcome.error}")
        if progress and should_report_progress(report.total_attempted, total):
            progress(SendProgress(report.total_attempted, total, recipient.id, outcome.status is SendStatus.SUCCESS))

    def send(self, recipients: List[Recipient], html_body: str, concurrency_limit: int = DEFAULT_CONCURRENCY,
             dry_run: bool = False, inter_send_delay: float = 0.0,
             progress: Optional[ProgressCallback] = log_progress,
             deadline: Optional[float] = None) -> RunReport:
        """
        Send `html_body` to every recipient.

        Args:
            concurrency_limit: maximum sends in flight at any moment
            dry_run: count every recipient as a success without calling the client
            inter_send_delay: seconds a worker pauses after each real send
            progress: callback for first 5, every 10th and last completion
            deadline: seconds after which unstarted sends are abandoned (None/0 = no deadline)

        Returns:
            RunReport with per-recipient failures in completion order
        """
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")

        total = len(recipients)
        report = RunReport(total_resolved=total, dry_run=dry_run)
        start_time = time.time()

        if dry_run:
            logger.info(f"🧪 DRY RUN: Would send message to {total} users")
            for recipient in recipients:
                self._complete(report, SendOutcome(recipient.id, SendStatus.SUCCESS), recipient, total, progress)
            report.duration_seconds = time.time() - start_time
            return report

        logger.info(f"📤 Sending message to {total} users ({concurrency_limit} concurrent)")
        end_at = start_time + deadline if deadline else None

        with ThreadPoolExecutor(max_workers=concurrency_limit, thread_name_prefix='send') as pool:
            pending: Dict = {
                pool.submit(self._send_one, recipient, html_body, inter_send_delay): recipient
                for recipient in recipients
            }

            while pending:
                timeout = max(0.0, end_at - time.time()) if end_at else None
                done, _ = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)

                if not done:
                    cancelled = [f for f in pending if f.cancel()]
                    report.not_attempted = len(cancelled)
                    for future in cancelled:
                        del pending[future]
                    logger.warning(f"⏰ Run deadline of {deadline}s reached: {len(cancelled)} sends abandoned, "
                                   f"waiting for {len(pending)} in flight")
                    end_at = None
                    continue

                for future in done:
                    recipient = pending.pop(future)
                    self._complete(report, future.result(), recipient, total, progress)

        report.duration_seconds = time.time() - start_time
        logger.info(f"📊 Send complete: {report.success_count} succeeded, {report.failure_count} failed "
                    f"in {report.duration_seconds:.1f}s")
        return report
