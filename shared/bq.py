"""
BigQuery dead-letter log for failed broadcast sends.

Rows land in the table named by BIGQUERY_DEAD_LETTER_TABLE
(`project.dataset.table`). Writing is best effort: a failed insert is
logged and never fails the run.
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import FailureRecord

logger = logging.getLogger(__name__)


class DeadLetterLog:
    """Records failed sends so they can be inspected or replayed later."""

    def __init__(self, table_id: str, client: Optional[Any] = None, phase: str = 'broadcast'):
        self.table_id = table_id
        self.phase = phase
        self._client = client

    @property
    def client(self):
        if self._client is None:
            from google.cloud import bigquery  # lazy import, credentials resolved on first use
            project = self.table_id.split('.')[0] if self.table_id.count('.') == 2 else None
            self._client = bigquery.Client(project=project)
        return self._client

    def build_rows(self, failures: List[FailureRecord], run_id: str) -> List[Dict[str, Any]]:
        occurred_at = datetime.now(timezone.utc).isoformat()
        return [
            {
                'id': str(uuid.uuid4()),
                'occurred_at': occurred_at,
                'phase': self.phase,
                'recipient_id': failure.recipient_id,
                'email': failure.email,
                'error_text': failure.error[:1000],
                'run_id': run_id,
            }
            for failure in failures
        ]

    def record_failures(self, failures: List[FailureRecord], run_id: str, dry_run: bool = False) -> int:
        """Insert one row per failure. Returns the number of rows written."""
        if not failures:
            return 0
        if dry_run:
            logger.info(f"🧪 DRY RUN: Would log {len(failures)} failed sends to {self.table_id}")
            return 0

        rows = self.build_rows(failures, run_id)
        try:
            errors = self.client.insert_rows_json(self.table_id, rows)
        except Exception as e:
            logger.error(f"Failed to log dead letters: {e}")
            return 0

        if errors:
            logger.error(f"Failed to log dead letters: {errors}")
            return 0

        logger.info(f"📝 Logged {len(rows)} failed sends to {self.table_id}")
        return len(rows)
