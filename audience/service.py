"""
Audience resolution service.

Resolves the "active" audience through an ordered fallback chain:
the named `active` segment first, then a last-seen timestamp search.
There is no fallback to the full user list; when every
strategy fails the run is aborted with AudienceResolutionError.
"""

import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from shared.api_client import MessagingClient
from shared.errors import AudienceResolutionError, BroadcastError
from shared.models import Recipient, SearchFilter

logger = logging.getLogger(__name__)

ACTIVE_SEGMENT_NAME = 'active'
SECONDS_PER_DAY = 86400


class AudiencePolicy(str, Enum):
    SEGMENT_THEN_RECENCY = 'segment_then_recency'
    SEGMENT_ONLY = 'segment_only'
    RECENCY_ONLY = 'recency_only'


@dataclass
class StrategyResult:
    """Outcome of one strategy: recipients on success, a reason otherwise."""
    strategy: str
    recipients: List[Recipient] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, strategy: str, error: str) -> 'StrategyResult':
        return cls(strategy=strategy, error=error)


@dataclass
class ResolvedAudience:
    recipients: List[Recipient]
    strategy: str


def compute_cutoff(activity_days: int, now: float) -> int:
    """Epoch seconds `activity_days` before `now`."""
    return int(now) - activity_days * SECONDS_PER_DAY


def cap_recipients(recipients: List[Recipient], max_recipients: int) -> List[Recipient]:
    """First `max_recipients` recipients in order; 0 means no cap."""
    if max_recipients and max_recipients > 0 and len(recipients) > max_recipients:
        logger.info(f"🧪 Limiting to {max_recipients} of {len(recipients)} users (MAX_USERS)")
        return recipients[:max_recipients]
    return recipients


class AudienceResolver:
    """Runs the active-audience strategies in order and returns the first success."""

    def __init__(self, client: MessagingClient, policy: AudiencePolicy = AudiencePolicy.SEGMENT_THEN_RECENCY,
                 clock: Callable[[], float] = time.time, segment_name: str = ACTIVE_SEGMENT_NAME):
        self.client = client
        self.policy = AudiencePolicy(policy)
        self.clock = clock
        self.segment_name = segment_name.lower()

    def _strategies(self, activity_days: int) -> Sequence[Callable[[], StrategyResult]]:
        segment = self.by_segment
        recency = lambda: self.by_recency(activity_days)  # noqa: E731
        if self.policy is AudiencePolicy.SEGMENT_ONLY:
            return [segment]
        if self.policy is AudiencePolicy.RECENCY_ONLY:
            return [recency]
        return [segment, recency]

    def by_segment(self) -> StrategyResult:
        try:
            segments = self.client.list_segments()
        except BroadcastError as e:
            return StrategyResult.failed('segment', f"segment listing failed: {e}")

        match = next((s for s in segments if s.name.lower() == self.segment_name), None)
        if match is None:
            return StrategyResult.failed('segment', f"no segment named '{self.segment_name}'")

        logger.info(f"Found Active segment with ID: {match.id}, using that to fetch active users")
        try:
            recipients = self.client.search_recipients(SearchFilter('segment_id', '=', match.id))
        except BroadcastError as e:
            return StrategyResult.failed('segment', f"segment search failed: {e}")
        return StrategyResult('segment', recipients)

    def by_recency(self, activity_days: int) -> StrategyResult:
        cutoff = compute_cutoff(activity_days, self.clock())
        logger.info(f"Searching for users active in the last {activity_days} days (last_seen_at > {cutoff})")
        try:
            recipients = self.client.search_recipients(SearchFilter('last_seen_at', '>', cutoff))
        except BroadcastError as e:
            return StrategyResult.failed('recency', f"last_seen_at search failed: {e}")
        return StrategyResult('recency', recipients)

    def resolve(self, activity_days: int) -> ResolvedAudience:
        """
        Resolve the active audience.

        Returns:
            ResolvedAudience with the recipients and the name of the strategy that produced them.
            An empty audience is a valid result.

        Raises:
            AudienceResolutionError: when every strategy of the policy failed
        """
        attempts = []
        for strategy in self._strategies(activity_days):
            result = strategy()
            if result.ok:
                logger.info(f"✅ Active audience resolved via {result.strategy}: {len(result.recipients)} users")
                return ResolvedAudience(result.recipients, result.strategy)
            logger.warning(f"⚠️ Audience strategy '{result.strategy}' unavailable: {result.error}")
            attempts.append(f"{result.strategy}: {result.error}")

        logger.error(f"❌ All audience strategies failed ({self.policy.value})")
        raise AudienceResolutionError(attempts)
