"""
Data models for the broadcast pipeline.
Contains data classes and structures used across the system.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from dateutil import parser as date_parser


class RecipientKind(str, Enum):
    USER = 'user'
    CONTACT = 'contact'


class SendStatus(str, Enum):
    SUCCESS = 'success'
    FAILURE = 'failure'


def parse_timestamp(value: Union[int, float, str, None]) -> Optional[datetime]:
    """Parse the platform's epoch seconds (or an ISO string) into aware UTC."""
    if value is None or value == '':
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        parsed = date_parser.isoparse(str(value))
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class Recipient:
    """A platform contact eligible to receive a message. Identity is `id`."""
    id: str
    kind: RecipientKind = RecipientKind.CONTACT
    email: Optional[str] = None
    display_name: Optional[str] = None
    last_active_at: Optional[datetime] = None

    @classmethod
    def from_contact(cls, contact: Dict[str, Any]) -> 'Recipient':
        kind = RecipientKind.USER if contact.get('role') == 'user' else RecipientKind.CONTACT
        return cls(
            id=str(contact['id']),
            kind=kind,
            email=contact.get('email') or None,
            display_name=contact.get('name') or None,
            last_active_at=parse_timestamp(contact.get('last_seen_at')),
        )

    def label(self) -> str:
        parts = [f"User ID: {self.id}"]
        if self.email:
            parts.append(f"Email: {self.email}")
        if self.display_name:
            parts.append(f"Name: {self.display_name}")
        return ', '.join(parts)


@dataclass
class Page:
    """One fetched batch of recipients plus the normalized continuation URL."""
    items: List[Recipient]
    next_cursor: Optional[str] = None
    raw_count: int = 0


@dataclass(frozen=True)
class Segment:
    id: str
    name: str


@dataclass(frozen=True)
class SearchFilter:
    """Generic {field, operator, value} triple for the contacts search API."""
    field: str
    operator: str
    value: Any

    def to_query(self) -> Dict[str, Any]:
        return {'field': self.field, 'operator': self.operator, 'value': self.value}


@dataclass(frozen=True)
class SendOutcome:
    recipient_id: str
    status: SendStatus
    error: Optional[str] = None


@dataclass(frozen=True)
class FailureRecord:
    recipient_id: str
    email: Optional[str]
    error: str


@dataclass
class RunReport:
    """Aggregate outcome of one broadcast run. Never persisted."""
    total_resolved: int = 0
    total_attempted: int = 0
    success_count: int = 0
    failure_count: int = 0
    failures: List[FailureRecord] = field(default_factory=list)
    not_attempted: int = 0
    dry_run: bool = False
    audience_strategy: Optional[str] = None
    image_url: Optional[str] = None
    duration_seconds: float = 0.0

    def record(self, outcome: SendOutcome, email: Optional[str] = None) -> None:
        self.total_attempted += 1
        if outcome.status is SendStatus.SUCCESS:
            self.success_count += 1
        else:
            self.failure_count += 1
            self.failures.append(FailureRecord(outcome.recipient_id, email, outcome.error or 'unknown error'))

    @property
    def success_rate(self) -> float:
        return (self.success_count / max(self.total_attempted, 1)) * 100

    def summary_lines(self, sample_size: int = 5) -> List[str]:
        """Human-readable summary; only the first `sample_size` failures are listed."""
        title = "DRY RUN SUMMARY (no messages were actually sent)" if self.dry_run else "SUMMARY"
        lines = [
            f"====== {title} ======",
            f"Recipients resolved: {self.total_resolved}",
            f"Recipients attempted: {self.total_attempted}",
            f"Successful sends: {self.success_count}",
            f"Failed sends: {self.failure_count}",
            f"Success rate: {self.success_rate:.1f}%",
        ]
        if self.audience_strategy:
            lines.append(f"Audience strategy: {self.audience_strategy}")
        if self.not_attempted:
            lines.append(f"Not attempted (deadline reached): {self.not_attempted}")
        if self.duration_seconds:
            lines.append(f"Duration: {self.duration_seconds:.1f}s")
        if self.failures:
            lines.append("Failed recipients sample:")
            for index, failure in enumerate(self.failures[:sample_size], start=1):
                email = f", Email: {failure.email}" if failure.email else ''
                lines.append(f"  {index}. User ID: {failure.recipient_id}{email}")
                lines.append(f"     Error: {failure.error}")
            if len(self.failures) > sample_size:
                lines.append(f"  ... and {len(self.failures) - sample_size} more failures.")
        return lines
