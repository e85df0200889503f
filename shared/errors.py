"""
Error types for the broadcast pipeline.

Listing errors are fatal to the listing call that raised them, send errors
are isolated per recipient by the bulk sender.
"""

from typing import List, Optional


class BroadcastError(Exception):
    """Base class for every error raised by this project."""


class ConfigError(BroadcastError):
    """A required setting is missing or malformed."""


class TransportError(BroadcastError):
    """Non-2xx response (or network failure) from a listing/search/segment call."""

    def __init__(self, status_code: Optional[int], body: str, url: str = ''):
        self.status_code = status_code
        self.body = body
        self.url = url
        status = status_code if status_code is not None else 'network'
        super().__init__(f"Messaging API error ({status}) for {url or 'request'}: {body[:300]}")


class SendError(BroadcastError):
    """One recipient's message could not be delivered."""

    def __init__(self, recipient_id: str, status_code: Optional[int], body: str):
        self.recipient_id = recipient_id
        self.status_code = status_code
        self.body = body
        super().__init__(f"Messaging API error ({status_code}): {body[:300]}")


class AudienceResolutionError(BroadcastError):
    """Every active-audience strategy failed."""

    def __init__(self, attempts: List[str]):
        self.attempts = attempts
        super().__init__("Could not resolve active audience: " + "; ".join(attempts))


class UploadError(BroadcastError):
    """Image hosting upload failed."""


class RenderError(BroadcastError):
    """The digest image could not be produced."""


class MarketDataError(RenderError):
    """Trending token data could not be fetched."""
