"""
Shared utilities for the daily broadcast.
Contains the messaging client, models and error types used by every stage.
"""

from .models import Recipient, Page, Segment, SearchFilter, SendOutcome, SendStatus, RunReport
from .errors import (
    BroadcastError, ConfigError, TransportError, SendError,
    AudienceResolutionError, UploadError, RenderError, MarketDataError,
)
from .api_client import MessagingClient

__all__ = [
    'Recipient',
    'Page',
    'Segment',
    'SearchFilter',
    'SendOutcome',
    'SendStatus',
    'RunReport',
    'BroadcastError',
    'ConfigError',
    'TransportError',
    'SendError',
    'AudienceResolutionError',
    'UploadError',
    'RenderError',
    'MarketDataError',
    'MessagingClient',
]
