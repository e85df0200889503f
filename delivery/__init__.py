"""Bulk message delivery."""

from .service import BulkSender, SendProgress

__all__ = ['BulkSender', 'SendProgress']
