"""
In-app message body for the daily trending tokens update.
"""

from datetime import datetime, timezone
from html import escape
from typing import List, Optional

from .render import format_change, format_usd_compact
from .trending import TrendingToken

TITLE = "Your Daily Trending Tokens Update"
CLOSING_LINE = "Track these tokens and more on our platform daily!"


def format_price(price: float) -> str:
    if price >= 1:
        return f"${price:,.2f}"
    if price >= 0.01:
        return f"${price:.4f}"
    return f"${price:.8f}"


def format_date(moment: datetime) -> str:
    """Monday, January 6, 2025"""
    return f"{moment:%A}, {moment:%B} {moment.day}, {moment.year}"


def _summary_table(tokens: List[TrendingToken]) -> str:
    cell = 'style="padding:4px 8px; border-bottom:1px solid #eee;"'
    rows = []
    for index, token in enumerate(tokens, start=1):
        rows.append(
            f'<tr><td {cell}>{index}. {escape(token.name)}</td>'
            f'<td {cell}>{escape(format_price(token.price_usd))}</td>'
            f'<td {cell}>{escape(format_change(token.price_change_24h))}</td>'
            f'<td {cell}>{escape(format_usd_compact(token.market_cap_usd))}</td></tr>'
        )
    header = ''.join(f'<th {cell}>{title}</th>' for title in ('Token', 'Price', '24h', 'Market Cap'))
    return (
        '<table style="width:100%; border-collapse:collapse; font-size:13px;">'
        f'<tr>{header}</tr>{"".join(rows)}</table>'
    )


def build_message(image_url: str, tokens: List[TrendingToken], top_n: int = 5,
                  now: Optional[datetime] = None, test_banner: bool = False) -> str:
    """HTML body: heading, image, top-N table, closing line; optional test banner on top."""
    now = now or datetime.now(timezone.utc)
    parts = []
    if test_banner:
        parts.append(
            '<div style="background-color:#ffe6e6; padding:10px; border-radius:5px; margin-bottom:15px;">'
            f'<strong>TEST MODE NOTIFICATION</strong> - Sent at {escape(now.strftime("%Y-%m-%d %H:%M:%S %Z"))}'
            '</div>'
        )
    parts.append(f'<h2 style="color:#333; font-size:18px; margin-bottom:10px;">{TITLE}</h2>')
    parts.append(f'<p style="margin-bottom:15px;">Here are the trending tokens for {escape(format_date(now))}:</p>')
    parts.append(
        '<div style="text-align:center; margin:15px 0;">'
        f'<img src="{escape(image_url, quote=True)}" alt="Trending Tokens Today" '
        'style="max-width:100%; width:300px; border-radius:8px; border:1px solid #eee;" />'
        '</div>'
    )
    if tokens and top_n > 0:
        parts.append(_summary_table(tokens[:top_n]))
    parts.append(f'<p style="margin-top:15px;">{CLOSING_LINE}</p>')
    return '\n'.join(parts)
