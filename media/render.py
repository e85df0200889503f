"""
Trending tokens image renderer (Pillow).

Draws up to N token rows (logo, name, 24h volume, 24h change, market cap)
on a 1080x1080 canvas, optionally over a template background.
"""

import io
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

import requests
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from shared.errors import RenderError
from .trending import TrendingToken

logger = logging.getLogger(__name__)

WIDTH = 1080
HEIGHT = 1080
# Content box of the template
BOX_LEFT = 180
BOX_TOP = 200
BOX_WIDTH = 750
BOX_HEIGHT = 840
LOGO_SIZE = 56
LOGO_X = BOX_LEFT + 32
NAME_X = LOGO_X + LOGO_SIZE + 24
RIGHT_X = BOX_LEFT + BOX_WIDTH - 60

BACKGROUND = (17, 17, 17)
TEXT_COLOR = (255, 255, 255)
SUBTEXT_COLOR = (170, 170, 170)
GREEN = (46, 204, 64)
FALLBACK_FONT = 'DejaVuSans.ttf'

LogoLoader = Callable[[str], Image.Image]


@dataclass
class RenderedImage:
    png_bytes: bytes
    tokens: List[TrendingToken]


def format_usd_compact(value: float) -> str:
    """$1.2M / $350K / $999"""
    if value >= 1e6:
        return f"${value / 1e6:.1f}M"
    if value >= 1e3:
        return f"${value / 1e3:.0f}K"
    return f"${value:.0f}"


def format_volume(value: float) -> str:
    return f"${value / 1e6:.1f}M volume"


def format_change(value: float) -> str:
    return f"{'+' if value >= 0 else ''}{value:.2f}%"


def download_logo(url: str, timeout: float = 15) -> Image.Image:
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()
    with Image.open(io.BytesIO(response.content)) as im:
        im.load()
        return im.convert('RGBA')


def _load_font(font_path: str, size: int):
    for candidate in (font_path, FALLBACK_FONT):
        if not candidate:
            continue
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            logger.debug(f"Font {candidate} not available")
    return ImageFont.load_default()


def _circle_logo(logo: Image.Image, size: int) -> Image.Image:
    logo = logo.convert('RGBA').resize((size, size), Image.LANCZOS)
    mask = Image.new('L', (size, size), 0)
    ImageDraw.Draw(mask).ellipse((0, 0, size - 1, size - 1), fill=255)
    logo.putalpha(mask)
    return logo


class ImageRenderer:
    """RenderImage collaborator."""

    def __init__(self, top_n: int = 5, template_path: str = '', font_path: str = '',
                 logo_loader: Optional[LogoLoader] = None):
        self.top_n = top_n
        self.template_path = template_path
        self.font_path = font_path
        self.logo_loader = logo_loader or download_logo

    def _canvas(self) -> Image.Image:
        if self.template_path:
            try:
                with Image.open(self.template_path) as template:
                    return template.convert('RGB').resize((WIDTH, HEIGHT))
            except (OSError, UnidentifiedImageError) as e:
                logger.warning(f"⚠️ Template {self.template_path} unusable, drawing plain background: {e}")
        return Image.new('RGB', (WIDTH, HEIGHT), BACKGROUND)

    def _loadable(self, candidates: List[TrendingToken]):
        """Tokens whose logo downloads, up to top_n, paired with the logo."""
        rows = []
        for token in candidates:
            if len(rows) >= self.top_n:
                break
            try:
                rows.append((token, self.logo_loader(token.image_url)))
            except (requests.exceptions.RequestException, UnidentifiedImageError, OSError, ValueError) as e:
                logger.debug(f"Skipping {token.name}: logo failed to load ({e})")
        return rows

    def render(self, candidates: List[TrendingToken]) -> RenderedImage:
        """
        Draw the featured tokens.

        Raises:
            RenderError: when no candidate has a loadable logo
        """
        rows = self._loadable(candidates)
        if not rows:
            raise RenderError(f"No drawable tokens among {len(candidates)} candidates")

        canvas = self._canvas()
        draw = ImageDraw.Draw(canvas)
        font_large = _load_font(self.font_path, 32)
        font_small = _load_font(self.font_path, 20)

        item_height = BOX_HEIGHT // (self.top_n + 1)
        start_y = BOX_TOP + (BOX_HEIGHT - item_height * len(rows)) // 2

        for index, (token, logo) in enumerate(rows):
            y = start_y + index * item_height
            badge = _circle_logo(logo, LOGO_SIZE)
            canvas.paste(badge, (LOGO_X, y), badge)
            draw.text((NAME_X, y), token.name or 'Unknown', font=font_large, fill=TEXT_COLOR)
            draw.text((NAME_X, y + 38), format_volume(token.volume_24h_usd), font=font_small, fill=SUBTEXT_COLOR)

            change = format_change(token.price_change_24h)
            draw.text((RIGHT_X - draw.textlength(change, font=font_large), y), change, font=font_large, fill=GREEN)

            mcap = format_usd_compact(token.market_cap_usd)
            draw.text((RIGHT_X - draw.textlength(mcap, font=font_small), y + 38), mcap, font=font_small,
                      fill=SUBTEXT_COLOR)

        buffer = io.BytesIO()
        canvas.save(buffer, 'PNG', optimize=True)
        drawn = [token for token, _ in rows]
        logger.info(f"🖼️ Rendered image with {len(drawn)} tokens: {', '.join(t.name for t in drawn)}")
        return RenderedImage(png_bytes=buffer.getvalue(), tokens=drawn)
