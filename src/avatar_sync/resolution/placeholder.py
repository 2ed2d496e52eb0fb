"""Placeholder avatar synthesis.

When nothing live exists anywhere, render a small SVG: a solid square in a
color picked from the person's name, with their initials centered on it.
The same name always yields the same bytes, so repeated synthesis is an
idempotent overwrite of `profile.svg`.
"""

from __future__ import annotations

import logging
from xml.sax.saxutils import escape

from avatar_sync.clients.storage import BlobStoreClient
from avatar_sync.config import settings
from avatar_sync.resolution.types import PersonIdentity

logger = logging.getLogger(__name__)

PLACEHOLDER_FILENAME = "profile.svg"
PLACEHOLDER_CONTENT_TYPE = "image/svg+xml"

AVATAR_COLORS = (
    "#3AB5E9",  # Blue
    "#E96951",  # Salmon
    "#A8BF87",  # Green
    "#F7DBA7",  # Yellow
    "#0E5D7F",  # Navy
)
DEFAULT_AVATAR_COLOR = AVATAR_COLORS[0]
DEFAULT_INITIALS = "U"


def avatar_color(name: str | None) -> str:
    """Pick a palette color from a character-sum hash of the name."""
    if not name:
        return DEFAULT_AVATAR_COLOR
    return AVATAR_COLORS[sum(ord(ch) for ch in name) % len(AVATAR_COLORS)]


def user_initials(first_name: str | None, last_name: str | None) -> str:
    first = (first_name or "").strip()
    last = (last_name or "").strip()
    if not first and not last:
        return DEFAULT_INITIALS
    return (first[:1] + last[:1]).upper()


def display_name(person: PersonIdentity) -> str | None:
    name = " ".join(p for p in (person.first_name, person.last_name) if p)
    return name or None


def _text_color(background: str) -> str:
    r, g, b = (int(background[i : i + 2], 16) for i in (1, 3, 5))
    # Perceived brightness (ITU-R BT.601)
    return "#1F2937" if (0.299 * r + 0.587 * g + 0.114 * b) > 186 else "#FFFFFF"


def render_placeholder_svg(initials: str, color: str, size: int | None = None) -> bytes:
    size = size or settings.placeholder_size
    font_size = size * 0.4
    svg = (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{size}" height="{size}" '
        f'viewBox="0 0 {size} {size}">'
        f'<rect width="{size}" height="{size}" fill="{color}"/>'
        f'<text x="50%" y="50%" dominant-baseline="central" text-anchor="middle" '
        f'font-family="Helvetica, Arial, sans-serif" font-size="{font_size:g}" '
        f'fill="{_text_color(color)}">{escape(initials)}</text>'
        f"</svg>"
    )
    return svg.encode("utf-8")


class PlaceholderSynthesizer:
    """Renders and uploads a placeholder for a person.

    Usage:
        synthesizer = PlaceholderSynthesizer(storage)
        url = await synthesizer.synthesize(person)

    Upload failures propagate as StorageUploadFailed: this is the last
    fallback, so the caller has to know it did not work.
    """

    def __init__(self, storage: BlobStoreClient) -> None:
        self._storage = storage

    def render(self, person: PersonIdentity) -> bytes:
        return render_placeholder_svg(
            user_initials(person.first_name, person.last_name),
            avatar_color(display_name(person)),
        )

    async def synthesize(self, person: PersonIdentity) -> str:
        path = f"{person.upload_key}/{PLACEHOLDER_FILENAME}"
        url = await self._storage.upload(path, self.render(person), PLACEHOLDER_CONTENT_TYPE)
        logger.info("[PLACEHOLDER] %s → %s", person.raw, url)
        return url
