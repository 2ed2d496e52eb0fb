"""URL helpers for callers rendering resolved images."""

from __future__ import annotations

import time
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def cache_busted(url: str, now: float | None = None) -> str:
    """Append a `t=<epoch ms>` query parameter, replacing any earlier one.

    Placeholders are overwritten in place, so the URL alone does not change
    when the content does. The busted URL is for display only and is never
    written back to a reference holder.
    """
    stamp = int((time.time() if now is None else now) * 1000)
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "t"]
    query.append(("t", str(stamp)))
    return urlunsplit(parts._replace(query=urlencode(query)))
