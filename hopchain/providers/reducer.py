"""
Result reducer: picks the playlist URL out of a sandbox trap log.

Decoders conventionally assign their output to ``window[<payload id>]``,
so that write is preferred; otherwise the longest playlist-shaped write wins.
"""
from __future__ import annotations
import re
from typing import Iterable, Mapping, Optional

from .base import TrapKind, TrapLog

PLAYLIST_EXTENSIONS = (".m3u8", ".mpd", ".m3u")
PATH_FRAGMENTS = ("playlist", "/pl/", "/hls/", "master.", "/manifest")

_SCHEME_RE = re.compile(r"^(?:https?:)?//", re.IGNORECASE)
_ALTERNATIVE_SPLIT = re.compile(r"\s+or\s+")


def looks_like_playlist(value, fragments: Iterable[str] = PATH_FRAGMENTS) -> bool:
    if not isinstance(value, str):
        return False
    candidate = value.strip()
    if not candidate:
        return False
    if _SCHEME_RE.match(candidate):
        return True
    lowered = candidate.lower()
    if any(ext in lowered for ext in PLAYLIST_EXTENSIONS):
        return True
    return any(fragment in lowered for fragment in fragments)


def reduce(trap_log: TrapLog, identifier: Optional[str]) -> Optional[str]:
    if identifier:
        named = [e for e in trap_log.of_kind(TrapKind.SET)
                 if e.name == identifier and looks_like_playlist(e.value)]
        if named:
            return named[-1].value.strip()

    best: Optional[str] = None
    for entry in trap_log.writes():
        if looks_like_playlist(entry.value):
            value = entry.value.strip()
            if best is None or len(value) > len(best):
                best = value
    return best


def expand_candidates(raw: str, placeholders: Optional[Mapping[str, str]] = None,
                      excluded_hosts: Iterable[str] = ()) -> list[str]:
    """Split ``a or b`` alternatives, fill CDN placeholders, drop excluded hosts."""
    placeholders = placeholders or {}
    excluded = tuple(excluded_hosts)
    out: list[str] = []
    for part in _ALTERNATIVE_SPLIT.split(raw.strip()):
        url = part.strip().strip("\"'")
        if not url:
            continue
        for placeholder, replacement in placeholders.items():
            url = url.replace(placeholder, replacement)
        if url.startswith("//"):
            url = f"https:{url}"
        if any(host in url for host in excluded):
            continue
        if url not in out:
            out.append(url)
    return out
