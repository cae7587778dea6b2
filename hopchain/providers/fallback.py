"""
Fallback extractor: regex search for literal playlist URLs in a raw page.

Runs whenever the sandbox path comes back empty. Stateless, and it never
raises: any input it cannot read simply yields None.
"""
from __future__ import annotations
import logging
import re
from typing import Optional

from . import unpacker
from .reducer import looks_like_playlist

log = logging.getLogger("hopchain.providers")

PLAYLIST_URL_RE = re.compile(
    r"https?://[^\s\"'<>\\]+?\.(?:m3u8|mpd)(?:[?#][^\s\"'<>\\]*)?(?=[\s\"'<>\\]|$)",
    re.IGNORECASE,
)
FILE_RE = re.compile(r"""file\s*:\s*["']([^"']+)["']""")
FRAGMENT_URL_RE = re.compile(
    r"https?://[^\s\"'<>\\]+/(?:pl|hls|playlist|manifest)/[^\s\"'<>\\]+",
    re.IGNORECASE,
)


def _as_text(raw) -> Optional[str]:
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return bytes(raw).decode("utf-8", errors="replace")
    if isinstance(raw, str):
        return raw
    return None


def _literal(text: str) -> Optional[str]:
    match = PLAYLIST_URL_RE.search(text)
    return match.group(0) if match else None


def _from_packed(text: str) -> Optional[str]:
    for unpacked in unpacker.iter_unpacked(text):
        unpacked = unpacked.replace("\\/", "/")
        if url := _literal(unpacked):
            return url
        for match in FILE_RE.finditer(unpacked):
            if looks_like_playlist(match.group(1)):
                return match.group(1)
    return None


def scan(raw_body) -> Optional[str]:
    text = _as_text(raw_body)
    if not text:
        return None
    text = text.replace("\\/", "/")

    if url := _literal(text):
        return url

    if unpacker.detect(text):
        try:
            if url := _from_packed(text):
                return url
        except Exception as e:
            log.warning(f"packed block could not be unpacked: {type(e).__name__}: {e}")

    for match in FILE_RE.finditer(text):
        value = match.group(1)
        if value.lower().startswith(("http://", "https://", "//")) and looks_like_playlist(value):
            return value

    match = FRAGMENT_URL_RE.search(text)
    return match.group(0) if match else None
