"""
Payload locator: finds the hidden encoded container on the final hop and
the decoder snippet that reads it.

Typical final page:
    <div id="xTyBxQyGTA" style="display:none;">...long encoded string...</div>
    <script src="/sV05kUlNvOdOxvtC/2a8c...e1.js"></script>
"""
from __future__ import annotations
import logging
import re
from typing import Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from .base import DecoderRef, PayloadBundle

log = logging.getLogger("hopchain.providers")

DEFAULT_MIN_PAYLOAD = 8

ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
MD5_SCRIPT_RE = re.compile(r"^/[A-Za-z0-9]+/[a-f0-9]{32}\.js(?:\?.*)?$")
MD5_RE = re.compile(r"[a-f0-9]{32}")
WINDOW_ASSIGN_RE = re.compile(r"window\[['\"]?\w+['\"]?\]\s*=")
LIBRARY_HINTS = ("jquery", "playerjs", "player", "hls", "dash")


def _is_hidden(tag) -> bool:
    if tag.has_attr("hidden"):
        return True
    style = (tag.get("style") or "").replace(" ", "").lower()
    return "display:none" in style or "visibility:hidden" in style


def _hidden_container(soup: BeautifulSoup, min_length: int) -> Optional[tuple[str, str]]:
    for tag in soup.find_all(id=True):
        if tag.name in ("script", "style", "template"):
            continue
        ident = tag.get("id")
        if not isinstance(ident, str) or not ID_RE.match(ident) or not _is_hidden(tag):
            continue
        content = tag.get_text().strip()
        # short strings are labels / counters, not payloads
        if len(content) >= min_length:
            return ident, content
    return None


def _inline_decoder(soup: BeautifulSoup, identifier: str) -> tuple[Optional[str], Optional[str]]:
    """(script naming the identifier, first script assigning window[...])"""
    weak = None
    for script in soup.find_all("script"):
        if script.get("src"):
            continue
        code = script.string or script.get_text()
        if not code or not code.strip():
            continue
        if identifier in code and ("getElementById" in code or "window[" in code
                                   or "querySelector" in code):
            return code, weak
        if weak is None and WINDOW_ASSIGN_RE.search(code):
            weak = code
    return None, weak


def _same_origin_path(src: str, page_url: Optional[str]) -> Optional[str]:
    if src.startswith("//"):
        if not page_url:
            return None
        src = f"{urlparse(page_url).scheme}:{src}"
    parsed = urlparse(src)
    if not parsed.netloc:
        return src if src.startswith("/") else None
    if page_url and parsed.netloc == urlparse(page_url).netloc:
        return parsed.path + (f"?{parsed.query}" if parsed.query else "")
    return None


def _external_decoder(soup: BeautifulSoup, page_url: Optional[str]) -> Optional[str]:
    best: Optional[str] = None
    best_score = 0
    for script in soup.find_all("script", src=True):
        src = script["src"].strip()
        path = _same_origin_path(src, page_url)
        if not path:
            continue
        lowered = path.lower()
        if MD5_SCRIPT_RE.match(path):
            score = 3
        elif MD5_RE.search(path):
            score = 2
        elif lowered.split("?")[0].endswith(".js") and not any(h in lowered for h in LIBRARY_HINTS):
            score = 1
        else:
            continue
        if score > best_score:
            best, best_score = path, score
    if best is None:
        return None
    return urljoin(page_url, best) if page_url else best


def locate(body: str, *, page_url: Optional[str] = None,
           min_length: int = DEFAULT_MIN_PAYLOAD) -> Optional[PayloadBundle]:
    """Return the hidden payload plus decoder reference, or None to try the next heuristic."""
    if not body:
        return None
    soup = BeautifulSoup(body, "html.parser")
    found = _hidden_container(soup, min_length)
    if not found:
        return None
    identifier, payload = found

    inline, weak_inline = _inline_decoder(soup, identifier)
    if inline is not None:
        decoder = DecoderRef(inline=inline)
    elif (url := _external_decoder(soup, page_url)) is not None:
        decoder = DecoderRef(url=url)
    elif weak_inline is not None:
        decoder = DecoderRef(inline=weak_inline)
    else:
        log.info(f"hidden container #{identifier} has no decoder script")
        return None
    return PayloadBundle(identifier=identifier, payload=payload, decoder=decoder, page_url=page_url)
