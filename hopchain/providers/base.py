"""
Core types for the hopchain resolution pipeline.

A resolution walks a HopChain (ordered HopSpecs) and ends in one of:
  - ExtractionResult: playlist URL + headers the player must replay
  - ExtractionFailure: failure kind + the partial ResolutionContext
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional
from urllib.parse import quote, urljoin, urlparse

from bs4 import BeautifulSoup

from .errors import FailureKind

BODY_SAMPLE_LIMIT = 300


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


# ──────────────────────────────
#  Content reference (what the caller asks for)
# ──────────────────────────────
@dataclass
class ContentRef:
    tmdb_id: Optional[int] = None
    imdb_id: Optional[str] = None
    media_type: str = "movie"         # "movie" | "tv" | "live"
    season: int = 1
    episode: int = 1
    channel: Optional[str] = None     # live channel name / number
    embed_url: Optional[str] = None   # start directly from a known embed page

    def __post_init__(self):
        # Normalize: accept both "show" and "tv" → always "tv"
        if self.media_type == "show":
            self.media_type = "tv"

    @property
    def embed_path(self) -> Optional[str]:
        if self.tmdb_id is None:
            return None
        if self.media_type == "tv":
            return f"tv/{self.tmdb_id}/{self.season}/{self.episode}"
        return f"movie/{self.tmdb_id}"

    @property
    def channel_key(self) -> Optional[str]:
        if not self.channel:
            return None
        channel = self.channel.strip()
        return f"premium{channel}" if channel.isdigit() else quote(channel, safe="")

    def template_vars(self) -> dict[str, str]:
        values = {
            "tmdb_id": self.tmdb_id,
            "imdb_id": self.imdb_id,
            "media_type": self.media_type,
            "season": self.season,
            "episode": self.episode,
            "channel": self.channel,
            "url": self.embed_url,
            "embed_path": self.embed_path,
            "channel_key": self.channel_key,
        }
        return {k: str(v) for k, v in values.items() if v is not None}

    def to_dict(self):
        return {
            "tmdb_id": self.tmdb_id, "imdb_id": self.imdb_id,
            "media_type": self.media_type, "season": self.season,
            "episode": self.episode, "channel": self.channel,
            "url": self.embed_url,
        }


# ──────────────────────────────
#  Declarative hop description
# ──────────────────────────────
@dataclass(frozen=True)
class ExtractionRule:
    """One way of pulling the next token out of a response body.

    Either a regex (``pattern``, value taken from ``group``) or a CSS
    ``selector`` whose ``attribute`` (or text, when no attribute) is used.
    """
    pattern: Optional[str] = None
    group: int = 1
    flags: int = re.IGNORECASE
    selector: Optional[str] = None
    attribute: Optional[str] = None
    name: str = ""

    def __post_init__(self):
        if (self.pattern is None) == (self.selector is None):
            raise ValueError("ExtractionRule needs exactly one of pattern/selector")

    def apply(self, body: str) -> Optional[str]:
        if self.selector is not None:
            node = BeautifulSoup(body, "html.parser").select_one(self.selector)
            if node is None:
                return None
            value = node.get(self.attribute) if self.attribute else node.get_text()
            if isinstance(value, list):         # multi-valued attrs (class)
                value = " ".join(value)
        else:
            match = re.search(self.pattern, body, self.flags)
            value = match.group(self.group) if match else None
        value = value.strip() if value else None
        return value or None


class _TemplateVars(dict):
    def __missing__(self, key):
        raise KeyError(key)


@dataclass(frozen=True)
class HopSpec:
    url_template: str
    rules: tuple[ExtractionRule, ...] = ()
    headers: tuple[tuple[str, str], ...] = ()
    referer_hop: Optional[int] = None   # None → previous hop

    def __post_init__(self):
        if isinstance(self.headers, Mapping):
            object.__setattr__(self, "headers", tuple(self.headers.items()))

    def build_url(self, ctx: "ResolutionContext") -> str:
        values = _TemplateVars(ctx.ref.template_vars())
        if ctx.token is not None:
            values["token"] = ctx.token
        if ctx.current_url:
            values["previous_url"] = ctx.current_url
            values["previous_origin"] = origin_of(ctx.current_url)
        try:
            url = self.url_template.format_map(values)
        except KeyError as exc:
            raise ValueError(f"hop template {self.url_template!r} needs {exc.args[0]!r}") from None
        return urljoin(ctx.current_url, url) if ctx.current_url else url

    def build_headers(self, ctx: "ResolutionContext") -> dict[str, str]:
        headers: dict[str, str] = {}
        if ctx.hops:
            source = ctx.hops[-1] if self.referer_hop is None else ctx.hops[self.referer_hop]
            origin = origin_of(source.url)
            headers["Referer"] = f"{origin}/"
            headers["Origin"] = origin
        headers.update(self.headers)
        return headers

    def extract(self, body: str) -> Optional[str]:
        """First matching rule wins."""
        for rule in self.rules:
            token = rule.apply(body)
            if token:
                return token
        return None


class HopChain:
    """A ranked, named target: hops plus result post-processing.

    Subclasses set class attributes and are registered with
    ``runner.register_target``.
    """
    id: str = "adhoc"
    name: str = "Ad-hoc chain"
    rank: int = 0
    media_types: tuple[str, ...] = ("movie", "tv")
    hops: tuple[HopSpec, ...] = ()
    placeholders: Mapping[str, str] = MappingProxyType({})
    excluded_hosts: tuple[str, ...] = ()
    replay_headers: Optional[Mapping[str, str]] = None
    min_payload_length: int = 8
    disabled: bool = False

    @classmethod
    def from_hops(cls, hops, **attrs) -> "HopChain":
        chain = cls()
        chain.hops = tuple(hops)
        for key, value in attrs.items():
            if isinstance(value, dict):
                value = MappingProxyType(dict(value))
            setattr(chain, key, value)
        return chain

    def accepts(self, ref: ContentRef) -> bool:
        return ref.media_type in self.media_types

    def compose(self, ctx: "ResolutionContext") -> Optional[str]:
        """Playlist URL built from the last hop's token, or None to decode the final page."""
        return None

    def to_dict(self):
        return {"id": self.id, "name": self.name, "rank": self.rank,
                "media_types": list(self.media_types), "hops": len(self.hops),
                "disabled": self.disabled}


# ──────────────────────────────
#  Per-call state
# ──────────────────────────────
@dataclass(frozen=True)
class HopRecord:
    index: int
    url: str
    status: Optional[int]
    length: int

    def to_dict(self):
        return {"index": self.index, "url": self.url, "status": self.status, "length": self.length}


@dataclass
class ResolutionContext:
    ref: ContentRef
    hops: list[HopRecord] = field(default_factory=list)
    token: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""

    @property
    def current_url(self) -> Optional[str]:
        return self.hops[-1].url if self.hops else None

    def record(self, index: int, url: str, status: Optional[int], body: str = "") -> HopRecord:
        hop = HopRecord(index=index, url=url, status=status, length=len(body))
        self.hops.append(hop)
        self.body = body
        return hop

    def to_dict(self):
        return {"ref": self.ref.to_dict(), "hops": [h.to_dict() for h in self.hops]}


# ──────────────────────────────
#  Final hop artifacts
# ──────────────────────────────
@dataclass(frozen=True)
class DecoderRef:
    inline: Optional[str] = None
    url: Optional[str] = None

    @property
    def is_inline(self) -> bool:
        return self.inline is not None


@dataclass(frozen=True)
class PayloadBundle:
    identifier: str
    payload: str
    decoder: DecoderRef
    page_url: Optional[str] = None


# ──────────────────────────────
#  Sandbox trap log
# ──────────────────────────────
class TrapKind(str, Enum):
    SET = "set"
    GET = "get"
    DELETE = "delete"
    DEFINE = "define"
    LOOKUP = "lookup"
    DECODE = "decode"
    ENCODE = "encode"
    TIMER = "timer"
    CONSOLE = "console"
    WRITE = "write"
    NAVIGATE = "navigate"
    BLOCKED = "blocked"
    ERROR = "error"
    RETURN = "return"


WRITE_KINDS = frozenset({TrapKind.SET, TrapKind.WRITE, TrapKind.NAVIGATE, TrapKind.RETURN})

_URLISH_RE = re.compile(r"^\s*(?:https?:)?//|\.m3u8|\.mpd", re.IGNORECASE)


@dataclass(frozen=True)
class TrapEntry:
    kind: TrapKind
    name: Optional[str] = None
    args: tuple[str, ...] = ()
    value_type: str = "none"
    value: Optional[str] = None
    scope: str = "window"

    @property
    def looks_like_url(self) -> bool:
        return bool(self.value) and bool(_URLISH_RE.search(self.value))

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Optional["TrapEntry"]:
        try:
            kind = TrapKind(raw.get("op"))
        except ValueError:
            return None
        return cls(
            kind=kind,
            name=raw.get("name"),
            args=tuple(str(a) for a in raw.get("args") or ()),
            value_type=raw.get("type") or "none",
            value=raw.get("value"),
            scope=raw.get("scope") or "window",
        )

    def to_dict(self):
        return {"kind": self.kind.value, "name": self.name, "args": list(self.args),
                "type": self.value_type, "value": self.value, "scope": self.scope,
                "url": self.looks_like_url}


class TrapLog:
    """Append-only record of what a decoder snippet did inside its sandbox."""

    def __init__(self, entries=(), dropped: int = 0):
        self._entries: list[TrapEntry] = list(entries)
        self.dropped = dropped

    def append(self, entry: TrapEntry) -> None:
        self._entries.append(entry)

    def __iter__(self) -> Iterator[TrapEntry]:
        return iter(tuple(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def of_kind(self, *kinds: TrapKind) -> list[TrapEntry]:
        return [e for e in self._entries if e.kind in kinds]

    def writes(self) -> list[TrapEntry]:
        return [e for e in self._entries if e.kind in WRITE_KINDS]

    def lookups(self) -> list[TrapEntry]:
        return self.of_kind(TrapKind.LOOKUP)

    def to_list(self):
        return [e.to_dict() for e in self._entries]


class SandboxStatus(str, Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    THREW = "threw"


@dataclass
class SandboxRun:
    status: SandboxStatus
    trap_log: TrapLog
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is SandboxStatus.COMPLETED


# ──────────────────────────────
#  Final run output
# ──────────────────────────────
@dataclass
class ExtractionResult:
    url: str
    hops: list[str] = field(default_factory=list)
    identifier: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)
    alternates: list[str] = field(default_factory=list)
    method: str = "sandbox"           # "sandbox" | "decoder-source" | "fallback" | "composed"
    target: Optional[str] = None
    verified: Optional[bool] = None

    ok = True

    def to_dict(self):
        d = {
            "ok": True,
            "target": self.target,
            "url": self.url,
            "hops": list(self.hops),
            "identifier": self.identifier,
            "headers": dict(self.headers),
            "method": self.method,
        }
        if self.alternates:
            d["alternates"] = list(self.alternates)
        if self.verified is not None:
            d["verified"] = self.verified
        return d


@dataclass
class ExtractionFailure:
    kind: FailureKind
    message: str
    context: Optional[ResolutionContext] = None
    hop_index: Optional[int] = None
    status: Optional[int] = None
    sample: Optional[str] = None
    detail: list[str] = field(default_factory=list)
    target: Optional[str] = None

    ok = False

    def to_dict(self):
        return {
            "ok": False,
            "target": self.target,
            "kind": self.kind.value,
            "message": self.message,
            "hop_index": self.hop_index,
            "status": self.status,
            "sample": self.sample,
            "detail": list(self.detail),
            "hops": [h.to_dict() for h in self.context.hops] if self.context else [],
        }
