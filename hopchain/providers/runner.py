"""
Resolution engine: walks hop chains, decodes the final payload, returns a playlist.

Usage:
    engine = ResolutionEngine()
    result = await engine.resolve_target("cloudnestra", ContentRef(tmdb_id=550))
    print(result.to_dict())
    await engine.close()
"""
from __future__ import annotations
import asyncio
import logging
from typing import Optional, Sequence, Union

from ..core.config import Settings, get_settings
from . import fallback, payload, reducer
from .base import (
    BODY_SAMPLE_LIMIT, ContentRef, ExtractionFailure, ExtractionResult, HopChain,
    HopSpec, PayloadBundle, ResolutionContext, SandboxStatus, origin_of,
)
from .errors import (
    HopExtractionFailed, HopUnreachable, NoPlaylistFound, PayloadNotFound,
    ResolutionError, SandboxThrew, SandboxTimedOut,
)
from .fetcher import Fetcher
from .sandbox import SandboxHost

log = logging.getLogger("hopchain.providers")

Outcome = Union[ExtractionResult, ExtractionFailure]


# ──────────────────────────────
#  Target registry
# ──────────────────────────────
_TARGETS: dict[str, HopChain] = {}


def register_target(chain_cls):
    """Decorator to register a HopChain subclass as a named target."""
    inst = chain_cls()
    _TARGETS[inst.id] = inst
    return chain_cls


def list_targets() -> list[dict]:
    chains = sorted(_TARGETS.values(), key=lambda c: c.rank, reverse=True)
    return [c.to_dict() for c in chains]


def get_target(target_id: str) -> HopChain:
    return _TARGETS[target_id]


# ──────────────────────────────
#  Engine
# ──────────────────────────────
class ResolutionEngine:
    def __init__(self, transport=None, *, settings: Settings | None = None,
                 sandbox: SandboxHost | None = None):
        self.settings = settings or get_settings()
        self.transport = transport or Fetcher(self.settings)
        self.sandbox = sandbox or SandboxHost(self.settings)

    async def close(self):
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()

    def list_targets(self):
        return [t for t in list_targets() if not t["disabled"]]

    async def resolve_target(self, target_id: str, ref: ContentRef) -> Outcome:
        """Run a single named target. Unknown ids raise KeyError."""
        return await self.resolve(ref, get_target(target_id))

    async def run_all(self, ref: ContentRef) -> Outcome:
        """Try every applicable target concurrently, return the highest-rank success."""
        applicable = [c for c in _TARGETS.values() if not c.disabled and c.accepts(ref)]
        if not applicable:
            raise ValueError(f"no target accepts media type {ref.media_type!r}")
        applicable.sort(key=lambda c: c.rank, reverse=True)
        gate = asyncio.Semaphore(self.settings.max_concurrency)

        async def _try(chain: HopChain) -> Outcome:
            async with gate:
                return await self.resolve(ref, chain)

        results = await asyncio.gather(*(_try(c) for c in applicable))
        for res in results:
            if res.ok:
                return res
        log.warning("All targets exhausted, no playlist found")
        return results[0]

    async def resolve(self, ref: ContentRef,
                      chain: Union[HopChain, Sequence[HopSpec]]) -> Outcome:
        """Walk ``chain`` for ``ref``.

        Returns an ExtractionResult or an ExtractionFailure; resolution problems
        never escape as exceptions. Configuration mistakes (empty chain, a URL
        template field the ref does not carry) raise ValueError.
        """
        if not isinstance(chain, HopChain):
            chain = HopChain.from_hops(chain)
        if not chain.hops:
            raise ValueError(f"chain {chain.id!r} has no hops")

        ctx = ResolutionContext(ref=ref)
        try:
            await self._walk(chain, ctx)
            composed = chain.compose(ctx)
            if composed is not None:
                return await self._result(chain, ctx, composed, "composed", [])
            return await self._finish(chain, ctx)
        except ResolutionError as exc:
            log.info(f"[{chain.id}] {exc.kind.value}: {exc.message}")
            return exc.to_failure(ctx, target=chain.id)

    # ── hops ──
    async def _walk(self, chain: HopChain, ctx: ResolutionContext):
        last = len(chain.hops) - 1
        for index, hop in enumerate(chain.hops):
            url = hop.build_url(ctx)
            headers = hop.build_headers(ctx)
            log.debug(f"[{chain.id}] hop {index} → {url}")
            try:
                resp = await self.transport.fetch(url, headers)
            except Exception as e:
                ctx.record(index, url, None)
                raise HopUnreachable(f"hop {index} transport error: {type(e).__name__}: {e}",
                                     hop_index=index) from None

            ctx.record(index, resp.url or url, resp.status, resp.body or "")
            ctx.headers = headers
            if not 200 <= resp.status < 300:
                raise HopUnreachable(f"hop {index} returned HTTP {resp.status}",
                                     hop_index=index, status=resp.status,
                                     sample=(resp.body or "")[:BODY_SAMPLE_LIMIT])

            if index == last and not hop.rules:
                break
            token = hop.extract(ctx.body)
            if token is None:
                raise HopExtractionFailed(f"no rule matched on hop {index}", hop_index=index,
                                          status=resp.status,
                                          sample=ctx.body[:BODY_SAMPLE_LIMIT])
            ctx.token = token

    # ── final hop ──
    async def _finish(self, chain: HopChain, ctx: ResolutionContext) -> ExtractionResult:
        page_url = ctx.current_url
        detail: list[str] = []
        raw: Optional[str] = None
        method = "sandbox"
        bundle: Optional[PayloadBundle] = None
        decoder_source: Optional[str] = None

        try:
            bundle = payload.locate(ctx.body, page_url=page_url, min_length=chain.min_payload_length)
            if bundle is None:
                raise PayloadNotFound("no hidden payload container with a decoder on the final hop")
            decoder_source = await self._decoder_source(bundle)
            if decoder_source is None:
                raise SandboxThrew(f"decoder script {bundle.decoder.url} could not be fetched")
            if self.settings.sandbox_enabled:
                raw = await self._run_sandbox(bundle, decoder_source)
                if raw is None:
                    detail.append(f"reducer: no playlist-shaped write for #{bundle.identifier}")
            else:
                detail.append("sandbox: disabled")
        except ResolutionError as exc:
            log.info(f"[{chain.id}] {exc.kind.value}: {exc.message}")
            detail.append(f"{exc.kind.value}: {exc.message}")

        if raw is None and decoder_source:
            raw = fallback.scan(decoder_source)
            method = "decoder-source"
        if raw is None:
            raw = fallback.scan(ctx.body)
            method = "fallback"
        if raw is None:
            raise NoPlaylistFound("no playlist URL in sandbox output, decoder source or page body",
                                  hop_index=len(ctx.hops) - 1, status=ctx.hops[-1].status,
                                  sample=ctx.body[:BODY_SAMPLE_LIMIT], detail=detail)

        return await self._result(chain, ctx, raw, method, detail,
                                  identifier=bundle.identifier if bundle else None)

    async def _result(self, chain: HopChain, ctx: ResolutionContext, raw: str, method: str,
                      detail: list[str], identifier: Optional[str] = None) -> ExtractionResult:
        candidates = reducer.expand_candidates(raw, chain.placeholders, chain.excluded_hosts)
        if not candidates:
            detail.append(f"all candidates excluded: {raw[:BODY_SAMPLE_LIMIT]}")
            raise NoPlaylistFound("every playlist candidate was on an excluded host",
                                  hop_index=len(ctx.hops) - 1, detail=detail)

        headers = self._replay_headers(chain, ctx.current_url)
        result = ExtractionResult(
            url=candidates[0],
            alternates=candidates[1:],
            hops=[h.url for h in ctx.hops],
            identifier=identifier,
            headers=headers,
            method=method,
            target=chain.id,
        )
        if self.settings.validate_playlists:
            result.verified = await self._verify(result)
        log.info(f"[{chain.id}] playlist resolved via {method}")
        return result

    async def _decoder_source(self, bundle: PayloadBundle) -> Optional[str]:
        if bundle.decoder.is_inline:
            return bundle.decoder.inline
        headers = {}
        if bundle.page_url:
            headers = {"Referer": bundle.page_url, "Origin": origin_of(bundle.page_url)}
        try:
            resp = await self.transport.fetch(bundle.decoder.url, headers)
        except Exception as e:
            log.warning(f"decoder fetch failed: {type(e).__name__}: {e}")
            return None
        if not 200 <= resp.status < 300 or not resp.body:
            log.warning(f"decoder fetch returned HTTP {resp.status}")
            return None
        return resp.body

    async def _run_sandbox(self, bundle: PayloadBundle,
                           source: str) -> Optional[str]:
        try:
            run = await asyncio.to_thread(self.sandbox.run, source, bundle)
        except Exception as e:
            log.warning(f"[{bundle.identifier}] sandbox host failed: {type(e).__name__}: {e}")
            raise SandboxThrew(f"sandbox host failed: {type(e).__name__}: {e}") from None
        # a partial log may still hold the playlist
        raw = reducer.reduce(run.trap_log, bundle.identifier)
        if raw is not None:
            return raw
        if run.status is SandboxStatus.TIMED_OUT:
            raise SandboxTimedOut(f"decoder exceeded its budget ({run.error})")
        if run.status is SandboxStatus.THREW:
            raise SandboxThrew(f"decoder threw: {run.error}")
        return None

    @staticmethod
    def _replay_headers(chain: HopChain, page_url: Optional[str]) -> dict[str, str]:
        if chain.replay_headers:
            return dict(chain.replay_headers)
        if not page_url:
            return {}
        origin = origin_of(page_url)
        return {"Referer": f"{origin}/", "Origin": origin}

    async def _verify(self, result: ExtractionResult) -> bool:
        try:
            resp = await self.transport.fetch(result.url, result.headers)
        except Exception as e:
            log.warning(f"[{result.target}] playlist check failed: {e}")
            return False
        return 200 <= resp.status < 300 and "#EXTM3U" in (resp.body or "")[:1024]


# ──────────────────────────────
#  Import all targets to register them
# ──────────────────────────────
def _load_targets():
    from .targets import cloudnestra    # noqa: F401  rank 300
    from .targets import live_channel   # noqa: F401  rank 250, 240
    from .targets import packed_embed   # noqa: F401  rank 100

_load_targets()
