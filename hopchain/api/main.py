"""
HTTP adapter over the resolution engine.

    GET /targets
    GET /extract/{target_id}?tmdb_id=550&type=movie
    GET /extract?tmdb_id=1396&type=tv&season=1&episode=1
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from hopchain.core.config import configure_logging, get_settings
from hopchain.providers.base import ContentRef
from hopchain.providers.runner import ResolutionEngine

log = logging.getLogger("hopchain.api")

_engine: Optional[ResolutionEngine] = None


def get_engine() -> ResolutionEngine:
    global _engine
    if _engine is None:
        _engine = ResolutionEngine(settings=get_settings())
    return _engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    yield
    if _engine is not None:
        await _engine.close()


app = FastAPI(title="hopchain | embed resolver", lifespan=lifespan)


def content_ref(
    tmdb_id: Optional[int] = None,
    imdb_id: Optional[str] = None,
    type: str = Query("movie", alias="type"),
    season: int = Query(1, ge=1),
    episode: int = Query(1, ge=1),
    channel: Optional[str] = None,
    url: Optional[str] = None,
) -> ContentRef:
    if type not in ("movie", "tv", "show", "live"):
        raise HTTPException(status_code=400, detail=f"Unknown media type {type!r}")
    if tmdb_id is None and not imdb_id and not channel and not url:
        raise HTTPException(status_code=400, detail="Need one of tmdb_id, imdb_id, channel or url")
    if url and not url.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="url must be http(s)")
    return ContentRef(tmdb_id=tmdb_id, imdb_id=imdb_id, media_type=type, season=season,
                      episode=episode, channel=channel, embed_url=url)


def _respond(outcome):
    if outcome.ok:
        return outcome.to_dict()
    return JSONResponse(status_code=502, content=outcome.to_dict())


@app.get("/targets")
def targets(engine: ResolutionEngine = Depends(get_engine)):
    return engine.list_targets()


@app.get("/extract/{target_id}")
async def extract(target_id: str, ref: ContentRef = Depends(content_ref),
                  engine: ResolutionEngine = Depends(get_engine)):
    if target_id not in {t["id"] for t in engine.list_targets()}:
        raise HTTPException(status_code=404, detail=f"Unknown target {target_id!r}")
    try:
        outcome = await engine.resolve_target(target_id, ref)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    log.info(f"[{target_id}] extract → {'ok' if outcome.ok else outcome.kind.value}")
    return _respond(outcome)


@app.get("/extract")
async def extract_any(ref: ContentRef = Depends(content_ref),
                      engine: ResolutionEngine = Depends(get_engine)):
    try:
        outcome = await engine.run_all(ref)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _respond(outcome)
