import logging
from contextlib import asynccontextmanager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from config import Settings, get_settings
from core.exceptions import InputError, ProviderError, ResolutionFailed
from core.gateway import MediaGateway
from core.provider import UpstreamProvider

logger = logging.getLogger(__name__)
request_logger = logging.getLogger("gateway.requests")


def init_gateway(settings: Settings) -> MediaGateway:
    """Create a gateway around a provider built from settings."""
    provider = UpstreamProvider(
        suggest_url=settings.suggest_url,
        user_agent=settings.user_agent,
        ytdlp_path=settings.ytdlp_path,
        suggest_timeout=settings.suggest_timeout_s,
        search_timeout=settings.search_timeout_s,
        chunk_size=settings.stream_chunk_size,
    )
    return MediaGateway(
        provider,
        search_limit=settings.search_limit,
        cache_capacity=settings.cache_capacity,
        resolve_timeout=settings.resolve_timeout_s,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    handler = None
    if settings.log_file:
        handler = logging.FileHandler(settings.log_file)
        handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s"))
        request_logger.addHandler(handler)
    app.state.gateway = init_gateway(settings)
    logger.info("Gateway initialized")
    try:
        yield
    finally:
        await app.state.gateway.close()
        if handler is not None:
            request_logger.removeHandler(handler)
            handler.close()


app = FastAPI(title="Audio Gateway", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_gateway(request: Request) -> MediaGateway:
    return request.app.state.gateway


@app.middleware("http")
async def log_requests(request: Request, call_next):
    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"
    request_logger.info(f"{request.method} {target}")
    return await call_next(request)


@app.exception_handler(InputError)
async def input_error_handler(request: Request, exc: InputError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.error(f"Search error: {exc} {exc.detail}")
    return JSONResponse(status_code=500, content={"error": "Search failed"})


@app.exception_handler(ResolutionFailed)
async def resolution_error_handler(request: Request, exc: ResolutionFailed):
    logger.error(f"[Stream Error] {exc} {exc.detail}")
    return JSONResponse(status_code=500, content={"error": "Failed to stream audio"})


@app.get("/")
async def index():
    return {"status": "online", "message": "Audio gateway is running"}


@app.get("/suggestions")
async def suggestions(q: str | None = None, gateway: MediaGateway = Depends(get_gateway)):
    return await gateway.suggest(q)


@app.get("/search")
async def search(q: str | None = None, gateway: MediaGateway = Depends(get_gateway)):
    results = await gateway.search(q)
    return [r.model_dump() for r in results]


@app.get("/stream")
async def stream(
    url: str | None = None,
    download: str = "0",
    gateway: MediaGateway = Depends(get_gateway),
):
    audio = await gateway.open_stream(url, download=download == "1")
    return StreamingResponse(audio, media_type=audio.media_type, headers=audio.headers)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=3001)
