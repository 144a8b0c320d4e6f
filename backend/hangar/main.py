import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from .config import Settings, load_settings
from .pipeline import UplinkPipeline
from .routers import uplink
from .store import DeviceStateStore, create_redis

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(level=settings.log_level)
        logger.info("Hangar server startup")

        store = DeviceStateStore(create_redis(settings), status_ttl=settings.status_ttl_seconds)
        client_kwargs = {}
        if settings.downlink_timeout is not None:
            client_kwargs["timeout"] = httpx.Timeout(settings.downlink_timeout)
        http = httpx.AsyncClient(**client_kwargs)
        app.state.pipeline = UplinkPipeline(store, http)
        try:
            yield
        finally:
            await http.aclose()
            await store.close()
            logger.info("Hangar server shutdown")

    app = FastAPI(title="Hangar Gateway", lifespan=lifespan)
    app.include_router(uplink.router)

    @app.get("/health")
    def health():
        return {"ok": True}

    # pass-through file serving only
    @app.get("/", include_in_schema=False)
    def index():
        page = settings.views_dir / "index.html"
        if not page.is_file():
            raise HTTPException(status_code=404, detail="Not Found")
        return FileResponse(page)

    app.mount("/static", StaticFiles(directory=settings.static_dir, check_dir=False), name="static")
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    _settings = load_settings()
    uvicorn.run("hangar.main:app", host=_settings.host, port=_settings.port)
