#!/usr/bin/env python3

import os
import time
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.templating import Jinja2Templates
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware
from simpus.routes import api, live, pages
from simpus.configs import OPTIONS, CORS_ORIGINS, LOG_LEVEL, UPLOAD_DIR, SWEEP_ENABLED
from simpus.core import db
from simpus.core.hub import NotificationHub
from simpus.workers.notifier import OverdueNotifier
from simpus import __version__ as VERSION

logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

TEMPLATES_DIR = os.path.join(os.path.dirname(__file__), "templates")


def create_app(sweep=SWEEP_ENABLED):

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.init()
        await app.state.hub.start()
        notifier = None
        if sweep:
            notifier = OverdueNotifier(hub=app.state.hub)
            notifier.start()
        yield
        if notifier:
            await notifier.stop()
        await app.state.hub.stop()

    app = FastAPI(
        title="SIMPUS API",
        description="SIMPUS: School Library Management System",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.hub = NotificationHub()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = (time.perf_counter() - start) * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed:.1f}ms)")
        return response

    app.templates = Jinja2Templates(directory=TEMPLATES_DIR)

    app.include_router(api.router, prefix="/api")
    app.include_router(live.router)
    app.include_router(pages.router)

    os.makedirs(UPLOAD_DIR, exist_ok=True)
    app.mount("/upload", StaticFiles(directory=UPLOAD_DIR), name="upload")
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("simpus.app:app", **OPTIONS)
