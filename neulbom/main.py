from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_config
from .errors import NeulbomError
from .routes import auth as auth_routes
from .routes import comments as comment_routes
from .routes import notes as note_routes
from .routes import wards as ward_routes

logger = logging.getLogger(__name__)

# Reports missing credentials once, at startup.
get_config()

app = FastAPI(
    title="Neulbom Care API",
    version="0.1.0",
    description="Caregiving journal actions over Supabase",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:8081",
        "http://127.0.0.1:8081",
        "http://localhost:19006",
    ],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(auth_routes.router)
app.include_router(ward_routes.router)
app.include_router(note_routes.router)
app.include_router(comment_routes.router)


@app.exception_handler(NeulbomError)
async def handle_neulbom_error(request: Request, exc: NeulbomError) -> JSONResponse:
    logger.warning(
        "request failed",
        extra={"path": request.url.path, "error_type": type(exc).__name__, "detail": exc.message},
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
