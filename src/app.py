"""Presales FastAPI application.

Commands run synchronously inside the request. Every API route runs within
the presales domain context; health and docs endpoints do not need it.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from presales.api import (
    checkout_router,
    maintenance_router,
    presale_router,
    seller_router,
    webhook_router,
)
from presales.domain import presales
from presales.utils.logging import configure_logging
from protean.integrations.fastapi import register_exception_handlers

# Initialized at import time so uvicorn workers share one registry
configure_logging()
presales.init()

_CONTEXT_FREE_PATHS = ("/health", "/docs", "/redoc", "/openapi.json")

app = FastAPI(
    title="Presales API",
    description="Vinyl presale checkout, capture and expiry",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    if request.url.path.startswith(_CONTEXT_FREE_PATHS):
        return await call_next(request)
    with presales.domain_context():
        return await call_next(request)


for router in (seller_router, presale_router, checkout_router, webhook_router, maintenance_router):
    app.include_router(router)


@app.get("/health")
async def health():
    return JSONResponse(content={"status": "ok", "domain": presales.name})
