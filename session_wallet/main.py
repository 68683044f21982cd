import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import health, session, tools
from .config import settings
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware
from .runtime import shutdown_runtime

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info(
        f"Session wallet API up (solana={settings.solana_rpc_url}, "
        f"ethereum chain {settings.ethereum_chain_id})"
    )
    yield
    # Stops the balance monitor and closes RPC clients; keys stay in the store
    await shutdown_runtime()
    logger.info("Session wallet API stopped")


app = FastAPI(
    title="Agent Session Wallet API",
    description="Bounded session-key wallet for LLM agents on Solana and Ethereum",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["Health"])
app.include_router(session.router, tags=["Session"])
app.include_router(tools.router, tags=["Tools"])


@app.get("/")
async def root():
    return {
        "name": "Agent Session Wallet API",
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/healthz",
        "session": "/session",
        "tools": "/tools",
    }
