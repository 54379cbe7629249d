from __future__ import annotations

import asyncio
import logging
import os
import signal
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from config import configure_logging, settings
from coordinator import SyncCoordinator
from errors import LedgerError, SyncError
from lnd_client import build_ledger
from record_store import build_store

configure_logging()

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 5.0


def request_shutdown() -> None:
    """Stop the server so the process supervisor restarts the whole service."""

    os.kill(os.getpid(), signal.SIGTERM)


def _on_sync_exit(task: asyncio.Task) -> None:
    # Cancellation means the app itself is shutting down.
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Settlement sync failed, shutting down: %s", exc)
    else:
        logger.error("Settlement stream ended, shutting down")
    request_shutdown()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "ledger", None) is None:
        app.state.ledger = build_ledger(settings)
    if getattr(app.state, "store", None) is None:
        app.state.store = build_store(settings)

    coordinator = SyncCoordinator.from_settings(settings, app.state.ledger, app.state.store)
    sync_task = asyncio.create_task(coordinator.start())
    sync_task.add_done_callback(_on_sync_exit)
    app.state.sync_task = sync_task
    logger.info("Settlement sync started")

    try:
        yield
    finally:
        sync_task.cancel()
        try:
            await asyncio.wait_for(sync_task, timeout=SHUTDOWN_TIMEOUT_SECONDS)
        except asyncio.CancelledError:
            pass
        except asyncio.TimeoutError:
            logger.warning("Settlement sync did not stop within %ss", SHUTDOWN_TIMEOUT_SECONDS)
        except SyncError:
            # Already reported by _on_sync_exit.
            pass
        logger.info("Settlement sync stopped")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Accept", "Content-Type", "X-Custom-Header", "Origin"],
    max_age=3600,
)


@app.get("/pubkey")
def get_pubkey(request: Request):
    try:
        pubkey = request.app.state.ledger.get_node_pubkey()
    except LedgerError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"pubkey": pubkey}


@app.get("/invoice/{memo}")
def get_invoice(memo: str, request: Request):
    try:
        invoice = request.app.state.ledger.find_invoice_by_memo(memo)
    except LedgerError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if invoice is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice.to_dict()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.http_host, port=settings.http_port)
