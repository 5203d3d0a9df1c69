"""
Dropwire: FastAPI application entry point.

Connects to the relay server, runs the Transfer Manager, and serves the
local REST API and event WebSocket for the UI.
"""

import argparse
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from dropwire import config
from dropwire.api.routes import init_routes, router
from dropwire.api.websocket import ConnectionManager, session_snapshot
from dropwire.transfer.manager import TransferManager
from dropwire.transport.websocket import ServerConnection

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- Service singletons ---
server_connection = ServerConnection()
transfer_manager = TransferManager(server_connection)
ws_manager = ConnectionManager(snapshot=lambda: session_snapshot(transfer_manager))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start/stop the server connection."""
    logger.info("Starting Dropwire services...")

    transfer_manager.on_event(ws_manager.handle_event)
    server_connection.on_text(transfer_manager.handle_text)
    server_connection.on_binary(transfer_manager.handle_binary)
    server_connection.on_connect(transfer_manager.rejoin)

    if config.USERNAME:
        transfer_manager.username = config.USERNAME
        transfer_manager.roster.local_user = config.USERNAME
    else:
        logger.warning("No username configured; set DROPWIRE_USERNAME or --username")

    connection_task = asyncio.create_task(server_connection.run())
    logger.info(
        f"Dropwire ready. API: {config.API_HOST}:{config.API_PORT}, "
        f"server: {server_connection.url}"
    )

    try:
        yield
    finally:
        logger.info("Shutting down Dropwire services...")
        await transfer_manager.stop()
        await server_connection.stop()
        connection_task.cancel()
        await asyncio.gather(connection_task, return_exceptions=True)


# --- FastAPI app ---
app = FastAPI(
    title="Dropwire",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.UI_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

init_routes(transfer_manager)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Event stream for the UI. Anything the client sends is ignored."""
    await ws_manager.connect(websocket)
    try:
        async for _ in websocket.iter_text():
            pass
    finally:
        await ws_manager.disconnect(websocket)


def cli() -> None:
    import uvicorn

    parser = argparse.ArgumentParser(description="Dropwire file transfer client")
    parser.add_argument("--username", default=config.USERNAME)
    parser.add_argument("--server", default=config.SERVER_URL, help="relay WebSocket URL")
    parser.add_argument("--host", default=config.API_HOST)
    parser.add_argument("--port", type=int, default=config.API_PORT)
    args = parser.parse_args()

    config.USERNAME = args.username
    config.API_HOST = args.host
    config.API_PORT = args.port
    server_connection.url = args.server

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level="info",
    )


if __name__ == "__main__":
    cli()
