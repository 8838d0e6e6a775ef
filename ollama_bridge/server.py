"""
FastAPI server exposing the conversion API in front of a local Ollama server.
Streams conversions to the browser as Server-Sent Events.
"""

import argparse
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

import httpx
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from .bridge import ConversionBridge
from .config import (
    BridgeConfig,
    ConfigurationError,
    create_default_config,
    load_config,
)
from .exceptions import InvalidRequestError, UpstreamError

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    logger.info("Ollama-Bridge starting up...")
    yield
    logger.info("Ollama-Bridge shutting down...")


app = FastAPI(
    title="Ollama-Bridge",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global state (initialized in main)
bridge: ConversionBridge | None = None
config: BridgeConfig | None = None


def _describe(exc: Exception) -> str:
    return str(exc) or exc.__class__.__name__


def _not_ready() -> JSONResponse:
    return JSONResponse(status_code=503, content={"error": "Bridge not initialized"})


@app.exception_handler(InvalidRequestError)
async def invalid_request_handler(request: Request, exc: InvalidRequestError):
    """Reject bad requests before any upstream call."""
    logger.warning(f"Rejected request to {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    """Upstream failures discovered before the first streamed byte."""
    logger.error(f"Ollama Error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Conversion failed", "details": str(exc)},
    )


@app.get("/health")
async def health_check() -> Response:
    """Health check with Ollama status."""
    if bridge is None:
        return _not_ready()

    try:
        data = await bridge.client.probe()
    except httpx.HTTPError as e:
        return JSONResponse(
            status_code=503,
            content={"status": "error", "ollama": "unreachable", "message": _describe(e)},
        )
    return JSONResponse(content={"status": "ok", "ollama": "connected", "data": data})


@app.get("/api/models")
async def list_models() -> Response:
    """Available models from the local Ollama."""
    if bridge is None:
        return _not_ready()

    try:
        models = await bridge.client.list_models()
    except (httpx.HTTPError, ValueError) as e:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch models", "details": _describe(e)},
        )
    return JSONResponse(content=models)


@app.post("/api/convert")
async def convert(request: Request) -> Response:
    """Conversion endpoint, streaming by default."""
    if bridge is None:
        return _not_ready()

    try:
        body = await request.json()
    except ValueError:
        body = None

    conversion = bridge.parse_request(body)

    if conversion.stream:
        relay, log_id = await bridge.open_relay(conversion, body, is_disconnected=request.is_disconnected)
        return StreamingResponse(
            bridge.stream_sse(relay, log_id),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
            # Releases upstream even if the body is never iterated
            background=BackgroundTask(relay.stream.aclose),
        )

    result = await bridge.convert(conversion, body)
    return JSONResponse(content=result)


def mount_ui(app: FastAPI, static_dir: str | None) -> bool:
    """
    Serve the built UI: files from static_dir, anything else gets index.html.

    Must run after the API routes are registered so they take precedence.
    """
    if not static_dir:
        return False

    root = Path(static_dir).resolve()
    index = root / "index.html"
    if not index.is_file():
        logger.info(f"No UI build found at {root}; serving API only")
        return False

    @app.get("/{full_path:path}", include_in_schema=False)
    async def ui_entry(full_path: str) -> FileResponse:
        candidate = (root / full_path).resolve()
        if full_path and candidate.is_file() and candidate.is_relative_to(root):
            return FileResponse(candidate)
        return FileResponse(index)

    logger.info(f"Serving UI from {root}")
    return True


def init_bridge(bridge_config: BridgeConfig, transport: httpx.AsyncBaseTransport | None = None) -> ConversionBridge:
    """Install the global config and bridge used by the routes."""
    global bridge, config
    config = bridge_config
    bridge = ConversionBridge(bridge_config, transport=transport)
    return bridge


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Ollama-Bridge Server")

    parser.add_argument("--config", type=str, help="Path to TOML configuration file")

    # Overrides (applied on top of the file or the defaults)
    parser.add_argument("--ollama-url", type=str, help="Ollama base URL (default: http://127.0.0.1:11434)")
    parser.add_argument("--model", type=str, help="Default model tag (default: llama3.2:latest)")
    parser.add_argument("--port", type=int, help="Server port (default: 3001)")
    parser.add_argument("--host", type=str, help="Server host (default: 127.0.0.1)")
    parser.add_argument("--static-dir", type=str, help="Directory of the built UI (default: ui/dist)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging and per-request dumps")

    args = parser.parse_args()

    # Configure logging
    log_level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.config:
        try:
            bridge_config = load_config(args.config)
        except FileNotFoundError as e:
            logger.error(f"Configuration file not found: {e}")
            sys.exit(1)
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            sys.exit(1)
        if args.ollama_url:
            bridge_config.ollama.url = args.ollama_url.rstrip("/")
        if args.model:
            bridge_config.ollama.default_model = args.model
    else:
        bridge_config = create_default_config(args.ollama_url, args.model)

    if args.host:
        bridge_config.host = args.host
    if args.port:
        bridge_config.port = args.port
    if args.static_dir:
        bridge_config.static_dir = args.static_dir
    if args.debug:
        bridge_config.debug = True

    init_bridge(bridge_config)
    mount_ui(app, config.static_dir)

    logger.info(f"Ollama upstream: {config.ollama.url} (default model: {config.ollama.default_model})")
    logger.info(f"Starting server on {config.host}:{config.port}")
    uvicorn.run(app, host=config.host, port=config.port, log_level="debug" if config.debug else "info")


if __name__ == "__main__":
    main()
