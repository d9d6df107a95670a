"""Preview Bridge Server - FastAPI control application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from config import get_config
from editor import EditorFile, get_editor_manager, get_open_folders
from fetch_cache import clear_cache
from models import DocumentOpen, DocumentUpdate, FolderAdd, RunRequest
from router import PreviewStartError, RunRefused, get_preview_runner
from session import TARGET_BROWSER, TARGET_INAPP


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    config = get_config()
    print("Preview Bridge Server starting...")
    print(f"Preview server port: {config.server_port} (console: {config.console_port})")

    yield

    # Shutdown
    print("Preview Bridge Server shutting down...")
    try:
        await get_preview_runner().stop()
    except Exception as e:
        print(f"Warning: Preview server shutdown error: {e}")


app = FastAPI(
    title="Preview Bridge",
    description="In-app preview server for editor documents",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware for the webview host
_cors_origins = get_config().cors_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# REST API Endpoints
# ============================================================================


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "preview-bridge"}


# ============================================================================
# Preview API
# ============================================================================


@app.get("/api/preview/status")
async def preview_status():
    """Get preview server state and the current session."""
    return get_preview_runner().status()


@app.post("/api/preview/run")
async def run_preview(request: RunRequest):
    """Start a preview of the active document (or the console harness).

    Stops the previous preview server first. When the configured preview port
    differs from the server port, only the browser is opened.
    """
    if request.target is not None and request.target not in (TARGET_INAPP, TARGET_BROWSER):
        raise HTTPException(status_code=400, detail=f"Unknown target: {request.target}")

    runner = get_preview_runner()
    try:
        session = await runner.run(
            is_console=request.is_console,
            target=request.target,
            run_file=request.run_file,
        )
    except RunRefused as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PreviewStartError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return {
        "success": True,
        "url": runner.url,
        "external": session is None,
        **runner.status(),
    }


@app.post("/api/preview/stop")
async def stop_preview():
    """Stop the preview server."""
    runner = get_preview_runner()
    await runner.stop()
    return {"success": True, **runner.status()}


@app.delete("/api/preview/cache")
async def clear_preview_cache():
    """Delete files cached from remote and content URIs."""
    cleared = await clear_cache(get_config().cache_dir)
    return {"success": True, "cleared": cleared}


# ============================================================================
# Documents API
# ============================================================================


@app.get("/api/documents")
async def list_documents():
    """List open documents."""
    manager = get_editor_manager()
    active = manager.active_file
    return {
        "documents": [file.to_dict() for file in manager.files],
        "active": active.id if active else None,
    }


@app.post("/api/documents")
async def open_document(request: DocumentOpen):
    """Open a document (replaces an open document with the same URI)."""
    file = EditorFile(
        filename=request.filename,
        uri=request.uri,
        location=request.location,
        text=request.text,
        loaded=request.loaded,
        is_unsaved=request.is_unsaved,
        mode=request.mode,
        saf_mode=request.saf_mode,
    )
    get_editor_manager().open(file, activate=request.activate)
    return file.to_dict()


@app.put("/api/documents/{file_id}")
async def update_document(file_id: str, request: DocumentUpdate):
    """Update the buffer of an open document."""
    file = get_editor_manager().get_file(file_id, key="id")
    if file is None:
        raise HTTPException(status_code=404, detail=f"Document {file_id} not found")

    if request.text is not None:
        file.text = request.text
    if request.is_unsaved is not None:
        file.is_unsaved = request.is_unsaved
    if request.loaded is not None:
        file.loaded = request.loaded
    return file.to_dict()


@app.post("/api/documents/{file_id}/activate")
async def activate_document(file_id: str):
    """Make a document the active one."""
    file = get_editor_manager().set_active(file_id)
    if file is None:
        raise HTTPException(status_code=404, detail=f"Document {file_id} not found")
    return file.to_dict()


@app.delete("/api/documents/{file_id}")
async def close_document(file_id: str):
    """Close a document."""
    if not get_editor_manager().close(file_id):
        raise HTTPException(status_code=404, detail=f"Document {file_id} not found")
    return {"success": True}


# ============================================================================
# Folders API
# ============================================================================


@app.get("/api/folders")
async def list_folders():
    """List opened project folders, primary folder first."""
    return {
        "folders": [
            {"url": folder.url, "title": folder.title} for folder in get_open_folders().folders
        ]
    }


@app.post("/api/folders")
async def add_folder(request: FolderAdd):
    """Open a project folder."""
    folder = get_open_folders().add(request.url, request.title or "")
    return {"url": folder.url, "title": folder.title}


@app.delete("/api/folders")
async def remove_folder(url: str):
    """Close a project folder."""
    if not get_open_folders().remove(url):
        raise HTTPException(status_code=404, detail=f"Folder {url} not open")
    return {"success": True}


if __name__ == "__main__":
    import argparse
    import uvicorn

    from config import Config, set_config

    parser = argparse.ArgumentParser(description="Preview Bridge Server")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.yaml",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to",
    )
    args = parser.parse_args()

    if args.config:
        set_config(Config(args.config))
    config = get_config()

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Override config with CLI args
    host = args.host or config.host
    port = args.port or config.port

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=config.log_level,
    )
