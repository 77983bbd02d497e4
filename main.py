import os
import argparse
from collections import Counter
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException

from core.codec import EncodingError
from core.engine import DestinationExistsError, FolderTracker, RestoreError
from core.types import TrackedFolder
from logger_setup import setup_logger
from providers.interface import NoModelContext, PersistenceUnavailable
from providers.picker_provider import TkFolderPicker
from providers.search_provider import detect_indexed_search
from providers.sqlite_store import SqliteFolderStore
from scheduler_service import FolderWatchScheduler
from settings import load_settings

VERSION = "1.0.0"


def folder_to_dict(tracker: FolderTracker, folder: TrackedFolder) -> dict:
    status = tracker.last_status(folder.id)
    return {
        "id": folder.id,
        "name": folder.name,
        "stored_path": folder.stored_path,
        "created_at": folder.created_at,
        "has_identity_token": bool(folder.identity_token),
        "state": tracker.state_of(folder.id).name,
        "status": status.to_dict() if status else None,
    }


def create_app(tracker: FolderTracker, scheduler: Optional[FolderWatchScheduler] = None) -> FastAPI:
    app = FastAPI(title=f"Folder Mark v{VERSION}")

    def load_folders():
        try:
            return tracker.folders()
        except (NoModelContext, PersistenceUnavailable) as e:
            raise HTTPException(status_code=503, detail=str(e))

    def get_folder(folder_id: str) -> TrackedFolder:
        try:
            folder = tracker.get_folder(folder_id)
        except (NoModelContext, PersistenceUnavailable) as e:
            raise HTTPException(status_code=503, detail=str(e))
        if folder is not None:
            return folder
        raise HTTPException(status_code=404, detail=f"Unknown folder: {folder_id}")

    @app.on_event("startup")
    async def startup_event():
        if scheduler is None:
            return
        for folder in load_folders():
            scheduler.watch(folder)
        scheduler.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        if scheduler is not None:
            scheduler.stop()
        tracker.shutdown()

    @app.get("/api/status")
    def get_status():
        folders = load_folders()
        states = Counter(tracker.state_of(f.id).name for f in folders)
        return {
            "version": VERSION,
            "folders": len(folders),
            "states": dict(states),
            "watching": scheduler.watched_ids() if scheduler else [],
        }

    @app.get("/api/folders")
    def list_folders():
        return {"folders": [folder_to_dict(tracker, f) for f in load_folders()]}

    @app.post("/api/folders", status_code=201)
    def add_folder(payload: dict):
        path = payload.get("path")
        if not path or not isinstance(path, str):
            raise HTTPException(status_code=400, detail="'path' is required")
        name = payload.get("name") or os.path.basename(path.rstrip("/\\")) or path

        try:
            folder = tracker.add_folder(name, path)
        except EncodingError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except (NoModelContext, PersistenceUnavailable) as e:
            raise HTTPException(status_code=503, detail=str(e))

        if scheduler is not None:
            scheduler.watch(folder)
        return folder_to_dict(tracker, folder)

    @app.delete("/api/folders/{folder_id}")
    def remove_folder(folder_id: str):
        folder = get_folder(folder_id)
        try:
            tracker.remove_folder(folder)
        except (NoModelContext, PersistenceUnavailable) as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"removed": folder_id}

    @app.post("/api/folders/{folder_id}/check")
    def check_folder(folder_id: str):
        folder = get_folder(folder_id)
        result = tracker.check(folder)
        return {
            "state": result.state.name,
            "status": result.status.to_dict(),
            "searching": result.search is not None and not result.search.done(),
            "folder": folder_to_dict(tracker, folder),
        }

    @app.post("/api/folders/{folder_id}/resolve")
    def resolve_folder(folder_id: str, payload: Optional[dict] = None):
        folder = get_folder(folder_id)
        show_prompt = bool((payload or {}).get("prompt", False))
        path, status = tracker.resolve_and_update(folder, show_prompt=show_prompt)
        return {"path": path, "status": status.to_dict(), "folder": folder_to_dict(tracker, folder)}

    @app.post("/api/folders/{folder_id}/restore")
    def restore_folder(folder_id: str):
        folder = get_folder(folder_id)
        try:
            new_path = tracker.restore_from_trash(folder)
        except DestinationExistsError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except RestoreError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except (NoModelContext, PersistenceUnavailable) as e:
            raise HTTPException(status_code=503, detail=str(e))
        return {"message": f"Folder restored to:\n{new_path}", "folder": folder_to_dict(tracker, folder)}

    @app.post("/api/folders/{folder_id}/locate")
    def locate_folder(folder_id: str, payload: dict):
        folder = get_folder(folder_id)
        path = payload.get("path")
        if not path or not isinstance(path, str):
            raise HTTPException(status_code=400, detail="'path' is required")
        if not tracker.update_path_manually(folder, path):
            raise HTTPException(status_code=400, detail=f"Could not update folder location to {path}")
        return folder_to_dict(tracker, folder)

    @app.get("/api/folders/{folder_id}/token")
    def test_token(folder_id: str):
        folder = get_folder(folder_id)
        ok, message = tracker.test_identity_token(folder)
        marker_present, marker_matches = tracker.marker_report(folder)
        return {
            "valid": ok,
            "message": message,
            "marker_present": marker_present,
            "marker_matches": marker_matches,
        }

    @app.get("/api/events")
    def recent_events(limit: int = 50):
        events = tracker.event_bus.get_history()[-limit:]
        return {"events": [
            {"type": e.event_type, "folder_id": e.folder_id, "timestamp": e.timestamp.isoformat()}
            for e in events
        ]}

    return app


def main():
    parser = argparse.ArgumentParser(description="Track folders across renames, moves and the trash")
    parser.add_argument("--config", metavar="PATH", help="JSON config file (default: config.json)")
    parser.add_argument("--host", help="Bind address")
    parser.add_argument("--port", type=int, help="Port to listen on")
    parser.add_argument("--no-watch", action="store_true", help="Disable periodic folder checks")
    args = parser.parse_args()

    settings = load_settings(args.config)
    logger, log_file = setup_logger(None, log_dir=settings.log_dir)
    if log_file:
        logger.info(f"Logging to {log_file}")

    store = SqliteFolderStore(settings.db_path)
    tracker = FolderTracker.from_settings(
        settings, store,
        picker=TkFolderPicker(),
        indexed_search=detect_indexed_search(settings.indexed_search),
    )
    scheduler = None if args.no_watch else FolderWatchScheduler(tracker, settings.poll_interval)
    app = create_app(tracker, scheduler)

    host = args.host or settings.host
    port = args.port or settings.port
    logger.info(f"Application starting at http://{host}:{port}")
    try:
        uvicorn.run(app, host=host, port=port)
    finally:
        store.close()


if __name__ == "__main__":
    main()
