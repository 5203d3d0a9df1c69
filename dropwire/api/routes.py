"""REST API routes for the local UI."""

import logging
import os

from fastapi import APIRouter, HTTPException, Response
from pydantic import BaseModel

from dropwire.transfer.errors import FileTooLarge, TransportClosed, UnknownTransfer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_transfer_manager = None


def init_routes(transfer_manager) -> None:
    """Inject the transfer manager into the routes module."""
    global _transfer_manager
    _transfer_manager = transfer_manager


# --- Room ---

@router.get("/users")
async def list_users():
    """Return the other users in the room."""
    return {
        "username": _transfer_manager.username,
        "users": _transfer_manager.roster.peers(),
    }


@router.get("/config")
async def get_server_config():
    return _transfer_manager.server_config.model_dump()


# --- Offers ---

@router.get("/offers")
async def list_offers():
    """Return offers waiting for a decision."""
    offers = _transfer_manager.get_offers()
    return {"offers": [o.model_dump(by_alias=True) for o in offers]}


@router.post("/offers/{file_id}/accept")
async def accept_offer(file_id: str):
    try:
        record = await _transfer_manager.accept_offer(file_id)
    except UnknownTransfer:
        raise HTTPException(status_code=404, detail="Offer not found")
    except FileTooLarge as e:
        raise HTTPException(status_code=413, detail=str(e))
    except TransportClosed as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"status": "accepted", "transfer": record.model_dump(mode="json")}


@router.post("/offers/{file_id}/reject")
async def reject_offer(file_id: str):
    try:
        await _transfer_manager.reject_offer(file_id)
    except UnknownTransfer:
        raise HTTPException(status_code=404, detail="Offer not found")
    except TransportClosed as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"status": "rejected"}


# --- Transfers ---

class CreateTransferBody(BaseModel):
    to: str
    file_path: str


@router.get("/transfers")
async def list_transfers():
    """Return all transfers (active + finished)."""
    transfers = _transfer_manager.get_transfers()
    return {"transfers": [t.model_dump(mode="json") for t in transfers]}


@router.post("/transfers")
async def create_transfer(body: CreateTransferBody):
    """Offer a file from local disk to another user."""
    if not os.path.isfile(body.file_path):
        raise HTTPException(status_code=400, detail="File not found")
    if body.to == _transfer_manager.username:
        raise HTTPException(status_code=400, detail="Cannot send a file to yourself")

    try:
        record = await _transfer_manager.send_file(body.file_path, body.to)
    except FileTooLarge as e:
        raise HTTPException(status_code=413, detail=str(e))
    return {"transfer": record.model_dump(mode="json")}


@router.get("/transfers/{file_id}/file")
async def download_file(file_id: str):
    """Return the verified bytes of a finished download."""
    try:
        filename, data = await _transfer_manager.get_file(file_id)
    except (UnknownTransfer, OSError):
        raise HTTPException(status_code=404, detail="File not available")
    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/transfers/{file_id}/save")
async def save_file(file_id: str):
    try:
        path = await _transfer_manager.save_file(file_id)
    except UnknownTransfer:
        raise HTTPException(status_code=404, detail="File not available")
    except OSError as e:
        raise HTTPException(status_code=400, detail=f"Could not save file: {e}")
    return {"path": path}


# --- Settings ---

class SettingsBody(BaseModel):
    save_dir: str | None = None
    auto_save: bool | None = None


@router.get("/settings")
async def get_settings():
    return {
        "save_dir": _transfer_manager.save_dir,
        "auto_save": _transfer_manager.auto_save,
    }


@router.put("/settings")
async def update_settings(body: SettingsBody):
    if body.save_dir is not None:
        try:
            _transfer_manager.save_dir = body.save_dir
        except OSError as e:
            raise HTTPException(status_code=400, detail=f"Invalid directory: {e}")
    if body.auto_save is not None:
        _transfer_manager.auto_save = body.auto_save
    return {"status": "updated"}
