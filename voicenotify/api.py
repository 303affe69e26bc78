from __future__ import annotations
import asyncio, contextlib, logging, time
from typing import Optional
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Request
from fastapi.responses import JSONResponse

from voicenotify.bonded import BluezBondedDeviceSource
from voicenotify.config import Settings
from voicenotify.database import default_manager
from voicenotify.exceptions import StoreUnavailableError
from voicenotify.repository import BluetoothDeviceRepository

logger = logging.getLogger(__name__)

app = FastAPI(title="Voice Notify devices API", version="0.1.0")

_repository: Optional[BluetoothDeviceRepository] = None


def get_repository() -> BluetoothDeviceRepository:
    global _repository
    if _repository is None:
        settings = Settings.from_env()
        _repository = BluetoothDeviceRepository(
            default_manager(settings),
            BluezBondedDeviceSource(),
            settings=settings,
        )
    return _repository


@app.exception_handler(StoreUnavailableError)
async def store_unavailable(_: Request, exc: StoreUnavailableError):
    return JSONResponse({"detail": str(exc)}, status_code=503)


@app.get("/health")
async def health():
    return {"status": "ok", "time": time.time()}


@app.get("/devices")
async def devices():
    records = await get_repository().current_devices()
    return [record.to_dict() for record in records]


@app.get("/devices/enabled")
async def enabled_devices():
    records = await get_repository().current_devices(enabled_only=True)
    return [record.to_dict() for record in records]


@app.post("/devices/sync")
async def sync():
    report = await get_repository().sync()
    return report.to_dict()


@app.post("/devices/{address}/toggle")
async def toggle(address: str):
    repository = get_repository()
    if not await repository.toggle_device(address):
        raise HTTPException(status_code=404, detail=f"Unknown device {address}")
    record = await repository.get_device(address)
    if record is None:
        # removed by a concurrent sync
        raise HTTPException(status_code=404, detail=f"Unknown device {address}")
    return {"status": "toggled", "device": record.to_dict()}


@app.websocket("/devices/events")
async def device_events(ws: WebSocket):
    """Push the device list on connect and after every change."""
    await ws.accept()
    flow = get_repository().devices_flow

    async def _forward() -> None:
        async with contextlib.aclosing(flow.values()) as stream:
            async for records in stream:
                await ws.send_json({"devices": [record.to_dict() for record in records]})

    forward = asyncio.create_task(_forward())
    try:
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        logger.debug("Device events client disconnected")
    finally:
        forward.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await forward
