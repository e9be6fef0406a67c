import asyncio
import io
import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends, Request, Response, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from sqlalchemy.orm import Session

import qrcode

import config
import errors
from camera import OpenCVCamera, StillFrameSource
from database import Base, engine, SessionLocal
from identity import IdentityResolver
from logging_config import setup_logging
from media import LocalObjectStore, SnapshotUploader
from realtime import ChangeFeed, PendingTareWorklist
from schemas import GrossWeighIn, TareWeighIn, TransactionOut, PendingItem, FarmerOut, VehicleOut
from snapshot import SnapshotComposer
from weighment import WeighmentService

logger = logging.getLogger("weighment.app")

app = FastAPI(title="Ginning Mill Weighment", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # terminals on the mill LAN; restrict per site
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------- Shared services ----------
feed = ChangeFeed(dispatch_workers=config.FEED_DISPATCH_WORKERS)
feed.attach(SessionLocal)

object_store = LocalObjectStore(config.MEDIA_DIR, config.BASE_URL)
uploader = SnapshotUploader(object_store, category=config.SNAPSHOT_CATEGORY)

# weighbridge camera wired to this server, if any
camera: Optional[OpenCVCamera] = None
server_composer: Optional[SnapshotComposer] = None

# ---------- DB ----------
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_service(db: Session = Depends(get_db)) -> WeighmentService:
    return WeighmentService(
        db,
        resolver=IdentityResolver(db, vehicle_link_policy=config.VEHICLE_LINK_POLICY),
        uploader=uploader,
        composer=server_composer,
        allow_negative_net=config.ALLOW_NEGATIVE_NET,
        jpeg_quality=config.SNAPSHOT_JPEG_QUALITY,
    )

@app.on_event("startup")
def on_startup():
    global camera, server_composer
    setup_logging(config.LOG_LEVEL, config.LOG_DIR)
    if config.WEB_CONCURRENCY > 1:
        # worklists in other workers would never hear about this worker's commits
        msg = f"WEB_CONCURRENCY={config.WEB_CONCURRENCY}: the change feed needs a single service process"
        logger.error(msg)
        raise RuntimeError(msg)
    Base.metadata.create_all(bind=engine)
    source = config.camera_source()
    if source is not None:
        cam = OpenCVCamera(source)
        try:
            cam.start()
        except errors.CameraAccessDenied as e:
            # weighing still works, just without snapshots
            logger.warning(e.message)
        camera = cam
        server_composer = SnapshotComposer(cam, jpeg_quality=config.SNAPSHOT_JPEG_QUALITY)
    logger.info("weighment service started")

@app.on_event("shutdown")
def on_shutdown():
    if camera is not None:
        camera.release()

# ---------- Errors ----------
def _status_for(exc: errors.WeighmentError) -> int:
    if isinstance(exc, errors.ValidationError):
        return 422
    if isinstance(exc, errors.InvalidTransitionError):
        return 404 if exc.not_found else 409
    if isinstance(exc, (errors.IdentityResolutionError, errors.TransactionWriteError)):
        return 503
    return 500

@app.exception_handler(errors.WeighmentError)
async def weighment_error_handler(request: Request, exc: errors.WeighmentError):
    status = _status_for(exc)
    logger.info(f"{request.method} {request.url.path} -> {status} {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=status, content={"error": type(exc).__name__, "detail": exc.message})

# ---------- APIs: weighments ----------
@app.post("/api/weighments/gross", response_model=TransactionOut, status_code=201)
def record_gross(body: GrossWeighIn, svc: WeighmentService = Depends(get_service)):
    frame_source = None
    if body.frame_data_url:
        try:
            frame_source = StillFrameSource(body.frame_data_url)
        except errors.CaptureUnavailableError as e:
            logger.warning(f"ignoring terminal frame: {e.message}")
    txn = svc.record_gross(body.farmer_name, body.vehicle_plate, body.gross_weight, frame_source=frame_source)
    return TransactionOut.from_row(txn)

@app.post("/api/weighments/{transaction_id}/tare", response_model=TransactionOut)
def record_tare(transaction_id: int, body: TareWeighIn, svc: WeighmentService = Depends(get_service)):
    txn = svc.record_tare(transaction_id, body.tare_weight)
    return TransactionOut.from_row(txn)

@app.get("/api/weighments/pending", response_model=List[PendingItem])
def list_pending(svc: WeighmentService = Depends(get_service)):
    return svc.list_pending()

@app.get("/api/weighments/completed", response_model=List[TransactionOut])
def list_completed(limit: int = Query(50, ge=1, le=500), svc: WeighmentService = Depends(get_service)):
    return [TransactionOut.from_row(t) for t in svc.list_completed(limit)]

@app.get("/api/weighments/{transaction_id}", response_model=TransactionOut)
def get_weighment(transaction_id: int, svc: WeighmentService = Depends(get_service)):
    txn = svc.get(transaction_id)
    if not txn:
        raise HTTPException(status_code=404, detail="transaction not found")
    return TransactionOut.from_row(txn)

@app.get("/api/weighments/{transaction_id}/qrcode")
def weighment_qrcode(transaction_id: int, svc: WeighmentService = Depends(get_service)):
    if not svc.get(transaction_id):
        raise HTTPException(status_code=404, detail="transaction not found")
    url = f"{config.BASE_URL}/api/weighments/{transaction_id}"
    img = qrcode.make(url)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return Response(content=buf.getvalue(), media_type="image/png")

# ---------- APIs: identities ----------
@app.get("/api/farmers", response_model=List[FarmerOut])
def search_farmers(
    q: Optional[str] = Query(None, description="name prefix typed by the operator"),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return IdentityResolver(db).search_farmers(q or "", limit)

@app.get("/api/vehicles/{plate}", response_model=VehicleOut)
def get_vehicle(plate: str, db: Session = Depends(get_db)):
    vehicle = IdentityResolver(db).get_vehicle(plate)
    if not vehicle:
        raise HTTPException(status_code=404, detail="vehicle not found")
    return VehicleOut(
        id=vehicle.id,
        number_plate=vehicle.number_plate,
        farmer_id=vehicle.farmer_id,
        farmer_name=vehicle.farmer.name if vehicle.farmer else None,
    )

@app.get("/api/health")
def health():
    return {
        "status": "ok",
        "camera": bool(camera and camera.started),
        "pending_subscribers": feed.subscriber_count(PendingTareWorklist.TABLE),
    }

# ---------- Realtime ----------
@app.websocket("/ws/pending")
async def pending_socket(ws: WebSocket):
    """One terminal session: the full pending-tare list now and after every change."""
    await ws.accept()
    loop = asyncio.get_running_loop()
    updates: asyncio.Queue = asyncio.Queue()
    worklist = PendingTareWorklist(
        feed, SessionLocal,
        on_change=lambda items: loop.call_soon_threadsafe(updates.put_nowait, items),
    )

    async def forward():
        while True:
            items = await updates.get()
            await ws.send_json([item.model_dump(mode="json") for item in items])

    await run_in_threadpool(worklist.open)
    sender = asyncio.create_task(forward())
    try:
        while True:
            await ws.receive_text()  # terminals only ping; wait for disconnect
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        worklist.close()

# ---------- Media (keep last) ----------
app.mount("/media", StaticFiles(directory=object_store.root_dir), name="media")
