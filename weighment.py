"""
Weighment transaction lifecycle.

A transaction is created by the gross weigh in ``pending_tare`` and moved
exactly once, by the tare weigh, to ``completed``. Nothing reopens,
cancels or deletes it.

    gross weigh:  validate -> snapshot (best effort) -> resolve farmer/vehicle
                  -> insert pending_tare
    tare weigh:   validate -> read gross -> net = gross - tare
                  -> UPDATE ... WHERE id = :id AND status = 'pending_tare'

The guarded UPDATE is what makes a double completion from two terminals
fail instead of overwriting the first tare.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from camera import FrameSource
from errors import (
    CaptureUnavailableError,
    IdentityResolutionError,
    InvalidTransitionError,
    TransactionWriteError,
    UploadError,
    ValidationError,
)
from identity import IdentityResolver
from media import SnapshotUploader
from models import TransactionStatus, WeighmentTransaction
from realtime import ChangeType, fetch_pending, note_change
from snapshot import SnapshotComposer
from utils import clean_text, compute_net, parse_weight, utcnow

logger = logging.getLogger(__name__)


class WeighmentService:
    """Sole writer of weighment transactions. One instance per request session."""

    def __init__(
        self,
        db: Session,
        resolver: Optional[IdentityResolver] = None,
        uploader: Optional[SnapshotUploader] = None,
        composer: Optional[SnapshotComposer] = None,
        allow_negative_net: bool = True,
        jpeg_quality: int = 80,
    ):
        self.db = db
        self.resolver = resolver or IdentityResolver(db)
        self.uploader = uploader
        self.composer = composer
        self.allow_negative_net = allow_negative_net
        self.jpeg_quality = jpeg_quality

    # ---------- gross weigh ----------
    @staticmethod
    def validate_gross(farmer_name, vehicle_plate, gross_weight):
        name = clean_text(farmer_name)
        plate = clean_text(vehicle_plate)
        if not name:
            raise ValidationError("Farmer name is required", field="farmer_name")
        if not plate:
            raise ValidationError("Vehicle number plate is required", field="vehicle_plate")
        gross = parse_weight(gross_weight, "gross_weight", positive=True)
        return name, plate, gross

    def capture_snapshot(self, farmer_name: str, vehicle_plate: str,
                         frame_source: Optional[FrameSource] = None) -> Optional[str]:
        """URL of the stored snapshot, or None. Never raises for capture/upload problems."""
        composer = self.composer
        if frame_source is not None:
            composer = SnapshotComposer(frame_source, jpeg_quality=self.jpeg_quality)
        if composer is None or self.uploader is None:
            return None
        try:
            image = composer.compose(farmer_name, vehicle_plate)
            if image is None:
                raise CaptureUnavailableError("No camera frame available (camera not started?)")
            return self.uploader.upload(image)
        except (CaptureUnavailableError, UploadError) as e:
            logger.warning(f"saving weighment without snapshot: {e.message}")
        except OSError as e:
            logger.warning(f"saving weighment without snapshot: could not encode frame: {e}")
        return None

    def record_gross(self, farmer_name: str, vehicle_plate: str, gross_weight,
                     frame_source: Optional[FrameSource] = None) -> WeighmentTransaction:
        name, plate, gross = self.validate_gross(farmer_name, vehicle_plate, gross_weight)

        snapshot_url = self.capture_snapshot(name, plate, frame_source)

        try:
            farmer_id = self.resolver.resolve_farmer(name)
            vehicle_id = self.resolver.resolve_vehicle(plate, farmer_id)
        except IdentityResolutionError:
            self.db.rollback()
            raise

        txn = WeighmentTransaction(
            farmer_id=farmer_id,
            vehicle_id=vehicle_id,
            gross_weight=gross,
            gross_datetime=utcnow(),
            status=TransactionStatus.PENDING_TARE,
            weighment_snapshot_url=snapshot_url,
        )
        try:
            self.db.add(txn)
            self.db.commit()
            self.db.refresh(txn)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"gross weigh insert failed for {plate!r}")
            raise TransactionWriteError(f"Could not save gross weight: {e}")

        logger.info(
            f"txn {txn.id} pending_tare: farmer={farmer_id} vehicle={plate!r} gross={gross}"
            f"{'' if snapshot_url else ' (no snapshot)'}"
        )
        return txn

    # ---------- tare weigh ----------
    def record_tare(self, transaction_id: int, tare_weight) -> WeighmentTransaction:
        tare = parse_weight(tare_weight, "tare_weight", non_negative=True)

        try:
            txn = self.db.get(WeighmentTransaction, transaction_id, populate_existing=True)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"could not read transaction {transaction_id}")
            raise TransactionWriteError(f"Could not read transaction {transaction_id}: {e}")
        if txn is None:
            raise InvalidTransitionError(f"Transaction {transaction_id} not found",
                                         transaction_id, not_found=True)
        if txn.status != TransactionStatus.PENDING_TARE:
            raise InvalidTransitionError(f"Transaction {transaction_id} is already completed", transaction_id)

        gross = Decimal(txn.gross_weight)
        net = compute_net(gross, tare)
        if net < 0:
            if not self.allow_negative_net:
                raise ValidationError(
                    f"Tare {tare} is greater than gross {gross} for transaction {transaction_id}",
                    field="tare_weight",
                )
            logger.warning(f"txn {transaction_id}: tare {tare} exceeds gross {gross}, net is negative")

        try:
            result = self.db.execute(
                update(WeighmentTransaction)
                .where(WeighmentTransaction.id == transaction_id)
                .where(WeighmentTransaction.status == TransactionStatus.PENDING_TARE)
                .values(
                    tare_weight=tare,
                    tare_datetime=utcnow(),
                    net_weight=net,
                    status=TransactionStatus.COMPLETED,
                )
            )
            if result.rowcount != 1:
                self.db.rollback()
                raise InvalidTransitionError(
                    f"Transaction {transaction_id} was completed by another terminal", transaction_id
                )
            note_change(self.db, WeighmentTransaction.__tablename__, ChangeType.UPDATE, transaction_id)
            self.db.commit()
            self.db.refresh(txn)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"tare weigh update failed for transaction {transaction_id}")
            raise TransactionWriteError(f"Could not save tare weight: {e}")

        logger.info(f"txn {transaction_id} completed: gross={gross} tare={tare} net={net}")
        return txn

    # ---------- reads ----------
    def get(self, transaction_id: int) -> Optional[WeighmentTransaction]:
        return self.db.get(WeighmentTransaction, transaction_id)

    def list_pending(self) -> list:
        return fetch_pending(self.db)

    def list_completed(self, limit: int = 50) -> List[WeighmentTransaction]:
        return list(self.db.scalars(
            select(WeighmentTransaction)
            .where(WeighmentTransaction.status == TransactionStatus.COMPLETED)
            .order_by(WeighmentTransaction.tare_datetime.desc(), WeighmentTransaction.id.desc())
            .limit(limit)
        ).all())
