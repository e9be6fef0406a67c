"""
Farmer and vehicle identity resolution.

Operators type farmer names and number plates free-hand at the weighbridge.
Both are matched exactly (case-sensitive) against existing records and a new
record is created when nothing matches.

Concurrency: two terminals can both miss the lookup for a brand-new name and
both try to insert. ``farmers_traders.name`` and ``vehicles.number_plate``
are unique, so the losing insert fails inside its SAVEPOINT and the resolver
re-reads the winner's row. On a database created without those constraints
the resolver degrades to duplicate-tolerant behavior: both inserts succeed
and two records exist for the same name. Either way every id returned refers
to an existing row.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from errors import IdentityResolutionError
from models import FarmerTrader, Vehicle
from utils import utcnow

logger = logging.getLogger(__name__)

VEHICLE_LINK_POLICIES = ("first_use", "latest_use")


class IdentityResolver:
    """
    Sole writer of farmer and vehicle records.

    ``vehicle_link_policy`` decides what happens when a known vehicle turns
    up with a different farmer: ``first_use`` keeps the farmer that first
    brought it in, ``latest_use`` re-links it to the current farmer.

    Writes are flushed, not committed; the caller commits them together with
    the transaction that references them.
    """

    def __init__(self, db: Session, vehicle_link_policy: str = "first_use"):
        if vehicle_link_policy not in VEHICLE_LINK_POLICIES:
            raise ValueError(f"unknown vehicle link policy {vehicle_link_policy!r}")
        self.db = db
        self.vehicle_link_policy = vehicle_link_policy

    def _find_farmer(self, name: str) -> Optional[FarmerTrader]:
        return self.db.scalar(select(FarmerTrader).where(FarmerTrader.name == name).order_by(FarmerTrader.id))

    def _find_vehicle(self, plate: str) -> Optional[Vehicle]:
        return self.db.scalar(select(Vehicle).where(Vehicle.number_plate == plate).order_by(Vehicle.id))

    def _insert_or_reread(self, row, reread):
        try:
            with self.db.begin_nested():
                self.db.add(row)
                self.db.flush()
        except IntegrityError:
            existing = reread()
            if existing is None:
                raise
            logger.info(f"{type(row).__name__} created concurrently by another terminal, reusing id={existing.id}")
            return existing
        return row

    def resolve_farmer(self, name: str) -> int:
        try:
            farmer = self._find_farmer(name)
            if farmer is None:
                farmer = self._insert_or_reread(
                    FarmerTrader(name=name, created_at=utcnow()),
                    lambda: self._find_farmer(name),
                )
                logger.info(f"farmer {name!r} resolved to id={farmer.id}")
            return farmer.id
        except SQLAlchemyError as e:
            logger.exception(f"could not resolve farmer {name!r}")
            raise IdentityResolutionError(f"Could not look up or create farmer {name!r}: {e}")

    def resolve_vehicle(self, plate: str, farmer_id: int) -> int:
        try:
            vehicle = self._find_vehicle(plate)
            if vehicle is None:
                vehicle = self._insert_or_reread(
                    Vehicle(number_plate=plate, farmer_id=farmer_id, created_at=utcnow()),
                    lambda: self._find_vehicle(plate),
                )
                logger.info(f"vehicle {plate!r} resolved to id={vehicle.id} (farmer {vehicle.farmer_id})")
            elif vehicle.farmer_id != farmer_id and self.vehicle_link_policy == "latest_use":
                logger.info(f"vehicle {plate!r} re-linked from farmer {vehicle.farmer_id} to {farmer_id}")
                vehicle.farmer_id = farmer_id
                self.db.flush()
            return vehicle.id
        except SQLAlchemyError as e:
            logger.exception(f"could not resolve vehicle {plate!r}")
            raise IdentityResolutionError(f"Could not look up or create vehicle {plate!r}: {e}")

    def search_farmers(self, prefix: str, limit: int = 10) -> List[FarmerTrader]:
        stmt = select(FarmerTrader).order_by(FarmerTrader.name).limit(limit)
        if prefix:
            stmt = stmt.where(FarmerTrader.name.ilike(f"{prefix}%"))
        return list(self.db.scalars(stmt).all())

    def get_vehicle(self, plate: str) -> Optional[Vehicle]:
        return self._find_vehicle(plate)
