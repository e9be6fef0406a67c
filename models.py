import enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Numeric, DateTime, ForeignKey, Enum
from sqlalchemy.types import TypeDecorator
from database import Base

WEIGHT = Numeric(12, 2)

class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes, also on backends that drop the offset (SQLite)."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"naive datetime {value!r}; use utils.utcnow()")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

class TransactionStatus(str, enum.Enum):
    PENDING_TARE = "pending_tare"
    COMPLETED = "completed"

class FarmerTrader(Base):
    __tablename__ = "farmers_traders"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime())
    vehicles: Mapped[list["Vehicle"]] = relationship("Vehicle", back_populates="farmer")

class Vehicle(Base):
    __tablename__ = "vehicles"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    number_plate: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    farmer_id: Mapped[int] = mapped_column(Integer, ForeignKey("farmers_traders.id"))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime())
    farmer: Mapped[FarmerTrader] = relationship("FarmerTrader", back_populates="vehicles")

class WeighmentTransaction(Base):
    __tablename__ = "weighment_transactions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    farmer_id: Mapped[int] = mapped_column(Integer, ForeignKey("farmers_traders.id"))
    vehicle_id: Mapped[int] = mapped_column(Integer, ForeignKey("vehicles.id"))
    gross_weight: Mapped[Decimal] = mapped_column(WEIGHT)
    gross_datetime: Mapped[datetime] = mapped_column(UTCDateTime(), index=True)
    tare_weight: Mapped[Optional[Decimal]] = mapped_column(WEIGHT, nullable=True)
    tare_datetime: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    net_weight: Mapped[Optional[Decimal]] = mapped_column(WEIGHT, nullable=True)
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        default=TransactionStatus.PENDING_TARE,
        index=True,
    )
    weighment_snapshot_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    farmer: Mapped[FarmerTrader] = relationship("FarmerTrader")
    vehicle: Mapped[Vehicle] = relationship("Vehicle")

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING_TARE
