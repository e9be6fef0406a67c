from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Union

# Weights arrive as typed by the operator; the engine parses and validates them.
WeightInput = Union[Decimal, str, None]

class GrossWeighIn(BaseModel):
    farmer_name: str = ""
    vehicle_plate: str = ""
    gross_weight: WeightInput = None
    frame_data_url: Optional[str] = Field(None, description="data:image/jpeg;base64,... from the terminal camera")

class TareWeighIn(BaseModel):
    tare_weight: WeightInput = None

class PendingItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    farmer_id: int
    vehicle_id: int
    farmer_name: Optional[str] = None
    vehicle_plate: Optional[str] = None
    gross_weight: Decimal
    gross_datetime: datetime
    status: str

    @classmethod
    def from_row(cls, txn) -> "PendingItem":
        return cls(
            id=txn.id,
            farmer_id=txn.farmer_id,
            vehicle_id=txn.vehicle_id,
            farmer_name=txn.farmer.name if txn.farmer else None,
            vehicle_plate=txn.vehicle.number_plate if txn.vehicle else None,
            gross_weight=txn.gross_weight,
            gross_datetime=txn.gross_datetime,
            status=txn.status.value,
        )

class TransactionOut(PendingItem):
    tare_weight: Optional[Decimal] = None
    tare_datetime: Optional[datetime] = None
    net_weight: Optional[Decimal] = None
    weighment_snapshot_url: Optional[str] = None

    @classmethod
    def from_row(cls, txn) -> "TransactionOut":
        base = PendingItem.from_row(txn).model_dump()
        return cls(
            **base,
            tare_weight=txn.tare_weight,
            tare_datetime=txn.tare_datetime,
            net_weight=txn.net_weight,
            weighment_snapshot_url=txn.weighment_snapshot_url,
        )

class FarmerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str

class VehicleOut(BaseModel):
    id: int
    number_plate: str
    farmer_id: int
    farmer_name: Optional[str] = None

class ErrorOut(BaseModel):
    error: str
    detail: str
