from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class AllocateRequest(BaseModel):
    owner_ref: str = Field(..., min_length=1, max_length=100)  # device reference
    address: Optional[str] = None  # claim a specific address instead of the lowest free one


class ReserveRequest(BaseModel):
    address: str
    note: Optional[str] = None


class ReleaseRequest(BaseModel):
    address: str


class AddressUpdate(BaseModel):
    note: Optional[str] = None


class AddressResponse(BaseModel):
    subnet_id: int
    address: str
    state: str
    owner_ref: Optional[str] = None
    allocated_at: Optional[datetime] = None
    note: Optional[str] = None

    model_config = {"from_attributes": True}
