from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import datetime


class SubnetCreate(BaseModel):
    cidr: str
    label: str = ""
    idc_ref: Optional[str] = None

    @field_validator("cidr")
    @classmethod
    def strip_cidr(cls, v: str) -> str:
        # parsing happens in the registry so malformed input maps to InvalidCIDRError
        return v.strip()


class SubnetUpdate(BaseModel):
    cidr: Optional[str] = None
    label: Optional[str] = None
    idc_ref: Optional[str] = None


class SubnetUsage(BaseModel):
    total: int
    used: int
    free: int
    allocated: int
    reserved: int
    utilization_percent: float


class SubnetResponse(BaseModel):
    id: int
    cidr: str
    label: str
    idc_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    usage: Optional[SubnetUsage] = None

    model_config = {"from_attributes": True}
