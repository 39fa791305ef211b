"""
Reports API — IP capacity figures across subnets and IDCs.
"""
from typing import Optional
from fastapi import APIRouter, Depends

from cmdb.middleware.identity import get_current_identity
from cmdb.services.identity import Identity
from cmdb.services.ipam import IpamService, get_ipam

router = APIRouter(prefix="/api/reports", tags=["Reports"])


@router.get("/ip-usage")
async def report_ip_usage(
    subnet_id: Optional[int] = None,
    idc_ref: Optional[str] = None,
    ipam: IpamService = Depends(get_ipam),
    _: Identity = Depends(get_current_identity),
):
    """Global usage with a per-subnet breakdown, or one subnet with ?subnet_id=."""
    if subnet_id is not None:
        return ipam.usage.subnet_usage(subnet_id)
    return {
        **ipam.usage.global_usage(),
        "subnets": ipam.usage.usage_by_subnet(idc_ref=idc_ref),
    }


@router.get("/ip-usage/idc")
async def report_ip_usage_by_idc(
    ipam: IpamService = Depends(get_ipam),
    _: Identity = Depends(get_current_identity),
):
    return ipam.usage.usage_by_idc()
