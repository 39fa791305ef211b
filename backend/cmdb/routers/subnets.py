import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from cmdb.database import get_db
from cmdb.exceptions import IpamError
from cmdb.middleware.identity import get_current_identity, require_admin, require_operator_or_above
from cmdb.schemas.subnet import SubnetCreate, SubnetUpdate, SubnetResponse, SubnetUsage
from cmdb.services.audit import log_audit
from cmdb.services.identity import Identity
from cmdb.services.ipam import IpamService, get_ipam
from cmdb.services.ipam_store import save_subnet, delete_subnet, clear_addresses
from cmdb.services.subnet_registry import Subnet

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subnets", tags=["Subnets"])


def _subnet_response(ipam: IpamService, subnet: Subnet) -> SubnetResponse:
    d = SubnetResponse.model_validate(subnet)
    try:
        d.usage = SubnetUsage(**ipam.usage.subnet_usage(subnet.id))
    except IpamError:
        d.usage = None
    return d


def _persist_failed(e: Exception) -> HTTPException:
    logger.exception("Subnet change could not be persisted: %s", e)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Subnet change could not be persisted",
    )


@router.get("/", response_model=List[SubnetResponse])
async def list_subnets(
    idc_ref: Optional[str] = None,
    ipam: IpamService = Depends(get_ipam),
    _: Identity = Depends(get_current_identity),
):
    return [_subnet_response(ipam, s) for s in ipam.registry.list(idc_ref=idc_ref)]


@router.post("/", response_model=SubnetResponse, status_code=201)
async def create_subnet(
    request: Request,
    payload: SubnetCreate,
    ipam: IpamService = Depends(get_ipam),
    identity: Identity = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    subnet = ipam.registry.register(payload.cidr, payload.label, payload.idc_ref)
    async with ipam.write_lock(subnet.id):
        try:
            await save_subnet(db, subnet)
        except SQLAlchemyError as e:
            await db.rollback()
            ipam.registry.remove(subnet.id)
            ipam.drop_write_lock(subnet.id)
            raise _persist_failed(e)

    await log_audit(
        db, "subnet_created",
        username=identity.username,
        resource_type="subnet", resource_id=str(subnet.id),
        details=f"Registered subnet {subnet.cidr} ({subnet.label})",
        source_ip=request.client.host if request.client else None,
    )
    return _subnet_response(ipam, subnet)


@router.get("/{subnet_id}", response_model=SubnetResponse)
async def get_subnet(
    subnet_id: int,
    ipam: IpamService = Depends(get_ipam),
    _: Identity = Depends(get_current_identity),
):
    return _subnet_response(ipam, ipam.registry.lookup(subnet_id))


@router.put("/{subnet_id}", response_model=SubnetResponse)
async def update_subnet(
    request: Request,
    subnet_id: int,
    payload: SubnetUpdate,
    ipam: IpamService = Depends(get_ipam),
    identity: Identity = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    async with ipam.write_lock(subnet_id):
        before = ipam.registry.lookup(subnet_id)
        kept = ipam.pool.records(subnet_id)
        subnet = ipam.registry.update(subnet_id, **payload.model_dump(exclude_unset=True))
        cidr_changed = subnet.cidr != before.cidr
        try:
            if cidr_changed:
                await clear_addresses(db, subnet_id)
            await save_subnet(db, subnet)
        except SQLAlchemyError as e:
            await db.rollback()
            ipam.registry.update(subnet_id, cidr=before.cidr, label=before.label, idc_ref=before.idc_ref)
            if cidr_changed:
                for record in kept:
                    ipam.pool.restore(record)
            raise _persist_failed(e)

    details = f"Updated subnet {subnet.cidr}"
    if cidr_changed:
        details = f"Re-addressed subnet {before.cidr} -> {subnet.cidr}"
    await log_audit(
        db, "subnet_updated",
        username=identity.username,
        resource_type="subnet", resource_id=str(subnet.id),
        details=details,
        source_ip=request.client.host if request.client else None,
    )
    return _subnet_response(ipam, subnet)


@router.delete("/{subnet_id}", status_code=204)
async def delete_subnet_route(
    request: Request,
    subnet_id: int,
    ipam: IpamService = Depends(get_ipam),
    identity: Identity = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    async with ipam.write_lock(subnet_id):
        # an empty subnet can still hold notes on free addresses
        kept = ipam.pool.records(subnet_id)
        subnet = ipam.registry.remove(subnet_id)
        try:
            await delete_subnet(db, subnet_id)
        except SQLAlchemyError as e:
            await db.rollback()
            ipam.registry.restore(subnet)
            for record in kept:
                ipam.pool.restore(record)
            raise _persist_failed(e)
        ipam.drop_write_lock(subnet_id)

    await log_audit(
        db, "subnet_deleted",
        username=identity.username,
        resource_type="subnet", resource_id=str(subnet_id),
        details=f"Removed subnet {subnet.cidr}",
        source_ip=request.client.host if request.client else None,
    )
