"""
IP Pool API — allocation, reservation and release of addresses within a subnet.

``allocate``, ``reserve`` and ``release`` are the only routes that change an
address's state. The generic address update edits the note only.

Every write holds the subnet's write lock from the in-memory transition
until the row is committed or the transition is undone.
"""
import logging
from dataclasses import replace
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from cmdb.config import settings
from cmdb.database import get_db
from cmdb.exceptions import IpamError
from cmdb.middleware.identity import get_current_identity, require_operator_or_above
from cmdb.schemas.ip_address import (
    AllocateRequest, ReserveRequest, ReleaseRequest, AddressUpdate, AddressResponse,
)
from cmdb.services.address_pool import AddressRecord, AddressState
from cmdb.services.audit import log_audit
from cmdb.services.identity import Identity
from cmdb.services.ipam import IpamService, get_ipam
from cmdb.services.ipam_store import save_record

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ip-pool", tags=["IP Pool"])

MAX_FREE_LIST = 1024


def _address_response(record: AddressRecord) -> AddressResponse:
    return AddressResponse(
        subnet_id=record.subnet_id,
        address=record.address,
        state=record.state.value,
        owner_ref=record.owner_ref,
        allocated_at=record.allocated_at,
        note=record.note,
    )


async def _persist(db: AsyncSession, ipam: IpamService, record: AddressRecord, before: AddressRecord) -> None:
    """Write the record through; put ``before`` back in memory if that fails.

    Must be awaited while holding the subnet's write lock.
    """
    try:
        await save_record(db, record)
    except SQLAlchemyError as e:
        logger.exception("Address %s/%s could not be persisted: %s", record.subnet_id, record.address, e)
        await db.rollback()
        try:
            ipam.pool.restore(before)
        except IpamError as revert_error:
            logger.error("Could not revert %s/%s: %s", record.subnet_id, record.address, revert_error)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Address change could not be persisted",
        )


@router.get("/{subnet_id}", response_model=List[AddressResponse])
async def list_addresses(
    subnet_id: int,
    state: Optional[AddressState] = None,
    ipam: IpamService = Depends(get_ipam),
    _: Identity = Depends(get_current_identity),
):
    """Allocated, reserved and annotated addresses in ascending order."""
    return [_address_response(r) for r in ipam.pool.records(subnet_id, state=state)]


@router.get("/{subnet_id}/free", response_model=List[str])
async def list_free_addresses(
    subnet_id: int,
    limit: Optional[int] = Query(None, ge=1, le=MAX_FREE_LIST),
    ipam: IpamService = Depends(get_ipam),
    _: Identity = Depends(get_current_identity),
):
    return ipam.pool.free_addresses(subnet_id, limit or settings.IP_POOL_FREE_LIST_LIMIT)


@router.get("/{subnet_id}/addresses/{address}", response_model=AddressResponse)
async def get_address(
    subnet_id: int,
    address: str,
    ipam: IpamService = Depends(get_ipam),
    _: Identity = Depends(get_current_identity),
):
    return _address_response(ipam.pool.get(subnet_id, address))


@router.put("/{subnet_id}/addresses/{address}", response_model=AddressResponse)
async def update_address(
    request: Request,
    subnet_id: int,
    address: str,
    payload: AddressUpdate,
    ipam: IpamService = Depends(get_ipam),
    identity: Identity = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    async with ipam.write_lock(subnet_id):
        before = ipam.pool.current(subnet_id, address)
        record = ipam.pool.set_note(subnet_id, address, payload.note)
        await _persist(db, ipam, record, before)

    await log_audit(
        db, "ip_note_updated",
        username=identity.username,
        resource_type="ip_address", resource_id=f"{subnet_id}/{record.address}",
        details=f"Note set to: {record.note or ''}",
        source_ip=request.client.host if request.client else None,
    )
    return _address_response(record)


@router.put("/{subnet_id}/allocate", response_model=AddressResponse)
async def allocate_address(
    request: Request,
    subnet_id: int,
    payload: AllocateRequest,
    ipam: IpamService = Depends(get_ipam),
    identity: Identity = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    async with ipam.write_lock(subnet_id):
        if payload.address:
            record = ipam.allocator.allocate_address(subnet_id, payload.address, payload.owner_ref)
        else:
            record = ipam.allocator.allocate(subnet_id, payload.owner_ref)
        # allocation keeps the note, so the free record is recoverable from the new one
        before = replace(record, state=AddressState.free, owner_ref=None, allocated_at=None)
        await _persist(db, ipam, record, before)

    await log_audit(
        db, "ip_allocated",
        username=identity.username,
        resource_type="ip_address", resource_id=f"{subnet_id}/{record.address}",
        details=f"Allocated {record.address} to device {record.owner_ref}",
        source_ip=request.client.host if request.client else None,
    )
    return _address_response(record)


@router.put("/{subnet_id}/reserve", response_model=AddressResponse)
async def reserve_address(
    request: Request,
    subnet_id: int,
    payload: ReserveRequest,
    ipam: IpamService = Depends(get_ipam),
    identity: Identity = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    async with ipam.write_lock(subnet_id):
        before = ipam.pool.current(subnet_id, payload.address)
        record = ipam.allocator.reserve(subnet_id, payload.address, payload.note)
        await _persist(db, ipam, record, before)

    await log_audit(
        db, "ip_reserved",
        username=identity.username,
        resource_type="ip_address", resource_id=f"{subnet_id}/{record.address}",
        details=f"Reserved {record.address}: {record.note or ''}",
        source_ip=request.client.host if request.client else None,
    )
    return _address_response(record)


@router.put("/{subnet_id}/release", response_model=AddressResponse)
async def release_address(
    request: Request,
    subnet_id: int,
    payload: ReleaseRequest,
    ipam: IpamService = Depends(get_ipam),
    identity: Identity = Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    async with ipam.write_lock(subnet_id):
        before = ipam.pool.current(subnet_id, payload.address)
        record = ipam.allocator.release(subnet_id, payload.address)
        await _persist(db, ipam, record, before)

    await log_audit(
        db, "ip_released",
        username=identity.username,
        resource_type="ip_address", resource_id=f"{subnet_id}/{record.address}",
        details=f"Released {record.address} (was {before.state.value}, owner {before.owner_ref})",
        source_ip=request.client.host if request.client else None,
    )
    return _address_response(record)
