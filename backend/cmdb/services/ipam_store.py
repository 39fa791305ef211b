"""
IPAM Store
Write-through persistence for subnets and address records, and hydration
of a fresh IpamService from the database on startup.
"""
import logging
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from cmdb.exceptions import IpamError
from cmdb.models.ip_subnet import IpSubnet, IpAddress
from cmdb.services.address_pool import AddressRecord, AddressState
from cmdb.services.ipam import IpamService
from cmdb.services.subnet_registry import Subnet

logger = logging.getLogger(__name__)


async def load_ipam(session_factory: async_sessionmaker) -> IpamService:
    ipam = IpamService()
    async with session_factory() as db:
        subnets = (await db.execute(select(IpSubnet).order_by(IpSubnet.id))).scalars().all()
        for row in subnets:
            ipam.registry.restore(Subnet(
                id=row.id, cidr=row.cidr, label=row.label or "",
                idc_ref=row.idc_ref, created_at=row.created_at,
            ))

        addresses = (await db.execute(select(IpAddress))).scalars().all()
        restored = 0
        for row in addresses:
            try:
                ipam.pool.restore(AddressRecord(
                    subnet_id=row.subnet_id,
                    address=row.address,
                    state=AddressState(row.state),
                    owner_ref=row.owner_ref,
                    allocated_at=row.allocated_at,
                    note=row.note,
                ))
                restored += 1
            except (IpamError, ValueError) as e:
                logger.warning("Skipping stored address %s/%s: %s", row.subnet_id, row.address, e)

    logger.info("IPAM hydrated: %d subnets, %d address records", len(subnets), restored)
    return ipam


async def save_subnet(db: AsyncSession, subnet: Subnet) -> None:
    row = await db.get(IpSubnet, subnet.id)
    if row is None:
        db.add(IpSubnet(
            id=subnet.id, cidr=subnet.cidr, label=subnet.label,
            idc_ref=subnet.idc_ref, created_at=subnet.created_at,
        ))
    else:
        row.cidr = subnet.cidr
        row.label = subnet.label
        row.idc_ref = subnet.idc_ref
    await db.commit()


async def delete_subnet(db: AsyncSession, subnet_id: int) -> None:
    await db.execute(delete(IpAddress).where(IpAddress.subnet_id == subnet_id))
    await db.execute(delete(IpSubnet).where(IpSubnet.id == subnet_id))
    await db.commit()


async def clear_addresses(db: AsyncSession, subnet_id: int) -> None:
    """Drop every stored record of a subnet (after a CIDR change)."""
    await db.execute(delete(IpAddress).where(IpAddress.subnet_id == subnet_id))
    await db.commit()


async def save_record(db: AsyncSession, record: AddressRecord) -> None:
    row = await db.get(IpAddress, (record.subnet_id, record.address))
    if record.is_free and not record.note:
        if row is not None:
            await db.delete(row)
    elif row is None:
        db.add(IpAddress(
            subnet_id=record.subnet_id,
            address=record.address,
            state=record.state.value,
            owner_ref=record.owner_ref,
            allocated_at=record.allocated_at,
            note=record.note,
        ))
    else:
        row.state = record.state.value
        row.owner_ref = record.owner_ref
        row.allocated_at = record.allocated_at
        row.note = record.note
    await db.commit()
