"""
Allocator
Lowest-free address selection on top of the address pool.
"""
import logging
from typing import Optional

from cmdb.exceptions import PoolExhaustedError
from cmdb.services.address_pool import AddressPool, AddressRecord

logger = logging.getLogger(__name__)


class Allocator:
    """
    Selects and claims addresses.

    Selection always returns the lowest-numbered free address of the usable
    range, so results are reproducible. The subnet lock is held from the
    scan until the address is marked, so concurrent callers on one subnet
    never receive the same address.
    """

    def __init__(self, pool: AddressPool):
        self._pool = pool

    def allocate(self, subnet_id: int, owner_ref: Optional[str]) -> AddressRecord:
        with self._pool.locked(subnet_id):
            address = self._pool.first_free(subnet_id)
            if address is None:
                cidr = self._pool.network(subnet_id)
                logger.warning("Subnet %d (%s) exhausted, owner=%s", subnet_id, cidr, owner_ref)
                raise PoolExhaustedError(subnet_id, cidr)
            record = self._pool.mark_allocated(subnet_id, address, owner_ref)
        logger.info("Allocated %s in subnet %d to %s", record.address, subnet_id, owner_ref)
        return record

    def allocate_address(self, subnet_id: int, address: str, owner_ref: Optional[str]) -> AddressRecord:
        record = self._pool.mark_allocated(subnet_id, address, owner_ref)
        logger.info("Allocated %s in subnet %d to %s", record.address, subnet_id, owner_ref)
        return record

    def reserve(self, subnet_id: int, address: str, note: Optional[str] = None) -> AddressRecord:
        record = self._pool.mark_reserved(subnet_id, address, note)
        logger.info("Reserved %s in subnet %d", record.address, subnet_id)
        return record

    def release(self, subnet_id: int, address: str) -> AddressRecord:
        record = self._pool.mark_free(subnet_id, address)
        logger.info("Released %s in subnet %d", record.address, subnet_id)
        return record
