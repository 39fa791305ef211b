import asyncio
from typing import Dict

from fastapi import Request

from cmdb.services.address_pool import AddressPool
from cmdb.services.allocator import Allocator
from cmdb.services.subnet_registry import SubnetRegistry
from cmdb.services.usage import UsageAggregator


class IpamService:
    """One registry, pool, allocator and usage aggregator wired together.

    Created per application in ``cmdb.main.lifespan`` and handed to request
    handlers through ``get_ipam``.

    HTTP writers hold ``write_lock(subnet_id)`` from the in-memory change
    until its row is committed (or the change is reverted), so the database
    sees a subnet's transitions in the same order as memory.
    """

    def __init__(self):
        self.registry = SubnetRegistry()
        self.pool = AddressPool(self.registry)
        self.allocator = Allocator(self.pool)
        self.usage = UsageAggregator(self.registry, self.pool)
        self._write_locks: Dict[int, asyncio.Lock] = {}

    def write_lock(self, subnet_id: int) -> asyncio.Lock:
        lock = self._write_locks.get(subnet_id)
        if lock is None:
            self.registry.lookup(subnet_id)
            lock = self._write_locks[subnet_id] = asyncio.Lock()
        return lock

    def drop_write_lock(self, subnet_id: int) -> None:
        self._write_locks.pop(subnet_id, None)


def get_ipam(request: Request) -> IpamService:
    return request.app.state.ipam
