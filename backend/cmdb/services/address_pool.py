"""
Address Pool
Per-subnet allocation state with incremental capacity counters.

Usable addresses are materialized lazily: only records that are not free,
or that carry a note, are stored. Any other usable address is free.
"""
import bisect
import enum
import ipaddress
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

from cmdb.exceptions import (
    AddressOutOfRangeError, AlreadyAllocatedError, NotAllocatedError, NotFoundError,
)
from cmdb.services.subnet_registry import IPNetwork, Subnet, SubnetRegistry


class AddressState(str, enum.Enum):
    free = "free"
    allocated = "allocated"
    reserved = "reserved"


@dataclass(frozen=True)
class AddressRecord:
    subnet_id: int
    address: str
    state: AddressState = AddressState.free
    owner_ref: Optional[str] = None
    allocated_at: Optional[datetime] = None
    note: Optional[str] = None

    @property
    def is_free(self) -> bool:
        return self.state == AddressState.free


class PoolCounters(NamedTuple):
    total: int
    allocated: int = 0
    reserved: int = 0

    @property
    def used(self) -> int:
        return self.allocated + self.reserved

    @property
    def free(self) -> int:
        return self.total - self.used


def usable_bounds(network: IPNetwork) -> Tuple[int, int]:
    """First and last usable address of a network, as integers."""
    first = int(network.network_address)
    last = int(network.broadcast_address)
    if network.max_prefixlen - network.prefixlen <= 1:
        # /31, /32, /127, /128: every address is a host
        return first, last
    if network.version == 4:
        return first + 1, last - 1
    # IPv6 has no broadcast; only the subnet-router anycast address is excluded
    return first + 1, last


class _SubnetState:
    def __init__(self, subnet: Subnet):
        self.lock = threading.RLock()
        self.closed = False
        self.load(subnet)

    def load(self, subnet: Subnet) -> None:
        network = subnet.network
        self.subnet_id = subnet.id
        self.cidr = subnet.cidr
        self.address_cls = ipaddress.IPv4Address if network.version == 4 else ipaddress.IPv6Address
        self.first, self.last = usable_bounds(network)
        self.records: Dict[int, AddressRecord] = {}
        # sorted integer values of every address that is not free
        self.taken: List[int] = []
        self.counters = PoolCounters(total=self.last - self.first + 1)

    def index(self, address: str) -> int:
        try:
            value = self.address_cls(str(address).strip())
        except ValueError:
            raise AddressOutOfRangeError(str(address), self.cidr)
        idx = int(value)
        if idx < self.first or idx > self.last:
            raise AddressOutOfRangeError(str(value), self.cidr)
        return idx

    def text(self, idx: int) -> str:
        return str(self.address_cls(idx))

    def record(self, idx: int) -> AddressRecord:
        stored = self.records.get(idx)
        if stored is not None:
            return stored
        return AddressRecord(subnet_id=self.subnet_id, address=self.text(idx))

    def iter_free(self) -> Iterator[int]:
        candidate = self.first
        for taken in self.taken:
            while candidate < taken:
                yield candidate
                candidate += 1
            candidate = taken + 1
        while candidate <= self.last:
            yield candidate
            candidate += 1

    def commit(self, idx: int, old: AddressRecord, new: AddressRecord) -> None:
        """Store a transition and its counter delta in one step."""
        if old.is_free and not new.is_free:
            bisect.insort(self.taken, idx)
        elif not old.is_free and new.is_free:
            pos = bisect.bisect_left(self.taken, idx)
            del self.taken[pos]

        if new.is_free and not new.note:
            self.records.pop(idx, None)
        else:
            self.records[idx] = new

        allocated, reserved = self.counters.allocated, self.counters.reserved
        if old.state == AddressState.allocated:
            allocated -= 1
        elif old.state == AddressState.reserved:
            reserved -= 1
        if new.state == AddressState.allocated:
            allocated += 1
        elif new.state == AddressState.reserved:
            reserved += 1
        self.counters = PoolCounters(self.counters.total, allocated, reserved)


class AddressPool:
    """
    Source of truth for address states and capacity counters.

    Every mutation on a subnet runs under that subnet's re-entrant lock.
    Counter snapshots are immutable and swapped in the same critical
    section as the record change, so readers never need the lock.
    """

    def __init__(self, registry: SubnetRegistry):
        self._registry = registry
        self._states: Dict[int, _SubnetState] = {}
        self._states_lock = threading.Lock()
        registry.attach_pool(self)

    def _state(self, subnet_id: int) -> _SubnetState:
        state = self._states.get(subnet_id)
        if state is not None and not state.closed:
            return state
        subnet = self._registry.lookup(subnet_id)
        with self._states_lock:
            state = self._states.get(subnet_id)
            if state is None or state.closed:
                state = _SubnetState(subnet)
                self._states[subnet_id] = state
            return state

    @contextmanager
    def locked(self, subnet_id: int):
        """Hold the subnet's mutation lock."""
        state = self._state(subnet_id)
        with state.lock:
            if (
                state.closed
                or self._states.get(subnet_id) is not state
                or not self._registry.contains(subnet_id)
            ):
                raise NotFoundError(f"Subnet {subnet_id} not found")
            yield state

    def network(self, subnet_id: int) -> str:
        return self._state(subnet_id).cidr

    def counters(self, subnet_id: int) -> PoolCounters:
        return self._state(subnet_id).counters

    def current(self, subnet_id: int, address: str) -> AddressRecord:
        """Like ``get``, but a bad address raises AddressOutOfRangeError as ``mark_*`` do."""
        state = self._state(subnet_id)
        return state.record(state.index(address))

    def get(self, subnet_id: int, address: str) -> AddressRecord:
        try:
            return self.current(subnet_id, address)
        except AddressOutOfRangeError:
            raise NotFoundError(f"Address {address} not found in subnet {subnet_id}")

    def mark_allocated(self, subnet_id: int, address: str, owner_ref: Optional[str]) -> AddressRecord:
        with self.locked(subnet_id) as state:
            idx = state.index(address)
            old = state.record(idx)
            if not old.is_free:
                raise AlreadyAllocatedError(old.address, old.state.value)
            new = replace(
                old,
                state=AddressState.allocated,
                owner_ref=owner_ref,
                allocated_at=datetime.now(timezone.utc),
            )
            state.commit(idx, old, new)
        return new

    def mark_reserved(self, subnet_id: int, address: str, note: Optional[str] = None) -> AddressRecord:
        with self.locked(subnet_id) as state:
            idx = state.index(address)
            old = state.record(idx)
            if not old.is_free:
                raise AlreadyAllocatedError(old.address, old.state.value)
            new = replace(
                old,
                state=AddressState.reserved,
                owner_ref=None,
                allocated_at=datetime.now(timezone.utc),
                note=note if note is not None else old.note,
            )
            state.commit(idx, old, new)
        return new

    def mark_free(self, subnet_id: int, address: str) -> AddressRecord:
        with self.locked(subnet_id) as state:
            idx = state.index(address)
            old = state.record(idx)
            if old.is_free:
                raise NotAllocatedError(old.address)
            new = replace(old, state=AddressState.free, owner_ref=None, allocated_at=None)
            state.commit(idx, old, new)
        return new

    def set_note(self, subnet_id: int, address: str, note: Optional[str]) -> AddressRecord:
        """Edit an address note. State is never touched here."""
        with self.locked(subnet_id) as state:
            idx = state.index(address)
            old = state.record(idx)
            new = replace(old, note=note or None)
            state.commit(idx, old, new)
        return new

    def first_free(self, subnet_id: int) -> Optional[str]:
        with self.locked(subnet_id) as state:
            if state.counters.free == 0:
                return None
            for idx in state.iter_free():
                return state.text(idx)
        return None

    def free_addresses(self, subnet_id: int, limit: int) -> List[str]:
        with self.locked(subnet_id) as state:
            result = []
            for idx in state.iter_free():
                if len(result) >= limit:
                    break
                result.append(state.text(idx))
        return result

    def records(self, subnet_id: int, state: Optional[AddressState] = None) -> List[AddressRecord]:
        with self.locked(subnet_id) as pool_state:
            stored = [pool_state.records[idx] for idx in sorted(pool_state.records)]
        if state is not None:
            stored = [r for r in stored if r.state == state]
        return stored

    def restore(self, record: AddressRecord) -> None:
        """Put back a persisted record as-is (startup hydration, undoing a failed write)."""
        with self.locked(record.subnet_id) as state:
            idx = state.index(record.address)
            old = state.record(idx)
            state.commit(idx, old, replace(record, address=state.text(idx)))

    def reset(self, subnet_id: int) -> None:
        """Rebuild a subnet's range after its CIDR changed."""
        with self.locked(subnet_id) as state:
            state.load(self._registry.lookup(subnet_id))

    def discard(self, subnet_id: int) -> None:
        with self._states_lock:
            state = self._states.pop(subnet_id, None)
        if state is not None:
            state.closed = True
