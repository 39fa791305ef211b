"""
Subnet Registry
Holds subnet definitions and rejects overlapping ranges.
"""
import ipaddress
import logging
import threading
from contextlib import nullcontext
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from cmdb.exceptions import InvalidCIDRError, NotEmptyError, NotFoundError, OverlapError

logger = logging.getLogger(__name__)

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

_EDITABLE_FIELDS = ("label", "idc_ref", "cidr")


@dataclass(frozen=True)
class Subnet:
    id: int
    cidr: str
    label: str = ""
    idc_ref: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def network(self) -> IPNetwork:
        return ipaddress.ip_network(self.cidr)


def parse_cidr(cidr: str) -> IPNetwork:
    """Parse CIDR notation, masking off host bits ("10.0.0.5/24" -> 10.0.0.0/24)."""
    if not isinstance(cidr, str) or not cidr.strip():
        raise InvalidCIDRError(str(cidr), "empty value")
    cidr = cidr.strip()
    if "/" not in cidr:
        raise InvalidCIDRError(cidr, "missing prefix length")
    try:
        return ipaddress.ip_network(cidr, strict=False)
    except ValueError as e:
        raise InvalidCIDRError(cidr, str(e))


class SubnetRegistry:
    """
    In-memory store of subnet definitions.

    The address pool attaches itself on construction so that removal and
    CIDR changes can be serialized with allocations on the same subnet and
    refused while addresses are in use.
    """

    def __init__(self):
        self._subnets: Dict[int, Subnet] = {}
        self._next_id = 1
        self._lock = threading.RLock()
        self._pool = None

    def attach_pool(self, pool) -> None:
        self._pool = pool

    def register(self, cidr: str, label: str = "", idc_ref: Optional[str] = None) -> Subnet:
        network = parse_cidr(cidr)
        with self._lock:
            self._check_overlap(network)
            subnet = Subnet(id=self._next_id, cidr=str(network), label=label or "", idc_ref=idc_ref)
            self._subnets[subnet.id] = subnet
            self._next_id += 1
        logger.info("Registered subnet %d: %s (%s)", subnet.id, subnet.cidr, subnet.label)
        return subnet

    def restore(self, subnet: Subnet) -> None:
        """Insert a previously persisted subnet, keeping its id."""
        network = parse_cidr(subnet.cidr)
        with self._lock:
            if subnet.id in self._subnets:
                raise OverlapError(subnet.cidr, self._subnets[subnet.id].cidr, subnet.id)
            self._check_overlap(network)
            self._subnets[subnet.id] = replace(subnet, cidr=str(network))
            self._next_id = max(self._next_id, subnet.id + 1)

    def lookup(self, subnet_id: int) -> Subnet:
        subnet = self._subnets.get(subnet_id)
        if subnet is None:
            raise NotFoundError(f"Subnet {subnet_id} not found")
        return subnet

    def contains(self, subnet_id: int) -> bool:
        return subnet_id in self._subnets

    def list(self, idc_ref: Optional[str] = None) -> List[Subnet]:
        with self._lock:
            subnets = sorted(self._subnets.values(), key=lambda s: s.id)
        if idc_ref is not None:
            subnets = [s for s in subnets if s.idc_ref == idc_ref]
        return subnets

    def update(self, subnet_id: int, **changes) -> Subnet:
        """Edit label, IDC reference or CIDR. CIDR changes need an empty pool."""
        unknown = set(changes) - set(_EDITABLE_FIELDS)
        if unknown:
            raise TypeError(f"Cannot update subnet fields: {', '.join(sorted(unknown))}")

        network = None
        if changes.get("cidr") is not None:
            network = parse_cidr(changes["cidr"])
            changes["cidr"] = str(network)
        else:
            changes.pop("cidr", None)

        self.lookup(subnet_id)
        cidr_changed = False
        with self._pool_lock(subnet_id):
            with self._lock:
                current = self.lookup(subnet_id)
                cidr_changed = network is not None and changes["cidr"] != current.cidr
                if cidr_changed:
                    used = self._pool_used(subnet_id)
                    if used:
                        raise NotEmptyError(subnet_id, used)
                    self._check_overlap(network, exclude_id=subnet_id)
                else:
                    changes.pop("cidr", None)
                if changes.get("label") is None:
                    changes.pop("label", None)
                updated = replace(current, **changes)
                self._subnets[subnet_id] = updated
            if cidr_changed and self._pool is not None:
                self._pool.reset(subnet_id)

        if cidr_changed:
            logger.info("Subnet %d re-addressed: %s -> %s", subnet_id, current.cidr, updated.cidr)
        return updated

    def remove(self, subnet_id: int) -> Subnet:
        self.lookup(subnet_id)
        with self._pool_lock(subnet_id):
            with self._lock:
                subnet = self.lookup(subnet_id)
                used = self._pool_used(subnet_id)
                if used:
                    raise NotEmptyError(subnet_id, used)
                del self._subnets[subnet_id]
            if self._pool is not None:
                self._pool.discard(subnet_id)
        logger.info("Removed subnet %d: %s", subnet_id, subnet.cidr)
        return subnet

    def _check_overlap(self, network: IPNetwork, exclude_id: Optional[int] = None) -> None:
        for existing in self._subnets.values():
            if existing.id == exclude_id:
                continue
            other = existing.network
            if other.version == network.version and other.overlaps(network):
                raise OverlapError(str(network), existing.cidr, existing.id)

    def _pool_lock(self, subnet_id: int):
        if self._pool is None:
            return nullcontext()
        return self._pool.locked(subnet_id)

    def _pool_used(self, subnet_id: int) -> int:
        if self._pool is None:
            return 0
        return self._pool.counters(subnet_id).used
