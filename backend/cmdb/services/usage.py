"""
Usage Aggregator
Read-only utilization figures built from the pool's incremental counters.
"""
from typing import Any, Dict, List, Optional

from cmdb.services.address_pool import AddressPool, PoolCounters
from cmdb.services.subnet_registry import SubnetRegistry
from cmdb.exceptions import NotFoundError


def utilization_percent(used: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(used * 100.0 / total, 2)


def _figures(counters: PoolCounters) -> Dict[str, Any]:
    return {
        "total": counters.total,
        "used": counters.used,
        "free": counters.free,
        "allocated": counters.allocated,
        "reserved": counters.reserved,
        "utilization_percent": utilization_percent(counters.used, counters.total),
    }


class UsageAggregator:
    def __init__(self, registry: SubnetRegistry, pool: AddressPool):
        self._registry = registry
        self._pool = pool

    def subnet_usage(self, subnet_id: int) -> Dict[str, Any]:
        subnet = self._registry.lookup(subnet_id)
        return {
            "subnet_id": subnet.id,
            "cidr": subnet.cidr,
            "label": subnet.label,
            "idc_ref": subnet.idc_ref,
            **_figures(self._pool.counters(subnet_id)),
        }

    def usage_by_subnet(self, idc_ref: Optional[str] = None) -> List[Dict[str, Any]]:
        usages = []
        for subnet in self._registry.list(idc_ref=idc_ref):
            try:
                usages.append(self.subnet_usage(subnet.id))
            except NotFoundError:
                # removed while the report was being built
                continue
        return usages

    def global_usage(self) -> Dict[str, Any]:
        total = allocated = reserved = 0
        subnets = self._registry.list()
        for subnet in subnets:
            try:
                counters = self._pool.counters(subnet.id)
            except NotFoundError:
                continue
            total += counters.total
            allocated += counters.allocated
            reserved += counters.reserved
        return {
            "subnet_count": len(subnets),
            **_figures(PoolCounters(total, allocated, reserved)),
        }

    def usage_by_idc(self) -> List[Dict[str, Any]]:
        grouped: Dict[Optional[str], Dict[str, int]] = {}
        for usage in self.usage_by_subnet():
            bucket = grouped.setdefault(
                usage["idc_ref"], {"subnet_count": 0, "total": 0, "allocated": 0, "reserved": 0},
            )
            bucket["subnet_count"] += 1
            bucket["total"] += usage["total"]
            bucket["allocated"] += usage["allocated"]
            bucket["reserved"] += usage["reserved"]

        rows = []
        for idc_ref in sorted(grouped, key=lambda k: (k is None, k or "")):
            bucket = grouped[idc_ref]
            rows.append({
                "idc_ref": idc_ref,
                "subnet_count": bucket["subnet_count"],
                **_figures(PoolCounters(bucket["total"], bucket["allocated"], bucket["reserved"])),
            })
        return rows
