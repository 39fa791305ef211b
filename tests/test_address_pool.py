"""Tests for the address pool."""
import pytest

from cmdb.exceptions import (
    AddressOutOfRangeError, AlreadyAllocatedError, NotAllocatedError, NotFoundError,
)
from cmdb.services.address_pool import AddressRecord, AddressState, usable_bounds
from cmdb.services.subnet_registry import parse_cidr


def _assert_balanced(ipam, subnet_id):
    c = ipam.pool.counters(subnet_id)
    assert c.used + c.free == c.total


class TestUsableRange:

    def test_slash_30_has_two_hosts(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/30")
        assert ipam.pool.counters(subnet.id).total == 2
        assert ipam.pool.free_addresses(subnet.id, 10) == ["10.0.0.1", "10.0.0.2"]

    def test_network_and_broadcast_excluded(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/30")
        for address in ("10.0.0.0", "10.0.0.3"):
            with pytest.raises(AddressOutOfRangeError):
                ipam.pool.mark_allocated(subnet.id, address, "dev-1")
            with pytest.raises(NotFoundError):
                ipam.pool.get(subnet.id, address)

    @pytest.mark.parametrize("cidr, total", [
        ("10.0.0.0/24", 254),
        ("10.0.0.0/31", 2),
        ("10.0.0.1/32", 1),
        ("2001:db8::/126", 3),
        ("2001:db8::/127", 2),
        ("2001:db8::1/128", 1),
    ])
    def test_capacity(self, ipam, cidr, total):
        subnet = ipam.registry.register(cidr)
        assert ipam.pool.counters(subnet.id).total == total

    def test_large_ipv6_pool_is_lazy(self, ipam):
        subnet = ipam.registry.register("2001:db8::/64")
        assert ipam.pool.counters(subnet.id).total == 2 ** 64 - 1
        assert ipam.pool.first_free(subnet.id) == "2001:db8::1"

    def test_usable_bounds_ipv4(self):
        first, last = usable_bounds(parse_cidr("192.168.1.0/24"))
        assert last - first + 1 == 254


class TestTransitions:

    def test_get_unallocated_address_is_free(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        record = ipam.pool.get(subnet.id, "10.0.0.4")
        assert record == AddressRecord(subnet_id=subnet.id, address="10.0.0.4")
        assert record.state == AddressState.free

    def test_get_malformed_or_unknown(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        with pytest.raises(NotFoundError):
            ipam.pool.get(subnet.id, "10.0.1.1")
        with pytest.raises(NotFoundError):
            ipam.pool.get(subnet.id, "garbage")
        with pytest.raises(NotFoundError):
            ipam.pool.get(999, "10.0.0.1")

    def test_mark_allocated(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        record = ipam.pool.mark_allocated(subnet.id, "10.0.0.3", "dev-7")

        assert record.state == AddressState.allocated
        assert record.owner_ref == "dev-7"
        assert record.allocated_at is not None
        assert ipam.pool.get(subnet.id, "10.0.0.3") == record
        c = ipam.pool.counters(subnet.id)
        assert (c.total, c.allocated, c.reserved, c.used, c.free) == (6, 1, 0, 1, 5)

    def test_mark_allocated_twice(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        ipam.pool.mark_allocated(subnet.id, "10.0.0.3", "dev-7")
        before = ipam.pool.counters(subnet.id)

        with pytest.raises(AlreadyAllocatedError):
            ipam.pool.mark_allocated(subnet.id, "10.0.0.3", "dev-8")
        assert ipam.pool.counters(subnet.id) == before
        assert ipam.pool.get(subnet.id, "10.0.0.3").owner_ref == "dev-7"

    def test_mark_allocated_out_of_range(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        with pytest.raises(AddressOutOfRangeError):
            ipam.pool.mark_allocated(subnet.id, "10.0.0.9", "dev-1")
        with pytest.raises(AddressOutOfRangeError):
            ipam.pool.mark_allocated(subnet.id, "2001:db8::1", "dev-1")
        assert ipam.pool.counters(subnet.id).used == 0

    def test_mark_free(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        ipam.pool.mark_allocated(subnet.id, "10.0.0.3", "dev-7")
        record = ipam.pool.mark_free(subnet.id, "10.0.0.3")

        assert record.state == AddressState.free
        assert record.owner_ref is None
        assert record.allocated_at is None
        assert ipam.pool.counters(subnet.id).used == 0
        assert ipam.pool.records(subnet.id) == []

    def test_mark_free_when_free(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        with pytest.raises(NotAllocatedError):
            ipam.pool.mark_free(subnet.id, "10.0.0.3")
        _assert_balanced(ipam, subnet.id)

    def test_reserved_lifecycle(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        reserved = ipam.pool.mark_reserved(subnet.id, "10.0.0.1", note="gateway")
        assert reserved.state == AddressState.reserved
        assert ipam.pool.counters(subnet.id).reserved == 1

        freed = ipam.pool.mark_free(subnet.id, "10.0.0.1")
        assert freed.state == AddressState.free
        assert freed.note == "gateway"
        assert ipam.pool.counters(subnet.id).reserved == 0

    def test_allocated_cannot_become_reserved(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        ipam.pool.mark_allocated(subnet.id, "10.0.0.2", "dev-1")
        with pytest.raises(AlreadyAllocatedError):
            ipam.pool.mark_reserved(subnet.id, "10.0.0.2")
        assert ipam.pool.get(subnet.id, "10.0.0.2").state == AddressState.allocated

    def test_reserved_cannot_become_allocated(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        ipam.pool.mark_reserved(subnet.id, "10.0.0.2")
        with pytest.raises(AlreadyAllocatedError):
            ipam.pool.mark_allocated(subnet.id, "10.0.0.2", "dev-1")
        c = ipam.pool.counters(subnet.id)
        assert (c.allocated, c.reserved) == (0, 1)

    def test_set_note_never_changes_state(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        ipam.pool.mark_allocated(subnet.id, "10.0.0.2", "dev-1")

        record = ipam.pool.set_note(subnet.id, "10.0.0.2", "db primary")
        assert (record.state, record.owner_ref, record.note) == (AddressState.allocated, "dev-1", "db primary")

        free_noted = ipam.pool.set_note(subnet.id, "10.0.0.5", "keep for vip")
        assert free_noted.state == AddressState.free
        assert ipam.pool.counters(subnet.id).used == 1
        assert [r.address for r in ipam.pool.records(subnet.id)] == ["10.0.0.2", "10.0.0.5"]

        ipam.pool.set_note(subnet.id, "10.0.0.5", None)
        assert [r.address for r in ipam.pool.records(subnet.id)] == ["10.0.0.2"]

    def test_records_filtered_and_sorted(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/28")
        ipam.pool.mark_allocated(subnet.id, "10.0.0.9", "dev-9")
        ipam.pool.mark_reserved(subnet.id, "10.0.0.3")
        ipam.pool.mark_allocated(subnet.id, "10.0.0.10", "dev-10")

        assert [r.address for r in ipam.pool.records(subnet.id)] == ["10.0.0.3", "10.0.0.9", "10.0.0.10"]
        allocated = ipam.pool.records(subnet.id, state=AddressState.allocated)
        assert [r.address for r in allocated] == ["10.0.0.9", "10.0.0.10"]

    def test_free_addresses_skip_taken(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        ipam.pool.mark_allocated(subnet.id, "10.0.0.1", "a")
        ipam.pool.mark_reserved(subnet.id, "10.0.0.3")
        assert ipam.pool.free_addresses(subnet.id, 3) == ["10.0.0.2", "10.0.0.4", "10.0.0.5"]

    def test_restore(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        ipam.pool.restore(AddressRecord(
            subnet_id=subnet.id, address="10.0.0.4", state=AddressState.allocated, owner_ref="dev-4",
        ))
        assert ipam.pool.counters(subnet.id).allocated == 1
        assert ipam.pool.first_free(subnet.id) == "10.0.0.1"
        with pytest.raises(AlreadyAllocatedError):
            ipam.pool.mark_allocated(subnet.id, "10.0.0.4", "dev-5")

    def test_restore_puts_back_previous_record(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        before = ipam.pool.mark_allocated(subnet.id, "10.0.0.2", "dev-2")
        ipam.pool.mark_free(subnet.id, "10.0.0.2")

        ipam.pool.restore(before)
        assert ipam.pool.get(subnet.id, "10.0.0.2") == before
        assert ipam.pool.counters(subnet.id).allocated == 1

        ipam.pool.restore(AddressRecord(subnet_id=subnet.id, address="10.0.0.2"))
        assert ipam.pool.counters(subnet.id).used == 0
        assert ipam.pool.records(subnet.id) == []
        _assert_balanced(ipam, subnet.id)

    def test_current_rejects_like_mark(self, ipam):
        subnet = ipam.registry.register("10.0.0.0/29")
        assert ipam.pool.current(subnet.id, "10.0.0.1").is_free
        with pytest.raises(AddressOutOfRangeError):
            ipam.pool.current(subnet.id, "10.0.0.7")
        with pytest.raises(AddressOutOfRangeError):
            ipam.pool.current(subnet.id, "garbage")


def test_counters_balanced_through_mixed_operations(ipam):
    subnet = ipam.registry.register("10.0.0.0/28")
    for i in range(5):
        ipam.allocator.allocate(subnet.id, f"dev-{i}")
        _assert_balanced(ipam, subnet.id)
    ipam.allocator.reserve(subnet.id, "10.0.0.14")
    _assert_balanced(ipam, subnet.id)
    ipam.allocator.release(subnet.id, "10.0.0.2")
    ipam.allocator.release(subnet.id, "10.0.0.14")
    _assert_balanced(ipam, subnet.id)
    c = ipam.pool.counters(subnet.id)
    assert (c.total, c.allocated, c.reserved, c.free) == (14, 4, 0, 10)
