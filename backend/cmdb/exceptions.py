"""IP address management exception classes."""


class IpamError(Exception):
    """Base exception for IP pool operations."""

    status_code = 400
    kind = "ipam_error"


class InvalidCIDRError(IpamError):
    """CIDR string could not be parsed."""

    status_code = 400
    kind = "invalid_cidr"

    def __init__(self, cidr: str, reason: str = ""):
        self.cidr = cidr
        message = f"Invalid CIDR: {cidr}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class OverlapError(IpamError):
    """CIDR intersects a subnet that is already registered."""

    status_code = 409
    kind = "overlap"

    def __init__(self, cidr: str, existing_cidr: str, existing_id: int):
        self.cidr = cidr
        self.existing_cidr = existing_cidr
        self.existing_id = existing_id
        super().__init__(f"{cidr} overlaps subnet {existing_id} ({existing_cidr})")


class NotFoundError(IpamError):
    status_code = 404
    kind = "not_found"


class NotEmptyError(IpamError):
    """Subnet still has allocated or reserved addresses."""

    status_code = 409
    kind = "not_empty"

    def __init__(self, subnet_id: int, used: int):
        self.subnet_id = subnet_id
        self.used = used
        super().__init__(f"Subnet {subnet_id} has {used} address(es) in use")


class AlreadyAllocatedError(IpamError):
    """Address is not free."""

    status_code = 409
    kind = "already_allocated"

    def __init__(self, address: str, state: str):
        self.address = address
        self.state = state
        super().__init__(f"Address {address} is already {state}")


class NotAllocatedError(IpamError):
    """Address is already free."""

    status_code = 409
    kind = "not_allocated"

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Address {address} is not allocated")


class AddressOutOfRangeError(IpamError):
    """Address is malformed or outside the subnet's usable range."""

    status_code = 422
    kind = "address_out_of_range"

    def __init__(self, address: str, cidr: str):
        self.address = address
        self.cidr = cidr
        super().__init__(f"Address {address} is not usable in {cidr}")


class PoolExhaustedError(IpamError):
    """No free address remains in the subnet."""

    status_code = 409
    kind = "pool_exhausted"

    def __init__(self, subnet_id: int, cidr: str):
        self.subnet_id = subnet_id
        self.cidr = cidr
        super().__init__(f"No free address left in subnet {subnet_id} ({cidr})")
