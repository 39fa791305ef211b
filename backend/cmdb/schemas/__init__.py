from cmdb.schemas.subnet import SubnetCreate, SubnetUpdate, SubnetUsage, SubnetResponse
from cmdb.schemas.ip_address import (
    AllocateRequest, ReserveRequest, ReleaseRequest, AddressUpdate, AddressResponse,
)

__all__ = [
    "SubnetCreate", "SubnetUpdate", "SubnetUsage", "SubnetResponse",
    "AllocateRequest", "ReserveRequest", "ReleaseRequest", "AddressUpdate", "AddressResponse",
]
