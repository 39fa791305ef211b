from cmdb.models.ip_subnet import IpSubnet, IpAddress
from cmdb.models.audit import AuditLog

__all__ = [
    "IpSubnet", "IpAddress",
    "AuditLog",
]
