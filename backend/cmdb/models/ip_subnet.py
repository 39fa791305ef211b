from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from cmdb.database import Base


class IpSubnet(Base):
    __tablename__ = "subnets"

    id = Column(Integer, primary_key=True, autoincrement=False)  # assigned by the subnet registry
    cidr = Column(String(50), nullable=False, unique=True, index=True)  # normalized, e.g. "10.0.0.0/24"
    label = Column(String(255), nullable=False, default="")
    idc_ref = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    addresses = relationship("IpAddress", back_populates="subnet", passive_deletes=True)


class IpAddress(Base):
    """Allocated, reserved or annotated address. Free addresses without a note have no row."""
    __tablename__ = "ip_addresses"

    subnet_id = Column(Integer, ForeignKey("subnets.id", ondelete="CASCADE"), primary_key=True)
    address = Column(String(45), primary_key=True)
    state = Column(String(20), nullable=False, default="free")  # free, allocated, reserved
    owner_ref = Column(String(100), nullable=True)
    allocated_at = Column(DateTime(timezone=True), nullable=True)
    note = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    subnet = relationship("IpSubnet", back_populates="addresses")

    __table_args__ = (
        Index("ix_ip_addresses_subnet_state", "subnet_id", "state"),
    )
