from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Integer, Numeric, String

from models.base import Base
from partitioning.levels import ByCreatedAt, ByForeignKey
from partitioning.policy import LevelPolicy, MultiLevel
from schemas.partitioning import IndexOptions


class ByCompanyId(ByForeignKey):
    """One partition per company"""
    partition_field = "company_id"
    referenced_table = "companies"


class Employee(MultiLevel, Base):
    """
    Employees partitioned by company, then by the week they were created.

    Rows live in leaf tables such as ``employees_partitions.p7_20240304``;
    the root table and the per-company tables only route queries.
    """
    __tablename__ = "employees"

    __partition__ = LevelPolicy(
        using_classes=[ByCompanyId, ByCreatedAt],
        indexes={
            "id": IndexOptions(unique=True),
            "created_at": IndexOptions(),
        },
    )

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=datetime.utcnow)

    name = Column(String(255), nullable=False)
    salary = Column(Numeric(12, 2), nullable=True)
    company_id = Column(Integer, nullable=False, index=True)
