"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class
    company: Companies (tenants)
    employee: Employees, partitioned by company and then by week

Partitioned models mix a partitioning level into the declarative class and
declare their policy with ``__partition__``; only the root table is part of
``Base.metadata``, child tables are managed by ``partitioning.PartitionManager``.

Usage:
    from models import Company, Employee
    from partitioning import PartitionManager

    manager = PartitionManager(Employee, engine=engine)
    manager.run_maintenance()
"""

from models.base import Base
from models.company import Company
from models.employee import ByCompanyId, Employee

__all__ = [
    "Base",
    "Company",
    "Employee",
    "ByCompanyId",
]
