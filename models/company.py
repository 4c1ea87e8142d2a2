from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, String

from models.base import Base


class Company(Base):
    """
    Tenant owning employees.

    Every company gets its own branch of the employees partition tree;
    deleting a company lets the next maintenance pass drop that branch.
    """
    __tablename__ = "companies"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
