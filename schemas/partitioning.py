"""
Pydantic schemas for declarative partition policy values and maintenance results
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Tuple, Dict, Any, Literal


class IndexOptions(BaseModel):
    """
    Options for an index created on every leaf partition.

    The indexed column(s) are the key of the ``indexes`` mapping the
    options belong to.
    """

    unique: bool = False
    name: Optional[str] = Field(None, max_length=63)
    using: Optional[str] = None
    where: Optional[str] = None

    @validator("using")
    def clean_using(cls, v):
        """Normalize the index access method"""
        if v is None:
            return v
        v = v.strip().lower()
        return v or None

    class Config:
        frozen = True


class ForeignKeySpec(BaseModel):
    """A foreign key added to every leaf partition."""

    field: str = Field(..., min_length=1)
    referenced_table: str = Field(..., min_length=1)
    referenced_field: str = "id"
    name: Optional[str] = Field(None, max_length=63)
    on_delete: Optional[str] = None

    class Config:
        frozen = True


class OrderType(BaseModel):
    """
    How sibling partition names are ordered when listed.

    kind:
        lexical: by table name
        numeric: by table name length, then name (integer fragments)
        sql: by the raw ``clause`` over ``pg_class c``
    """

    kind: Literal["lexical", "numeric", "sql"] = "lexical"
    descending: bool = True
    clause: Optional[str] = None

    @validator("clause", always=True)
    def require_clause_for_sql(cls, v, values):
        """A custom ordering needs its clause"""
        if values.get("kind") == "sql" and not v:
            raise ValueError("order type 'sql' requires a clause")
        return v

    class Config:
        frozen = True


class MaintenanceResult(BaseModel):
    """Outcome of one maintenance pass for one partitioned model."""

    model: str
    status: Literal["success", "failed"] = "success"
    created: List[Tuple[Any, ...]] = Field(default_factory=list)
    archived: List[Tuple[Any, ...]] = Field(default_factory=list)
    dropped: List[Tuple[Any, ...]] = Field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
