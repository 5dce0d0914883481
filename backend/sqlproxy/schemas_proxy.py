"""
Pydantic schemas for the proxy endpoints.

Request bodies (generic and ORM-compatible), the executor's QueryRequest and
QueryResult, and the column descriptors returned alongside rows.
"""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
)

# Values the database driver can bind. JSON bodies only ever carry the
# str/int/float/bool/None subset (JsonBindValue).
BindValue = Union[str, int, float, bool, bytes, datetime, date, Decimal, None]
JsonBindValue = Union[StrictStr, StrictInt, StrictFloat, StrictBool, None]


class RowMode(str, enum.Enum):
    DEFAULT = "default"
    ARRAY_ROWS = "arrayRows"


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class GenericQueryIn(BaseModel):
    """Body for POST /db-proxy."""

    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., min_length=1)
    params: list[JsonBindValue] | None = None
    array_mode: bool = Field(default=False, alias="arrayMode")

    def to_query_request(self) -> "QueryRequest":
        return QueryRequest(
            sql_text=self.query,
            parameters=self.params or [],
            row_mode=RowMode.ARRAY_ROWS if self.array_mode else RowMode.DEFAULT,
        )


class OrmQueryIn(BaseModel):
    """Body for POST /query (Drizzle pg-proxy driver shape)."""

    sql: str = Field(..., min_length=1)
    params: list[JsonBindValue] | None = None
    method: str | None = None

    @property
    def row_mode(self) -> RowMode:
        return RowMode.ARRAY_ROWS if self.method == "all" else RowMode.DEFAULT

    def to_query_request(self) -> "QueryRequest":
        return QueryRequest(
            sql_text=self.sql, parameters=self.params or [], row_mode=self.row_mode
        )


class QueryRequest(BaseModel):
    sql_text: str
    parameters: list[Any] = Field(default_factory=list)
    row_mode: RowMode = RowMode.DEFAULT


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class FieldDescriptor(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    data_type_id: int = Field(alias="dataTypeID")


class RowDescription(BaseModel):
    """Full column descriptor (pg RowDescription message fields)."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    table_id: int = Field(default=0, alias="tableID")
    column_id: int = Field(default=0, alias="columnID")
    data_type_id: int = Field(alias="dataTypeID")
    data_type_size: int = Field(default=-1, alias="dataTypeSize")
    data_type_modifier: int = Field(default=-1, alias="dataTypeModifier")
    format: str = "text"


class QueryResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rows: list[Any] = Field(default_factory=list)
    row_count: int = Field(default=0, ge=0, alias="rowCount")
    command: str | None = None
    fields: list[FieldDescriptor] = Field(default_factory=list)
    row_as_array: bool = Field(default=False, alias="rowAsArray")
    row_description: list[RowDescription] = Field(
        default_factory=list, alias="rowDescription"
    )

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
