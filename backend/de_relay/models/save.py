"""
Pydantic models for the save-to-Data-Extension feature.

Models:
  FieldEntry    : one name/value pair typed into the widget
  SaveRequest   : inbound POST body from the widget
  Row           : one Data Extension row, derived per field
  RowKeys       : the composite upsert key of a Row
  RowsetItem    : one element of the bulk rowset payload ({keys, values})
  SaveResult    : what UpsertRelay.save() returns
  SaveResponse  : success body returned to the widget
  ErrorResponse : failure body returned to the widget

Wire names are camelCase because the widget and the Data Extension columns use
them; the models keep those names rather than aliasing them.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Inbound request
# ---------------------------------------------------------------------------

class FieldEntry(BaseModel):
    """
    A single field row from the widget.

    Both attributes are optional at the model level so that an empty or
    missing name/value is reported by the relay's own validation (400 with a
    named rule) rather than as a generic body-shape failure.
    """
    model_config = {"extra": "ignore"}

    name: Optional[str] = None
    value: Optional[str] = None


class SaveRequest(BaseModel):
    """Request body for POST /api/save-to-de."""
    model_config = {"extra": "ignore"}

    emailName: Optional[str] = None
    fields: Optional[List[FieldEntry]] = None


# ---------------------------------------------------------------------------
# Rows and the upstream rowset payload
# ---------------------------------------------------------------------------

class RowKeys(BaseModel):
    """Composite upsert key: (emailName, fieldName)."""
    emailName: str
    fieldName: str


class Row(BaseModel):
    """One Data Extension row. Identity is (emailName, fieldName)."""
    emailName: str
    fieldName: str
    fieldValue: str
    entryTimestamp: str

    @property
    def keys(self) -> RowKeys:
        return RowKeys(emailName=self.emailName, fieldName=self.fieldName)


class RowsetItem(BaseModel):
    """
    One element of the rowset upsert body.

    The platform locates the existing row through ``keys`` and overwrites it
    with ``values``; key columns must appear in both.
    """
    keys: RowKeys
    values: Row

    @classmethod
    def from_row(cls, row: Row) -> "RowsetItem":
        return cls(keys=row.keys, values=row)


# ---------------------------------------------------------------------------
# Results and API responses
# ---------------------------------------------------------------------------

class SaveResult(BaseModel):
    """
    Outcome of one successful save.

    ``result`` is the platform's response body passed through untouched, so
    any partial-result structure it reports reaches the caller as-is.
    """
    rows_inserted: int
    timestamp: str
    result: Optional[Any] = None


class SaveResponse(BaseModel):
    """200 response body for a successful save."""
    success: bool = True
    rowsInserted: int
    message: str
    result: Optional[Any] = None


class ErrorResponse(BaseModel):
    """4xx/5xx response body."""
    success: bool = False
    error: str
    kind: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
