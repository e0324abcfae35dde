"""
User Store — Record Models

Pydantic models for rows read from the user tables. The user table has an
open schema: any column beyond the fixed ones arrives as an extra field and
is kept as-is on the model.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class UserRecord(BaseModel):
    """
    One logical user, as returned by a lookup.

    Fixed fields are typed; every other column of the ``user`` table is
    carried as an extra attribute (``record.email``, ``record.model_extra``).
    """

    model_config = ConfigDict(extra="allow")

    id: str = Field(..., description="Primary key (UUID string)")
    alias_id: str | None = Field(default=None, description="Matched user_alias row, lookups only")
    created_at: int | None = Field(default=None, description="Unix seconds")
    updated_at: int | None = Field(default=None, description="Unix seconds, stamped on update")
    is_deleted: int = Field(default=0, description="0 = active")

    @property
    def properties(self) -> dict[str, Any]:
        """The open-schema columns only (everything that is not a fixed field)."""
        return dict(self.model_extra or {})


class UserPropertyWinner(BaseModel):
    """Which of two candidate users holds the freshest value for a property."""

    user_id: str
    property: str
