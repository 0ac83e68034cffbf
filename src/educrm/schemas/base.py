from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, RootModel


class ORMBase(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        extra="ignore",
        populate_by_name=True,
    )


class Timestamped(ORMBase):
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime


class UpdateModel(BaseModel):
    """Partial update record: unknown keys are rejected, unset keys left alone."""
    model_config = ConfigDict(extra="forbid")


class FreeObject(RootModel[dict[str, Any]]):
    root: dict[str, Any]


_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def check_hhmm(value: Optional[str]) -> Optional[str]:
    if value is not None and not _HHMM.match(value):
        raise ValueError("must be HH:MM (24-hour)")
    return value


HHMM = Annotated[str, AfterValidator(check_hhmm)]
