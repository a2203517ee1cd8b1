from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


class BookReservationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time: datetime
    table: int
    name: str = Field(..., max_length=120)
    phone: str = Field(..., max_length=32)
    discount: float | None = None


class UpsertTableRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    capacity: int
    exclusive_view: bool | None = Field(None, alias="exclusiveView")
