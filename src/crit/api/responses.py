from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class SuccessResponse(BaseModel, Generic[T]):
    """Envelope for mutating endpoints."""

    status: str = "success"
    message: str = ""
    data: Optional[T] = None


class EventsResponse(BaseModel):
    events: list[dict]
    last_event_id: Optional[str] = None


class ConfigResponse(BaseModel):
    mode: str
    review_round: int
    state_file: str
    share_url: str = ""
    delete_token: str = ""
