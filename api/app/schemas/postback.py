from typing import Literal

from pydantic import BaseModel, Field

PostbackType = Literal["conversion", "lead", "sale"]


class HealthStatus(BaseModel):
    status: str
    message: str


class PostbackHealth(HealthStatus):
    success: bool = True


class PostbackAck(BaseModel):
    success: bool = True
    message: str
    clickId: str
    goal: str
    payout: str | None = None


class PostbackError(BaseModel):
    error: str
    success: bool = False
    message: str | None = None


class PostbackTemplates(BaseModel):
    base_url: str
    type: PostbackType
    template: str
    examples: dict[str, str] = Field(default_factory=dict)
