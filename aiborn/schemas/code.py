from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

CodeTypeLiteral = Literal["VIP_PREVIEW", "VIP_BONUS", "VIP_LAUNCH", "PARTNER", "MEDIA", "INFLUENCER"]


class CodeGenerateIn(BaseModel):
    count: int = Field(ge=1, le=10_000)
    type: CodeTypeLiteral
    description: str | None = Field(default=None, max_length=255)
    max_redemptions: int | None = Field(default=None, ge=1)
    valid_from: datetime | None = None
    valid_until: datetime | None = None


class CodeOut(BaseModel):
    id: str
    code: str
    type: str
    status: str
    redemption_count: int
    max_redemptions: int | None
    valid_from: datetime | None
    valid_until: datetime | None


class CodeGenerateOut(BaseModel):
    count: int
    codes: list[CodeOut]


class CodeValidateIn(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class CodeValidateOut(BaseModel):
    valid: bool
    type: str | None = None
    redemptions_remaining: int | None = None  # None = unlimited
    error: str | None = None
