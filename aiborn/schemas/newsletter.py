from pydantic import BaseModel, EmailStr, Field


class SubscribeIn(BaseModel):
    email: EmailStr
    name: str | None = Field(default=None, max_length=120)
    source: str | None = Field(default=None, max_length=64)
    # bots fill hidden fields
    honeypot: str | None = None


class SubscribeOut(BaseModel):
    success: bool = True
    message: str
