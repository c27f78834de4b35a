from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Literal, Optional, Union


class LinkClickRequest(BaseModel):
    linkId: int

    @field_validator("linkId", mode="before")
    @classmethod
    def accept_numeric_string(cls, v: Union[int, str]) -> int:
        if isinstance(v, str):
            v = v.strip()
            if not v.isdigit():
                raise ValueError("Invalid link ID")
            return int(v)
        return v


class LinkReportRequest(BaseModel):
    linkId: int
    reporterName: str = Field(..., min_length=1, max_length=200)
    reporterEmail: EmailStr
    reason: Literal["broken", "inappropriate", "spam", "other"]
    description: Optional[str] = Field(None, max_length=2000)

    @field_validator("reporterName")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = " ".join(v.split())
        if not v:
            raise ValueError("Name is required")
        return v


class UsernameAvailability(BaseModel):
    available: bool
    message: Optional[str] = None
    isOwnOldUsername: Optional[bool] = None


class ShortLink(BaseModel):
    id: int
    short_code: str
    target_url: str
    page_id: int
    user_id: int
    expires_at: Optional[int] = None


class PublicPage(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    slug: str
    created_at: int
    updated_at: int


class HealthCheckResponse(BaseModel):
    status: Literal["healthy", "unhealthy", "timeout", "unknown"]
    status_code: Optional[int] = None
    response_time: int
    response_time_display: str
    error: Optional[str] = None
