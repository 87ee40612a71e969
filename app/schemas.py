"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Pydantic Request Models
# =============================================================================

class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    """
    Body of POST /auth/register.

    Only presence is checked; password strength and phone format are left
    to clients.
    """
    username: str = Field(..., min_length=1, description="Unique username")
    password: str = Field(..., min_length=1, description="Plaintext password, stored hashed")
    first_name: str = Field(..., description="First name")
    last_name: str = Field(..., description="Last name")
    phone: str = Field(..., description="Phone number")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "username": "alice",
                    "password": "secret",
                    "first_name": "Alice",
                    "last_name": "Liddell",
                    "phone": "+14155550100",
                }
            ]
        }
    }


class SendMessageRequest(BaseModel):
    """Body of POST /messages. The sender is always the caller."""
    to_username: str = Field(..., min_length=1, description="Recipient username")
    body: str = Field(..., description="Message text")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class TokenResponse(BaseModel):
    token: str = Field(..., description="Bearer token")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class UserPublic(BaseModel):
    username: str
    first_name: str
    last_name: str
    phone: str


class UserDetail(UserPublic):
    join_at: datetime
    last_login_at: Optional[datetime] = None


class UsersListResponse(BaseModel):
    users: list[UserPublic] = Field(default_factory=list)


class UserDetailResponse(BaseModel):
    user: UserDetail


class MessageDetail(BaseModel):
    """A message with both participants' public profiles."""
    id: int
    body: str
    sent_at: datetime
    read_at: Optional[datetime] = None
    from_user: UserPublic
    to_user: UserPublic


class MessageDetailResponse(BaseModel):
    message: MessageDetail


class MessageCreated(BaseModel):
    id: int
    from_username: str
    to_username: str
    body: str
    sent_at: datetime


class MessageCreatedResponse(BaseModel):
    message: MessageCreated


class MessageReadState(BaseModel):
    id: int
    read_at: Optional[datetime] = None


class MessageReadResponse(BaseModel):
    message: MessageReadState


class SentMessage(BaseModel):
    """Entry of a user's outbox."""
    id: int
    to_user: UserPublic
    body: str
    sent_at: datetime
    read_at: Optional[datetime] = None


class ReceivedMessage(BaseModel):
    """Entry of a user's inbox."""
    id: int
    from_user: UserPublic
    body: str
    sent_at: datetime
    read_at: Optional[datetime] = None


class SentMessagesResponse(BaseModel):
    messages: list[SentMessage] = Field(default_factory=list)


class ReceivedMessagesResponse(BaseModel):
    messages: list[ReceivedMessage] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
