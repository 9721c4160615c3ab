"""
API models and schemas for the FastAPI application.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SubscribeRequest(BaseModel):
    """Optional identity supplied with a subscription request."""
    email: Optional[str] = Field(None, description="Subscriber email")
    name: Optional[str] = Field(None, description="Subscriber display name")


class UnsubscribeRequest(BaseModel):
    email: str = Field(..., description="Subscriber email")


class SubscriptionStatusResponse(BaseModel):
    subscribed: bool = Field(..., description="Whether the email receives monthly updates")


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    status_code: int = Field(..., description="HTTP status code")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")
    timer_active: Optional[bool] = Field(None, description="Whether the monthly timer is armed")
    scheduler: Optional[Dict[str, Any]] = Field(None, description="Snapshot scheduler status")
