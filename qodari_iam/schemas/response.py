"""Generic API response schemas"""

from typing import Any, Dict, Optional

from pydantic import BaseModel


class MessageResponse(BaseModel):
    """Generic API success response"""
    success: bool = True
    message: str


class ErrorResponse(BaseModel):
    """Error envelope rendered by every exception handler"""
    success: bool = False
    code: str
    error: str
    details: Optional[Any] = None
    path: Optional[str] = None
    timestamp: str


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    timestamp: str
    readiness: Dict[str, Any]
