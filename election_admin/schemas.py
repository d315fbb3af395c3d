"""Pydantic models for request/response validation."""
from datetime import datetime
from typing import Dict, Literal

from pydantic import BaseModel, Field, validator


def _clean(v):
    if v is None:
        return ""
    return str(v).strip()


class SignupRequest(BaseModel):
    """Admin signup form."""

    name: str = Field(default="", description="Display name")
    email: str = Field(default="", description="Login email")
    password: str = Field(default="", description="Plain password, hashed before storage")

    @validator("name", pre=True)
    def clean_name(cls, v):
        return _clean(v)

    @validator("email", pre=True)
    def clean_email(cls, v):
        """Emails are compared case-insensitively."""
        return _clean(v).lower()


class LoginRequest(BaseModel):
    """Admin login form."""

    email: str = Field(default="")
    password: str = Field(default="")

    @validator("email", pre=True)
    def clean_email(cls, v):
        return _clean(v).lower()


class ElectionForm(BaseModel):
    """Create or rename an election."""

    name: str = Field(default="", description="Election name")

    @validator("name", pre=True)
    def clean_name(cls, v):
        return _clean(v)

    class Config:
        json_schema_extra = {
            "example": {"name": "Election-22"}
        }


class QuestionForm(BaseModel):
    """Add or edit a question."""

    title: str = Field(default="", description="Question title")
    description: str = Field(default="", description="Question description")

    @validator("title", "description", pre=True)
    def clean_text(cls, v):
        return _clean(v)

    class Config:
        json_schema_extra = {
            "example": {"title": "Question 1", "description": "This is description"}
        }


class OptionCreateForm(BaseModel):
    """Add an option; the form field is named ``option``."""

    option: str = Field(default="", description="Option label")

    @validator("option", pre=True)
    def clean_option(cls, v):
        return _clean(v)


class OptionUpdateForm(BaseModel):
    """Edit an option; the form field is named ``value``."""

    value: str = Field(default="", description="Option label")

    @validator("value", pre=True)
    def clean_value(cls, v):
        return _clean(v)


class BallotRequest(BaseModel):
    """Ballot submission request model."""

    voter_key: str = Field(..., min_length=1, description="Voter credential")
    selections: Dict[int, int] = Field(..., description="Question id to option id")

    @validator("voter_key")
    def validate_voter_key(cls, v):
        """Validate voter key is not blank."""
        if not v.strip():
            raise ValueError("Voter key cannot be empty")
        return v.strip()

    class Config:
        json_schema_extra = {
            "example": {
                "voter_key": "VOTER-0001",
                "selections": {"1": 2, "2": 1}
            }
        }


class BallotResponse(BaseModel):
    """Ballot submission response model."""

    election_id: int
    status: str = Field(..., description="Status of the submission")
    message: str = Field(default="Ballot recorded successfully")


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Overall health status")
    services: dict = Field(..., description="Status of individual services")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Health check timestamp")


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: dict = Field(default_factory=dict, description="Additional error details")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "InvalidStateError",
                "message": "Election 3 is draft; only launched elections can be ended",
                "details": {"election_id": 3, "state": "draft"}
            }
        }

