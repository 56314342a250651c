from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RegisterRequest(BaseModel):
    email: str = ""
    password: str = ""
    full_name: str | None = Field(default=None, max_length=200)
    phone: str | None = Field(default=None, max_length=40)


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class PasswordResetRequest(BaseModel):
    email: str = ""


class ProfileUpdateRequest(BaseModel):
    full_name: str | None = Field(default=None, max_length=200)
    phone: str | None = Field(default=None, max_length=40)


class RoleUpdateRequest(BaseModel):
    role: str = ""


class ReportCreateRequest(BaseModel):
    type: str | None = None
    category: str | None = Field(default=None, max_length=100)
    title: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    severity: str | None = None
    location_lat: float | None = None
    location_lng: float | None = None
    location_address: str | None = Field(default=None, max_length=500)
    is_anonymous: bool = False


class ReportUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: str | None = None
    severity: str | None = None
    assigned_official_id: str | None = None


class CommentCreateRequest(BaseModel):
    content: str | None = None
    is_public: bool = True


class TransparencyQueryRequest(BaseModel):
    query: str = ""


class ProjectCreateRequest(BaseModel):
    project_code: str | None = None
    name: str | None = None
    description: str | None = None
    department: str | None = None
    location: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    status: str | None = None
    total_budget_amount: float | None = None


class ProjectUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    description: str | None = None
    department: str | None = None
    location: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    status: str | None = None
    total_budget_amount: float | None = None


class TransactionCreateRequest(BaseModel):
    transaction_type: str | None = None
    amount: float | None = None
    transaction_date: str | None = None
    description: str | None = None
    contractor_name: str | None = None
    invoice_reference: str | None = None
