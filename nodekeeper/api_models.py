from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class RegisterWorkloadRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Workload name")
    version: int = Field(..., ge=1, description="Spec version; 4+ is multi-component")
    components: list[str] = Field(default_factory=list, description="Component names, in order (v4+)")
    owner: str | None = Field(None, description="Username allowed by the owner-or-above tier")


class MessageData(BaseModel):
    code: int | str | None = None
    name: str | None = None
    message: str


class Envelope(BaseModel):
    status: Literal["success", "error", "warning"]
    data: Any = None


def create_data_message(data: Any) -> dict[str, Any]:
    return Envelope(status="success", data=data).model_dump()


def create_success_message(message: str, name: str | None = None, code: int | str | None = None) -> dict[str, Any]:
    return Envelope(status="success", data=MessageData(code=code, name=name, message=message).model_dump()).model_dump()


def create_error_message(message: str | None, name: str | None = None, code: int | str | None = None) -> dict[str, Any]:
    data = MessageData(code=code, name=name, message=message or "Unknown error")
    return Envelope(status="error", data=data.model_dump()).model_dump()


def err_unauthorized_message() -> dict[str, Any]:
    return create_error_message("Unauthorized. Access denied.", name="Unauthorized", code=401)
