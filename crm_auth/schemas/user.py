# crm_auth/schemas/user.py
from __future__ import annotations
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_serializer
from pydantic.alias_generators import to_camel

from crm_auth.core.rbac import Role, normalize_role


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterIn(CamelModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(min_length=1, max_length=80)
    last_name: str = Field(min_length=1, max_length=80)
    role: Optional[str] = None
    phone_number: Optional[str] = Field(default=None, max_length=30)


class LoginIn(CamelModel):
    email: EmailStr
    password: str = Field(max_length=128)


class ProfileUpdate(CamelModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    phone_number: Optional[str] = Field(default=None, max_length=30)


class PasswordChange(CamelModel):
    current_password: str = Field(max_length=128)
    new_password: str = Field(min_length=8, max_length=128)


class PrincipalAdminUpdate(CamelModel):
    role: Optional[str] = None
    tenant_id: Optional[str] = Field(default=None, min_length=1, max_length=64)


class UserOut(CamelModel):
    user_id: str
    email: str
    first_name: str
    last_name: str
    role: Role
    tenant_id: str
    phone_number: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_principal(cls, user) -> "UserOut":
        return cls(
            user_id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=normalize_role(user.role),
            tenant_id=user.tenant_id,
            phone_number=user.phone_number,
            created_by=user.created_by,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )

    @field_serializer("role")
    def _role_name(self, role: Role) -> str:
        return role.name
