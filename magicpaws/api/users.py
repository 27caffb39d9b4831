"""
Account routes.

- GET   /api/me                     current principal
- PATCH /api/admin/users/{id}/role  explicit role change (admin)
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from magicpaws.core.auth import get_current_principal, require_admin
from magicpaws.features.users.service import set_role
from magicpaws.models.principal import Principal, Role


router = APIRouter(tags=["users"])


class RoleChangeRequest(BaseModel):
    role: Role


@router.get("/api/me", response_model=Principal)
def me(principal: Principal = Depends(get_current_principal)):
    return principal


@router.patch("/api/admin/users/{user_id}/role", response_model=Principal)
def change_role(user_id: str, body: RoleChangeRequest, admin: Principal = Depends(require_admin)):
    return set_role(admin, user_id, body.role)
