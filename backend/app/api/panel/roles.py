import uuid

from fastapi import APIRouter, Depends, status

from ...auth.rbac_contract import PERMISSION_CATEGORIES
from ...dependencies import get_current_staff, get_role_service
from ...models.staff import Staff
from ...schemas.role import (
    PermissionCatalogResponse,
    PermissionItem,
    RoleCreate,
    RoleListItem,
    RoleReorderRequest,
    RoleResponse,
    RoleUpdate,
)
from ...services.admin.role_service import RoleService

router = APIRouter(prefix="/roles", tags=["panel-roles"])


@router.get("", response_model=list[RoleListItem])
async def list_roles(
    current_staff: Staff = Depends(get_current_staff),
    service: RoleService = Depends(get_role_service),
):
    """List the server's roles by hierarchy order, with member counts."""
    items = await service.list_roles(current_staff)
    return [
        RoleListItem.model_validate(item.role).model_copy(update={"user_count": item.user_count})
        for item in items
    ]


@router.get("/permissions", response_model=PermissionCatalogResponse)
async def list_permissions(
    current_staff: Staff = Depends(get_current_staff),
    service: RoleService = Depends(get_role_service),
):
    definitions = await service.list_permissions(current_staff)
    return PermissionCatalogResponse(
        permissions=[PermissionItem.model_validate(item) for item in definitions],
        categories=PERMISSION_CATEGORIES,
    )


@router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    payload: RoleCreate,
    current_staff: Staff = Depends(get_current_staff),
    service: RoleService = Depends(get_role_service),
):
    """Create a custom role; it is placed below every existing role."""
    role = await service.create_role(
        current_staff, payload.name, payload.description, payload.permissions
    )
    return RoleResponse.model_validate(role)


@router.put("/reorder", response_model=list[RoleResponse])
async def reorder_roles(
    payload: RoleReorderRequest,
    current_staff: Staff = Depends(get_current_staff),
    service: RoleService = Depends(get_role_service),
):
    roles = await service.reorder(
        current_staff, {entry.id: entry.order for entry in payload.roles}
    )
    return [RoleResponse.model_validate(role) for role in roles]


@router.get("/{role_id}", response_model=RoleListItem)
async def get_role(
    role_id: uuid.UUID,
    current_staff: Staff = Depends(get_current_staff),
    service: RoleService = Depends(get_role_service),
):
    item = await service.get_role(current_staff, role_id)
    return RoleListItem.model_validate(item.role).model_copy(update={"user_count": item.user_count})


@router.put("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: uuid.UUID,
    payload: RoleUpdate,
    current_staff: Staff = Depends(get_current_staff),
    service: RoleService = Depends(get_role_service),
):
    role = await service.update_role(
        current_staff, role_id, payload.permissions, payload.description
    )
    return RoleResponse.model_validate(role)


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: uuid.UUID,
    current_staff: Staff = Depends(get_current_staff),
    service: RoleService = Depends(get_role_service),
):
    await service.delete_role(current_staff, role_id)
