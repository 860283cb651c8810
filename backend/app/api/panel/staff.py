"""Staff management endpoints.

Every mutation is checked against the role hierarchy; a refused change is
answered with 403 and recorded in the audit log.
"""
import uuid

from fastapi import APIRouter, Depends, status

from ...dependencies import get_current_staff, get_staff_service
from ...models.staff import Staff
from ...schemas.staff import (
    StaffCapabilitiesResponse,
    StaffMinecraftPlayerAssign,
    StaffResponse,
    StaffRoleChange,
)
from ...services.admin.staff_service import StaffService

router = APIRouter(prefix="/staff", tags=["panel-staff"])


@router.get(
    "/capabilities/{staff_id}",
    response_model=StaffCapabilitiesResponse,
)
async def get_capabilities(
    staff_id: uuid.UUID,
    current_staff: Staff = Depends(get_current_staff),
    service: StaffService = Depends(get_staff_service),
):
    """What the current staff member may do to ``staff_id``, for the panel UI."""
    capabilities = await service.capabilities(current_staff, staff_id)
    return StaffCapabilitiesResponse.model_validate(capabilities)


@router.patch("/{staff_id}/role", response_model=StaffResponse)
async def change_staff_role(
    staff_id: uuid.UUID,
    payload: StaffRoleChange,
    current_staff: Staff = Depends(get_current_staff),
    service: StaffService = Depends(get_staff_service),
):
    staff = await service.change_role(current_staff, staff_id, payload.role)
    return StaffResponse.model_validate(staff)


@router.delete("/{staff_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_staff(
    staff_id: uuid.UUID,
    current_staff: Staff = Depends(get_current_staff),
    service: StaffService = Depends(get_staff_service),
):
    await service.remove(current_staff, staff_id)


@router.patch(
    "/{staff_id}/minecraft-player",
    response_model=StaffResponse,
)
async def assign_minecraft_player(
    staff_id: uuid.UUID,
    payload: StaffMinecraftPlayerAssign,
    current_staff: Staff = Depends(get_current_staff),
    service: StaffService = Depends(get_staff_service),
):
    staff = await service.assign_minecraft_player(
        current_staff, staff_id, payload.minecraft_uuid
    )
    return StaffResponse.model_validate(staff)
