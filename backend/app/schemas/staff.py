import uuid
from datetime import datetime

from pydantic import Field

from .role import CamelModel


class StaffResponse(CamelModel):
    id: uuid.UUID
    username: str
    email: str
    role: str
    assigned_minecraft_uuid: str | None = None
    assigned_minecraft_username: str | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StaffRoleChange(CamelModel):
    role: str = Field(..., min_length=1, max_length=100)


class StaffMinecraftPlayerAssign(CamelModel):
    # None clears the assignment
    minecraft_uuid: str | None = Field(None, min_length=1, max_length=36)


class StaffCapabilitiesResponse(CamelModel):
    staff_id: uuid.UUID
    can_change_role: bool
    assignable_roles: list[str]
    can_remove: bool
    can_assign_minecraft_player: bool
    can_assign_minecraft_player_by_rank: bool
    can_reorder_roles: bool

    class Config:
        from_attributes = True
