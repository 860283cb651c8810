import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RoleResponse(CamelModel):
    id: uuid.UUID
    name: str
    description: str | None = None
    order: int
    permissions: list[str]
    is_default: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RoleListItem(RoleResponse):
    user_count: int = 0


class RoleUpdate(CamelModel):
    permissions: list[str]
    description: str | None = Field(None, max_length=1000)


class RoleOrder(CamelModel):
    id: uuid.UUID
    order: int = Field(..., ge=1)


class RoleReorderRequest(CamelModel):
    roles: list[RoleOrder] = Field(..., min_length=1)


class RoleCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    permissions: list[str]


class PermissionItem(CamelModel):
    id: str
    name: str
    description: str
    category: str

    class Config:
        from_attributes = True


class PermissionCatalogResponse(CamelModel):
    permissions: list[PermissionItem]
    categories: dict[str, str]
