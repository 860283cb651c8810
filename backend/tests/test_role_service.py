import uuid
from unittest.mock import MagicMock

import pytest

from app.auth.role_hierarchy import SUPER_ADMIN_ROLE, build_role_hierarchy
from app.crud.staff_role import StaffRoleRepository
from app.errors import ConflictError, NotFoundError, PermissionError, ValidationError
from app.models.staff import Staff
from app.services.admin.permission_service import PermissionService
from app.services.admin.role_service import RoleService

from db_helpers import seed_default_roles

SERVER = "alpha"


@pytest.fixture
def role_env(db_session):
    adapter, session = db_session
    roles = {role.name: role for role in seed_default_roles(session, SERVER)}
    root = Staff(server_name=SERVER, username="owner", email="owner@example.com", role=SUPER_ADMIN_ROLE)
    admin = Staff(server_name=SERVER, username="admin", email="admin@example.com", role="Admin")
    helper = Staff(server_name=SERVER, username="helper", email="helper@example.com", role="Helper")
    session.add_all([root, admin, helper])
    session.commit()

    async def hierarchy(server_name: str):
        return build_role_hierarchy(await StaffRoleRepository(adapter).list_for_server(server_name))

    invalidate = MagicMock()
    permissions = PermissionService(
        adapter, SERVER, hierarchy_provider=hierarchy, audit_session_factory=lambda: adapter
    )
    service = RoleService(adapter, SERVER, permissions, cache_invalidator=invalidate)
    return service, roles, {"root": root, "admin": admin, "helper": helper}, invalidate


class TestListRoles:
    @pytest.mark.anyio
    async def test_lists_in_order_with_member_counts(self, role_env):
        service, _roles, staff, _ = role_env

        items = await service.list_roles(staff["admin"])

        assert [item.role.name for item in items] == [
            SUPER_ADMIN_ROLE,
            "Admin",
            "Moderator",
            "Helper",
        ]
        assert [item.user_count for item in items] == [1, 1, 0, 1]

    @pytest.mark.anyio
    async def test_requires_manage_permission(self, role_env):
        service, _roles, staff, _ = role_env
        with pytest.raises(PermissionError):
            await service.list_roles(staff["helper"])


class TestReorder:
    @pytest.mark.anyio
    async def test_root_reorders_whole_list(self, role_env):
        service, roles, staff, invalidate = role_env

        result = await service.reorder(
            staff["root"],
            {roles["Admin"].id: 1, roles["Moderator"].id: 3, roles["Helper"].id: 2},
        )

        assert [role.name for role in result] == [SUPER_ADMIN_ROLE, "Admin", "Helper", "Moderator"]
        invalidate.assert_called_once_with(SERVER)

    @pytest.mark.anyio
    async def test_admin_cannot_reorder_whole_list(self, role_env):
        service, roles, staff, _ = role_env
        with pytest.raises(PermissionError) as exc_info:
            await service.reorder(
                staff["admin"],
                {roles["Admin"].id: 1, roles["Moderator"].id: 3, roles["Helper"].id: 2},
            )
        assert "Super Admin" in exc_info.value.message

    @pytest.mark.anyio
    async def test_admin_partial_reorder_below_own_level(self, role_env):
        service, roles, staff, _ = role_env

        await service.reorder(staff["admin"], {roles["Moderator"].id: 4, roles["Helper"].id: 2})

        assert roles["Helper"].order == 2
        assert roles["Moderator"].order == 4

    @pytest.mark.anyio
    async def test_admin_cannot_move_role_above_itself(self, role_env):
        service, roles, staff, _ = role_env
        with pytest.raises(PermissionError) as exc_info:
            await service.reorder(staff["admin"], {roles["Helper"].id: 1})
        assert exc_info.value.details == {"invalidRoles": ["Helper"]}
        assert roles["Helper"].order == 3

    @pytest.mark.anyio
    async def test_rejected_roles_reported(self, role_env):
        service, roles, staff, _ = role_env
        with pytest.raises(PermissionError) as exc_info:
            await service.reorder(staff["admin"], {roles["Admin"].id: 5})
        assert exc_info.value.details == {"invalidRoles": ["Admin"]}

    @pytest.mark.anyio
    async def test_unknown_role_id_not_found(self, role_env):
        service, roles, staff, _ = role_env
        missing = uuid.UUID(int=7)
        with pytest.raises(NotFoundError):
            await service.reorder(staff["root"], {missing: 2})


class TestUpdateRole:
    @pytest.mark.anyio
    async def test_root_updates_permissions(self, role_env):
        service, roles, staff, invalidate = role_env

        role = await service.update_role(
            staff["root"],
            roles["Helper"].id,
            ["ticket.view.all", "ticket.view.all", "punishment.apply.kick"],
            description="Support staff",
        )

        assert role.permissions == ["ticket.view.all", "punishment.apply.kick"]
        assert role.description == "Support staff"
        invalidate.assert_called_once_with(SERVER)

    @pytest.mark.anyio
    async def test_invalid_permission_rejected(self, role_env):
        service, roles, staff, _ = role_env
        with pytest.raises(ValidationError):
            await service.update_role(staff["root"], roles["Helper"].id, ["admin.*"])

    @pytest.mark.anyio
    async def test_root_role_is_immutable(self, role_env):
        service, roles, staff, _ = role_env
        with pytest.raises(PermissionError):
            await service.update_role(staff["root"], roles[SUPER_ADMIN_ROLE].id, [])

    @pytest.mark.anyio
    async def test_non_root_cannot_update(self, role_env):
        service, roles, staff, _ = role_env
        with pytest.raises(PermissionError):
            await service.update_role(staff["admin"], roles["Helper"].id, [])


class TestDeleteRole:
    @pytest.mark.anyio
    async def test_unused_role_deleted(self, role_env):
        service, roles, staff, _ = role_env

        await service.delete_role(staff["root"], roles["Moderator"].id)

        names = [item.role.name for item in await service.list_roles(staff["root"])]
        assert "Moderator" not in names

    @pytest.mark.anyio
    async def test_role_in_use_conflicts(self, role_env):
        service, roles, staff, _ = role_env
        with pytest.raises(ConflictError):
            await service.delete_role(staff["root"], roles["Helper"].id)

    @pytest.mark.anyio
    async def test_root_role_cannot_be_deleted(self, role_env):
        service, roles, staff, _ = role_env
        with pytest.raises(PermissionError):
            await service.delete_role(staff["root"], roles[SUPER_ADMIN_ROLE].id)


class TestCreateRole:
    @pytest.mark.anyio
    async def test_root_creates_role_below_existing(self, role_env):
        service, _roles, staff, invalidate = role_env

        role = await service.create_role(
            staff["root"],
            "  Trial Moderator ",
            "New moderators",
            ["ticket.view.all", "punishment.apply.mute", "ticket.view.all"],
        )

        assert role.name == "Trial Moderator"
        assert role.order == 4
        assert role.is_default is False
        assert role.slug.startswith("custom-")
        assert role.permissions == ["ticket.view.all", "punishment.apply.mute"]
        invalidate.assert_called_once_with(SERVER)
        hierarchy = await service.permissions.hierarchy()
        assert hierarchy["Trial Moderator"].order == 4

    @pytest.mark.anyio
    async def test_duplicate_name_conflicts(self, role_env):
        service, _roles, staff, invalidate = role_env
        with pytest.raises(ConflictError):
            await service.create_role(staff["root"], "Helper", "Again", [])
        invalidate.assert_not_called()

    @pytest.mark.anyio
    async def test_reserved_root_name_rejected(self, role_env):
        service, _roles, staff, _ = role_env
        with pytest.raises(ValidationError):
            await service.create_role(staff["root"], SUPER_ADMIN_ROLE, "Second root", [])

    @pytest.mark.anyio
    async def test_invalid_permissions_listed(self, role_env):
        service, _roles, staff, _ = role_env
        with pytest.raises(ValidationError) as exc_info:
            await service.create_role(
                staff["root"], "Builder", "Builds", ["ticket.view.all", "world.edit", "admin.*"]
            )
        assert exc_info.value.details == {"invalidPermissions": ["world.edit", "admin.*"]}

    @pytest.mark.anyio
    async def test_only_root_creates_roles(self, role_env):
        service, _roles, staff, _ = role_env
        with pytest.raises(PermissionError):
            await service.create_role(staff["admin"], "Builder", "Builds", [])

    @pytest.mark.anyio
    async def test_audit_permission_accepted(self, role_env):
        service, _roles, staff, _ = role_env

        role = await service.create_role(staff["root"], "Auditor", "Reads logs", ["admin.audit.view"])

        assert role.permissions == ["admin.audit.view"]


class TestGetRole:
    @pytest.mark.anyio
    async def test_returns_role_with_member_count(self, role_env):
        service, roles, staff, _ = role_env

        item = await service.get_role(staff["admin"], roles["Helper"].id)

        assert item.role.name == "Helper"
        assert item.user_count == 1

    @pytest.mark.anyio
    async def test_unknown_role_not_found(self, role_env):
        service, _roles, staff, _ = role_env
        with pytest.raises(NotFoundError):
            await service.get_role(staff["admin"], uuid.UUID(int=9))


class TestListPermissions:
    @pytest.mark.anyio
    async def test_catalog_includes_held_punishment_permissions(self, role_env):
        service, roles, staff, _ = role_env
        await service.update_role(
            staff["root"], roles["Moderator"].id, ["punishment.apply.chat-abuse"]
        )

        definitions = {item.id: item for item in await service.list_permissions(staff["admin"])}

        assert definitions["admin.audit.view"].category == "admin"
        assert definitions["ticket.view.all"].category == "ticket"
        chat_abuse = definitions["punishment.apply.chat-abuse"]
        assert chat_abuse.name == "Apply Chat Abuse"
        assert chat_abuse.category == "punishment"

    @pytest.mark.anyio
    async def test_requires_manage_permission(self, role_env):
        service, _roles, staff, _ = role_env
        with pytest.raises(PermissionError):
            await service.list_permissions(staff["helper"])
