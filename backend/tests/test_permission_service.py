"""PermissionService answers from the role table and audits refusals."""
import uuid
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.auth.role_hierarchy import SUPER_ADMIN_ROLE, build_role_hierarchy
from app.errors import PermissionError
from app.models.staff import Staff
from app.services.admin.permission_service import PermissionService

HIERARCHY = build_role_hierarchy(
    [
        {"name": SUPER_ADMIN_ROLE, "order": 0, "permissions": ["admin.staff.manage"]},
        {"name": "Admin", "order": 1, "permissions": ["admin.staff.manage", "admin.settings.view"]},
        {"name": "Helper", "order": 3, "permissions": ["ticket.reply.all"]},
    ]
)


def _staff(role: str) -> Staff:
    return Staff(
        id=uuid.uuid4(),
        server_name="alpha",
        username=role.lower(),
        email=f"{role.lower()}@example.com",
        role=role,
    )


async def _hierarchy(_server_name: str):
    return HIERARCHY


class RecordingSessionFactory:
    def __init__(self, fail: bool = False) -> None:
        self.session = MagicMock()
        self.session.commit = AsyncMock()
        self.fail = fail

    @asynccontextmanager
    async def __call__(self):
        if self.fail:
            raise RuntimeError("audit database unavailable")
        yield self.session


@pytest.fixture
def audit_factory() -> RecordingSessionFactory:
    return RecordingSessionFactory()


@pytest.fixture
def service(audit_factory) -> PermissionService:
    return PermissionService(
        MagicMock(),
        "alpha",
        hierarchy_provider=_hierarchy,
        audit_session_factory=audit_factory,
    )


class TestHasPermission:
    @pytest.mark.anyio
    async def test_role_permission_granted(self, service):
        assert await service.has_permission(_staff("Admin"), "admin.settings.view")

    @pytest.mark.anyio
    async def test_missing_permission_denied(self, service):
        assert not await service.has_permission(_staff("Helper"), "admin.staff.manage")

    @pytest.mark.anyio
    async def test_unknown_role_denied(self, service):
        assert not await service.has_permission(_staff("Ghost"), "ticket.reply.all")

    @pytest.mark.anyio
    async def test_invalid_permission_denied(self, service):
        assert not await service.has_permission(_staff("Admin"), "admin.*")

    @pytest.mark.anyio
    async def test_system_actor_never_granted(self, service):
        assert not await service.has_permission(_staff("Admin"), "admin.staff.manage", "system")

    @pytest.mark.anyio
    async def test_invalid_actor_type_raises(self, service):
        with pytest.raises(ValueError):
            await service.has_permission(_staff("Admin"), "admin.staff.manage", "robot")


class TestDenial:
    @pytest.mark.anyio
    async def test_require_permission_audits_and_raises(self, service, audit_factory):
        helper = _staff("Helper")

        with patch("app.services.audit.audit_service.AuditLogRepository") as MockRepo:
            MockRepo.return_value.create = AsyncMock()
            with pytest.raises(PermissionError) as exc_info:
                await service.require_permission(helper, "admin.staff.manage")

            kwargs = MockRepo.return_value.create.call_args.kwargs

        assert exc_info.value.status_code == 403
        assert exc_info.value.message == "Permission denied: admin.staff.manage"
        assert kwargs["action"] == "security.permission_denied"
        assert kwargs["actor_id"] == helper.id
        assert kwargs["server_name"] == "alpha"
        assert kwargs["after"]["actor_role"] == "Helper"
        audit_factory.session.commit.assert_awaited_once()

    @pytest.mark.anyio
    async def test_audit_failure_still_raises_403(self, audit_factory):
        service = PermissionService(
            MagicMock(),
            "alpha",
            hierarchy_provider=_hierarchy,
            audit_session_factory=RecordingSessionFactory(fail=True),
        )

        with pytest.raises(PermissionError):
            await service.deny(_staff("Helper"), "staff.remove", message="nope")

    @pytest.mark.anyio
    async def test_granted_permission_not_audited(self, service, audit_factory):
        await service.require_permission(_staff("Admin"), "admin.staff.manage")
        audit_factory.session.commit.assert_not_awaited()

    @pytest.mark.anyio
    async def test_require_super_admin_checks_role_name(self, service):
        await service.require_super_admin(_staff(SUPER_ADMIN_ROLE), "migration.start")
        with patch("app.services.audit.audit_service.AuditLogRepository") as MockRepo:
            MockRepo.return_value.create = AsyncMock()
            with pytest.raises(PermissionError):
                await service.require_super_admin(_staff("Admin"), "migration.start")
