"""
Tests for account management and token handling.
"""

from datetime import timedelta

import jwt
import pytest

from traffic_fines.core.exceptions import ForbiddenError, InvalidStateError, NotFoundError, ValidationFailedError
from traffic_fines.models.user import Role
from traffic_fines.services import admin_service, auth_service, user_service


class TestAuth:
    async def test_password_is_hashed(self, session, driver):
        assert driver.hashed_password != "secret123"
        assert auth_service.verify_password("secret123", driver.hashed_password)
        assert not auth_service.verify_password("wrong", driver.hashed_password)

    async def test_authenticate(self, session, driver):
        assert (await auth_service.authenticate_user(session, "driver1", "secret123")).id == driver.id
        assert await auth_service.authenticate_user(session, "driver1", "nope") is None
        assert await auth_service.authenticate_user(session, "ghost", "secret123") is None

    def test_token_roundtrip(self):
        token = auth_service.create_access_token("driver1", Role.DRIVER.value)
        payload = auth_service.decode_access_token(token)
        assert payload["sub"] == "driver1"
        assert payload["role"] == "driver"

    def test_expired_token(self):
        token = auth_service.create_access_token("driver1", "driver", expires_delta=timedelta(seconds=-5))
        with pytest.raises(jwt.ExpiredSignatureError):
            auth_service.decode_access_token(token)

    def test_malformed_hash_is_rejected(self):
        assert auth_service.verify_password("x", "not-a-hash") is False


class TestUserService:
    async def test_register_rejects_duplicates(self, session, driver):
        with pytest.raises(ValidationFailedError) as exc:
            await user_service.register_user(session, "driver1", "DRIVER1@example.com", "secret123")
        assert set(exc.value.errors) == {"username", "email"}

    async def test_register_normalises_email(self, session):
        user = await user_service.register_user(session, "newbie", " New@Example.COM ", "secret123")
        assert user.email == "new@example.com"
        assert user.role == Role.DRIVER

    async def test_driver_sees_only_self(self, session, driver, other_driver, officer):
        assert (await user_service.get_user(session, driver, driver.id)).id == driver.id
        assert (await user_service.get_user(session, officer, driver.id)).id == driver.id
        with pytest.raises(ForbiddenError):
            await user_service.get_user(session, driver, other_driver.id)

    async def test_update_profile(self, session, driver, other_driver, admin):
        updated = await user_service.update_profile(session, driver, driver.id, {"city": "Galle"})
        assert updated.city == "Galle"
        await user_service.update_profile(session, admin, driver.id, {"phone_number": "+94770000000"})
        with pytest.raises(ForbiddenError):
            await user_service.update_profile(session, other_driver, driver.id, {"city": "Kandy"})
        with pytest.raises(ValidationFailedError):
            await user_service.update_profile(session, driver, driver.id, {"email": "driver2@example.com"})

    async def test_role_and_status_changes(self, session, admin, driver):
        promoted = await user_service.change_role(session, admin, driver.id, Role.POLICE_OFFICER)
        assert promoted.role == Role.POLICE_OFFICER
        disabled = await user_service.set_active(session, admin, driver.id, False)
        assert disabled.is_active is False

        with pytest.raises(InvalidStateError):
            await user_service.change_role(session, admin, admin.id, Role.DRIVER)
        with pytest.raises(InvalidStateError):
            await user_service.set_active(session, admin, admin.id, False)
        with pytest.raises(NotFoundError):
            await user_service.set_active(session, admin, 999, False)

    async def test_list_and_search(self, session, admin, driver, other_driver, officer):
        drivers = await user_service.list_users(session, role=Role.DRIVER, limit=1)
        assert drivers["total"] == 2
        assert drivers["pages"] == 2
        assert len(drivers["users"]) == 1

        found = await user_service.search_drivers(session, "B1234")
        assert [u.id for u in found] == [driver.id]
        assert await user_service.search_drivers(session, "officer") == []

    async def test_stats(self, session, admin, driver, other_driver, officer):
        await user_service.set_active(session, admin, other_driver.id, False)
        stats = await user_service.user_stats(session)
        assert stats["total_users"] == 4
        assert stats["active_users"] == 3
        drivers = next(b for b in stats["role_stats"] if b["role"] == Role.DRIVER)
        assert drivers == {"role": Role.DRIVER, "count": 2, "active": 1}


class TestAdminAudit:
    async def test_record_and_list(self, session, admin):
        await admin_service.record_admin_audit(session, admin.id, "create_violation", resource_type="violation",
                                               resource_id=1, details={"code": "SP001"})
        await admin_service.record_admin_audit(session, admin.id, "change_role", resource_type="user", resource_id=2)

        everything = await admin_service.list_admin_audit(session)
        violations = await admin_service.list_admin_audit(session, resource_type="violation")
        assert len(everything) == 2
        assert [a.action for a in violations] == ["create_violation"]
