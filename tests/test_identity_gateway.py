import json

import httpx
import pytest

from library_portal.services.identity_gateway import IdentityGateway
from library_portal.utils.errors import (
    AuthenticationError,
    IdentityConflictError,
    UpstreamError,
    ValidationError,
)

BASE_URL = "https://identity.test"


def gateway_for(handler) -> IdentityGateway:
    return IdentityGateway(
        base_url=BASE_URL,
        service_key="service-role-key",
        anon_key="anon-key",
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )


class TestCreateUser:
    @pytest.mark.asyncio
    async def test_creates_confirmed_account_with_service_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["apikey"] = request.headers["apikey"]
            seen["authorization"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "user-1", "email": "asha@college.test"})

        user_id = await gateway_for(handler).create_user(
            "asha@college.test", "Str0ng-pass", {"name": "Asha", "role": "student", "prn": "2021000001"}
        )

        assert user_id == "user-1"
        assert seen["path"] == "/auth/v1/admin/users"
        assert seen["apikey"] == "service-role-key"
        assert seen["authorization"] == "Bearer service-role-key"
        assert seen["body"]["email_confirm"] is True
        assert seen["body"]["user_metadata"]["role"] == "student"

    @pytest.mark.asyncio
    async def test_wrapped_user_response(self):
        gateway = gateway_for(lambda request: httpx.Response(200, json={"user": {"id": "user-2"}}))
        assert await gateway.create_user("a@college.test", "pw", {}) == "user-2"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, body",
        [
            (422, {"code": 422, "error_code": "email_exists", "msg": "Email address already exists"}),
            (409, {"msg": "conflict"}),
            (400, {"msg": "A user with this email address has already been registered"}),
        ],
    )
    async def test_existing_account_is_a_conflict(self, status, body):
        gateway = gateway_for(lambda request: httpx.Response(status, json=body))

        with pytest.raises(IdentityConflictError) as exc_info:
            await gateway.create_user("asha@college.test", "pw", {})
        assert exc_info.value.message.startswith("Registration failed: ")

    @pytest.mark.asyncio
    async def test_rejected_password_is_a_validation_error(self):
        gateway = gateway_for(
            lambda request: httpx.Response(
                422, json={"error_code": "weak_password", "msg": "Password should be at least 6 characters"}
            )
        )

        with pytest.raises(ValidationError) as exc_info:
            await gateway.create_user("asha@college.test", "pw", {})
        assert exc_info.value.error_code == "REGISTRATION_REJECTED"
        assert "at least 6 characters" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_provider_failure_is_upstream(self):
        gateway = gateway_for(lambda request: httpx.Response(503, text="unavailable"))

        with pytest.raises(UpstreamError):
            await gateway.create_user("asha@college.test", "pw", {})

    @pytest.mark.asyncio
    async def test_unreachable_provider_is_upstream(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamError) as exc_info:
            await gateway_for(handler).create_user("asha@college.test", "pw", {})
        assert exc_info.value.error_code == "IDENTITY_PROVIDER_ERROR"


class TestSignIn:
    @pytest.mark.asyncio
    async def test_password_grant_with_anon_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["grant_type"] = request.url.params["grant_type"]
            seen["apikey"] = request.headers["apikey"]
            return httpx.Response(
                200,
                json={"access_token": "jwt-token", "token_type": "bearer", "user": {"id": "user-1"}},
            )

        session = await gateway_for(handler).sign_in_with_password("asha@college.test", "pw")

        assert session == {"access_token": "jwt-token", "user": {"id": "user-1"}}
        assert seen == {"grant_type": "password", "apikey": "anon-key"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401])
    async def test_bad_credentials(self, status):
        gateway = gateway_for(
            lambda request: httpx.Response(status, json={"error": "invalid_grant"})
        )

        with pytest.raises(AuthenticationError) as exc_info:
            await gateway.sign_in_with_password("asha@college.test", "wrong")
        assert exc_info.value.error_code == "INVALID_CREDENTIALS"

    @pytest.mark.asyncio
    async def test_server_error_is_upstream(self):
        gateway = gateway_for(lambda request: httpx.Response(500, json={"msg": "boom"}))

        with pytest.raises(UpstreamError):
            await gateway.sign_in_with_password("asha@college.test", "pw")


class TestGetUser:
    @pytest.mark.asyncio
    async def test_token_is_sent_as_bearer(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/auth/v1/user"
            assert request.headers["authorization"] == "Bearer student-token"
            return httpx.Response(200, json={"id": "user-1", "email": "asha@college.test"})

        user = await gateway_for(handler).get_user("student-token")
        assert user["id"] == "user-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_rejected_token_is_none(self, status):
        gateway = gateway_for(lambda request: httpx.Response(status, json={"msg": "invalid JWT"}))
        assert await gateway.get_user("expired") is None
