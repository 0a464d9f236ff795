"""Tests for the REST directory client."""

import json

import httpx
import pytest

from dirmigrator.api.client import RateLimiter, RestDirectoryClient
from dirmigrator.config import TenantConfig
from dirmigrator.utils.errors import (
    AuthenticationError,
    ConflictError,
    MigrationError,
    PayloadRejectedError,
    RecoverableError,
)

BASE_URL = "https://directory.example/api/v1"


def make_client(handler, token="secret-token"):
    config = TenantConfig(tenant_id="contoso", base_url=BASE_URL, api_token=token)
    return RestDirectoryClient(config, transport=httpx.MockTransport(handler))


class TestListObjects:
    """Tests for paginated listing."""

    @pytest.mark.asyncio
    async def test_follows_next_link(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json={"value": [{"id": "u3"}]})
            return httpx.Response(
                200,
                json={
                    "value": [{"id": "u1"}, {"id": "u2"}],
                    "nextLink": f"{BASE_URL}/users?page=2",
                },
            )

        async with make_client(handler) as client:
            items = [item async for item in client.list_objects("users")]

        assert [item["id"] for item in items] == ["u1", "u2", "u3"]
        assert seen == [f"{BASE_URL}/users", f"{BASE_URL}/users?page=2"]

    @pytest.mark.asyncio
    async def test_plain_array_listing(self):
        def handler(request):
            return httpx.Response(200, json=[{"id": "g1"}])

        async with make_client(handler) as client:
            items = [item async for item in client.list_objects("groups")]

        assert items == [{"id": "g1"}]

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self):
        headers = []

        def handler(request):
            headers.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={"items": []})

        async with make_client(handler) as client:
            assert [item async for item in client.list_objects("users")] == []

        assert headers == ["Bearer secret-token"]

    @pytest.mark.asyncio
    async def test_find_object_passes_filter(self):
        filters = []

        def handler(request):
            filters.append(request.url.params.get("filter"))
            return httpx.Response(200, json={"value": [{"id": "D1"}, {"id": "D2"}]})

        async with make_client(handler) as client:
            found = await client.find_object("users", "userPrincipalName eq 'bob@fabrikam.com'")

        assert found == {"id": "D1"}
        assert filters == ["userPrincipalName eq 'bob@fabrikam.com'"]

    @pytest.mark.asyncio
    async def test_find_object_without_match(self):
        def handler(request):
            return httpx.Response(200, json={"value": []})

        async with make_client(handler) as client:
            assert await client.find_object("users", "displayName eq 'x'") is None


class TestCreateAndDelete:
    """Tests for object creation and deletion."""

    @pytest.mark.asyncio
    async def test_create_returns_new_id(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"id": 42, "displayName": "Bob"})

        async with make_client(handler) as client:
            new_id = await client.create_object("users", {"displayName": "Bob"})

        assert new_id == "42"
        assert bodies == [{"displayName": "Bob"}]

    @pytest.mark.asyncio
    async def test_create_without_id_is_an_error(self):
        def handler(request):
            return httpx.Response(201, json={"displayName": "Bob"})

        async with make_client(handler) as client:
            with pytest.raises(MigrationError):
                await client.create_object("users", {"displayName": "Bob"})

    @pytest.mark.asyncio
    async def test_delete_missing_object_is_not_an_error(self):
        methods = []

        def handler(request):
            methods.append((request.method, request.url.path))
            return httpx.Response(404, json={"error": {"message": "not found"}})

        async with make_client(handler) as client:
            await client.delete_object("users", "D1")

        assert methods == [("DELETE", "/api/v1/users/D1")]

    @pytest.mark.asyncio
    async def test_requires_context_manager(self):
        client = make_client(lambda request: httpx.Response(200, json=[]))

        with pytest.raises(RuntimeError):
            await client.create_object("users", {})


class TestErrorMapping:
    """Tests for mapping HTTP failures onto the error taxonomy."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,error_class",
        [
            (409, ConflictError),
            (400, PayloadRejectedError),
            (422, PayloadRejectedError),
            (401, AuthenticationError),
            (403, AuthenticationError),
            (429, RecoverableError),
            (503, RecoverableError),
            (418, MigrationError),
        ],
    )
    async def test_status_codes(self, status, error_class):
        def handler(request):
            return httpx.Response(status, json={"error": {"message": "nope"}})

        async with make_client(handler) as client:
            with pytest.raises(error_class) as exc_info:
                await client.create_object("users", {})

        assert exc_info.value.context["status_code"] == status
        assert "nope" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_retry_after_header(self):
        def handler(request):
            return httpx.Response(429, headers={"Retry-After": "7"}, json={})

        async with make_client(handler) as client:
            with pytest.raises(RecoverableError) as exc_info:
                await client.create_object("users", {})

        assert exc_info.value.retry_after == 7.0

    @pytest.mark.asyncio
    async def test_transport_error_is_recoverable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(RecoverableError):
                await client.create_object("users", {})


class TestRateLimiter:
    """Tests for the token bucket."""

    @pytest.mark.asyncio
    async def test_full_bucket_does_not_wait(self):
        limiter = RateLimiter(rate=5, per=60.0)

        for _ in range(5):
            await limiter.acquire()

        assert limiter.tokens < 1
