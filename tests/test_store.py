"""Tests for the context store backends."""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from openera_mcp.config import StoreSettings
from openera_mcp.context.store import (
    InMemoryContextStore,
    SupabaseContextStore,
    create_store,
)
from openera_mcp.errors import StoreError


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_insert_assigns_id_and_timestamp(self):
        store = InMemoryContextStore()

        stored = await store.insert("conversations", {"session_id": "s1", "content": "hi"})

        assert stored["id"]
        assert stored["created_at"]
        assert stored["content"] == "hi"

    @pytest.mark.asyncio
    async def test_query_filters_orders_and_limits(self):
        store = InMemoryContextStore()
        await store.insert("conversations", {"session_id": "s1", "content": "one", "created_at": "2024-01-01T00:00:01"})
        await store.insert("conversations", {"session_id": "s2", "content": "other", "created_at": "2024-01-01T00:00:02"})
        await store.insert("conversations", {"session_id": "s1", "content": "two", "created_at": "2024-01-01T00:00:03"})
        await store.insert("conversations", {"session_id": "s1", "content": "three", "created_at": "2024-01-01T00:00:04"})

        rows = await store.query("conversations", filters={"session_id": "s1"}, limit=2)

        assert [row["content"] for row in rows] == ["three", "two"]

    @pytest.mark.asyncio
    async def test_equal_timestamps_keep_newest_insert_first(self):
        store = InMemoryContextStore()
        for content in ("a", "b", "c"):
            await store.insert("t", {"content": content, "created_at": "same"})

        rows = await store.query("t")

        assert [row["content"] for row in rows] == ["c", "b", "a"]

    @pytest.mark.asyncio
    async def test_substring_search_is_case_insensitive(self):
        store = InMemoryContextStore()
        await store.insert("documents", {"title": "Deploy Guide", "content": "steps"})
        await store.insert("documents", {"title": "Notes", "content": "How to DEPLOY safely"})
        await store.insert("documents", {"title": "Recipes", "content": "soup"})

        rows = await store.substring_search("documents", "deploy", ["title", "content"])

        assert {row["title"] for row in rows} == {"Deploy Guide", "Notes"}

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self):
        store = InMemoryContextStore()
        stored = await store.insert("t", {"metadata": {"k": "v"}})
        stored["metadata"]["k"] = "changed"

        rows = await store.query("t")

        assert rows[0]["metadata"] == {"k": "v"}

    @pytest.mark.asyncio
    async def test_delete(self):
        store = InMemoryContextStore()
        stored = await store.insert("documents", {"title": "x", "content": "y"})

        assert await store.delete("documents", stored["id"]) is True
        assert await store.delete("documents", stored["id"]) is False
        assert await store.query("documents") == []


def make_postgrest_app(requests):
    async def handle(request: web.Request) -> web.Response:
        body = await request.json() if request.can_read_body else None
        requests.append(
            {
                "method": request.method,
                "table": request.match_info["table"],
                "query": dict(request.query),
                "headers": dict(request.headers),
                "body": body,
            }
        )
        if request.match_info["table"] == "broken":
            return web.json_response({"message": "relation does not exist"}, status=404)
        if request.method == "POST":
            return web.json_response([{**body[0], "id": "row-1", "created_at": "now"}], status=201)
        if request.method == "DELETE":
            return web.json_response([{"id": request.query["id"][3:]}])
        return web.json_response([{"id": "row-1", "title": "t", "content": "c"}])

    app = web.Application()
    app.router.add_route("*", "/rest/v1/{table}", handle)
    return app


class TestSupabaseStore:
    @pytest.mark.asyncio
    async def test_insert_sends_auth_and_returns_row(self):
        requests = []
        async with TestServer(make_postgrest_app(requests)) as server:
            store = SupabaseContextStore(str(server.make_url("/")), "anon-key")
            try:
                row = await store.insert("conversations", {"session_id": "s1", "agent_id": None, "content": "hi"})
            finally:
                await store.close()

        assert row["id"] == "row-1"
        sent = requests[0]
        assert sent["method"] == "POST"
        assert sent["headers"]["apikey"] == "anon-key"
        assert sent["headers"]["Authorization"] == "Bearer anon-key"
        assert sent["headers"]["Prefer"] == "return=representation"
        assert sent["body"] == [{"session_id": "s1", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_query_builds_postgrest_filters(self):
        requests = []
        async with TestServer(make_postgrest_app(requests)) as server:
            store = SupabaseContextStore(str(server.make_url("/")), "anon-key")
            try:
                await store.query("conversations", filters={"session_id": "s1", "agent_id": "main"}, limit=20)
            finally:
                await store.close()

        assert requests[0]["query"] == {
            "select": "*",
            "order": "created_at.desc",
            "limit": "20",
            "session_id": "eq.s1",
            "agent_id": "eq.main",
        }

    @pytest.mark.asyncio
    async def test_substring_search_uses_ilike_on_each_field(self):
        requests = []
        async with TestServer(make_postgrest_app(requests)) as server:
            store = SupabaseContextStore(str(server.make_url("/")), "anon-key")
            try:
                rows = await store.substring_search("documents", "deploy, now", ["title", "content"], limit=5)
            finally:
                await store.close()

        assert rows[0]["title"] == "t"
        query = requests[0]["query"]
        assert query["or"] == '(title.ilike."*deploy, now*",content.ilike."*deploy, now*")'
        assert query["limit"] == "5"

    @pytest.mark.asyncio
    async def test_delete_by_id(self):
        requests = []
        async with TestServer(make_postgrest_app(requests)) as server:
            store = SupabaseContextStore(str(server.make_url("/")), "anon-key")
            try:
                deleted = await store.delete("documents", "doc-9")
            finally:
                await store.close()

        assert deleted is True
        assert requests[0]["method"] == "DELETE"
        assert requests[0]["query"] == {"id": "eq.doc-9"}

    @pytest.mark.asyncio
    async def test_http_error_raises_store_error(self):
        requests = []
        async with TestServer(make_postgrest_app(requests)) as server:
            store = SupabaseContextStore(str(server.make_url("/")), "anon-key")
            try:
                with pytest.raises(StoreError, match="404"):
                    await store.query("broken")
            finally:
                await store.close()

    @pytest.mark.asyncio
    async def test_unreachable_server_raises_store_error(self):
        store = SupabaseContextStore("http://127.0.0.1:1", "anon-key")
        try:
            with pytest.raises(StoreError):
                await store.query("conversations")
        finally:
            await store.close()


class TestCreateStore:
    def test_memory_is_default(self):
        assert isinstance(create_store(StoreSettings()), InMemoryContextStore)

    def test_supabase_requires_credentials(self):
        with pytest.raises(ValueError):
            create_store(StoreSettings(backend="supabase"))

    def test_supabase(self):
        store = create_store(
            StoreSettings(backend="supabase", supabase_url="https://x.supabase.co/", supabase_key="k")
        )

        assert isinstance(store, SupabaseContextStore)
        assert store.base_url == "https://x.supabase.co/rest/v1"

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_store(StoreSettings(backend="redis"))
