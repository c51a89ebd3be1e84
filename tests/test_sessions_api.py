"""
Session HTTP routes: NDJSON turn stream, overlay preview, commit, cancel.
"""
import json

import pytest
from httpx import ASGITransport, AsyncClient

from patchloop.main import create_app
from tests.utils.fakes import ScriptedGenerator, ScriptedTypechecker, problem

PAGE_CONTENT = "export default function Page() {\n  return <main>Hello</main>;\n}\n"


def ndjson(response):
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


async def run_turn(client, session_id="demo", **body):
    body.setdefault("prompt", "Build a landing page")
    response = await client.post(f"/api/sessions/{session_id}/turns", json=body)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    return ndjson(response)


class TestTurnStream:

    @pytest.mark.asyncio
    async def test_turn_events_in_order(self, async_client):
        events = await run_turn(async_client)

        assert [e["type"] for e in events] == ["chunk", "chunk", "chunk", "patch", "diagnostics", "done"]
        assert [e["seq"] for e in events] == list(range(6))
        done = events[-1]["payload"]
        assert done["status"] == "clean"
        assert done["applied_directives"][0]["path"] == "app/page.tsx"

    @pytest.mark.asyncio
    async def test_busy_session_conflicts(self, async_client):
        await run_turn(async_client)
        response = await async_client.post("/api/sessions/demo/turns", json={"prompt": "again"})
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_no_generator(self, temp_workspace):
        app = create_app(generator=None, typechecker=ScriptedTypechecker([]))
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post("/api/sessions/demo/turns", json={"prompt": "x"})
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_invalid_session_id(self, async_client):
        response = await async_client.post("/api/sessions/bad.id/turns", json={"prompt": "x"})
        assert response.status_code == 400


class TestPreviewAndCommit:

    @pytest.mark.asyncio
    async def test_files_then_commit(self, async_client, temp_workspace):
        await run_turn(async_client)

        files = (await async_client.get("/api/sessions/demo/files")).json()
        assert files["status"] == "clean"
        assert files["virtual_files"] == {"app/page.tsx": PAGE_CONTENT}
        assert files["deleted_files"] == []

        listed = (await async_client.get("/api/sessions")).json()
        assert listed["sessions"] == ["demo"]

        response = await async_client.post("/api/sessions/demo/commit", json={})
        assert response.status_code == 200
        assert response.json()["written"] == ["app/page.tsx"]
        assert (temp_workspace / "demo" / "app" / "page.tsx").read_text(encoding="utf-8") == PAGE_CONTENT

        assert (await async_client.get("/api/sessions/demo/files")).status_code == 404

    @pytest.mark.asyncio
    async def test_failed_turn_commit_needs_force(self, temp_workspace):
        app = create_app(
            generator=ScriptedGenerator(['<pl-write path="a.ts">const a: string = 1;</pl-write>']),
            typechecker=ScriptedTypechecker([problem(file="a.ts")]),
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            events = await run_turn(client, max_attempts=0)
            assert events[-1]["payload"]["status"] == "failed"
            assert events[-1]["payload"]["failure_reason"] == "repair_budget_exhausted"

            refused = await client.post("/api/sessions/demo/commit", json={"force": False})
            assert refused.status_code == 409

            forced = await client.post("/api/sessions/demo/commit", json={"force": True})
            assert forced.status_code == 200

        assert (temp_workspace / "demo" / "a.ts").read_text(encoding="utf-8") == "const a: string = 1;"

    @pytest.mark.asyncio
    async def test_failed_commit_keeps_workspace_and_overlay(self, temp_workspace):
        project = temp_workspace / "demo"
        project.mkdir()
        (project / "blocker").write_text("not a directory", encoding="utf-8")
        (project / "old.ts").write_text("export const old = 1;\n", encoding="utf-8")

        app = create_app(
            generator=ScriptedGenerator([
                '<pl-delete path="old.ts"/>'
                '<pl-write path="a.ts">export const a = 1;\n</pl-write>'
                '<pl-write path="blocker/x.ts">export const x = 1;\n</pl-write>'
            ]),
            typechecker=ScriptedTypechecker([]),
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            events = await run_turn(client)
            assert events[-1]["payload"]["status"] == "clean"

            response = await client.post("/api/sessions/demo/commit", json={})
            assert response.status_code == 500
            assert "blocker/x.ts" in response.json()["detail"]

            files = (await client.get("/api/sessions/demo/files")).json()
            assert sorted(files["virtual_files"]) == ["a.ts", "blocker/x.ts"]

        assert (project / "old.ts").exists()
        assert not (project / "a.ts").exists()
        assert not list(project.rglob("*.tmp"))

    @pytest.mark.asyncio
    async def test_delete_discards(self, async_client, temp_workspace):
        await run_turn(async_client)

        response = await async_client.delete("/api/sessions/demo")
        assert response.status_code == 200
        assert response.json()["discarded"] is True

        assert (await async_client.get("/api/sessions/demo/files")).status_code == 404
        assert not (temp_workspace / "demo" / "app" / "page.tsx").exists()

    @pytest.mark.asyncio
    async def test_unknown_session(self, async_client):
        assert (await async_client.get("/api/sessions/ghost/files")).status_code == 404
        assert (await async_client.post("/api/sessions/ghost/commit", json={})).status_code == 404
        assert (await async_client.delete("/api/sessions/ghost")).status_code == 404
