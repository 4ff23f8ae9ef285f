"""
Tests for the HTTP command client against an in-process backend.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest
from aiohttp import test_utils

from comfylink.client import ComfyClient
from comfylink.config import ComfyConfig
from comfylink.errors import CommandError
from comfylink.session import PHASE_OPEN, SessionStore

from .backend import BackendScript, config_for, make_backend
from .fakes import TransportFactory, status_data


async def _with_client(script: BackendScript, body, *, identity="alice"):
    async with test_utils.TestServer(make_backend(script)) as server:
        async with ComfyClient(config_for(server), identity=lambda: identity) as client:
            return await body(client)


def test_queue_prompt_sends_client_id():
    script = BackendScript()
    workflow = {"3": {"class_type": "KSampler", "inputs": {"seed": 1}}}

    queued = asyncio.run(_with_client(script, lambda c: c.queue_prompt(workflow)))

    assert queued.prompt_id == "p-1"
    assert queued.number == 7
    assert queued.node_errors == {}
    assert script.requests == [("prompt", {"prompt": workflow, "client_id": "alice"})]


def test_explicit_client_id_wins():
    script = BackendScript()

    asyncio.run(_with_client(script, lambda c: c.queue_prompt({"1": {}}, "bob")))

    assert script.requests[0][1]["client_id"] == "bob"


def test_queue_prompt_failure_raises_with_status():
    script = BackendScript()

    with pytest.raises(CommandError) as excinfo:
        asyncio.run(_with_client(script, lambda c: c.queue_prompt({})))

    assert excinfo.value.status == 400
    assert excinfo.value.method == "POST"
    assert "prompt_no_outputs" in (excinfo.value.detail or "")


def test_missing_identity_fails_before_request():
    script = BackendScript()

    with pytest.raises(CommandError) as excinfo:
        asyncio.run(_with_client(script, lambda c: c.interrupt(), identity=None))

    assert excinfo.value.status is None
    assert script.requests == []


def test_interrupt_and_clear():
    script = BackendScript()

    async def body(client):
        await client.interrupt()
        await client.clear_queue()

    asyncio.run(_with_client(script, body))

    assert script.requests == [("interrupt", ""), ("queue", {"clear": True})]


@pytest.mark.parametrize("command", ["interrupt", "clear_queue", "get_system_stats"])
def test_non_success_is_surfaced(command):
    script = BackendScript(fail_commands=True)

    with pytest.raises(CommandError):
        asyncio.run(_with_client(script, lambda c: getattr(c, command)()))


def test_upload_image_from_path(tmp_path):
    script = BackendScript()
    image = tmp_path / "cat.png"
    image.write_bytes(b"\x89PNG\r\n\x1a\ncat")

    uploaded = asyncio.run(_with_client(script, lambda c: c.upload_image(image, overwrite=True)))

    assert (uploaded.name, uploaded.subfolder, uploaded.type) == ("cat.png", "", "input")
    sent = script.requests[0][1]
    assert sent["filename"] == "cat.png"
    assert sent["data"] == b"\x89PNG\r\n\x1a\ncat"
    assert sent["type"] == "input"
    assert sent["overwrite"] == "true"


def test_upload_raw_bytes_needs_filename():
    script = BackendScript()

    with pytest.raises(CommandError):
        asyncio.run(_with_client(script, lambda c: c.upload_image(b"abc")))
    assert script.requests == []


def test_system_stats():
    stats = asyncio.run(_with_client(BackendScript(), lambda c: c.get_system_stats()))

    assert stats.os == "posix"
    assert stats.python_version == "3.11.9"
    assert len(stats.devices) == 1
    assert stats.devices[0].type == "cuda"
    assert stats.devices[0].vram_total == 25757220864


def test_timeout_is_surfaced_as_command_error():
    script = BackendScript(delay_s=1.0)

    async def scenario():
        async with test_utils.TestServer(make_backend(script)) as server:
            config = replace(config_for(server), http_timeout_s=0.1)
            async with ComfyClient(config, identity=lambda: "alice") as client:
                await client.get_system_stats()

    with pytest.raises(CommandError) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.status is None
    assert excinfo.value.method == "GET"
    assert "TimeoutError" in (excinfo.value.detail or "")


def test_image_url_is_pure():
    client = ComfyClient(ComfyConfig(base_url="http://example.invalid", api_prefix="/api-comfy"))

    assert client.image_url("out 1.png") == "/api-comfy/view?filename=out+1.png&subfolder=&type=output"
    assert (
        client.image_url("a.png", subfolder="batch", type="temp")
        == "/api-comfy/view?filename=a.png&subfolder=batch&type=temp"
    )


def test_failed_submit_leaves_session_state_alone():
    script = BackendScript()
    factory = TransportFactory()

    async def scenario():
        async with test_utils.TestServer(make_backend(script)) as server:
            store = SessionStore(config_for(server), transport_factory=factory)
            await store.connect("alice")
            factory.created[0].emit_json("status", status_data(3))
            before = store.snapshot()
            try:
                with pytest.raises(CommandError):
                    await store.queue_prompt({})
                return before, store.snapshot()
            finally:
                await store.aclose()

    before, after = asyncio.run(scenario())
    assert before.phase == PHASE_OPEN
    assert before.queue_remaining == 3
    assert after == before
    assert script.requests[0][1]["client_id"] == "alice"
