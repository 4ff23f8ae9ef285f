"""
In-process stand-in for the gateway + compute backend, built on aiohttp.web.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from aiohttp import web

from comfylink.config import ComfyConfig

PREFIX = "/api-comfy"


@dataclass
class BackendScript:
    """What the fake backend does; `requests` records what it saw."""

    frames: list[bytes | str] = field(default_factory=list)
    close_after_frames: bool = False
    fail_commands: bool = False
    requests: list[tuple[str, object]] = field(default_factory=list)
    client_ids: list[str | None] = field(default_factory=list)
    delay_s: float = 0.0


def make_backend(script: BackendScript) -> web.Application:
    async def ws_handler(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        script.client_ids.append(request.query.get("clientId"))
        for frame in script.frames:
            if isinstance(frame, bytes):
                await ws.send_bytes(frame)
            else:
                await ws.send_str(frame)
        if script.close_after_frames:
            await ws.close()
            return ws
        async for _ in ws:
            pass
        return ws

    async def prompt(request: web.Request) -> web.Response:
        body = await request.json()
        script.requests.append(("prompt", body))
        if script.fail_commands or not body.get("prompt"):
            return web.json_response(
                {"error": {"type": "prompt_no_outputs", "message": "Prompt has no outputs"}, "node_errors": {}},
                status=400,
            )
        return web.json_response({"prompt_id": "p-1", "number": 7, "node_errors": {}})

    async def interrupt(request: web.Request) -> web.Response:
        script.requests.append(("interrupt", await request.text()))
        if script.fail_commands:
            return web.Response(status=500, text="interrupt failed")
        return web.Response(status=200)

    async def queue(request: web.Request) -> web.Response:
        script.requests.append(("queue", await request.json()))
        if script.fail_commands:
            return web.Response(status=500)
        return web.Response(status=200)

    async def upload(request: web.Request) -> web.Response:
        form = await request.post()
        image = form["image"]
        script.requests.append(
            (
                "upload",
                {
                    "filename": image.filename,
                    "data": image.file.read(),
                    "type": form["type"],
                    "overwrite": form["overwrite"],
                },
            )
        )
        if script.fail_commands:
            return web.Response(status=400, text="Invalid file")
        return web.json_response({"name": image.filename, "subfolder": "", "type": form["type"]})

    async def system_stats(request: web.Request) -> web.Response:
        script.requests.append(("system_stats", None))
        if script.delay_s:
            await asyncio.sleep(script.delay_s)
        if script.fail_commands:
            return web.Response(status=503)
        return web.json_response(
            {
                "system": {"os": "posix", "python_version": "3.11.9", "embedded_python": False},
                "devices": [
                    {
                        "name": "cuda:0 NVIDIA GeForce RTX 4090",
                        "type": "cuda",
                        "index": 0,
                        "vram_total": 25757220864,
                        "vram_free": 24000000000,
                    }
                ],
            }
        )

    app = web.Application()
    app.router.add_get(f"{PREFIX}/ws", ws_handler)
    app.router.add_post(f"{PREFIX}/prompt", prompt)
    app.router.add_post(f"{PREFIX}/interrupt", interrupt)
    app.router.add_post(f"{PREFIX}/queue", queue)
    app.router.add_post(f"{PREFIX}/upload/image", upload)
    app.router.add_get(f"{PREFIX}/system_stats", system_stats)
    return app


def config_for(server) -> ComfyConfig:
    return ComfyConfig(
        base_url=f"http://{server.host}:{server.port}",
        api_prefix=PREFIX,
        ws_heartbeat_s=0,
        http_timeout_s=10,
    )
