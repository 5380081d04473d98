"""HTTP intake for backend-triggered notifications and raw messages."""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING, Any

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response

from . import __version__
from .errors import PolicyConfigError, UnknownContactError, UnknownEntityError
from .events import NotificationEvent

if TYPE_CHECKING:
    from .gateway import Gateway

logger = structlog.get_logger(__name__)

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def _request_fields(req: Request) -> dict[str, str]:
    """Query parameters overlaid with a form or JSON body."""
    fields: dict[str, Any] = dict(req.query_params)
    ctype = req.headers.get("content-type", "")
    if ctype.startswith(_FORM_TYPES):
        form = await req.form()
        fields.update(form.items())
    elif ctype.startswith("application/json"):
        try:
            body = await req.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="invalid_json") from exc
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="expected_json_object")
        fields.update(body)
    return {str(k): str(v) for k, v in fields.items()}


def create_app(gateway: "Gateway") -> FastAPI:
    app = FastAPI(title="alertbridge intake", version=__version__)
    app.state.gateway = gateway

    @app.get("/health")
    async def health() -> dict[str, str]:
        session = app.state.gateway.session
        return {"status": "healthy", "session": session.state.value if session else "disconnected"}

    @app.post("/contact/{name}/notify", status_code=204)
    async def notify(req: Request, name: str) -> Response:
        fields = await _request_fields(req)
        policy = fields.pop("policy", "").strip()
        if not policy:
            raise HTTPException(status_code=400, detail="missing_policy")
        try:
            event = NotificationEvent.from_fields(fields)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        logger.info("Notification request", contact=name, policy=policy, entity=event.display_name)
        try:
            await asyncio.to_thread(app.state.gateway.policy.deliver, name, policy, event)
        except (UnknownContactError, UnknownEntityError) as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except PolicyConfigError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return Response(status_code=204)

    @app.post("/contact/{jid}/send", status_code=204)
    async def send(req: Request, jid: str) -> Response:
        ctype = req.headers.get("content-type", "")
        if ctype.startswith(_FORM_TYPES) or ctype.startswith("application/json"):
            message = (await _request_fields(req)).get("message", "")
        else:
            message = req.query_params.get("message") or (await req.body()).decode("utf-8", errors="replace")
        if not message.strip():
            raise HTTPException(status_code=400, detail="missing_message")
        await asyncio.to_thread(app.state.gateway.send, jid, message)
        return Response(status_code=204)

    return app


class IntakeServer:
    """uvicorn on a background thread."""

    def __init__(self, app: FastAPI, host: str, port: int):
        self.server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
        self.thread = threading.Thread(target=self.server.run, name="http-intake", daemon=True)

    def start(self) -> None:
        logger.info("Starting HTTP intake", host=self.server.config.host, port=self.server.config.port)
        self.thread.start()

    def stop(self) -> None:
        self.server.should_exit = True
