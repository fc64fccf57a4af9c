from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import cast

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from board_attachments.config import settings
from board_attachments.db import dispose_engines
from board_attachments.error_handlers import register_error_handlers
from board_attachments.integrations.storage.object_storage import get_object_storage
from board_attachments.routers import attachments
from board_attachments.schemas.errors import ErrorResponse
from board_attachments.services.expiration_sweeper import ExpirationSweeper


class RequestIdMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app: ASGIApp = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id_header: bytes | None = None
        inbound_headers = cast(list[tuple[bytes, bytes]], scope.get("headers") or [])
        for key, value in inbound_headers:
            if key.lower() == b"x-request-id":
                value = value.strip()
                if value:
                    request_id_header = value
                break

        if request_id_header is None:
            request_id = str(uuid.uuid4())
            request_id_header = request_id.encode("ascii")
        else:
            # latin-1 is a 1-1 mapping for bytes -> str.
            request_id = request_id_header.decode("latin-1")

        scope.setdefault("state", {})["request_id"] = request_id

        async def send_wrapper(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers = cast(list[tuple[bytes, bytes]], message.get("headers", []))
                headers = [(k, v) for (k, v) in headers if k.lower() != b"x-request-id"]
                headers.append((b"x-request-id", request_id_header))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)


logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

logger = logging.getLogger(__name__)
for msg in settings.security_warnings():
    logger.warning("SECURITY WARNING: %s", msg)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    sweeper: ExpirationSweeper | None = None
    if settings.attachments_sweeper_enabled and settings.s3_configured():
        sweeper = ExpirationSweeper.from_settings(get_object_storage)
        sweeper.start()
    elif settings.attachments_sweeper_enabled:
        logger.warning("sweeper not started: object storage not configured")
    app.state.sweeper = sweeper
    try:
        yield
    finally:
        if sweeper is not None:
            await sweeper.stop()
        # Ensure sqlite/aiosqlite worker threads don't keep the process alive.
        await dispose_engines()


app = FastAPI(title=settings.app_name, lifespan=_lifespan)

app.add_middleware(RequestIdMiddleware)

origins = settings.cors_origins_list()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

register_error_handlers(app)


@app.get("/health")
def health():
    return {"ok": True}


app.include_router(attachments.router, prefix=settings.api_prefix)


def _patch_openapi(schema: dict[str, object]) -> dict[str, object]:
    components = cast(dict[str, object], schema.setdefault("components", {}))
    schemas = cast(dict[str, object], components.setdefault("schemas", {}))
    schemas.setdefault(
        "ErrorResponse",
        ErrorResponse.model_json_schema(ref_template="#/components/schemas/{model}"),
    )

    paths = cast(dict[str, object], schema.get("paths") or {})
    for path_item_obj in paths.values():
        if not isinstance(path_item_obj, dict):
            continue
        path_item = cast(dict[str, object], path_item_obj)
        for method in ("get", "post", "put", "patch", "delete"):
            op_obj = path_item.get(method)
            if not isinstance(op_obj, dict):
                continue
            op = cast(dict[str, object], op_obj)
            responses = cast(dict[str, object], op.setdefault("responses", {}))
            # Document X-Request-Id response header (added by middleware).
            for resp_obj in responses.values():
                if not isinstance(resp_obj, dict):
                    continue
                headers = cast(dict[str, object], resp_obj.setdefault("headers", {}))
                headers.setdefault(
                    "X-Request-Id",
                    {
                        "schema": {"type": "string"},
                        "description": "Echoed or generated request id.",
                    },
                )
            responses.setdefault(
                "default",
                {
                    "description": "Error",
                    "content": {
                        "application/json": {
                            "schema": {"$ref": "#/components/schemas/ErrorResponse"}
                        }
                    },
                },
            )
    return schema


def custom_openapi() -> dict[str, object]:
    if app.openapi_schema:
        return cast(dict[str, object], app.openapi_schema)

    schema = cast(
        dict[str, object],
        get_openapi(
            title=app.title,
            version=cast(str, app.version) if app.version else "0.1.0",
            routes=app.routes,
        ),
    )
    app.openapi_schema = _patch_openapi(schema)
    return cast(dict[str, object], app.openapi_schema)


app.openapi = custom_openapi  # type: ignore[method-assign]
