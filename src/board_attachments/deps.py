from __future__ import annotations

import uuid

from fastapi import Request

from board_attachments.config import settings
from board_attachments.errors import unauthorized


async def get_current_user_id(request: Request) -> str:
    """Principal id forwarded by the authenticating gateway.

    Token validation happens upstream; this service only trusts the header and
    checks that it carries a UUID.
    """
    raw = (request.headers.get(settings.user_id_header) or "").strip()
    if not raw:
        raise unauthorized("User not authenticated")
    try:
        user_id = str(uuid.UUID(raw))
    except ValueError:
        raise unauthorized("Invalid user ID format") from None

    # Stash auth context for logging in error handlers.
    request.state.auth_user_id = user_id
    return user_id
