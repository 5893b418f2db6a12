"""Current-user resolution.

Authentication happens upstream (the auth proxy in front of the API). It
forwards the verified user id in a trusted header; no header means no user.
"""

from __future__ import annotations

from fastapi import Request

from expense_tracker.config import settings


def resolve_user_id(request: Request) -> str | None:
    """The authenticated user id for this request, or None."""
    value = request.headers.get(settings.user_id_header, "").strip()
    return value or None
