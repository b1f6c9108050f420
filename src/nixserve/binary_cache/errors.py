"""Mapping of request outcomes onto protocol status codes and bodies."""

from __future__ import annotations

from fastapi import status
from fastapi.responses import PlainTextResponse


# Error pages are formatted into one BUFSIZ buffer, terminator included.
MAX_ERROR_BODY = 8191

NO_SUCH_PATH = "No such path.\n"
INCORRECT_NAR_HASH = "Incorrect NAR hash. Maybe the path has been recreated.\n"
NO_SUCH_DRV_OUTPUT = "No such derivation output.\n"


def not_found(message: str = "") -> PlainTextResponse:
    """Routine miss: a fixed body, never an error log."""
    return PlainTextResponse(message, status_code=status.HTTP_404_NOT_FOUND)


def internal_error(exc: BaseException) -> PlainTextResponse:
    body = f"Error 500\n{exc}"[:MAX_ERROR_BODY]
    return PlainTextResponse(body, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
