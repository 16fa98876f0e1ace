"""Security, cache and correlation headers shared by every JSON response."""

from __future__ import annotations

from starlette.responses import Response

NO_STORE = "no-store, no-cache, must-revalidate"


def apply_security_headers(
    response: Response,
    *,
    no_store: bool = False,
    cache_hint: str | None = None,
    vary: tuple[str, ...] = ("Authorization", "X-Request-Id"),
) -> Response:
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Cross-Origin-Resource-Policy"] = "same-origin"
    response.headers["Vary"] = ", ".join(vary)
    if no_store:
        response.headers["Cache-Control"] = NO_STORE
    elif cache_hint:
        response.headers["Cache-Control"] = cache_hint
    return response
