"""Request correlation middleware.

Reads the incoming request id header (``LOG_REQUEST_ID_HEADER``, default
X-Request-ID) or generates a UUID, binds it to the logging context for the
lifetime of the request and echoes it back with the request duration.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from neuronova.core.config import settings
from neuronova.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Bind a correlation id to the request and report it on the response.

    Registered last so it wraps the throttle middleware: 429 responses carry
    the request id too.
    """

    log_cfg = getattr(request.app.state, "log_settings", None) or settings.log
    header_name = log_cfg.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault(
        "X-Request-Duration-ms", f"{(time.perf_counter() - start) * 1000:.2f}"
    )
    return response
