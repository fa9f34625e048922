import logging
import time
from typing import Any, Dict, Iterable, Mapping

from fastapi import Request, Response

log = logging.getLogger("loyalty.admin")

MASK = "***masked***"

SENSITIVE_HEADERS = {
    "authorization",
    "cookie",
    "x-api-key",
    "x-shopify-access-token",
    "x-shopify-hmac-sha256",
}

# ?key= carries the admin secret on cleanup endpoints
SENSITIVE_QUERY_PARAMS = {"key"}


def _masked(items: Mapping[str, str], sensitive: Iterable[str]) -> Dict[str, str]:
    sensitive = set(sensitive)
    return {k: (MASK if k.lower() in sensitive else v) for k, v in items.items()}


async def log_request_response(request: Request, response: Response, start_time: float):
    entry: Dict[str, Any] = {
        "method": request.method,
        "path": request.url.path,
        "query": _masked(request.query_params, SENSITIVE_QUERY_PARAMS),
        "status_code": response.status_code,
        "duration_ms": int((time.time() - start_time) * 1000),
        "client": request.client.host if request.client else None,
        "headers": _masked(request.headers, SENSITIVE_HEADERS),
    }

    if response.status_code >= 500:
        log.warning(entry)
    else:
        log.info(entry)
