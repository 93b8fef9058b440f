import logging
import time
import uuid

logger = logging.getLogger(__name__)

LOGGED_PATH_PREFIXES = ("/api/",)
REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware:
    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        if not request.path.startswith(LOGGED_PATH_PREFIXES):
            return self.get_response(request)
        request_id = _request_id(request)
        request.request_id = request_id
        started = time.monotonic()
        try:
            response = self.get_response(request)
        except Exception:
            logger.exception(
                "%s %s failed",
                request.method,
                request.path,
                extra={"request_id": request_id},
            )
            raise
        elapsed_ms = int((time.monotonic() - started) * 1000)
        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(
            level,
            "%s %s -> %s (%sms)",
            request.method,
            request.path,
            response.status_code,
            elapsed_ms,
            extra={"request_id": request_id, "status_code": response.status_code, "elapsed_ms": elapsed_ms},
        )
        response[REQUEST_ID_HEADER] = request_id
        return response


def _request_id(request) -> str:
    supplied = request.headers.get(REQUEST_ID_HEADER, "").strip()
    if supplied and len(supplied) <= 64:
        return supplied
    return uuid.uuid4().hex
