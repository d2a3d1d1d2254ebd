import logging
import time

logger = logging.getLogger(__name__)

MAX_LOGGED_BODY = 1000


class RequestLoggingMiddleware:
    """
    Logs each API request with the calling family, the response status
    and how long it took. JSON error bodies are included (truncated) so
    rejected payouts can be traced from the logs alone.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        started = time.monotonic()
        response = self.get_response(request)
        elapsed_ms = (time.monotonic() - started) * 1000

        family_id = request.META.get("HTTP_X_FAMILY_ID", "-")
        if response.status_code >= 400:
            logger.warning(
                "API %s %s family=%s status=%d duration_ms=%.1f body=%s",
                request.method,
                request.get_full_path(),
                family_id,
                response.status_code,
                elapsed_ms,
                self._response_excerpt(response),
            )
        else:
            logger.info(
                "API %s %s family=%s status=%d duration_ms=%.1f",
                request.method,
                request.get_full_path(),
                family_id,
                response.status_code,
                elapsed_ms,
            )
        return response

    def _response_excerpt(self, response) -> str:
        content_type = response.get("Content-Type", "")
        if not content_type.startswith("application/json"):
            return f"<Content-Type: {content_type}>"
        if getattr(response, "streaming", False):
            return "<Streaming content>"
        try:
            return response.content.decode("utf-8")[:MAX_LOGGED_BODY]
        except UnicodeDecodeError:
            return "<Could not decode content>"
