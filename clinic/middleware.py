import logging
import time
import uuid

from clinic.log_format import request_id_var

logger = logging.getLogger(__name__)


class RequestLogMiddleware:
    """Tag each request with an ``X-Request-ID`` and log its outcome."""
    HEADER = 'X-Request-ID'
    SKIP_PREFIXES = ('/static/', '/metrics')

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request_id = request.headers.get(self.HEADER) or uuid.uuid4().hex
        token = request_id_var.set(request_id)
        started = time.monotonic()
        try:
            response = self.get_response(request)
            response[self.HEADER] = request_id
            path = request.path or ''
            if not any(path.startswith(p) for p in self.SKIP_PREFIXES):
                logger.info(
                    '%s %s -> %s',
                    request.method, path, response.status_code,
                    extra={'duration_ms': round((time.monotonic() - started) * 1000, 1)},
                )
            return response
        finally:
            request_id_var.reset(token)
