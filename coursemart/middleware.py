import logging

from django.conf import settings
from django.http import JsonResponse

logger = logging.getLogger(__name__)


class JsonExceptionMiddleware:
    """Answer unhandled exceptions on API routes with a generic JSON 500.

    The traceback goes to the log; the client only gets a stable error code.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        return self.get_response(request)

    def process_exception(self, request, exception):
        if not request.path.startswith("/api/"):
            return None
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        if getattr(settings, "DEBUG", False):
            return None
        return JsonResponse(
            {"ok": False, "error": {"code": "server_error", "message": "Internal server error"}},
            status=500,
        )
