"""Request correlation and request-size guard for the API.

``RequestIdMiddleware`` gives every request an identifier, taken from the
incoming ``X-Request-ID`` header when the caller (load balancer, another
service, a provider retry) supplies one, or generated as a UUID4 otherwise.
The id is stored on ``request.request_id`` and in ``REQUEST_ID_CTX`` so
log records and outbound provider calls can carry it without passing it
around, and it is echoed back in the ``X-Request-ID`` response header.

``ApiSizeLimitMiddleware`` rejects ``/api/`` requests whose declared body is
larger than ``settings.API_MAX_BYTES`` before any view parses them.
"""

import contextvars
import uuid

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")


class RequestIdMiddleware(MiddlewareMixin):
    """Sets and returns a per-request identifier.

    Attributes:
        HEADER (str): Incoming header as found in ``request.META``.
        RESPONSE_HEADER (str): Header added to every response.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"
    MAX_LENGTH = 128

    def process_request(self, request):
        rid = (request.META.get(self.HEADER) or "").strip()[: self.MAX_LENGTH]
        if not rid:
            rid = str(uuid.uuid4())
        request.request_id = rid
        request._request_id_token = REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Add the id header and clear the context variable for this thread."""
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        token = getattr(request, "_request_id_token", None)
        if token is not None:
            REQUEST_ID_CTX.reset(token)
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > settings.API_MAX_BYTES:
                return JsonResponse(
                    {"detail": "PAYLOAD_TOO_LARGE", "message": "Request body is too large"}, status=413
                )
