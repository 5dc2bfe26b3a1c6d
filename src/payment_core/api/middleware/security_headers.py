"""Security headers and HTTPS enforcement."""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from payment_core.services.security_guard import SecurityGuard


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds the Content-Security-Policy header and redirects plain HTTP.

    The redirect only applies when ``enforce_https`` is set; behind API
    Gateway the scheme is taken from X-Forwarded-Proto.
    """

    def __init__(self, app, enforce_https: bool = False) -> None:
        super().__init__(app)
        self.enforce_https = enforce_https
        self._csp = SecurityGuard.get_csp_header()

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if self.enforce_https:
            scheme = request.headers.get("x-forwarded-proto", request.url.scheme)
            target = SecurityGuard.https_redirect_url(
                str(request.url.replace(scheme=scheme))
            )
            if target is not None:
                return RedirectResponse(target, status_code=308)

        response = await call_next(request)
        response.headers["Content-Security-Policy"] = self._csp
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response
