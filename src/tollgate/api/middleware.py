from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse
from starlette.types import ASGIApp
import structlog

from tollgate.config import FailPolicy
from tollgate.core.errors import QuotaError
from tollgate.core.quota import QuotaGuard

logger = structlog.get_logger()


def client_identifier(request: Request, trust_forwarded_for: bool = False) -> str:
    """Client IP, or the first X-Forwarded-For hop when the proxy is trusted."""
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):

    def __init__(
        self,
        app: ASGIApp,
        fail_policy: FailPolicy = FailPolicy.CLOSED,
        trust_forwarded_for: bool = False,
        exempt_paths: list[str] | None = None,
    ):
        super().__init__(app)
        self.fail_policy = fail_policy
        self.trust_forwarded_for = trust_forwarded_for
        self.exempt_paths = set(exempt_paths or [])

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        guard: QuotaGuard | None = getattr(request.app.state, "guard", None)
        if guard is None:
            logger.warning("middleware_uninitialized_skipping")
            return await call_next(request)

        client_id = client_identifier(request, self.trust_forwarded_for)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            client_id=client_id,
            path=request.url.path,
            method=request.method,
        )

        try:
            result = await guard.check(client_id)
        except QuotaError as exc:
            logger.error(
                "rate_limit_store_error",
                error=str(exc),
                error_type=type(exc).__name__,
                fail_policy=self.fail_policy.value,
            )
            if self.fail_policy == FailPolicy.OPEN:
                return await call_next(request)
            return JSONResponse(
                status_code=503,
                content={
                    "error": "rate_limiter_unavailable",
                    "message": "Rate limit could not be evaluated",
                },
            )

        headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
        }

        if not result.allowed:
            logger.info(
                "rate_limit_exceeded",
                mode=guard.mode,
                count=result.count,
                limit=result.limit,
            )
            # Upper bound: the oldest counted request leaves within one window
            headers["Retry-After"] = str(result.window_seconds)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "too_many_requests",
                    "message": "Quota exceeded",
                    "limit": result.limit,
                    "window_seconds": result.window_seconds,
                },
                headers=headers,
            )

        logger.info(
            "rate_limit_check",
            mode=guard.mode,
            count=result.count,
            remaining=result.remaining,
            limit=result.limit,
        )

        response = await call_next(request)

        for key, value in headers.items():
            response.headers[key] = value

        return response
