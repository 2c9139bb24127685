import httpx
import structlog
from fastapi import APIRouter, Request, Response
from starlette.responses import JSONResponse

logger = structlog.get_logger()

router = APIRouter()

# Hop-by-hop headers are meaningful for one connection only
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# httpx recomputes these for the request and decodes the response body
_REQUEST_SKIP = HOP_BY_HOP_HEADERS | {"host", "content-length"}
_RESPONSE_SKIP = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}


def build_upstream_client(upstream_url: str, timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=upstream_url, timeout=timeout)


@router.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
    include_in_schema=False,
)
async def forward(path: str, request: Request) -> Response:
    """Forward an admitted request to the upstream, path and query intact."""
    client: httpx.AsyncClient = request.app.state.upstream

    url = f"/{path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"

    headers = {
        key: value
        for key, value in request.headers.items()
        if key.lower() not in _REQUEST_SKIP
    }
    if request.client:
        # Append this hop so the upstream sees the real client
        prior = headers.pop("x-forwarded-for", None)
        headers["x-forwarded-for"] = (
            f"{prior}, {request.client.host}" if prior else request.client.host
        )

    try:
        upstream = await client.request(
            method=request.method,
            url=url,
            headers=headers,
            content=await request.body(),
        )
    except httpx.HTTPError as exc:
        logger.warning("upstream_error", error=str(exc), url=url)
        return JSONResponse(status_code=502, content={"error": "bad_gateway"})

    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        headers={
            key: value
            for key, value in upstream.headers.items()
            if key.lower() not in _RESPONSE_SKIP
        },
    )
