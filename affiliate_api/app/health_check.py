import time
from dataclasses import asdict, dataclass
from typing import Literal, Optional
from urllib.parse import urlparse

import httpx

from .settings import settings

HealthStatus = Literal["healthy", "unhealthy", "timeout", "unknown"]

USER_AGENT = "Mozilla/5.0 (compatible; LinkHealthChecker/1.0)"


@dataclass
class HealthCheckResult:
    status: HealthStatus
    status_code: Optional[int]
    response_time: int  # ms
    error: Optional[str]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["response_time_display"] = format_response_time(self.response_time)
        return data


def determine_health_status(status_code: Optional[int], error: Optional[str]) -> HealthStatus:
    if error and "timeout" in error.lower():
        return "timeout"
    if error:
        return "unhealthy"
    if status_code:
        if 200 <= status_code < 400:
            return "healthy"
        if status_code >= 400:
            return "unhealthy"
    return "unknown"


def format_response_time(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    return f"{ms / 1000:.1f}s"


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def check_url_health(url: str, client: Optional[httpx.AsyncClient] = None) -> HealthCheckResult:
    """
    Probe an affiliate link with a single GET. Redirects are not followed;
    a 3xx with a Location header counts as healthy.
    """
    scheme = urlparse(url).scheme
    if scheme not in ("http", "https"):
        return HealthCheckResult(
            status="unhealthy",
            status_code=None,
            response_time=0,
            error=f"Unsupported protocol: {scheme or 'none'}. Only HTTP/HTTPS URLs are supported for affiliate links.",
        )

    start = time.monotonic()
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(
            timeout=settings.health_check_timeout_seconds,
            follow_redirects=False,
            headers={"User-Agent": USER_AGENT},
        )
    try:
        r = await client.get(url)
    except httpx.TimeoutException:
        return HealthCheckResult(status="timeout", status_code=None, response_time=_elapsed_ms(start), error="Request timeout")
    except httpx.HTTPError as e:
        error = str(e) or e.__class__.__name__
        return HealthCheckResult(
            status=determine_health_status(None, error),
            status_code=None,
            response_time=_elapsed_ms(start),
            error=error,
        )
    finally:
        if owns_client:
            await client.aclose()

    elapsed = _elapsed_ms(start)
    if 300 <= r.status_code < 400 and r.headers.get("location"):
        return HealthCheckResult(status="healthy", status_code=r.status_code, response_time=elapsed, error=None)

    return HealthCheckResult(
        status=determine_health_status(r.status_code, None),
        status_code=r.status_code,
        response_time=elapsed,
        error=None,
    )
