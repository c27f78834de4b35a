import logging
import secrets

from fastapi import FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import TypeAdapter
from sqlalchemy.exc import SQLAlchemyError

from . import repository
from .cache import RedisCache
from .cache_keys import CacheTTL, short_link_key, user_pages_key
from .db import now_ms, run_migrations
from .guardrails import FixedWindowRateLimiter, RateLimitConfig, RateLimitDecision, client_ip
from .health_check import check_url_health
from .logging_config import configure_logging
from .schemas import (
    HealthCheckResponse,
    LinkClickRequest,
    LinkReportRequest,
    PublicPage,
    ShortLink,
    UsernameAvailability,
)
from .settings import settings
from .store import StoreUnavailableError, check_store_health, close_store, get_store
from .usernames import UsernameRedirects, check_username_availability_cached

logger = logging.getLogger(__name__)

app = FastAPI(title="Affiliate Links API", version="0.3.0")

store = get_store()
cache = RedisCache(store, prefix=settings.cache_prefix)
click_limiter = FixedWindowRateLimiter(
    store,
    RateLimitConfig(
        action="click",
        max_requests=settings.click_rate_limit_max,
        window_seconds=settings.click_rate_limit_window_seconds,
    ),
    prefix=settings.cache_prefix,
)
report_limiter = FixedWindowRateLimiter(
    store,
    RateLimitConfig(
        action="report",
        max_requests=settings.report_rate_limit_max,
        window_seconds=settings.report_rate_limit_window_seconds,
    ),
    prefix=settings.cache_prefix,
)
username_redirects = UsernameRedirects()

_short_link_adapter = TypeAdapter(ShortLink)
_pages_adapter = TypeAdapter(list[PublicPage])


@app.on_event("startup")
def _startup():
    configure_logging()
    run_migrations()


@app.on_event("shutdown")
def _shutdown():
    close_store()


@app.exception_handler(StoreUnavailableError)
async def _store_unavailable(request: Request, exc: StoreUnavailableError):
    logger.error("store unavailable path=%s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"success": False, "message": "Service temporarily unavailable"})


@app.get("/health")
def health():
    return {"ok": True, "store": check_store_health(cache.store)}


def _request_ip(request: Request) -> str:
    return client_ip(request.headers, request.client.host if request.client else None)


def _too_many(decision: RateLimitDecision, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"success": False, "message": message, "retryAfter": decision.retry_after},
        headers={"Retry-After": str(decision.retry_after)},
    )


@app.get("/api/user/username-availability/{username}", response_model=UsernameAvailability, response_model_exclude_none=True)
def username_availability(username: str, response: Response, user_id: int | None = Query(None)):
    try:
        result = check_username_availability_cached(cache, username, user_id)
    except SQLAlchemyError:
        logger.exception("username availability lookup failed username=%s", username)
        raise HTTPException(status_code=500, detail="Internal server error")

    response.headers["Cache-Control"] = "public, max-age=300, s-maxage=300"
    return result.data


def _load_pages(user_id: int) -> list[PublicPage]:
    return [PublicPage(**row) for row in repository.list_user_pages(user_id)]


@app.get("/api/pages/public/{username}")
def public_pages(username: str, response: Response):
    try:
        user = repository.find_user_by_username(username)
        if user is None:
            current = username_redirects.get(username)
            if current:
                return RedirectResponse(url=f"/api/pages/public/{current}", status_code=308)
            raise HTTPException(status_code=404, detail="User not found")

        result = cache.get_or_compute(
            user_pages_key(user["id"]),
            lambda: _load_pages(user["id"]),
            CacheTTL.USER_PAGES,
            adapter=_pages_adapter,
        )
    except SQLAlchemyError:
        logger.exception("public pages lookup failed username=%s", username)
        raise HTTPException(status_code=500, detail="Failed to fetch pages")

    response.headers["Cache-Control"] = "public, max-age=3600, s-maxage=3600"
    return {"success": True, "data": {"user": user, "pages": result.data or []}}


def _load_short_link(code: str) -> ShortLink | None:
    row = repository.get_short_link_by_code(code)
    return ShortLink(**row) if row else None


@app.get("/s/{code}")
def short_link_redirect(code: str, request: Request):
    try:
        result = cache.get_or_compute(
            short_link_key(code),
            lambda: _load_short_link(code),
            CacheTTL.SHORT_LINK,
            adapter=_short_link_adapter,
        )
        link = result.data
        # a cached entry can outlive the link's own expiry
        if link is None or (link.expires_at is not None and link.expires_at <= now_ms()):
            raise HTTPException(status_code=404, detail="Short link not found")

        repository.track_short_link_click(
            link.id,
            referrer=request.headers.get("referer"),
            user_agent=request.headers.get("user-agent"),
        )
    except SQLAlchemyError:
        logger.exception("short link redirect failed code=%s", code)
        raise HTTPException(status_code=500, detail="Internal server error")

    return RedirectResponse(
        url=link.target_url,
        status_code=301,
        headers={"Cache-Control": "public, max-age=86400, s-maxage=86400"},
    )


@app.post("/api/links/click")
def link_click(req: LinkClickRequest, request: Request):
    decision = click_limiter.check(_request_ip(request), req.linkId)
    if not decision.allowed:
        return _too_many(decision, "Too many clicks. Please try again shortly.")

    try:
        tracked = repository.track_link_click(
            req.linkId,
            referrer=request.headers.get("referer"),
            user_agent=request.headers.get("user-agent"),
        )
    except SQLAlchemyError:
        logger.exception("click tracking failed link_id=%s", req.linkId)
        raise HTTPException(status_code=500, detail="Failed to track click")

    if not tracked:
        raise HTTPException(status_code=404, detail="Link not found")
    return {"success": True}


@app.post("/api/link-reports")
def submit_link_report(req: LinkReportRequest, request: Request):
    ip = _request_ip(request)
    decision = report_limiter.check(ip)
    if not decision.allowed:
        return _too_many(decision, "Too many reports. Please try again later.")

    try:
        link = repository.get_link(req.linkId)
        if link is None:
            raise HTTPException(status_code=404, detail="Link not found")

        report_id = repository.create_link_report(
            link_id=req.linkId,
            reporter_name=req.reporterName,
            reporter_email=req.reporterEmail,
            reason=req.reason,
            description=req.description,
            ip_address=ip,
            user_agent=request.headers.get("user-agent"),
        )
    except SQLAlchemyError:
        logger.exception("report submission failed link_id=%s", req.linkId)
        raise HTTPException(status_code=500, detail="Internal server error")

    logger.info("link report created id=%s link_id=%s reason=%s", report_id, req.linkId, req.reason)
    return {"success": True, "message": "Report submitted successfully", "data": {"id": report_id}}


@app.post("/api/links/{link_id}/health-check", response_model=HealthCheckResponse)
async def link_health_check(link_id: int):
    link = await run_in_threadpool(repository.get_link, link_id)
    if link is None:
        raise HTTPException(status_code=404, detail="Link not found")

    result = await check_url_health(link["url"])
    await run_in_threadpool(
        repository.update_link_health,
        link_id,
        result.status,
        result.status_code,
        result.response_time,
        result.error,
    )
    return result.to_dict()


@app.delete("/api/cache")
def clear_cache(x_admin_token: str | None = Header(None)):
    if not settings.admin_token or not x_admin_token or not secrets.compare_digest(x_admin_token, settings.admin_token):
        raise HTTPException(status_code=403, detail="Forbidden")
    return {"success": True, "deleted": cache.clear_all()}
