import logging
import uuid
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel

from config import API_HOST, API_PORT, CALLBACK_BASE_URL, LOG_FORMAT, LOG_LEVEL, REPORT_FEED_LIMIT
from errors import ModerationError, TransactionNotFoundError
from models import (
    ContentModerationRequest, ContentReportRequest, ImageModerationRequest, ReportFeed,
    UserModerationRequest, UserReportRequest,
)
from moderation_manager import ModerationManager, build_manager
from redis_client import RedisClient

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Content Moderation API",
    description="Report intake, proactive moderation requests and review provider callbacks",
    version="1.0.0"
)


@lru_cache
def get_redis() -> RedisClient:
    return RedisClient()


@lru_cache
def get_manager() -> ModerationManager:
    return build_manager(get_redis())


def moderation_callback_url(handle: str) -> str:
    return f"{CALLBACK_BASE_URL.rstrip('/')}/moderation/{handle}/results"


def report_callback_url(report_handle: str) -> str:
    return f"{CALLBACK_BASE_URL.rstrip('/')}/reports/{report_handle}/review"


def report_page(reports: List[BaseModel]) -> Dict[str, Any]:
    return {
        "reports": [report.model_dump(mode="json") for report in reports],
        "cursor": reports[-1].report_handle if reports else None,
    }


def bad_request(e: Exception) -> HTTPException:
    return HTTPException(status_code=400, detail=str(e))


@app.get("/")
async def root():
    return {
        "service": "Content Moderation API",
        "status": "running",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check(redis_client: RedisClient = Depends(get_redis)):
    redis_ok = await redis_client.ping()
    return {
        "status": "healthy" if redis_ok else "degraded",
        "redis": "connected" if redis_ok else "disconnected",
        "timestamp": datetime.utcnow().isoformat()
    }


# Reports

@app.post("/apps/{app_handle}/reports/content", response_model=Dict[str, Any])
async def report_content(app_handle: str, body: ContentReportRequest, manager: ModerationManager = Depends(get_manager)):
    """Report a topic, comment or reply"""
    report_handle = body.report_handle or str(uuid.uuid4())
    try:
        review_queued = await manager.create_content_report(
            app_handle,
            report_handle,
            body.content_type,
            body.content_handle,
            body.content_user_handle,
            body.reporting_user_handle,
            body.reason,
            report_callback_url(report_handle),
        )
    except (ValueError, ModerationError) as e:
        raise bad_request(e)

    return {"report_handle": report_handle, "review_queued": review_queued}


@app.post("/apps/{app_handle}/reports/users", response_model=Dict[str, Any])
async def report_user(app_handle: str, body: UserReportRequest, manager: ModerationManager = Depends(get_manager)):
    """Report a user"""
    report_handle = body.report_handle or str(uuid.uuid4())
    try:
        review_queued = await manager.create_user_report(
            app_handle,
            report_handle,
            body.reported_user_handle,
            body.reporting_user_handle,
            body.reason,
            report_callback_url(report_handle),
        )
    except (ValueError, ModerationError) as e:
        raise bad_request(e)

    return {"report_handle": report_handle, "review_queued": review_queued}


@app.get("/apps/{app_handle}/reports/content")
async def list_content_reports(app_handle: str, feed: ReportFeed = ReportFeed.FOR_APP, owner_handle: Optional[str] = None,
                               cursor: Optional[str] = None, limit: int = REPORT_FEED_LIMIT,
                               manager: ModerationManager = Depends(get_manager)):
    try:
        reports = await manager.read_content_reports(app_handle, feed, owner_handle, cursor, limit)
    except ValueError as e:
        raise bad_request(e)
    return report_page(reports)


@app.get("/apps/{app_handle}/reports/users")
async def list_user_reports(app_handle: str, feed: ReportFeed = ReportFeed.FOR_APP, owner_handle: Optional[str] = None,
                            cursor: Optional[str] = None, limit: int = REPORT_FEED_LIMIT,
                            manager: ModerationManager = Depends(get_manager)):
    try:
        reports = await manager.read_user_reports(app_handle, feed, owner_handle, cursor, limit)
    except ValueError as e:
        raise bad_request(e)
    return report_page(reports)


@app.get("/apps/{app_handle}/reports/content/{content_handle}/count")
async def count_content_reports(app_handle: str, content_handle: str, manager: ModerationManager = Depends(get_manager)):
    count = await manager.count_content_reports(app_handle, content_handle)
    return {"content_handle": content_handle, "report_count": count}


@app.get("/apps/{app_handle}/reports/users/{user_handle}/count")
async def count_user_reports(app_handle: str, user_handle: str, manager: ModerationManager = Depends(get_manager)):
    count = await manager.count_user_reports(app_handle, user_handle)
    return {"user_handle": user_handle, "report_count": count}


# Proactive moderation requests

@app.post("/apps/{app_handle}/moderation/content", response_model=Dict[str, Any])
async def moderate_content(app_handle: str, body: ContentModerationRequest, manager: ModerationManager = Depends(get_manager)):
    handle = str(uuid.uuid4())
    try:
        await manager.create_content_moderation_request(
            app_handle,
            body.content_type,
            body.content_handle,
            body.user_handle,
            moderation_callback_url(handle),
            handle=handle,
        )
    except (ValueError, ModerationError) as e:
        raise bad_request(e)

    return {"moderation_handle": handle, "status": "queued"}


@app.post("/apps/{app_handle}/moderation/images", response_model=Dict[str, Any])
async def moderate_image(app_handle: str, body: ImageModerationRequest, manager: ModerationManager = Depends(get_manager)):
    handle = str(uuid.uuid4())
    try:
        await manager.create_image_moderation_request(
            app_handle,
            body.image_handle,
            body.user_handle,
            body.image_type,
            moderation_callback_url(handle),
            handle=handle,
        )
    except (ValueError, ModerationError) as e:
        raise bad_request(e)

    return {"moderation_handle": handle, "status": "queued"}


@app.post("/apps/{app_handle}/moderation/users", response_model=Dict[str, Any])
async def moderate_user(app_handle: str, body: UserModerationRequest, manager: ModerationManager = Depends(get_manager)):
    handle = str(uuid.uuid4())
    try:
        await manager.create_user_moderation_request(
            app_handle,
            body.user_handle,
            moderation_callback_url(handle),
            handle=handle,
        )
    except (ValueError, ModerationError) as e:
        raise bad_request(e)

    return {"moderation_handle": handle, "status": "queued"}


# Provider callbacks

@app.post("/moderation/{handle}/results", response_model=Dict[str, Any])
async def moderation_results(handle: str, request: Request, manager: ModerationManager = Depends(get_manager)):
    """Classification provider callback; the body is the provider response as sent"""
    raw_response = (await request.body()).decode("utf-8", errors="replace")
    try:
        status = await manager.process_moderation_results(handle, raw_response)
    except TransactionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise bad_request(e)

    return {"handle": handle, "status": status.value if status else None}


@app.post("/reports/{report_handle}/review", response_model=Dict[str, Any])
async def report_review(report_handle: str, request: Request, manager: ModerationManager = Depends(get_manager)):
    """Review provider callback"""
    raw_response = (await request.body()).decode("utf-8", errors="replace")
    try:
        status = await manager.process_report_result(report_handle, raw_response)
    except TransactionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise bad_request(e)

    return {"handle": report_handle, "status": status.value if status else None}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    uvicorn.run(app, host=API_HOST, port=API_PORT)
