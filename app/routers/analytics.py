"""
app/routers/analytics.py — Content analytics
============================================

Endpoints:
  POST /api/analytics/track        → store an event (click, share, ...)     public, slowapi
  POST /api/analytics/views        → count a project / post view            public, slowapi
  GET  /api/analytics/summary      → dashboard summary                      API key
  GET  /api/analytics/debug        → location diagnostics                   API key
  DELETE /api/analytics/debug      → drop profiles with only Unknown locations  API key
  POST /api/analytics/send-report  → e-mail an HTML report                  API key

Error bodies on these routes are ``{"error": "..."}`` (no ``success`` flag).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from app.dependencies.access_control import require_api_key
from app.dependencies.request_context import db
from app.rate_limit import default_limit, limiter
from app.schemas import EventRequest, ReportRequest, ViewRequest
from app.services import analytics
from app.services.mailer import MailerError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["Analytics"])


@router.post("/track")
@limiter.limit(default_limit("analytics_ingest"))
async def track_event(request: Request, body: EventRequest, conn=Depends(db)):
    if not body.type or not body.item_id or not body.item_title:
        raise HTTPException(400, {"error": "Missing required fields: type, itemId, itemTitle"})

    event_id = analytics.record_event(
        conn, body.type, body.item_id, body.item_title,
        metadata=body.metadata, ip_address=body.ip_address, location_data=body.location_data,
    )
    return {"success": True, "eventId": str(event_id), "message": "Event tracked successfully"}


@router.post("/views")
@limiter.limit(default_limit("analytics_ingest"))
async def count_view(request: Request, body: ViewRequest, conn=Depends(db)):
    if not body.type or not body.item_id or not body.item_title:
        raise HTTPException(400, {"error": "Missing required fields: type, itemId, itemTitle"})
    if body.type not in analytics.VIEW_TYPES:
        raise HTTPException(400, {"error": 'Type must be "project" or "post"'})

    count = analytics.record_view(
        conn, body.type, body.item_id, body.item_title,
        ip_address=body.ip_address, location_data=body.location_data,
    )
    return {"success": True, "count": count, "message": "View counted successfully"}


@router.get("/summary", dependencies=[Depends(require_api_key)])
async def summary(conn=Depends(db)):
    return {"success": True, "summary": analytics.summary(conn)}


@router.get("/debug", dependencies=[Depends(require_api_key)])
async def debug(conn=Depends(db)):
    return {"success": True, "debug": analytics.debug_info(conn)}


@router.delete("/debug", dependencies=[Depends(require_api_key)])
async def purge_test_profiles(conn=Depends(db)):
    deleted = analytics.purge_unlocated_profiles(conn)
    return {
        "success": True,
        "message": f"Deleted {deleted} test profiles with only Unknown locations",
    }


@router.post("/send-report", dependencies=[Depends(require_api_key)])
async def send_report(body: ReportRequest, request: Request, conn=Depends(db)):
    if not body.to_email:
        raise HTTPException(400, {"error": "Missing required field: toEmail"})
    report_type = body.report_type or "daily"
    if report_type not in analytics.REPORT_PERIODS:
        raise HTTPException(400, {"error": "reportType must be daily, weekly or monthly"})

    report = analytics.report_data(conn, report_type)
    try:
        email_id = await request.app.state.mailer.send_report(body.to_email, report)
    except MailerError as e:
        logger.error("REPORT_FAILED | %s | %s", body.to_email, e)
        raise HTTPException(500, {"error": f"Failed to send email report: {e}"})

    logger.info("REPORT_SENT | %s | %s | id=%s", report_type, body.to_email, email_id)
    return {
        "success": True,
        "emailId": email_id,
        "message": f"Analytics report sent successfully to {body.to_email}",
    }
