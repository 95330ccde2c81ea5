"""
app/routers/forms.py — Form builder and submissions
===================================================

Endpoints:
  POST /api/forms                              → create a form           API key
  GET  /api/forms                              → forms + submission counts API key
  GET  /api/forms/{formId}                     → public form definition
  POST /api/forms/{formId}/submissions         → submit (public, slowapi)
  GET  /api/forms/{formId}/submissions         → list submissions        API key
  GET  /api/submissions/{submissionId}/verify  → {"exists": bool}

Each submission stores the client metadata it was sent with, plus the
client IP and the raw ip-api.com lookup for that IP.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from app.dependencies.access_control import require_api_key
from app.dependencies.request_context import client_ip, db
from app.rate_limit import default_limit, limiter
from app.schemas import FormCreateRequest, SubmissionRequest
from db.models import from_json, now_iso, short_id, to_json

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Forms"])

STATIC_FIELD_TYPES = ("static-text", "static-image", "static-video")


def _form_to_dict(row) -> dict:
    return {
        "formId": row["form_id"],
        "name": row["name"],
        "description": row["description"],
        "fields": from_json(row["fields"], []),
        "status": row["status"],
        "createdAt": row["created_at"],
    }


def _submission_to_dict(row) -> dict:
    return {
        "submissionId": row["submission_id"],
        "formId": row["form_id"],
        "data": from_json(row["data"], {}),
        "metadata": from_json(row["metadata"], {}),
        "submittedAt": row["submitted_at"],
    }


def _missing_required(fields: List[dict], data: dict) -> List[str]:
    missing = []
    for field in fields:
        if not field.get("required") or field.get("type") in STATIC_FIELD_TYPES:
            continue
        value = data.get(field["id"])
        if value is None or value == "" or value == []:
            missing.append(field.get("label") or field["id"])
    return missing


def _get_form_row(conn, form_id: str):
    row = conn.execute("SELECT * FROM forms WHERE form_id = ?", (form_id,)).fetchone()
    if not row:
        raise HTTPException(404, "Form not found")
    return row


# ── Form administration ──────────────────────────────────────────────────────

@router.post("/forms", dependencies=[Depends(require_api_key)])
async def create_form(body: FormCreateRequest, conn=Depends(db)):
    form_id = short_id(10)
    fields = [f.model_dump(by_alias=True, exclude_none=True) for f in body.fields or []]
    conn.execute(
        """
        INSERT INTO forms (form_id, name, description, fields, status, created_at)
        VALUES (?, ?, ?, ?, 'active', ?)
        """,
        (form_id, body.name or "Untitled Form", body.description, to_json(fields), now_iso()),
    )
    conn.commit()
    logger.info("FORM_CREATED | %s | %d fields", form_id, len(fields))
    return JSONResponse(status_code=201, content={"success": True, "formId": form_id})


@router.get("/forms", dependencies=[Depends(require_api_key)])
async def list_forms(conn=Depends(db)):
    rows = conn.execute(
        """
        SELECT f.*, (SELECT COUNT(*) FROM submissions s WHERE s.form_id = f.form_id) AS submission_count
        FROM forms f ORDER BY f.created_at DESC
        """
    ).fetchall()
    forms = []
    for row in rows:
        form = _form_to_dict(row)
        form["submissionCount"] = row["submission_count"]
        forms.append(form)
    return {"success": True, "forms": forms}


@router.get("/forms/{form_id}")
async def get_form(form_id: str, conn=Depends(db)):
    return {"success": True, "form": _form_to_dict(_get_form_row(conn, form_id))}


# ── Submissions ──────────────────────────────────────────────────────────────

@router.post("/forms/{form_id}/submissions")
@limiter.limit(default_limit("forms"))
async def submit(form_id: str, request: Request, body: SubmissionRequest, conn=Depends(db)):
    form = _get_form_row(conn, form_id)
    if form["status"] != "active":
        raise HTTPException(400, "Form is not accepting submissions")

    data = body.data or {}
    missing = _missing_required(from_json(form["fields"], []), data)
    if missing:
        raise HTTPException(400, f"Missing required fields: {', '.join(missing)}")

    ip = client_ip(request)
    ip_info = await request.app.state.geolocator.lookup_raw(ip)

    submission_id = short_id(12)
    conn.execute(
        """
        INSERT INTO submissions (submission_id, form_id, data, metadata, submitted_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            submission_id, form_id, to_json(data),
            to_json({**(body.metadata or {}), "ip": ip, "ipInfo": ip_info}),
            now_iso(),
        ),
    )
    conn.commit()
    logger.info("SUBMISSION | %s | %s", form_id, submission_id)
    return JSONResponse(status_code=201, content={"success": True, "submissionId": submission_id})


@router.get("/forms/{form_id}/submissions", dependencies=[Depends(require_api_key)])
async def list_submissions(form_id: str, conn=Depends(db)):
    _get_form_row(conn, form_id)
    rows = conn.execute(
        "SELECT * FROM submissions WHERE form_id = ? ORDER BY submitted_at DESC, rowid DESC",
        (form_id,),
    ).fetchall()
    return {"success": True, "submissions": [_submission_to_dict(r) for r in rows]}


@router.get("/submissions/{submission_id}/verify")
async def verify(submission_id: str, conn=Depends(db)):
    row = conn.execute(
        "SELECT 1 FROM submissions WHERE submission_id = ?", (submission_id,)
    ).fetchone()
    return {"exists": row is not None}
