"""
app/routers/contact.py — Contact form
=====================================

POST /api/contact → notify the site owner (reply-to = sender) and send the
sender a confirmation. A failed confirmation is logged; the request still
succeeds once the owner notification went out.
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from app.rate_limit import default_limit, limiter
from app.schemas import ContactRequest
from app.services.mailer import MailerError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Contact"])


@router.post("/contact")
@limiter.limit(default_limit("contact"))
async def contact(request: Request, body: ContactRequest):
    if not body.name or not body.email or not body.subject or not body.message:
        raise HTTPException(400, {"error": "All fields are required"})

    mailer = request.app.state.mailer
    try:
        email_id = await mailer.send_contact_notification(body.name, body.email, body.subject, body.message)
    except MailerError as e:
        logger.error("CONTACT_FAILED | %s | %s", body.email, e)
        raise HTTPException(500, {"error": "Failed to send email"})

    try:
        await mailer.send_contact_confirmation(body.name, body.email, body.subject, body.message)
    except MailerError as e:
        logger.error("CONTACT_CONFIRMATION_FAILED | %s | %s", body.email, e)

    return {"message": "Email sent successfully", "id": email_id}
