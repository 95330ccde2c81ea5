"""
app/schemas.py — Request bodies
===============================

Bodies arrive with camelCase keys from the browser scripts. Required
fields are declared Optional on purpose: presence is checked in the
handler so a missing field yields the endpoint's own 400 message, and
the rate-limit dependency always runs first.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ── Tracking ─────────────────────────────────────────────────────────────────

class PageViewRequest(CamelModel):
    user_id: Optional[str] = None
    url: Optional[str] = None
    title: Optional[str] = None
    referrer: Optional[str] = None
    duration: Optional[float] = None
    scroll_depth: Optional[float] = None


class InteractionRequest(CamelModel):
    user_id: Optional[str] = None
    type: Optional[str] = None
    page: Optional[str] = None
    element: Optional[str] = None
    element_id: Optional[str] = None
    element_class: Optional[str] = None
    data: Optional[Any] = None


class SessionStartRequest(CamelModel):
    user_id: Optional[str] = None
    device: Optional[Dict[str, Any]] = None


class SessionEndRequest(CamelModel):
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    duration: Optional[int] = None
    page_view_count: Optional[int] = None
    interaction_count: Optional[int] = None


# ── Fingerprinting / profiles ────────────────────────────────────────────────

class FingerprintRequest(CamelModel):
    fingerprint: Optional[Dict[str, Any]] = None
    hash: Optional[str] = None
    existing_user_id: Optional[str] = None


class TagRequest(CamelModel):
    user_id: Optional[str] = None
    tag: Optional[str] = None


# ── Content analytics ────────────────────────────────────────────────────────

class EventRequest(CamelModel):
    type: Optional[str] = None
    item_id: Optional[str] = None
    item_title: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    location_data: Optional[Dict[str, Any]] = None


class ViewRequest(CamelModel):
    type: Optional[str] = None
    item_id: Optional[str] = None
    item_title: Optional[str] = None
    ip_address: Optional[str] = None
    location_data: Optional[Dict[str, Any]] = None


class ReportRequest(CamelModel):
    to_email: Optional[str] = None
    report_type: Optional[str] = None


# ── Congratulations / contact / forms ────────────────────────────────────────

class CongratulationRequest(CamelModel):
    password: Optional[str] = None
    name: Optional[str] = None
    message: Optional[str] = None
    post_url: Optional[str] = None
    image_url: Optional[str] = None


class ContactRequest(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None


class FormField(CamelModel):
    id: str
    type: str              # text | email | textarea | image | video | static-* | replicator
    label: str = ""
    required: bool = False
    placeholder: Optional[str] = None
    content: Optional[str] = None
    # Nested fields of a replicator
    item_schema: Optional[List["FormField"]] = Field(None, alias="schema")
    max_items: Optional[int] = None
    min_items: Optional[int] = None


class FormCreateRequest(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    fields: Optional[List[FormField]] = None


class SubmissionRequest(CamelModel):
    data: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
