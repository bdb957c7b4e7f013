from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelineStage(str, Enum):
    RESEARCH = "research"
    OUTREACH = "outreach"
    NEGOTIATION = "negotiation"
    CONTRACTED = "contracted"
    ACTIVE = "active"
    COMPLETED = "completed"
    LOST = "lost"


class EmailDirection(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class PitchType(str, Enum):
    COLD = "cold"
    WARM = "warm"
    FOLLOW_UP = "follow_up"
    INBOUND_RESPONSE = "inbound_response"


@dataclass
class User:
    id: str
    email: str
    name: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Workspace:
    id: str
    name: str
    slug: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Membership:
    id: str
    user_id: str
    workspace_id: str
    role: str = "owner"
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class CreatorProfile:
    """Creator-facing brand profile, one per workspace.

    ``encrypted_model_key`` holds a Fernet token for the workspace's own model
    API key. It is never serialized into tool results or API responses.
    """

    workspace_id: str
    brand_name: str
    tagline: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    contact_email: Optional[str] = None
    tone_of_voice: Optional[str] = None
    content_categories: List[str] = field(default_factory=list)
    key_differentiators: Optional[str] = None
    audience_summary: Optional[str] = None
    rate_card: Dict | None = None
    currency: str = "GBP"
    encrypted_model_key: Optional[str] = None
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Platform:
    id: str
    workspace_id: str
    type: str
    handle: str
    display_name: Optional[str] = None
    followers: Optional[int] = None
    avg_views: Optional[int] = None
    engagement_rate: Optional[float] = None


@dataclass
class CaseStudy:
    id: str
    workspace_id: str
    brand_name: str
    result: str
    industry: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Testimonial:
    id: str
    workspace_id: str
    quote: str
    author_name: str
    company: str
    author_title: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Brand:
    id: str
    workspace_id: str
    name: str
    industry: Optional[str] = None
    website: Optional[str] = None
    contact_name: Optional[str] = None
    contact_title: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    source: Optional[str] = None
    estimated_value: Optional[float] = None
    pipeline_stage: str = PipelineStage.RESEARCH.value
    notes: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    next_follow_up: Optional[datetime] = None
    next_action: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Campaign:
    id: str
    workspace_id: str
    brand_id: str
    name: str
    brief: Optional[str] = None
    fee: Optional[float] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    payment_terms: Optional[str] = None
    usage_rights: Optional[str] = None
    exclusivity: Optional[str] = None
    status: str = "draft"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Deliverable:
    id: str
    workspace_id: str
    campaign_id: str
    title: str
    platform: Optional[str] = None
    status: str = "pending"
    due_date: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Invoice:
    id: str
    workspace_id: str
    campaign_id: str
    amount: float
    status: str = "draft"
    due_date: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Email:
    id: str
    workspace_id: str
    brand_id: str
    subject: str
    body: str
    direction: str = EmailDirection.OUTBOUND.value
    to_email: str = ""
    status: str = "draft"
    sent_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Activity:
    id: str
    workspace_id: str
    type: str
    description: str
    brand_id: Optional[str] = None
    campaign_id: Optional[str] = None
    user_id: Optional[str] = None
    source: str = "agent"
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Conversation:
    id: str
    workspace_id: str
    user_id: str
    created_at: datetime
    updated_at: datetime
    title: Optional[str] = None


@dataclass
class Message:
    id: str
    conversation_id: str
    role: str
    content: str
    seq: int
    created_at: datetime = field(default_factory=utcnow)
    meta: Dict | None = None
