from __future__ import annotations

import copy
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional

from littleagent.logging import get_logger
from littleagent.storage.errors import ConstraintViolation, MissingReference
from littleagent.storage.models import (
    Activity,
    Brand,
    Campaign,
    CaseStudy,
    Conversation,
    CreatorProfile,
    Deliverable,
    Email,
    Invoice,
    Membership,
    Message,
    Platform,
    Testimonial,
    User,
    Workspace,
    utcnow,
)

# Attributes restored when a transaction block raises
_TRANSACTIONAL_STATE = (
    "users",
    "workspaces",
    "memberships",
    "profiles",
    "platforms",
    "case_studies",
    "testimonials",
    "brands",
    "campaigns",
    "deliverables",
    "invoices",
    "emails",
    "activities",
    "conversations",
    "messages",
)


def _contains(haystack: Optional[str], needle: str) -> bool:
    return bool(haystack) and needle.casefold() in haystack.casefold()


class MemoryStore:
    """In-memory backing store used by tests and local development.

    Every workspace-owned record is looked up through its ``workspace_id`` so a
    caller holding one workspace id can never read or mutate another's rows.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.workspaces: Dict[str, Workspace] = {}
        self.memberships: Dict[str, Membership] = {}
        self.profiles: Dict[str, CreatorProfile] = {}
        self.platforms: Dict[str, Platform] = {}
        self.case_studies: Dict[str, CaseStudy] = {}
        self.testimonials: Dict[str, Testimonial] = {}
        self.brands: Dict[str, Brand] = {}
        self.campaigns: Dict[str, Campaign] = {}
        self.deliverables: Dict[str, Deliverable] = {}
        self.invoices: Dict[str, Invoice] = {}
        self.emails: Dict[str, Email] = {}
        self.activities: List[Activity] = []
        self.conversations: Dict[str, Conversation] = {}
        self.messages: Dict[str, List[Message]] = {}
        # RLock so store methods can be called from inside transaction()
        self._data_lock = threading.RLock()
        self._tx_depth = 0
        self._last_ts: datetime | None = None

    def _now(self) -> datetime:
        """Strictly increasing timestamp so recency ordering is deterministic."""
        with self._data_lock:
            now = utcnow()
            if self._last_ts is not None and now <= self._last_ts:
                now = self._last_ts + timedelta(microseconds=1)
            self._last_ts = now
            return now

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @contextmanager
    def transaction(self) -> Iterator["MemoryStore"]:
        """Run a block atomically; state is restored if the block raises."""
        with self._data_lock:
            snapshot = None
            if self._tx_depth == 0:
                snapshot = {
                    name: copy.deepcopy(getattr(self, name))
                    for name in _TRANSACTIONAL_STATE
                }
            self._tx_depth += 1
            try:
                yield self
            except BaseException:
                if snapshot is not None:
                    for name, value in snapshot.items():
                        setattr(self, name, value)
                    self.logger.info("memory_transaction_rolled_back")
                raise
            finally:
                self._tx_depth -= 1

    # users and workspaces
    def create_user(self, email: str, name: Optional[str] = None) -> User:
        with self._data_lock:
            normalized = email.strip().lower()
            if any(u.email == normalized for u in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User(id=self._new_id(), email=normalized, name=name, created_at=self._now())
            self.users[user.id] = user
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        normalized = email.strip().lower()
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == normalized), None)

    def create_workspace(self, name: str, slug: Optional[str] = None) -> Workspace:
        with self._data_lock:
            if slug and any(w.slug == slug for w in self.workspaces.values()):
                raise ConstraintViolation("workspace slug already exists", {"slug": slug})
            workspace = Workspace(id=self._new_id(), name=name, slug=slug, created_at=self._now())
            self.workspaces[workspace.id] = workspace
            return workspace

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        return self.workspaces.get(workspace_id)

    def add_membership(self, user_id: str, workspace_id: str, role: str = "owner") -> Membership:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("membership user missing", {"user_id": user_id})
            if workspace_id not in self.workspaces:
                raise ConstraintViolation(
                    "membership workspace missing", {"workspace_id": workspace_id}
                )
            membership = Membership(
                id=self._new_id(),
                user_id=user_id,
                workspace_id=workspace_id,
                role=role,
                created_at=self._now(),
            )
            self.memberships[membership.id] = membership
            return membership

    def get_earliest_membership(self, user_id: str) -> Optional[Membership]:
        with self._data_lock:
            candidates = [m for m in self.memberships.values() if m.user_id == user_id]
        if not candidates:
            return None
        return min(candidates, key=lambda m: m.created_at)

    # creator profile
    def upsert_creator_profile(self, workspace_id: str, brand_name: str, **fields: Any) -> CreatorProfile:
        with self._data_lock:
            if workspace_id not in self.workspaces:
                raise MissingReference("workspace", workspace_id, workspace_id)
            existing = self.profiles.get(workspace_id)
            if existing:
                existing.brand_name = brand_name
                for key, value in fields.items():
                    setattr(existing, key, value)
                existing.updated_at = self._now()
                return existing
            profile = CreatorProfile(workspace_id=workspace_id, brand_name=brand_name, **fields)
            self.profiles[workspace_id] = profile
            return profile

    def get_creator_profile(self, workspace_id: str) -> Optional[CreatorProfile]:
        return self.profiles.get(workspace_id)

    def set_encrypted_model_key(self, workspace_id: str, token: Optional[str]) -> None:
        with self._data_lock:
            profile = self.profiles.get(workspace_id)
            if profile is None:
                workspace = self.workspaces.get(workspace_id)
                if workspace is None:
                    raise MissingReference("workspace", workspace_id, workspace_id)
                profile = CreatorProfile(workspace_id=workspace_id, brand_name=workspace.name)
                self.profiles[workspace_id] = profile
            profile.encrypted_model_key = token
            profile.updated_at = self._now()

    def create_platform(self, workspace_id: str, type: str, handle: str, **fields: Any) -> Platform:
        with self._data_lock:
            platform = Platform(
                id=self._new_id(), workspace_id=workspace_id, type=type, handle=handle, **fields
            )
            self.platforms[platform.id] = platform
            return platform

    def list_platforms(self, workspace_id: str) -> List[Platform]:
        return [p for p in self.platforms.values() if p.workspace_id == workspace_id]

    def create_case_study(self, workspace_id: str, brand_name: str, result: str, **fields: Any) -> CaseStudy:
        with self._data_lock:
            study = CaseStudy(
                id=self._new_id(),
                workspace_id=workspace_id,
                brand_name=brand_name,
                result=result,
                created_at=self._now(),
                **fields,
            )
            self.case_studies[study.id] = study
            return study

    def list_case_studies(self, workspace_id: str, limit: Optional[int] = None) -> List[CaseStudy]:
        studies = [c for c in self.case_studies.values() if c.workspace_id == workspace_id]
        studies.sort(key=lambda c: c.created_at, reverse=True)
        return studies[:limit] if limit else studies

    def create_testimonial(
        self, workspace_id: str, quote: str, author_name: str, company: str, **fields: Any
    ) -> Testimonial:
        with self._data_lock:
            testimonial = Testimonial(
                id=self._new_id(),
                workspace_id=workspace_id,
                quote=quote,
                author_name=author_name,
                company=company,
                created_at=self._now(),
                **fields,
            )
            self.testimonials[testimonial.id] = testimonial
            return testimonial

    def list_testimonials(self, workspace_id: str, limit: Optional[int] = None) -> List[Testimonial]:
        items = [t for t in self.testimonials.values() if t.workspace_id == workspace_id]
        items.sort(key=lambda t: t.created_at, reverse=True)
        return items[:limit] if limit else items

    # brands
    def create_brand(self, workspace_id: str, name: str, **fields: Any) -> Brand:
        with self._data_lock:
            if workspace_id not in self.workspaces:
                raise MissingReference("workspace", workspace_id, workspace_id)
            now = self._now()
            brand = Brand(
                id=self._new_id(),
                workspace_id=workspace_id,
                name=name,
                created_at=now,
                updated_at=now,
                **fields,
            )
            self.brands[brand.id] = brand
            return brand

    def get_brand(self, workspace_id: str, brand_id: str) -> Optional[Brand]:
        brand = self.brands.get(brand_id)
        if not brand or brand.workspace_id != workspace_id:
            return None
        return brand

    def list_brands(self, workspace_id: str) -> List[Brand]:
        with self._data_lock:
            brands = [b for b in self.brands.values() if b.workspace_id == workspace_id]
        brands.sort(key=lambda b: b.updated_at, reverse=True)
        return brands

    def find_brands(self, workspace_id: str, name_contains: str) -> List[Brand]:
        """Case-insensitive substring match, most recently updated first."""
        return [b for b in self.list_brands(workspace_id) if _contains(b.name, name_contains)]

    def update_brand_stage(self, workspace_id: str, brand_id: str, stage: str) -> Brand:
        with self._data_lock:
            brand = self.get_brand(workspace_id, brand_id)
            if brand is None:
                raise MissingReference("brand", brand_id, workspace_id)
            brand.pipeline_stage = stage
            brand.updated_at = self._now()
            return brand

    # campaigns
    def create_campaign(self, workspace_id: str, brand_id: str, name: str, **fields: Any) -> Campaign:
        with self._data_lock:
            if self.get_brand(workspace_id, brand_id) is None:
                raise MissingReference("brand", brand_id, workspace_id)
            now = self._now()
            campaign = Campaign(
                id=self._new_id(),
                workspace_id=workspace_id,
                brand_id=brand_id,
                name=name,
                created_at=now,
                updated_at=now,
                **fields,
            )
            self.campaigns[campaign.id] = campaign
            return campaign

    def get_campaign(self, workspace_id: str, campaign_id: str) -> Optional[Campaign]:
        campaign = self.campaigns.get(campaign_id)
        if not campaign or campaign.workspace_id != workspace_id:
            return None
        return campaign

    def list_campaigns_for_brand(
        self, workspace_id: str, brand_id: str, limit: Optional[int] = None
    ) -> List[Campaign]:
        items = [
            c
            for c in self.campaigns.values()
            if c.workspace_id == workspace_id and c.brand_id == brand_id
        ]
        items.sort(key=lambda c: c.created_at, reverse=True)
        return items[:limit] if limit else items

    def search_campaigns(
        self,
        workspace_id: str,
        *,
        name_contains: Optional[str] = None,
        brand_name_contains: Optional[str] = None,
        limit: int = 10,
    ) -> List[Campaign]:
        with self._data_lock:
            items = [c for c in self.campaigns.values() if c.workspace_id == workspace_id]
            if name_contains:
                items = [c for c in items if _contains(c.name, name_contains)]
            if brand_name_contains:
                items = [
                    c
                    for c in items
                    if _contains(getattr(self.brands.get(c.brand_id), "name", None), brand_name_contains)
                ]
        items.sort(key=lambda c: c.updated_at, reverse=True)
        return items[:limit]

    def create_deliverable(self, workspace_id: str, campaign_id: str, title: str, **fields: Any) -> Deliverable:
        with self._data_lock:
            if self.get_campaign(workspace_id, campaign_id) is None:
                raise MissingReference("campaign", campaign_id, workspace_id)
            deliverable = Deliverable(
                id=self._new_id(),
                workspace_id=workspace_id,
                campaign_id=campaign_id,
                title=title,
                created_at=self._now(),
                **fields,
            )
            self.deliverables[deliverable.id] = deliverable
            return deliverable

    def list_deliverables(self, workspace_id: str, campaign_id: str) -> List[Deliverable]:
        items = [
            d
            for d in self.deliverables.values()
            if d.workspace_id == workspace_id and d.campaign_id == campaign_id
        ]
        items.sort(key=lambda d: d.created_at)
        return items

    def create_invoice(self, workspace_id: str, campaign_id: str, amount: float, **fields: Any) -> Invoice:
        with self._data_lock:
            if self.get_campaign(workspace_id, campaign_id) is None:
                raise MissingReference("campaign", campaign_id, workspace_id)
            invoice = Invoice(
                id=self._new_id(),
                workspace_id=workspace_id,
                campaign_id=campaign_id,
                amount=amount,
                created_at=self._now(),
                **fields,
            )
            self.invoices[invoice.id] = invoice
            return invoice

    def list_invoices(self, workspace_id: str, campaign_id: str) -> List[Invoice]:
        return [
            i
            for i in self.invoices.values()
            if i.workspace_id == workspace_id and i.campaign_id == campaign_id
        ]

    # emails
    def create_email(
        self,
        workspace_id: str,
        brand_id: str,
        subject: str,
        body: str,
        *,
        direction: str = "outbound",
        to_email: str = "",
        status: str = "draft",
    ) -> Email:
        with self._data_lock:
            if self.get_brand(workspace_id, brand_id) is None:
                raise MissingReference("brand", brand_id, workspace_id)
            email = Email(
                id=self._new_id(),
                workspace_id=workspace_id,
                brand_id=brand_id,
                subject=subject,
                body=body,
                direction=direction,
                to_email=to_email,
                status=status,
                created_at=self._now(),
            )
            self.emails[email.id] = email
            return email

    def list_emails_for_brand(
        self, workspace_id: str, brand_id: str, limit: Optional[int] = None
    ) -> List[Email]:
        items = [
            e
            for e in self.emails.values()
            if e.workspace_id == workspace_id and e.brand_id == brand_id
        ]
        items.sort(key=lambda e: e.created_at, reverse=True)
        return items[:limit] if limit else items

    def list_emails(self, workspace_id: str) -> List[Email]:
        return [e for e in self.emails.values() if e.workspace_id == workspace_id]

    # activity log
    def append_activity(
        self,
        workspace_id: str,
        type: str,
        description: str,
        *,
        brand_id: Optional[str] = None,
        campaign_id: Optional[str] = None,
        user_id: Optional[str] = None,
        source: str = "agent",
    ) -> Activity:
        with self._data_lock:
            if workspace_id not in self.workspaces:
                raise MissingReference("workspace", workspace_id, workspace_id)
            activity = Activity(
                id=self._new_id(),
                workspace_id=workspace_id,
                type=type,
                description=description,
                brand_id=brand_id,
                campaign_id=campaign_id,
                user_id=user_id,
                source=source,
                created_at=self._now(),
            )
            self.activities.append(activity)
            return activity

    def list_activities(
        self, workspace_id: str, *, brand_id: Optional[str] = None
    ) -> List[Activity]:
        items = [a for a in self.activities if a.workspace_id == workspace_id]
        if brand_id:
            items = [a for a in items if a.brand_id == brand_id]
        return items

    def count_activities(self, workspace_id: str, *, brand_id: Optional[str] = None) -> int:
        return len(self.list_activities(workspace_id, brand_id=brand_id))

    # conversations
    def create_conversation(
        self, workspace_id: str, user_id: str, title: Optional[str] = None
    ) -> Conversation:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("conversation owner missing", {"user_id": user_id})
            if workspace_id not in self.workspaces:
                raise MissingReference("workspace", workspace_id, workspace_id)
            now = self._now()
            conv = Conversation(
                id=self._new_id(),
                workspace_id=workspace_id,
                user_id=user_id,
                created_at=now,
                updated_at=now,
                title=title,
            )
            self.conversations[conv.id] = conv
            self.messages[conv.id] = []
            return conv

    def get_conversation(
        self, conversation_id: str, *, workspace_id: str, user_id: str
    ) -> Optional[Conversation]:
        conv = self.conversations.get(conversation_id)
        if not conv:
            return None
        if conv.workspace_id != workspace_id or conv.user_id != user_id:
            return None
        return conv

    def list_conversations(
        self, workspace_id: str, user_id: str, limit: int = 50
    ) -> List[Conversation]:
        with self._data_lock:
            convs = [
                c
                for c in self.conversations.values()
                if c.workspace_id == workspace_id and c.user_id == user_id
            ]
        convs.sort(key=lambda c: c.updated_at, reverse=True)
        return convs[:limit]

    def update_conversation(
        self,
        conversation_id: str,
        *,
        workspace_id: str,
        user_id: str,
        title: Optional[str] = None,
    ) -> Optional[Conversation]:
        """Set a new title (when given) and bump ``updated_at``."""
        with self._data_lock:
            conv = self.get_conversation(
                conversation_id, workspace_id=workspace_id, user_id=user_id
            )
            if not conv:
                return None
            if title is not None:
                conv.title = title
            conv.updated_at = self._now()
            return conv

    def delete_conversation(
        self, conversation_id: str, *, workspace_id: str, user_id: str
    ) -> bool:
        with self._data_lock:
            conv = self.get_conversation(
                conversation_id, workspace_id=workspace_id, user_id=user_id
            )
            if not conv:
                return False
            self.conversations.pop(conversation_id, None)
            self.messages.pop(conversation_id, None)
            return True

    def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        meta: Optional[Dict] = None,
    ) -> Message:
        with self._data_lock:
            if conversation_id not in self.conversations:
                raise ConstraintViolation(
                    "conversation not found", {"conversation_id": conversation_id}
                )
            seq = len(self.messages.get(conversation_id, []))
            msg = Message(
                id=self._new_id(),
                conversation_id=conversation_id,
                role=role,
                content=content,
                seq=seq,
                created_at=self._now(),
                meta=meta,
            )
            self.messages.setdefault(conversation_id, []).append(msg)
            self.conversations[conversation_id].updated_at = msg.created_at
            return msg

    def list_messages(self, conversation_id: str) -> List[Message]:
        return list(self.messages.get(conversation_id, []))

    def count_messages(self, conversation_id: str) -> int:
        return len(self.messages.get(conversation_id, []))
