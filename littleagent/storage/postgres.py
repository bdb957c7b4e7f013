from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

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

# Connection bound by an open transaction() block on the current task/thread
_tx_conn: ContextVar[Any] = ContextVar("littleagent_pg_tx_conn", default=None)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        name TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workspace (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        slug TEXT UNIQUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS membership (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        workspace_id TEXT NOT NULL REFERENCES workspace(id) ON DELETE CASCADE,
        role TEXT NOT NULL DEFAULT 'owner',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS creator_profile (
        workspace_id TEXT PRIMARY KEY REFERENCES workspace(id) ON DELETE CASCADE,
        brand_name TEXT NOT NULL,
        tagline TEXT,
        bio TEXT,
        location TEXT,
        contact_email TEXT,
        tone_of_voice TEXT,
        content_categories JSONB NOT NULL DEFAULT '[]'::jsonb,
        key_differentiators TEXT,
        audience_summary TEXT,
        rate_card JSONB,
        currency TEXT NOT NULL DEFAULT 'GBP',
        encrypted_model_key TEXT,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS platform (
        id TEXT PRIMARY KEY,
        workspace_id TEXT NOT NULL REFERENCES workspace(id) ON DELETE CASCADE,
        type TEXT NOT NULL,
        handle TEXT NOT NULL,
        display_name TEXT,
        followers BIGINT,
        avg_views BIGINT,
        engagement_rate DOUBLE PRECISION
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS case_study (
        id TEXT PRIMARY KEY,
        workspace_id TEXT NOT NULL REFERENCES workspace(id) ON DELETE CASCADE,
        brand_name TEXT NOT NULL,
        industry TEXT,
        result TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS testimonial (
        id TEXT PRIMARY KEY,
        workspace_id TEXT NOT NULL REFERENCES workspace(id) ON DELETE CASCADE,
        quote TEXT NOT NULL,
        author_name TEXT NOT NULL,
        author_title TEXT,
        company TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS brand (
        id TEXT PRIMARY KEY,
        workspace_id TEXT NOT NULL REFERENCES workspace(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        industry TEXT,
        website TEXT,
        contact_name TEXT,
        contact_title TEXT,
        contact_email TEXT,
        contact_phone TEXT,
        source TEXT,
        estimated_value DOUBLE PRECISION,
        pipeline_stage TEXT NOT NULL DEFAULT 'research',
        notes TEXT,
        tags JSONB NOT NULL DEFAULT '[]'::jsonb,
        next_follow_up TIMESTAMPTZ,
        next_action TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS brand_workspace_idx ON brand (workspace_id, updated_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS campaign (
        id TEXT PRIMARY KEY,
        workspace_id TEXT NOT NULL REFERENCES workspace(id) ON DELETE CASCADE,
        brand_id TEXT NOT NULL REFERENCES brand(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        brief TEXT,
        fee DOUBLE PRECISION,
        start_date TIMESTAMPTZ,
        end_date TIMESTAMPTZ,
        payment_terms TEXT,
        usage_rights TEXT,
        exclusivity TEXT,
        status TEXT NOT NULL DEFAULT 'draft',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS deliverable (
        id TEXT PRIMARY KEY,
        workspace_id TEXT NOT NULL REFERENCES workspace(id) ON DELETE CASCADE,
        campaign_id TEXT NOT NULL REFERENCES campaign(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        platform TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        due_date TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS invoice (
        id TEXT PRIMARY KEY,
        workspace_id TEXT NOT NULL REFERENCES workspace(id) ON DELETE CASCADE,
        campaign_id TEXT NOT NULL REFERENCES campaign(id) ON DELETE CASCADE,
        amount DOUBLE PRECISION NOT NULL,
        status TEXT NOT NULL DEFAULT 'draft',
        due_date TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS email (
        id TEXT PRIMARY KEY,
        workspace_id TEXT NOT NULL REFERENCES workspace(id) ON DELETE CASCADE,
        brand_id TEXT NOT NULL REFERENCES brand(id) ON DELETE CASCADE,
        direction TEXT NOT NULL DEFAULT 'outbound',
        subject TEXT NOT NULL,
        body TEXT NOT NULL,
        to_email TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL DEFAULT 'draft',
        sent_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS activity (
        id TEXT PRIMARY KEY,
        workspace_id TEXT NOT NULL REFERENCES workspace(id) ON DELETE CASCADE,
        type TEXT NOT NULL,
        description TEXT NOT NULL,
        brand_id TEXT,
        campaign_id TEXT,
        user_id TEXT,
        source TEXT NOT NULL DEFAULT 'agent',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversation (
        id TEXT PRIMARY KEY,
        workspace_id TEXT NOT NULL REFERENCES workspace(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL REFERENCES app_user(id) ON DELETE CASCADE,
        title TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message (
        id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL REFERENCES conversation(id) ON DELETE CASCADE,
        role TEXT NOT NULL,
        content TEXT NOT NULL,
        seq INTEGER NOT NULL,
        meta JSONB,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (conversation_id, seq)
    )
    """,
)

_BRAND_COLUMNS = (
    "industry",
    "website",
    "contact_name",
    "contact_title",
    "contact_email",
    "contact_phone",
    "source",
    "estimated_value",
    "pipeline_stage",
    "notes",
    "tags",
    "next_follow_up",
    "next_action",
)

_CAMPAIGN_COLUMNS = (
    "brief",
    "fee",
    "start_date",
    "end_date",
    "payment_terms",
    "usage_rights",
    "exclusivity",
    "status",
)

_PROFILE_COLUMNS = (
    "tagline",
    "bio",
    "location",
    "contact_email",
    "tone_of_voice",
    "content_categories",
    "key_differentiators",
    "audience_summary",
    "rate_card",
    "currency",
    "encrypted_model_key",
)

_JSON_COLUMNS = {"tags", "content_categories", "rate_card", "meta"}


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _adapt(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS and value is not None:
        return Jsonb(value)
    return value


class PostgresStore:
    """Postgres-backed store with the same workspace-scoped surface as MemoryStore."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[Any]:
        bound = _tx_conn.get()
        if bound is not None:
            yield bound
            return
        with self.pool.connection() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator["PostgresStore"]:
        """Run every store call made inside the block on one database transaction."""
        if _tx_conn.get() is not None:
            yield self
            return
        with self.pool.connection() as conn:
            with conn.transaction():
                token = _tx_conn.set(conn)
                try:
                    yield self
                finally:
                    _tx_conn.reset(token)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)
        self.logger.info("postgres_schema_ready", tables=len(_SCHEMA))

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    def _insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        columns = list(values.keys())
        placeholders = ", ".join(["%s"] * len(columns))
        query = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *"
        params = [_adapt(col, values[col]) for col in columns]
        try:
            with self._connect() as conn:
                return conn.execute(query, params).fetchone()
        except errors.UniqueViolation as exc:
            raise ConstraintViolation(f"{table} already exists", {"table": table}) from exc
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation(f"{table} reference missing", {"table": table}) from exc

    def _fetch_one(self, query: str, params: tuple) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            return conn.execute(query, params).fetchone()

    def _fetch_all(self, query: str, params: tuple) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            return list(conn.execute(query, params).fetchall())

    # users and workspaces
    def create_user(self, email: str, name: Optional[str] = None) -> User:
        row = self._insert(
            "app_user",
            {"id": self._new_id(), "email": email.strip().lower(), "name": name, "created_at": utcnow()},
        )
        return User(**row)

    def get_user(self, user_id: str) -> Optional[User]:
        row = self._fetch_one("SELECT * FROM app_user WHERE id = %s", (user_id,))
        return User(**row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        row = self._fetch_one(
            "SELECT * FROM app_user WHERE email = %s", (email.strip().lower(),)
        )
        return User(**row) if row else None

    def create_workspace(self, name: str, slug: Optional[str] = None) -> Workspace:
        row = self._insert(
            "workspace",
            {"id": self._new_id(), "name": name, "slug": slug, "created_at": utcnow()},
        )
        return Workspace(**row)

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        row = self._fetch_one("SELECT * FROM workspace WHERE id = %s", (workspace_id,))
        return Workspace(**row) if row else None

    def add_membership(self, user_id: str, workspace_id: str, role: str = "owner") -> Membership:
        row = self._insert(
            "membership",
            {
                "id": self._new_id(),
                "user_id": user_id,
                "workspace_id": workspace_id,
                "role": role,
                "created_at": utcnow(),
            },
        )
        return Membership(**row)

    def get_earliest_membership(self, user_id: str) -> Optional[Membership]:
        row = self._fetch_one(
            "SELECT * FROM membership WHERE user_id = %s ORDER BY created_at ASC, id ASC LIMIT 1",
            (user_id,),
        )
        return Membership(**row) if row else None

    # creator profile
    def upsert_creator_profile(self, workspace_id: str, brand_name: str, **fields: Any) -> CreatorProfile:
        unknown = set(fields) - set(_PROFILE_COLUMNS)
        if unknown:
            raise ValueError(f"unknown profile fields: {sorted(unknown)}")
        values = {"workspace_id": workspace_id, "brand_name": brand_name, **fields, "updated_at": utcnow()}
        columns = list(values.keys())
        updates = ", ".join(f"{col} = EXCLUDED.{col}" for col in columns if col != "workspace_id")
        query = (
            f"INSERT INTO creator_profile ({', '.join(columns)}) "
            f"VALUES ({', '.join(['%s'] * len(columns))}) "
            f"ON CONFLICT (workspace_id) DO UPDATE SET {updates} RETURNING *"
        )
        try:
            with self._connect() as conn:
                row = conn.execute(query, [_adapt(c, values[c]) for c in columns]).fetchone()
        except errors.ForeignKeyViolation as exc:
            raise MissingReference("workspace", workspace_id, workspace_id) from exc
        return self._row_to_profile(row)

    def get_creator_profile(self, workspace_id: str) -> Optional[CreatorProfile]:
        row = self._fetch_one(
            "SELECT * FROM creator_profile WHERE workspace_id = %s", (workspace_id,)
        )
        return self._row_to_profile(row) if row else None

    def set_encrypted_model_key(self, workspace_id: str, token: Optional[str]) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO creator_profile (workspace_id, brand_name, encrypted_model_key, updated_at)
                    SELECT id, name, %s, now() FROM workspace WHERE id = %s
                    ON CONFLICT (workspace_id) DO UPDATE
                    SET encrypted_model_key = EXCLUDED.encrypted_model_key, updated_at = now()
                    """,
                    (token, workspace_id),
                )
        except errors.ForeignKeyViolation as exc:
            raise MissingReference("workspace", workspace_id, workspace_id) from exc

    @staticmethod
    def _row_to_profile(row: Dict[str, Any]) -> CreatorProfile:
        data = dict(row)
        data["content_categories"] = data.get("content_categories") or []
        return CreatorProfile(**data)

    def create_platform(self, workspace_id: str, type: str, handle: str, **fields: Any) -> Platform:
        row = self._insert(
            "platform",
            {"id": self._new_id(), "workspace_id": workspace_id, "type": type, "handle": handle, **fields},
        )
        return Platform(**row)

    def list_platforms(self, workspace_id: str) -> List[Platform]:
        rows = self._fetch_all(
            "SELECT * FROM platform WHERE workspace_id = %s ORDER BY type, handle", (workspace_id,)
        )
        return [Platform(**row) for row in rows]

    def create_case_study(self, workspace_id: str, brand_name: str, result: str, **fields: Any) -> CaseStudy:
        row = self._insert(
            "case_study",
            {
                "id": self._new_id(),
                "workspace_id": workspace_id,
                "brand_name": brand_name,
                "result": result,
                "created_at": utcnow(),
                **fields,
            },
        )
        return CaseStudy(**row)

    def list_case_studies(self, workspace_id: str, limit: Optional[int] = None) -> List[CaseStudy]:
        rows = self._fetch_all(
            "SELECT * FROM case_study WHERE workspace_id = %s ORDER BY created_at DESC LIMIT %s",
            (workspace_id, limit),
        )
        return [CaseStudy(**row) for row in rows]

    def create_testimonial(
        self, workspace_id: str, quote: str, author_name: str, company: str, **fields: Any
    ) -> Testimonial:
        row = self._insert(
            "testimonial",
            {
                "id": self._new_id(),
                "workspace_id": workspace_id,
                "quote": quote,
                "author_name": author_name,
                "company": company,
                "created_at": utcnow(),
                **fields,
            },
        )
        return Testimonial(**row)

    def list_testimonials(self, workspace_id: str, limit: Optional[int] = None) -> List[Testimonial]:
        rows = self._fetch_all(
            "SELECT * FROM testimonial WHERE workspace_id = %s ORDER BY created_at DESC LIMIT %s",
            (workspace_id, limit),
        )
        return [Testimonial(**row) for row in rows]

    # brands
    @staticmethod
    def _row_to_brand(row: Dict[str, Any]) -> Brand:
        data = dict(row)
        data["tags"] = data.get("tags") or []
        return Brand(**data)

    def create_brand(self, workspace_id: str, name: str, **fields: Any) -> Brand:
        unknown = set(fields) - set(_BRAND_COLUMNS)
        if unknown:
            raise ValueError(f"unknown brand fields: {sorted(unknown)}")
        now = utcnow()
        values = {
            "id": self._new_id(),
            "workspace_id": workspace_id,
            "name": name,
            "tags": [],
            "created_at": now,
            "updated_at": now,
            **fields,
        }
        return self._row_to_brand(self._insert("brand", values))

    def get_brand(self, workspace_id: str, brand_id: str) -> Optional[Brand]:
        row = self._fetch_one(
            "SELECT * FROM brand WHERE id = %s AND workspace_id = %s", (brand_id, workspace_id)
        )
        return self._row_to_brand(row) if row else None

    def list_brands(self, workspace_id: str) -> List[Brand]:
        rows = self._fetch_all(
            "SELECT * FROM brand WHERE workspace_id = %s ORDER BY updated_at DESC, id",
            (workspace_id,),
        )
        return [self._row_to_brand(row) for row in rows]

    def find_brands(self, workspace_id: str, name_contains: str) -> List[Brand]:
        rows = self._fetch_all(
            "SELECT * FROM brand WHERE workspace_id = %s AND name ILIKE %s ESCAPE '\\' "
            "ORDER BY updated_at DESC, id",
            (workspace_id, f"%{_escape_like(name_contains)}%"),
        )
        return [self._row_to_brand(row) for row in rows]

    def update_brand_stage(self, workspace_id: str, brand_id: str, stage: str) -> Brand:
        row = self._fetch_one(
            "UPDATE brand SET pipeline_stage = %s, updated_at = %s "
            "WHERE id = %s AND workspace_id = %s RETURNING *",
            (stage, utcnow(), brand_id, workspace_id),
        )
        if not row:
            raise MissingReference("brand", brand_id, workspace_id)
        return self._row_to_brand(row)

    # campaigns
    def create_campaign(self, workspace_id: str, brand_id: str, name: str, **fields: Any) -> Campaign:
        unknown = set(fields) - set(_CAMPAIGN_COLUMNS)
        if unknown:
            raise ValueError(f"unknown campaign fields: {sorted(unknown)}")
        if self.get_brand(workspace_id, brand_id) is None:
            raise MissingReference("brand", brand_id, workspace_id)
        now = utcnow()
        row = self._insert(
            "campaign",
            {
                "id": self._new_id(),
                "workspace_id": workspace_id,
                "brand_id": brand_id,
                "name": name,
                "created_at": now,
                "updated_at": now,
                **fields,
            },
        )
        return Campaign(**row)

    def get_campaign(self, workspace_id: str, campaign_id: str) -> Optional[Campaign]:
        row = self._fetch_one(
            "SELECT * FROM campaign WHERE id = %s AND workspace_id = %s",
            (campaign_id, workspace_id),
        )
        return Campaign(**row) if row else None

    def list_campaigns_for_brand(
        self, workspace_id: str, brand_id: str, limit: Optional[int] = None
    ) -> List[Campaign]:
        rows = self._fetch_all(
            "SELECT * FROM campaign WHERE workspace_id = %s AND brand_id = %s "
            "ORDER BY created_at DESC LIMIT %s",
            (workspace_id, brand_id, limit),
        )
        return [Campaign(**row) for row in rows]

    def search_campaigns(
        self,
        workspace_id: str,
        *,
        name_contains: Optional[str] = None,
        brand_name_contains: Optional[str] = None,
        limit: int = 10,
    ) -> List[Campaign]:
        query = (
            "SELECT c.* FROM campaign c JOIN brand b ON b.id = c.brand_id "
            "WHERE c.workspace_id = %s AND b.workspace_id = %s"
        )
        params: list[Any] = [workspace_id, workspace_id]
        if name_contains:
            query += " AND c.name ILIKE %s ESCAPE '\\'"
            params.append(f"%{_escape_like(name_contains)}%")
        if brand_name_contains:
            query += " AND b.name ILIKE %s ESCAPE '\\'"
            params.append(f"%{_escape_like(brand_name_contains)}%")
        query += " ORDER BY c.updated_at DESC, c.id LIMIT %s"
        params.append(limit)
        return [Campaign(**row) for row in self._fetch_all(query, tuple(params))]

    def create_deliverable(self, workspace_id: str, campaign_id: str, title: str, **fields: Any) -> Deliverable:
        if self.get_campaign(workspace_id, campaign_id) is None:
            raise MissingReference("campaign", campaign_id, workspace_id)
        row = self._insert(
            "deliverable",
            {
                "id": self._new_id(),
                "workspace_id": workspace_id,
                "campaign_id": campaign_id,
                "title": title,
                "created_at": utcnow(),
                **fields,
            },
        )
        return Deliverable(**row)

    def list_deliverables(self, workspace_id: str, campaign_id: str) -> List[Deliverable]:
        rows = self._fetch_all(
            "SELECT * FROM deliverable WHERE workspace_id = %s AND campaign_id = %s ORDER BY created_at",
            (workspace_id, campaign_id),
        )
        return [Deliverable(**row) for row in rows]

    def create_invoice(self, workspace_id: str, campaign_id: str, amount: float, **fields: Any) -> Invoice:
        if self.get_campaign(workspace_id, campaign_id) is None:
            raise MissingReference("campaign", campaign_id, workspace_id)
        row = self._insert(
            "invoice",
            {
                "id": self._new_id(),
                "workspace_id": workspace_id,
                "campaign_id": campaign_id,
                "amount": amount,
                "created_at": utcnow(),
                **fields,
            },
        )
        return Invoice(**row)

    def list_invoices(self, workspace_id: str, campaign_id: str) -> List[Invoice]:
        rows = self._fetch_all(
            "SELECT * FROM invoice WHERE workspace_id = %s AND campaign_id = %s ORDER BY created_at",
            (workspace_id, campaign_id),
        )
        return [Invoice(**row) for row in rows]

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
        if self.get_brand(workspace_id, brand_id) is None:
            raise MissingReference("brand", brand_id, workspace_id)
        row = self._insert(
            "email",
            {
                "id": self._new_id(),
                "workspace_id": workspace_id,
                "brand_id": brand_id,
                "subject": subject,
                "body": body,
                "direction": direction,
                "to_email": to_email,
                "status": status,
                "created_at": utcnow(),
            },
        )
        return Email(**row)

    def list_emails_for_brand(
        self, workspace_id: str, brand_id: str, limit: Optional[int] = None
    ) -> List[Email]:
        rows = self._fetch_all(
            "SELECT * FROM email WHERE workspace_id = %s AND brand_id = %s "
            "ORDER BY created_at DESC LIMIT %s",
            (workspace_id, brand_id, limit),
        )
        return [Email(**row) for row in rows]

    def list_emails(self, workspace_id: str) -> List[Email]:
        rows = self._fetch_all(
            "SELECT * FROM email WHERE workspace_id = %s ORDER BY created_at", (workspace_id,)
        )
        return [Email(**row) for row in rows]

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
        row = self._insert(
            "activity",
            {
                "id": self._new_id(),
                "workspace_id": workspace_id,
                "type": type,
                "description": description,
                "brand_id": brand_id,
                "campaign_id": campaign_id,
                "user_id": user_id,
                "source": source,
                "created_at": utcnow(),
            },
        )
        return Activity(**row)

    def list_activities(
        self, workspace_id: str, *, brand_id: Optional[str] = None
    ) -> List[Activity]:
        query = "SELECT * FROM activity WHERE workspace_id = %s"
        params: tuple[Any, ...] = (workspace_id,)
        if brand_id:
            query += " AND brand_id = %s"
            params = (workspace_id, brand_id)
        rows = self._fetch_all(query + " ORDER BY created_at", params)
        return [Activity(**row) for row in rows]

    def count_activities(self, workspace_id: str, *, brand_id: Optional[str] = None) -> int:
        query = "SELECT count(*) AS n FROM activity WHERE workspace_id = %s"
        params: tuple[Any, ...] = (workspace_id,)
        if brand_id:
            query += " AND brand_id = %s"
            params = (workspace_id, brand_id)
        row = self._fetch_one(query, params)
        return int(row["n"]) if row else 0

    # conversations
    def create_conversation(
        self, workspace_id: str, user_id: str, title: Optional[str] = None
    ) -> Conversation:
        now = utcnow()
        row = self._insert(
            "conversation",
            {
                "id": self._new_id(),
                "workspace_id": workspace_id,
                "user_id": user_id,
                "title": title,
                "created_at": now,
                "updated_at": now,
            },
        )
        return Conversation(**row)

    def get_conversation(
        self, conversation_id: str, *, workspace_id: str, user_id: str
    ) -> Optional[Conversation]:
        row = self._fetch_one(
            "SELECT * FROM conversation WHERE id = %s AND workspace_id = %s AND user_id = %s",
            (conversation_id, workspace_id, user_id),
        )
        return Conversation(**row) if row else None

    def list_conversations(
        self, workspace_id: str, user_id: str, limit: int = 50
    ) -> List[Conversation]:
        rows = self._fetch_all(
            "SELECT * FROM conversation WHERE workspace_id = %s AND user_id = %s "
            "ORDER BY updated_at DESC LIMIT %s",
            (workspace_id, user_id, limit),
        )
        return [Conversation(**row) for row in rows]

    def update_conversation(
        self,
        conversation_id: str,
        *,
        workspace_id: str,
        user_id: str,
        title: Optional[str] = None,
    ) -> Optional[Conversation]:
        row = self._fetch_one(
            "UPDATE conversation SET title = COALESCE(%s, title), updated_at = %s "
            "WHERE id = %s AND workspace_id = %s AND user_id = %s RETURNING *",
            (title, utcnow(), conversation_id, workspace_id, user_id),
        )
        return Conversation(**row) if row else None

    def delete_conversation(
        self, conversation_id: str, *, workspace_id: str, user_id: str
    ) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM conversation WHERE id = %s AND workspace_id = %s AND user_id = %s",
                (conversation_id, workspace_id, user_id),
            )
            return cur.rowcount > 0

    def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        meta: Optional[Dict] = None,
    ) -> Message:
        now = utcnow()
        try:
            with self._connect() as conn:
                # Row lock serializes seq assignment per conversation
                locked = conn.execute(
                    "SELECT id FROM conversation WHERE id = %s FOR UPDATE", (conversation_id,)
                ).fetchone()
                if not locked:
                    raise ConstraintViolation(
                        "conversation not found", {"conversation_id": conversation_id}
                    )
                seq_row = conn.execute(
                    "SELECT COALESCE(MAX(seq) + 1, 0) AS next_seq FROM message WHERE conversation_id = %s",
                    (conversation_id,),
                ).fetchone()
                row = conn.execute(
                    "INSERT INTO message (id, conversation_id, role, content, seq, meta, created_at) "
                    "VALUES (%s, %s, %s, %s, %s, %s, %s) RETURNING *",
                    (
                        self._new_id(),
                        conversation_id,
                        role,
                        content,
                        seq_row["next_seq"],
                        Jsonb(meta) if meta is not None else None,
                        now,
                    ),
                ).fetchone()
                conn.execute(
                    "UPDATE conversation SET updated_at = %s WHERE id = %s", (now, conversation_id)
                )
        except errors.UniqueViolation as exc:
            raise ConstraintViolation(
                "message sequence conflict", {"conversation_id": conversation_id}
            ) from exc
        return Message(**row)

    def list_messages(self, conversation_id: str) -> List[Message]:
        rows = self._fetch_all(
            "SELECT * FROM message WHERE conversation_id = %s ORDER BY seq", (conversation_id,)
        )
        return [Message(**row) for row in rows]

    def count_messages(self, conversation_id: str) -> int:
        row = self._fetch_one(
            "SELECT count(*) AS n FROM message WHERE conversation_id = %s", (conversation_id,)
        )
        return int(row["n"]) if row else 0
