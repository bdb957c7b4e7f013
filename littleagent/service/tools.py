"""Workspace-scoped tools the AI manager can call.

A ``ToolRegistry`` is built per request around one workspace id (and the
acting user, for attribution). Handlers read that id from the registry, never
from model-supplied input: every input model forbids unknown fields, so a
``workspaceId`` argument is rejected before a handler runs.

Lookups that find nothing, and inputs that fail validation, come back as
``{"error": ...}`` result dicts so the model can explain the problem in its
reply instead of the turn failing.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from littleagent.logging import get_logger
from littleagent.storage.errors import ConstraintViolation
from littleagent.storage.models import (
    Brand,
    Campaign,
    EmailDirection,
    PipelineStage,
    PitchType,
    utcnow,
)

logger = get_logger(__name__)

PITCH_INSTRUCTION = (
    "Use the data below to compose the pitch email. Return the subject line and "
    "body separately. Make it personal, specific, and compelling."
)

_CURRENCY_SYMBOLS = {"GBP": "£", "USD": "$", "EUR": "€"}


class WebsiteTextSource(Protocol):
    def fetch_text(self, url: Optional[str]) -> Optional[str]: ...


def format_money(amount: Optional[float], currency: str = "GBP") -> str:
    value = amount or 0
    symbol = _CURRENCY_SYMBOLS.get((currency or "").upper())
    if symbol:
        return f"{symbol}{value:,.0f}"
    return f"{value:,.0f} {currency}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------


class ToolInput(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        str_strip_whitespace=True,
    )


class GetPipelineStatusInput(ToolInput):
    pass


class GetBrandDetailsInput(ToolInput):
    brand_name: Optional[str] = Field(
        None, description="Brand name to search for (case-insensitive partial match)"
    )
    brand_id: Optional[str] = Field(None, description="Exact brand ID if known")


class GetCampaignStatusInput(ToolInput):
    campaign_id: Optional[str] = Field(None, description="Exact campaign ID if known")
    campaign_name: Optional[str] = Field(None, description="Campaign name to search for")
    brand_name: Optional[str] = Field(None, description="Brand name to filter campaigns by")


class CreatePipelineEntryInput(ToolInput):
    name: str = Field(..., min_length=1, max_length=200, description="Brand or company name")
    industry: Optional[str] = Field(None, description="Industry (e.g. fashion, tech, food)")
    website: Optional[str] = Field(None, description="Brand website URL")
    contact_name: Optional[str] = Field(None, description="Contact person's name")
    contact_email: Optional[str] = Field(None, description="Contact person's email")
    contact_title: Optional[str] = Field(None, description="Contact person's job title")
    source: Optional[str] = Field(
        None, description="How the brand was found (e.g. inbound, outreach, referral)"
    )
    estimated_value: Optional[float] = Field(
        None, ge=0, description="Estimated deal value in workspace currency"
    )
    pipeline_stage: Optional[PipelineStage] = Field(
        None, description="Pipeline stage, defaults to 'research'"
    )
    notes: Optional[str] = Field(None, description="Any notes about the brand")


class UpdatePipelineStageInput(ToolInput):
    brand_name: str = Field(..., min_length=1, description="Name of the brand to move")
    new_stage: PipelineStage = Field(..., description="The new pipeline stage")
    reason: Optional[str] = Field(None, description="Reason for the move (logged in activity)")


class DraftEmailInput(ToolInput):
    brand_name: str = Field(..., min_length=1, description="Name of the brand to email")
    subject: str = Field(..., min_length=1, max_length=300, description="Email subject line")
    body: str = Field(..., min_length=1, description="Full email body (can use markdown/HTML)")
    direction: Optional[EmailDirection] = Field(None, description="Direction, defaults to outbound")


class GeneratePitchInput(ToolInput):
    brand_name: str = Field(..., min_length=1, description="Name of the brand to pitch")
    pitch_type: PitchType = Field(
        ...,
        description=(
            "Type of pitch: cold (never spoken), warm (some prior contact), "
            "follow_up (continuing conversation), inbound_response (brand reached out)"
        ),
    )
    additional_context: Optional[str] = Field(
        None, description="Extra context: product, campaign idea, specific angle, etc."
    )


class CreateCampaignInput(ToolInput):
    brand_name: str = Field(
        ..., min_length=1, description="Name of the brand (must exist in pipeline)"
    )
    campaign_name: str = Field(..., min_length=1, max_length=200, description="Name for the campaign")
    brief: Optional[str] = Field(None, description="Campaign brief / description")
    fee: Optional[float] = Field(None, ge=0, description="Agreed or proposed fee")
    start_date: Optional[datetime] = Field(None, description="Campaign start date (ISO format)")
    end_date: Optional[datetime] = Field(None, description="Campaign end date (ISO format)")
    payment_terms: Optional[str] = Field(None, description="Payment terms e.g. net-30, 50/50")
    usage_rights: Optional[str] = Field(None, description="Content usage rights")
    exclusivity: Optional[str] = Field(None, description="Exclusivity terms")

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _parse_iso(cls, value: Any) -> Any:
        if isinstance(value, str):
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            return _as_utc(parsed)
        return value


def _inline_refs(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Resolve ``$ref`` pointers so each tool schema is self-contained."""
    defs = schema.pop("$defs", {})

    def _resolve(node: Any) -> Any:
        if isinstance(node, dict):
            ref = node.get("$ref")
            if isinstance(ref, str) and ref.startswith("#/$defs/"):
                target = dict(defs[ref.split("/")[-1]])
                extra = {k: v for k, v in node.items() if k != "$ref"}
                return _resolve({**target, **extra})
            return {k: _resolve(v) for k, v in node.items()}
        if isinstance(node, list):
            return [_resolve(item) for item in node]
        return node

    return _resolve(schema)


# ---------------------------------------------------------------------------
# Result shaping
# ---------------------------------------------------------------------------


def _brand_record(brand: Brand) -> Dict[str, Any]:
    return {
        "id": brand.id,
        "name": brand.name,
        "industry": brand.industry,
        "website": brand.website,
        "contactName": brand.contact_name,
        "contactTitle": brand.contact_title,
        "contactEmail": brand.contact_email,
        "contactPhone": brand.contact_phone,
        "source": brand.source,
        "estimatedValue": brand.estimated_value,
        "pipelineStage": brand.pipeline_stage,
        "notes": brand.notes,
        "tags": list(brand.tags),
        "nextFollowUp": _iso(brand.next_follow_up),
        "nextAction": brand.next_action,
        "createdAt": _iso(brand.created_at),
        "updatedAt": _iso(brand.updated_at),
    }


def _campaign_record(campaign: Campaign) -> Dict[str, Any]:
    return {
        "id": campaign.id,
        "brandId": campaign.brand_id,
        "name": campaign.name,
        "brief": campaign.brief,
        "fee": campaign.fee,
        "startDate": _iso(campaign.start_date),
        "endDate": _iso(campaign.end_date),
        "paymentTerms": campaign.payment_terms,
        "usageRights": campaign.usage_rights,
        "exclusivity": campaign.exclusivity,
        "status": campaign.status,
        "createdAt": _iso(campaign.created_at),
        "updatedAt": _iso(campaign.updated_at),
    }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_model: Type[ToolInput]
    handler: Callable[[Any], Dict[str, Any]]
    mutates: bool = False

    def definition(self) -> Dict[str, Any]:
        """OpenAI function-tool definition for this tool."""
        parameters = _inline_refs(self.input_model.model_json_schema(by_alias=True))
        parameters.pop("title", None)
        parameters.setdefault("properties", {})
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


class ToolRegistry:
    """Fixed catalogue of agent tools closed over a single workspace."""

    def __init__(
        self,
        store,
        workspace_id: str,
        *,
        user_id: Optional[str] = None,
        website_fetcher: Optional[WebsiteTextSource] = None,
    ) -> None:
        if not workspace_id:
            raise ValueError("workspace_id is required")
        self._store = store
        self._workspace_id = workspace_id
        self._user_id = user_id
        self._website_fetcher = website_fetcher
        self._specs: Dict[str, ToolSpec] = {spec.name: spec for spec in self._build_specs()}

    @property
    def workspace_id(self) -> str:
        return self._workspace_id

    @property
    def names(self) -> List[str]:
        return list(self._specs)

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._specs.get(name)

    def definitions(self) -> List[Dict[str, Any]]:
        return [spec.definition() for spec in self._specs.values()]

    def catalogue(self) -> List[Dict[str, Any]]:
        return [
            {"name": spec.name, "description": spec.description, "mutates": spec.mutates}
            for spec in self._specs.values()
        ]

    def execute(self, name: str, arguments: str | Dict[str, Any] | None) -> Dict[str, Any]:
        """Validate ``arguments`` and run the named tool; always returns a JSON-able dict."""
        spec = self._specs.get(name)
        if spec is None:
            logger.warning("agent_tool_unknown", tool=name, workspace_id=self._workspace_id)
            return {"error": f'Unknown tool "{name}".'}

        raw: Any = arguments
        if isinstance(arguments, str):
            try:
                raw = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError:
                return {"error": f"Arguments for {name} were not valid JSON."}
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            return {"error": f"Arguments for {name} must be a JSON object."}

        try:
            params = spec.input_model.model_validate(raw)
        except PydanticValidationError as exc:
            details = [
                {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ]
            logger.info(
                "agent_tool_invalid_input",
                tool=name,
                workspace_id=self._workspace_id,
                fields=[d["field"] for d in details],
            )
            return {"error": f"Invalid input for {name}.", "details": details}

        started = time.monotonic()
        try:
            result = spec.handler(params)
        except ConstraintViolation as exc:
            logger.warning(
                "agent_tool_constraint_violation",
                tool=name,
                workspace_id=self._workspace_id,
                message=exc.message,
            )
            result = {"error": f"Could not complete {name}: {exc.message}."}
        except Exception as exc:
            logger.exception(
                "agent_tool_failed",
                tool=name,
                workspace_id=self._workspace_id,
                error_type=type(exc).__name__,
            )
            result = {"error": f"{name} failed unexpectedly. Please try again."}
        logger.info(
            "agent_tool_executed",
            tool=name,
            workspace_id=self._workspace_id,
            outcome="error" if "error" in result else "ok",
            duration_ms=round((time.monotonic() - started) * 1000, 2),
        )
        return result

    # -- helpers ------------------------------------------------------------

    def _match_brand(self, name: str) -> Optional[Brand]:
        """Case-insensitive containment; an exact name wins, then the most recently updated."""
        matches = self._store.find_brands(self._workspace_id, name)
        if not matches:
            return None
        wanted = name.casefold()
        for brand in matches:
            if brand.name.casefold() == wanted:
                return brand
        return matches[0]

    def _currency(self) -> str:
        profile = self._store.get_creator_profile(self._workspace_id)
        return profile.currency if profile and profile.currency else "GBP"

    def _log_activity(
        self,
        type_: str,
        description: str,
        *,
        brand_id: str,
        campaign_id: Optional[str] = None,
    ) -> None:
        self._store.append_activity(
            self._workspace_id,
            type_,
            description,
            brand_id=brand_id,
            campaign_id=campaign_id,
            user_id=self._user_id,
            source="agent",
        )

    # -- read tools -----------------------------------------------------------

    def _get_pipeline_status(self, params: GetPipelineStatusInput) -> Dict[str, Any]:
        brands = self._store.list_brands(self._workspace_id)
        stages: Dict[str, Dict[str, Any]] = {}
        total_value = 0.0
        overdue: List[Dict[str, Any]] = []
        now = utcnow()
        for brand in brands:
            bucket = stages.setdefault(
                brand.pipeline_stage, {"count": 0, "value": 0.0, "brands": []}
            )
            value = brand.estimated_value or 0.0
            bucket["count"] += 1
            bucket["value"] += value
            bucket["brands"].append(brand.name)
            total_value += value
            if brand.next_follow_up and _as_utc(brand.next_follow_up) < now:
                overdue.append(
                    {
                        "id": brand.id,
                        "name": brand.name,
                        "followUp": _iso(brand.next_follow_up),
                        "nextAction": brand.next_action,
                    }
                )
        return {
            "totalBrands": len(brands),
            "totalPipelineValue": total_value,
            "stages": stages,
            "overdueFollowUps": overdue,
        }

    def _get_brand_details(self, params: GetBrandDetailsInput) -> Dict[str, Any]:
        if params.brand_id:
            brand = self._store.get_brand(self._workspace_id, params.brand_id)
        elif params.brand_name:
            brand = self._match_brand(params.brand_name)
        else:
            return {"error": "Please provide a brand name or ID"}
        if brand is None:
            return {"error": f'No brand found matching "{params.brand_id or params.brand_name}"'}

        campaigns = self._store.list_campaigns_for_brand(self._workspace_id, brand.id)
        emails = self._store.list_emails_for_brand(self._workspace_id, brand.id)
        return {
            **_brand_record(brand),
            "campaigns": [
                {
                    "id": c.id,
                    "name": c.name,
                    "status": c.status,
                    "fee": c.fee,
                    "startDate": _iso(c.start_date),
                    "endDate": _iso(c.end_date),
                }
                for c in campaigns[:5]
            ],
            "emails": [
                {
                    "id": e.id,
                    "subject": e.subject,
                    "status": e.status,
                    "direction": e.direction,
                    "sentAt": _iso(e.sent_at),
                }
                for e in emails[:5]
            ],
            "counts": {
                "campaigns": len(campaigns),
                "emails": len(emails),
                "activities": self._store.count_activities(self._workspace_id, brand_id=brand.id),
            },
        }

    def _get_campaign_status(self, params: GetCampaignStatusInput) -> Dict[str, Any]:
        if params.campaign_id:
            campaign = self._store.get_campaign(self._workspace_id, params.campaign_id)
            if campaign is None:
                return {"error": "Campaign not found"}
            brand = self._store.get_brand(self._workspace_id, campaign.brand_id)
            deliverables = self._store.list_deliverables(self._workspace_id, campaign.id)
            invoices = self._store.list_invoices(self._workspace_id, campaign.id)
            return {
                **_campaign_record(campaign),
                "brand": {
                    "name": brand.name if brand else None,
                    "contactName": brand.contact_name if brand else None,
                    "contactEmail": brand.contact_email if brand else None,
                },
                "deliverables": [
                    {
                        "id": d.id,
                        "title": d.title,
                        "platform": d.platform,
                        "status": d.status,
                        "dueDate": _iso(d.due_date),
                    }
                    for d in deliverables
                ],
                "invoiceCount": len(invoices),
            }

        campaigns = self._store.search_campaigns(
            self._workspace_id,
            name_contains=params.campaign_name,
            brand_name_contains=params.brand_name,
            limit=10,
        )
        if not campaigns:
            filters = [
                f'name "{params.campaign_name}"' if params.campaign_name else None,
                f'brand "{params.brand_name}"' if params.brand_name else None,
            ]
            described = " and ".join(f for f in filters if f)
            message = f"No campaigns found matching {described}" if described else "No campaigns found"
            return {"error": message, "count": 0, "campaigns": []}

        summaries = []
        for campaign in campaigns:
            brand = self._store.get_brand(self._workspace_id, campaign.brand_id)
            summaries.append(
                {
                    "id": campaign.id,
                    "name": campaign.name,
                    "brand": brand.name if brand else None,
                    "status": campaign.status,
                    "fee": campaign.fee,
                    "startDate": _iso(campaign.start_date),
                    "endDate": _iso(campaign.end_date),
                    "deliverables": len(self._store.list_deliverables(self._workspace_id, campaign.id)),
                    "invoices": len(self._store.list_invoices(self._workspace_id, campaign.id)),
                }
            )
        return {"count": len(summaries), "campaigns": summaries}

    # -- write tools ----------------------------------------------------------

    def _create_pipeline_entry(self, params: CreatePipelineEntryInput) -> Dict[str, Any]:
        stage = (params.pipeline_stage or PipelineStage.RESEARCH).value
        with self._store.transaction():
            brand = self._store.create_brand(
                self._workspace_id,
                params.name,
                industry=params.industry or None,
                website=params.website or None,
                contact_name=params.contact_name or None,
                contact_email=params.contact_email or None,
                contact_title=params.contact_title or None,
                source=params.source or None,
                estimated_value=params.estimated_value,
                pipeline_stage=stage,
                notes=params.notes or None,
            )
            self._log_activity(
                "brand_created",
                f"AI Manager added {brand.name} to pipeline ({stage})",
                brand_id=brand.id,
            )
        return {
            "success": True,
            "brand": {
                "id": brand.id,
                "name": brand.name,
                "pipelineStage": brand.pipeline_stage,
                "estimatedValue": brand.estimated_value,
            },
            "message": f'Added {brand.name} to your pipeline in the "{stage}" stage.',
        }

    def _update_pipeline_stage(self, params: UpdatePipelineStageInput) -> Dict[str, Any]:
        brand = self._match_brand(params.brand_name)
        if brand is None:
            return {
                "error": f'No brand found matching "{params.brand_name}". Check the name and try again.'
            }
        old_stage = brand.pipeline_stage
        new_stage = params.new_stage.value
        if old_stage == new_stage:
            return {
                "success": True,
                "brand": {"id": brand.id, "name": brand.name},
                "oldStage": old_stage,
                "newStage": new_stage,
                "message": f'{brand.name} is already in the "{new_stage}" stage.',
            }
        description = f'AI Manager moved {brand.name} from "{old_stage}" to "{new_stage}"'
        if params.reason:
            description += f": {params.reason}"
        with self._store.transaction():
            self._store.update_brand_stage(self._workspace_id, brand.id, new_stage)
            self._log_activity("stage_changed", description, brand_id=brand.id)
        return {
            "success": True,
            "brand": {"id": brand.id, "name": brand.name},
            "oldStage": old_stage,
            "newStage": new_stage,
            "message": f'Moved {brand.name} from "{old_stage}" to "{new_stage}".',
        }

    def _draft_email(self, params: DraftEmailInput) -> Dict[str, Any]:
        brand = self._match_brand(params.brand_name)
        if brand is None:
            return {
                "error": f'No brand found matching "{params.brand_name}". Add them to your pipeline first.'
            }
        direction = (params.direction or EmailDirection.OUTBOUND).value
        with self._store.transaction():
            email = self._store.create_email(
                self._workspace_id,
                brand.id,
                params.subject,
                params.body,
                direction=direction,
                to_email=brand.contact_email or "",
                status="draft",
            )
            self._log_activity(
                "email_drafted",
                f'AI Manager drafted email "{params.subject}" for {brand.name}',
                brand_id=brand.id,
            )
        recipient = brand.contact_name or brand.name
        if brand.contact_email:
            recipient += f" ({brand.contact_email})"
        return {
            "success": True,
            "email": {
                "id": email.id,
                "subject": email.subject,
                "to": brand.contact_email or "(no email on file)",
            },
            "message": f'Draft email saved: "{params.subject}" to {recipient}',
        }

    def _generate_pitch(self, params: GeneratePitchInput) -> Dict[str, Any]:
        brand = self._match_brand(params.brand_name)
        profile = self._store.get_creator_profile(self._workspace_id)
        platforms = self._store.list_platforms(self._workspace_id)
        case_studies = self._store.list_case_studies(self._workspace_id, limit=5)

        context: Dict[str, Any] = {
            "instruction": PITCH_INSTRUCTION,
            "pitchType": params.pitch_type.value,
            "additionalContext": params.additional_context or None,
            "brandInfo": (
                {
                    "name": brand.name,
                    "industry": brand.industry,
                    "contactName": brand.contact_name,
                    "contactTitle": brand.contact_title,
                    "website": brand.website,
                }
                if brand
                else {"name": params.brand_name, "note": "Brand not in pipeline yet"}
            ),
            "creatorProfile": (
                {
                    "name": profile.brand_name,
                    "tagline": profile.tagline,
                    "bio": profile.bio,
                    "toneOfVoice": profile.tone_of_voice,
                    "categories": list(profile.content_categories),
                    "differentiators": profile.key_differentiators,
                    "audience": profile.audience_summary,
                    "rateCard": profile.rate_card,
                    "currency": profile.currency,
                }
                if profile
                else None
            ),
            "platforms": [
                {
                    "type": p.type,
                    "handle": p.handle,
                    "followers": p.followers,
                    "avgViews": p.avg_views,
                    "engagement": p.engagement_rate,
                }
                for p in platforms
            ],
            "pastWork": [
                {"brand": cs.brand_name, "industry": cs.industry, "result": cs.result}
                for cs in case_studies
            ],
        }
        if brand and brand.website and self._website_fetcher is not None:
            website_text = self._website_fetcher.fetch_text(brand.website)
            if website_text:
                context["websiteSummary"] = website_text
        return context

    def _create_campaign(self, params: CreateCampaignInput) -> Dict[str, Any]:
        brand = self._match_brand(params.brand_name)
        if brand is None:
            return {
                "error": f'No brand found matching "{params.brand_name}". Add them to the pipeline first.'
            }
        with self._store.transaction():
            campaign = self._store.create_campaign(
                self._workspace_id,
                brand.id,
                params.campaign_name,
                brief=params.brief or None,
                fee=params.fee,
                start_date=params.start_date,
                end_date=params.end_date,
                payment_terms=params.payment_terms or None,
                usage_rights=params.usage_rights or None,
                exclusivity=params.exclusivity or None,
                status="draft",
            )
            self._log_activity(
                "campaign_created",
                f'AI Manager created campaign "{campaign.name}" for {brand.name}',
                brand_id=brand.id,
                campaign_id=campaign.id,
            )
        message = f'Created campaign "{campaign.name}" for {brand.name}'
        if campaign.fee:
            message += f" ({format_money(campaign.fee, self._currency())})"
        return {
            "success": True,
            "campaign": {
                "id": campaign.id,
                "name": campaign.name,
                "brand": brand.name,
                "fee": campaign.fee,
                "status": campaign.status,
            },
            "message": message + ".",
        }

    def _build_specs(self) -> List[ToolSpec]:
        return [
            ToolSpec(
                name="get_pipeline_status",
                description=(
                    "Get a summary of the current brand pipeline: how many brands are in each "
                    "stage, their total estimated value, and overdue follow-ups. Use this when "
                    "the user asks about their pipeline, deals, or overall business status."
                ),
                input_model=GetPipelineStatusInput,
                handler=self._get_pipeline_status,
            ),
            ToolSpec(
                name="get_brand_details",
                description=(
                    "Look up a specific brand by name or ID. Returns full details including "
                    "contact info, recent campaigns and recent emails. Use when the user asks "
                    "about a specific brand."
                ),
                input_model=GetBrandDetailsInput,
                handler=self._get_brand_details,
            ),
            ToolSpec(
                name="get_campaign_status",
                description=(
                    "Check campaign details including deliverables, status, fees, and dates. "
                    "Use when the user asks about a specific campaign or wants a campaign overview."
                ),
                input_model=GetCampaignStatusInput,
                handler=self._get_campaign_status,
            ),
            ToolSpec(
                name="create_pipeline_entry",
                description=(
                    "Create a new brand/company entry in the CRM pipeline. Use when the user "
                    "asks to add a brand, company, or lead to their pipeline."
                ),
                input_model=CreatePipelineEntryInput,
                handler=self._create_pipeline_entry,
                mutates=True,
            ),
            ToolSpec(
                name="update_pipeline_stage",
                description=(
                    "Move a brand to a different pipeline stage. Use when the user says to "
                    "move, advance, or change the stage of a brand."
                ),
                input_model=UpdatePipelineStageInput,
                handler=self._update_pipeline_stage,
                mutates=True,
            ),
            ToolSpec(
                name="draft_email",
                description=(
                    "Draft an outreach or follow-up email for a brand that is already in the "
                    "pipeline and save it as a draft. Use when the user asks you to write, "
                    "draft, or compose an email to a brand."
                ),
                input_model=DraftEmailInput,
                handler=self._draft_email,
                mutates=True,
            ),
            ToolSpec(
                name="generate_pitch",
                description=(
                    "Gather the creator's profile, platform stats, past work and brand info "
                    "needed to write a personalised pitch email. Use when the user asks for a "
                    "pitch, cold email, or outreach message, then compose the email yourself."
                ),
                input_model=GeneratePitchInput,
                handler=self._generate_pitch,
            ),
            ToolSpec(
                name="create_campaign",
                description=(
                    "Create a new campaign for a brand already in the pipeline. Use when the "
                    "user says to start a campaign, create a deal, or set up a partnership."
                ),
                input_model=CreateCampaignInput,
                handler=self._create_campaign,
                mutates=True,
            ),
        ]
