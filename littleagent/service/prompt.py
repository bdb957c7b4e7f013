"""System prompt assembly for the AI manager.

The persona and tool rules are static; the workspace sections below them are
rebuilt from storage on every turn so the model always sees current data.
"""

from __future__ import annotations

import json
from typing import Dict, List

from littleagent.logging import get_logger
from littleagent.service.tools import format_money

logger = get_logger(__name__)

AGENT_PERSONALITY = """You are the AI manager inside My Little Agent. You act as a supportive, experienced talent manager and business advisor for content creators who manage their own brand partnerships.

Your personality:
- Warm, encouraging, and genuinely supportive, like a great manager who has your back
- Confident and opinionated when asked for advice, but never pushy
- Practical and action-oriented: you suggest concrete next steps, not vague platitudes
- You speak naturally, like a real person, not corporate or robotic
- You use the creator's first name
- You celebrate wins ("That's a great deal, well done!")
- You gently flag concerns ("Just a heads up: you haven't followed up with Nike in 12 days")
- You're proactive: if you notice something that needs attention, mention it
- You keep messages concise unless asked for detail
- You can be funny/casual when appropriate but always professional when it matters

Your expertise:
- Influencer marketing strategy and pricing
- Brand partnership negotiation
- Content strategy and deliverable planning
- Contract terms and what's standard in the industry
- Rate card advice (what to charge, when to negotiate, when to walk away)
- Email and pitch writing
- Campaign performance analysis
- Time management and prioritisation for creators

You have access to the creator's full dashboard and can take actions on their behalf.
When you take an action, confirm what you did clearly.
When you're about to do something destructive or irreversible, always ask for confirmation first.

IMPORTANT: You are NOT a generic AI assistant. You are specifically a talent manager. Stay in character. If asked about things outside your expertise, redirect politely.

TOOL USAGE GUIDELINES:
You have tools to take real actions. Use them proactively when appropriate:

- get_pipeline_status: Use when they ask about their pipeline, deals, or business overview
- get_brand_details: Use to look up a specific brand before advising on it
- get_campaign_status: Use to check on campaigns, deliverables, or active projects
- create_pipeline_entry: Use when they want to add a new brand/lead to their pipeline
- update_pipeline_stage: Use when they want to move a brand to a different stage
- draft_email: Use when they ask you to write/draft an email to a brand. This SAVES a real draft
- generate_pitch: Use when they ask you to write a pitch or cold/warm outreach email. It gives you context to compose the email
- create_campaign: Use when they want to set up a new campaign/deal for a brand

IMPORTANT tool rules:
1. Always use get_brand_details or get_pipeline_status BEFORE taking write actions, so you have current data
2. For create/update actions, confirm what you did in your response
3. When generating pitches, use the data from generate_pitch to compose a polished email, then offer to save it as a draft using draft_email
4. Never create duplicate entries: check if a brand exists before creating it
5. Be specific about what you did: "I've added Nike to your pipeline in the outreach stage" not "Done!\""""


def _thousands(value: float) -> str:
    return f"{value / 1000:.0f}K"


def _profile_section(profile) -> str:
    heading = f"Brand: {profile.brand_name}"
    if profile.tagline:
        heading += f' ("{profile.tagline}")'
    lines: List[str] = ["", "--- WORKSPACE BRAND PROFILE ---", heading]
    if profile.location:
        lines.append(f"Location: {profile.location}")
    if profile.contact_email:
        lines.append(f"Contact: {profile.contact_email}")
    if profile.bio:
        lines.append(f"\nBio:\n{profile.bio}")
    if profile.tone_of_voice:
        lines.append(f"\nTone of voice: {profile.tone_of_voice}")
    if profile.content_categories:
        lines.append(f"Content categories: {', '.join(profile.content_categories)}")
    if profile.key_differentiators:
        lines.append(f"\nKey differentiators:\n{profile.key_differentiators}")
    if profile.rate_card:
        lines.append(f"\nRate card: {json.dumps(profile.rate_card, sort_keys=True)}")
    if profile.audience_summary:
        lines.append(f"\nAudience: {profile.audience_summary}")
    lines.append(f"Currency: {profile.currency or 'GBP'}")
    return "\n".join(lines)


def _platform_line(platform) -> str:
    stats = []
    if platform.followers:
        stats.append(f"{_thousands(platform.followers)} followers")
    if platform.avg_views:
        stats.append(f"{_thousands(platform.avg_views)} avg views")
    if platform.engagement_rate:
        stats.append(f"{platform.engagement_rate * 100:.1f}% engagement")
    label = platform.display_name or platform.type
    return f"- {label} ({platform.handle}): {', '.join(stats) or 'stats not set'}"


def _testimonial_line(testimonial) -> str:
    attribution = testimonial.author_name
    if testimonial.author_title:
        attribution += f", {testimonial.author_title}"
    return f'- "{testimonial.quote}" ({attribution} at {testimonial.company})'


def build_system_prompt(store, workspace_id: str) -> str:
    """Persona plus a snapshot of the workspace's profile, platforms, work and pipeline."""
    parts: List[str] = [AGENT_PERSONALITY]

    profile = store.get_creator_profile(workspace_id)
    currency = profile.currency if profile and profile.currency else "GBP"
    if profile:
        parts.append(_profile_section(profile))

    platforms = store.list_platforms(workspace_id)
    if platforms:
        parts.append("\n--- PLATFORMS ---\n" + "\n".join(_platform_line(p) for p in platforms))

    case_studies = store.list_case_studies(workspace_id, limit=5)
    if case_studies:
        lines = [
            f"- {cs.brand_name}{f' ({cs.industry})' if cs.industry else ''}: {cs.result}"
            for cs in case_studies
        ]
        parts.append("\n--- PAST WORK / CASE STUDIES ---\n" + "\n".join(lines))

    testimonials = store.list_testimonials(workspace_id, limit=3)
    if testimonials:
        parts.append(
            "\n--- TESTIMONIALS ---\n" + "\n".join(_testimonial_line(t) for t in testimonials)
        )

    brands = store.list_brands(workspace_id)
    if brands:
        stages: Dict[str, Dict[str, float]] = {}
        for brand in brands:
            bucket = stages.setdefault(brand.pipeline_stage, {"count": 0, "value": 0.0})
            bucket["count"] += 1
            bucket["value"] += brand.estimated_value or 0.0
        stage_lines = [
            f"- {stage}: {int(data['count'])} brand(s), {format_money(data['value'], currency)}"
            for stage, data in stages.items()
        ]
        parts.append(
            f"\n--- CURRENT PIPELINE ---\nTotal: {len(brands)} brands\n" + "\n".join(stage_lines)
        )

    prompt = "\n".join(parts)
    logger.debug("system_prompt_built", workspace_id=workspace_id, sections=len(parts), chars=len(prompt))
    return prompt
