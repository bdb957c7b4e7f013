#!/usr/bin/env python3
"""Bootstrap a creator workspace for local development and initial setup.

Usage:
    # Using environment variables:
    OWNER_EMAIL=creator@example.com WORKSPACE_NAME="Sam Creates" python scripts/bootstrap_workspace.py

    # Or with command line args, storing a model key as well:
    python scripts/bootstrap_workspace.py --email creator@example.com --workspace "Sam Creates" \
        --model-key sk-...

Environment Variables:
    OWNER_EMAIL: Email for the workspace owner
    WORKSPACE_NAME: Display name for the workspace (also used as the brand name)
    MODEL_API_KEY: Model provider key to store encrypted (optional)
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import os
import re
import sys


def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "workspace"


def bootstrap_workspace(
    email: str,
    workspace_name: str,
    model_key: str | None = None,
    dry_run: bool = False,
) -> dict:
    """Create the owner, workspace and membership if missing.

    Returns:
        dict with user_id, workspace_id, status and an access token
    """
    # Import here to avoid loading config before env vars are set
    from littleagent.service.runtime import get_runtime

    runtime = get_runtime()
    store = runtime.store

    user = store.get_user_by_email(email)
    membership = store.get_earliest_membership(user.id) if user else None
    if membership:
        print(f"User {email} already owns workspace {membership.workspace_id}")
        status = "exists"
        workspace_id = membership.workspace_id
    elif dry_run:
        print(f"[DRY RUN] Would create workspace {workspace_name!r} owned by {email}")
        return {"user_id": user.id if user else None, "workspace_id": None, "status": "dry_run"}
    else:
        with store.transaction():
            if user is None:
                user = store.create_user(email)
            workspace = store.create_workspace(workspace_name, _slugify(workspace_name))
            store.add_membership(user.id, workspace.id, "owner")
            store.upsert_creator_profile(workspace.id, workspace_name, contact_email=email)
        print(f"Created workspace {workspace_name!r} (id: {workspace.id}) for {email}")
        status = "created"
        workspace_id = workspace.id

    if model_key and not dry_run:
        store.set_encrypted_model_key(workspace_id, runtime.key_vault.encrypt(model_key))
        print("Stored encrypted model key")

    return {
        "user_id": user.id,
        "workspace_id": workspace_id,
        "status": status,
        "access_token": runtime.auth.issue_access_token(user.id),
    }


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap a creator workspace for littleagent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("OWNER_EMAIL"),
        help="Owner email (or set OWNER_EMAIL env var)",
    )
    parser.add_argument(
        "--workspace",
        default=os.environ.get("WORKSPACE_NAME"),
        help="Workspace name (or set WORKSPACE_NAME env var)",
    )
    parser.add_argument(
        "--model-key",
        default=os.environ.get("MODEL_API_KEY"),
        help="Model provider API key to store encrypted (or set MODEL_API_KEY env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.email:
        print("Error: --email or OWNER_EMAIL environment variable required")
        sys.exit(1)

    if not args.workspace:
        print("Error: --workspace or WORKSPACE_NAME environment variable required")
        sys.exit(1)

    # Use memory store if no database configured
    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        os.environ.setdefault("TEST_MODE", "true")
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    try:
        result = bootstrap_workspace(args.email, args.workspace, args.model_key, args.dry_run)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] in {"created", "exists"}:
        print(f"\n  User ID: {result['user_id']}")
        print(f"  Workspace ID: {result['workspace_id']}")
        print(f"  Access Token: {result['access_token']}")


if __name__ == "__main__":
    main()
