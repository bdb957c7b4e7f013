from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from littleagent.logging import get_logger
from littleagent.service.auth import AuthContext
from littleagent.service.errors import AuthenticationError, NoWorkspaceError
from littleagent.storage.models import Membership

logger = get_logger(__name__)


class MembershipStore(Protocol):
    def get_earliest_membership(self, user_id: str) -> Optional[Membership]: ...


@dataclass(frozen=True)
class WorkspaceScope:
    """The single tenant a request is allowed to touch."""

    workspace_id: str
    user_id: str


class WorkspaceResolver:
    """Map an authenticated principal to exactly one workspace.

    A user belonging to several workspaces is scoped to the one joined first.
    Either failure is fatal for the request: callers must stop before building
    any tool.
    """

    def __init__(self, store: MembershipStore) -> None:
        self.store = store

    def resolve(self, principal: Optional[AuthContext]) -> WorkspaceScope:
        if principal is None:
            raise AuthenticationError("unauthenticated")
        membership = self.store.get_earliest_membership(principal.user_id)
        if membership is None:
            logger.info("workspace_resolution_failed", user_id=principal.user_id)
            raise NoWorkspaceError()
        return WorkspaceScope(workspace_id=membership.workspace_id, user_id=principal.user_id)
