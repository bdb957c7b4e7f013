from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, Request
from fastapi.responses import StreamingResponse

from littleagent.api.schemas import (
    AgentChatRequest,
    ConversationDetail,
    ConversationListResponse,
    ConversationSummary,
    CreateConversationRequest,
    Envelope,
    MessageOut,
    ModelKeyRequest,
    ModelKeyStatus,
    RenameConversationRequest,
    ToolCatalogueResponse,
    ToolInfo,
)
from littleagent.logging import bind_log_context, get_logger
from littleagent.service.auth import AuthContext
from littleagent.service.prompt import build_system_prompt
from littleagent.service.runtime import Runtime, get_runtime
from littleagent.service.streaming import (
    NDJSON_MEDIA_TYPE,
    TEXT_MEDIA_TYPE,
    TurnRecorder,
    TurnStream,
    wants_ndjson,
    watch_for_disconnect,
)
from littleagent.service.workspace import WorkspaceScope
from littleagent.storage.models import Conversation

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")

CONVERSATION_HEADER = "X-Conversation-Id"


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


async def get_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    runtime = get_runtime()
    ctx = await runtime.auth.authenticate(authorization)
    if not ctx:
        raise _http_error("unauthorized", "unauthenticated", status_code=401)
    return ctx


async def get_scope(principal: AuthContext = Depends(get_user)) -> WorkspaceScope:
    """Resolve the caller's workspace once, before any tool or query is built."""
    scope = get_runtime().resolver.resolve(principal)
    bind_log_context(workspace_id=scope.workspace_id, user_id=scope.user_id)
    return scope


def _get_owned_conversation(runtime: Runtime, conversation_id: str, scope: WorkspaceScope) -> Conversation:
    conversation = runtime.store.get_conversation(
        conversation_id, workspace_id=scope.workspace_id, user_id=scope.user_id
    )
    if conversation is None:
        raise _http_error("not_found", "conversation not found", status_code=404)
    return conversation


def _summary(runtime: Runtime, conversation: Conversation) -> ConversationSummary:
    return ConversationSummary(
        id=conversation.id,
        title=conversation.title,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        message_count=runtime.store.count_messages(conversation.id),
    )


def _ok(payload) -> Envelope:
    return Envelope(status="ok", data=payload.model_dump(by_alias=True, mode="json"))


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


@router.post("/agent/chat", tags=["agent"])
async def agent_chat(
    body: AgentChatRequest,
    request: Request,
    accept: Optional[str] = Header(None),
    scope: WorkspaceScope = Depends(get_scope),
):
    """Run one agent turn and stream the answer.

    The body is plain UTF-8 answer text unless the client sends
    ``Accept: application/x-ndjson``, in which case every agent event is a
    JSON line. The conversation id is returned in ``X-Conversation-Id``.
    """
    runtime = get_runtime()
    # Raises MissingCredentialsError before any conversation state is written
    orchestrator = runtime.build_orchestrator(scope)

    cancel_event = asyncio.Event()

    async def _close_backend() -> None:
        await orchestrator.backend.aclose()

    try:
        if body.conversation_id:
            conversation = _get_owned_conversation(runtime, body.conversation_id, scope)
        else:
            conversation = runtime.store.create_conversation(scope.workspace_id, scope.user_id)
            logger.info("conversation_created", conversation_id=conversation.id, lazy=True)
        bind_log_context(conversation_id=conversation.id)

        messages = [m.model_dump() for m in body.messages]
        recorder = TurnRecorder(
            runtime.store,
            conversation.id,
            workspace_id=scope.workspace_id,
            user_id=scope.user_id,
        )
        recorder.record_user_message(messages)

        system_prompt = build_system_prompt(runtime.store, scope.workspace_id)
        stream = TurnStream(
            orchestrator.run_turn(system_prompt, messages, cancel_event=cancel_event),
            recorder=recorder,
        )
        await stream.prime()
    except Exception:
        await _close_backend()
        raise

    ndjson = wants_ndjson(accept)
    logger.info("agent_stream_started", framing="ndjson" if ndjson else "text")
    headers = {
        CONVERSATION_HEADER: conversation.id,
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
    }

    async def _body():
        watcher = asyncio.create_task(watch_for_disconnect(request, cancel_event))
        try:
            encoder = stream.encode_ndjson() if ndjson else stream.encode_text()
            async for chunk in encoder:
                yield chunk
        finally:
            watcher.cancel()
            await _close_backend()

    return StreamingResponse(
        _body(),
        media_type=NDJSON_MEDIA_TYPE if ndjson else TEXT_MEDIA_TYPE,
        headers=headers,
    )


@router.get("/agent/tools", response_model=Envelope, tags=["agent"])
async def list_agent_tools(scope: WorkspaceScope = Depends(get_scope)):
    registry = get_runtime().build_registry(scope)
    tools = [ToolInfo(**entry) for entry in registry.catalogue()]
    return _ok(ToolCatalogueResponse(tools=tools))


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


@router.get("/conversations", response_model=Envelope, tags=["conversations"])
async def list_conversations(
    limit: Optional[int] = Query(None, ge=1, le=200, description="Maximum conversations to return"),
    scope: WorkspaceScope = Depends(get_scope),
):
    runtime = get_runtime()
    convs = runtime.store.list_conversations(
        scope.workspace_id,
        scope.user_id,
        limit=limit or runtime.settings.conversation_list_limit,
    )
    return _ok(ConversationListResponse(items=[_summary(runtime, c) for c in convs]))


@router.post("/conversations", response_model=Envelope, status_code=201, tags=["conversations"])
async def create_conversation(
    body: Optional[CreateConversationRequest] = None,
    scope: WorkspaceScope = Depends(get_scope),
):
    runtime = get_runtime()
    title = body.title.strip() if body and body.title and body.title.strip() else None
    conversation = runtime.store.create_conversation(scope.workspace_id, scope.user_id, title)
    logger.info("conversation_created", conversation_id=conversation.id, lazy=False)
    return _ok(_summary(runtime, conversation))


@router.get("/conversations/{conversation_id}", response_model=Envelope, tags=["conversations"])
async def get_conversation(
    conversation_id: str = Path(..., max_length=128, description="Conversation identifier"),
    scope: WorkspaceScope = Depends(get_scope),
):
    runtime = get_runtime()
    conversation = _get_owned_conversation(runtime, conversation_id, scope)
    messages = [
        MessageOut(
            id=m.id,
            role=m.role,
            content=m.content,
            seq=m.seq,
            created_at=m.created_at,
            meta=m.meta,
        )
        for m in runtime.store.list_messages(conversation.id)
    ]
    return _ok(
        ConversationDetail(
            id=conversation.id,
            title=conversation.title,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            message_count=len(messages),
            messages=messages,
        )
    )


@router.patch("/conversations/{conversation_id}", response_model=Envelope, tags=["conversations"])
async def rename_conversation(
    body: RenameConversationRequest,
    conversation_id: str = Path(..., max_length=128, description="Conversation identifier"),
    scope: WorkspaceScope = Depends(get_scope),
):
    runtime = get_runtime()
    conversation = runtime.store.update_conversation(
        conversation_id,
        workspace_id=scope.workspace_id,
        user_id=scope.user_id,
        title=body.title,
    )
    if conversation is None:
        raise _http_error("not_found", "conversation not found", status_code=404)
    return _ok(_summary(runtime, conversation))


@router.delete("/conversations/{conversation_id}", response_model=Envelope, tags=["conversations"])
async def delete_conversation(
    conversation_id: str = Path(..., max_length=128, description="Conversation identifier"),
    scope: WorkspaceScope = Depends(get_scope),
):
    runtime = get_runtime()
    deleted = runtime.store.delete_conversation(
        conversation_id, workspace_id=scope.workspace_id, user_id=scope.user_id
    )
    if not deleted:
        raise _http_error("not_found", "conversation not found", status_code=404)
    logger.info("conversation_deleted", conversation_id=conversation_id)
    return Envelope(status="ok", data={"id": conversation_id, "deleted": True})


# ---------------------------------------------------------------------------
# Model key settings
# ---------------------------------------------------------------------------


@router.get("/settings/model-key", response_model=Envelope, tags=["settings"])
async def get_model_key_status(scope: WorkspaceScope = Depends(get_scope)):
    profile = get_runtime().store.get_creator_profile(scope.workspace_id)
    configured = bool(profile and profile.encrypted_model_key)
    return _ok(ModelKeyStatus(configured=configured))


@router.put("/settings/model-key", response_model=Envelope, tags=["settings"])
async def put_model_key(body: ModelKeyRequest, scope: WorkspaceScope = Depends(get_scope)):
    """Store the workspace's model API key encrypted; optionally test it first."""
    runtime = get_runtime()
    if body.verify:
        backend = runtime.backend_factory(body.api_key)
        try:
            await backend.verify()
        finally:
            await backend.aclose()
    runtime.store.set_encrypted_model_key(scope.workspace_id, runtime.key_vault.encrypt(body.api_key))
    logger.info("model_key_stored", verified=body.verify)
    return _ok(ModelKeyStatus(configured=True))


@router.delete("/settings/model-key", response_model=Envelope, tags=["settings"])
async def delete_model_key(scope: WorkspaceScope = Depends(get_scope)):
    get_runtime().store.set_encrypted_model_key(scope.workspace_id, None)
    logger.info("model_key_removed")
    return _ok(ModelKeyStatus(configured=False))

