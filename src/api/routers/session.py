from datetime import timedelta
from typing import Any, Dict, List
from fastapi import APIRouter, Depends
from loguru import logger
from src.api.deps import get_presence, get_store, require_session
from src.api.models.base import ResponseModel
from src.api.models.session import (
    CreateSessionRequest,
    RegisterParticipantRequest,
    ReplaceCasesRequest,
    SessionStatsResponse,
    SweepRequest,
)
from src.collab.errors import SessionNotFoundError
from src.collab.models import CaseStats, Participant, SessionDocument
from src.collab.presence import PresenceRegistry
from src.collab.store import SessionStore

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])

@router.post("")
async def create_session(
    request: CreateSessionRequest,
    store: SessionStore = Depends(get_store)
) -> ResponseModel[SessionDocument]:
    """创建会话文档，会话码已存在时返回409"""
    document = await store.create_session(request.code, request.owner)
    return ResponseModel(data=document)

@router.get("/{code}")
async def get_session(
    code: str,
    store: SessionStore = Depends(get_store)
) -> ResponseModel[SessionDocument]:
    """读取会话文档"""
    return ResponseModel(data=await require_session(store, code))

@router.put("/{code}/cases")
async def replace_cases(
    code: str,
    request: ReplaceCasesRequest,
    store: SessionStore = Depends(get_store)
) -> ResponseModel[SessionDocument]:
    """整表替换会话用例"""
    document = await store.replace_cases(code, request.test_cases)
    return ResponseModel(data=document)

@router.delete("/{code}")
async def delete_session(
    code: str,
    store: SessionStore = Depends(get_store)
) -> ResponseModel[Dict[str, Any]]:
    """删除会话文档"""
    if not await store.delete_session(code):
        raise SessionNotFoundError(data={"code": code})
    return ResponseModel(data={"code": code, "deleted": True})

@router.get("/{code}/stats")
async def get_session_stats(
    code: str,
    store: SessionStore = Depends(get_store)
) -> ResponseModel[SessionStatsResponse]:
    """会话用例统计"""
    document = await require_session(store, code)
    processes: List[str] = []
    for case in document.test_cases:
        if case.process and case.process not in processes:
            processes.append(case.process)
    return ResponseModel(data=SessionStatsResponse(
        code=code,
        stats=CaseStats.from_cases(document.test_cases),
        processes=processes,
        revision=document.revision
    ))

@router.post("/{code}/participants")
async def register_participant(
    code: str,
    request: RegisterParticipantRequest,
    presence: PresenceRegistry = Depends(get_presence)
) -> ResponseModel[Dict[str, str]]:
    """登记参与者"""
    participant_id = await presence.register_participant(code, request.identity, request.role)
    return ResponseModel(data={"id": participant_id})

@router.get("/{code}/participants")
async def list_participants(
    code: str,
    presence: PresenceRegistry = Depends(get_presence)
) -> ResponseModel[List[Participant]]:
    """在线参与者(按加入顺序)"""
    return ResponseModel(data=await presence.list_online(code))

@router.post("/{code}/participants/sweep")
async def sweep_participants(
    code: str,
    request: SweepRequest,
    presence: PresenceRegistry = Depends(get_presence)
) -> ResponseModel[Dict[str, int]]:
    """清理心跳过期的参与者"""
    swept = await presence.sweep_stale(code, timedelta(seconds=request.max_age_seconds))
    return ResponseModel(data={"swept": swept})

@router.post("/{code}/participants/{participant_id}/offline")
async def mark_offline(
    code: str,
    participant_id: str,
    presence: PresenceRegistry = Depends(get_presence)
) -> ResponseModel[None]:
    """标记参与者离线(可重复调用)"""
    await presence.mark_offline(code, participant_id)
    logger.debug(f"参与者 {participant_id} 已标记离线")
    return ResponseModel()

@router.post("/{code}/participants/{participant_id}/heartbeat")
async def heartbeat(
    code: str,
    participant_id: str,
    presence: PresenceRegistry = Depends(get_presence)
) -> ResponseModel[None]:
    """参与者心跳"""
    await presence.touch(code, participant_id)
    return ResponseModel()
