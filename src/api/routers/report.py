from fastapi import APIRouter, Depends
from fastapi.responses import Response
from src.api.deps import get_analysis_service, get_store, require_session
from src.api.models.base import ResponseModel
from src.api.models.session import AnalysisRequest
from src.collab.models import CaseStatus
from src.collab.store import SessionStore
from src.importers.json_importer import export_cases_json
from src.report.analysis import AnalysisResult, AnalysisService

router = APIRouter(prefix="/api/v1/reports", tags=["reports"])

@router.post("/{code}/failure-analysis")
async def failure_analysis(
    code: str,
    request: AnalysisRequest,
    store: SessionStore = Depends(get_store),
    service: AnalysisService = Depends(get_analysis_service)
) -> ResponseModel[AnalysisResult]:
    """失败用例影响分析"""
    document = await require_session(store, code)
    cases = [case for case in document.test_cases if case.status == CaseStatus.FAILED]
    return ResponseModel(data=await service.failure_analysis(cases, request.summary))

@router.post("/{code}/improvement-analysis")
async def improvement_analysis(
    code: str,
    request: AnalysisRequest,
    store: SessionStore = Depends(get_store),
    service: AnalysisService = Depends(get_analysis_service)
) -> ResponseModel[AnalysisResult]:
    """备注用例改进分析"""
    document = await require_session(store, code)
    cases = [case for case in document.test_cases if case.is_commented]
    return ResponseModel(data=await service.improvement_analysis(cases, request.summary))

@router.get("/{code}/export")
async def export_cases(
    code: str,
    store: SessionStore = Depends(get_store)
) -> Response:
    """导出会话用例为JSON文件"""
    document = await require_session(store, code)
    filename, content = export_cases_json(document.test_cases)
    return Response(
        content=content.encode("utf-8"),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )
