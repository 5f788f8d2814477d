from typing import List
from pydantic import BaseModel, Field
from src.collab.models import CaseStats, Role, TestCase

class CreateSessionRequest(BaseModel):
    """创建会话请求"""
    code: str = Field(..., min_length=1, description="会话码")
    owner: str = Field(..., min_length=1, description="创建者标识")

class ReplaceCasesRequest(BaseModel):
    """整表替换用例请求"""
    test_cases: List[TestCase] = Field(default_factory=list)

class RegisterParticipantRequest(BaseModel):
    """登记参与者请求"""
    identity: str = Field(..., min_length=1)
    role: Role

class SweepRequest(BaseModel):
    """清理过期参与者请求"""
    max_age_seconds: float = Field(..., gt=0)

class SessionStatsResponse(BaseModel):
    """会话统计"""
    code: str
    stats: CaseStats
    processes: List[str]
    revision: int

class AnalysisRequest(BaseModel):
    """AI分析请求"""
    summary: str = Field("", description="报告摘要")
