"""报告数据组装

从本地副本中挑选报告需要的用例，校验作者与摘要后生成交给渲染器的请求。
PDF 的版式和字体由外部渲染器负责。
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Protocol, runtime_checkable

from loguru import logger
from pydantic import BaseModel, Field

from src.collab.errors import ReportInputError
from src.collab.models import CaseStatus, TestCase, utcnow
from src.collab.notifier import NoticeKind, Notifier
from src.collab.replication import CaseReplica


class ReportKind(str, Enum):
    """报告类型"""
    FAILURE = "failure"
    IMPROVEMENT = "improvement"


# 图表分组标签与颜色，顺序即展示顺序
CHART_SLICES = (
    (CaseStatus.PASSED, "Aprobados", "hsl(var(--chart-1))"),
    (CaseStatus.FAILED, "Fallidos", "hsl(var(--chart-2))"),
    (CaseStatus.NOT_APPLICABLE, "N/A", "hsl(var(--chart-3))"),
    (CaseStatus.PENDING, "Pendientes", "hsl(var(--chart-4))"),
)


class ChartSlice(BaseModel):
    status: CaseStatus
    name: str
    value: int
    fill: str


class ReportRequest(BaseModel):
    """交给报告渲染器的完整输入"""
    kind: ReportKind
    session_code: Optional[str] = None
    test_cases: List[TestCase]
    author_name: str
    summary: str
    ai_analysis_text: str = ""
    chart_images: Dict[str, str] = Field(default_factory=dict)
    generated_at: datetime = Field(default_factory=utcnow)


@runtime_checkable
class ReportRenderer(Protocol):
    """报告渲染器(外部实现，例如PDF生成)"""

    def render(self, request: ReportRequest) -> bytes:
        ...


class ReportAssembler:
    """报告数据组装器

    Args:
        replica: 当前会话的用例副本
        notifier: 用户提示，默认使用副本的提示器
    """

    def __init__(self, replica: CaseReplica, notifier: Optional[Notifier] = None):
        self.replica = replica
        self.notifier = notifier or replica.notifier

    def failed_cases(self) -> List[TestCase]:
        return self.replica.failed_cases()

    def commented_cases(self) -> List[TestCase]:
        return self.replica.commented_cases()

    def cases_for(self, kind: ReportKind) -> List[TestCase]:
        if kind == ReportKind.FAILURE:
            return self.failed_cases()
        return self.commented_cases()

    def chart_data(self) -> List[ChartSlice]:
        """按状态统计的图表数据，省略数量为0的分组"""
        stats = self.replica.stats()
        counts = {
            CaseStatus.PASSED: stats.passed,
            CaseStatus.FAILED: stats.failed,
            CaseStatus.NOT_APPLICABLE: stats.na,
            CaseStatus.PENDING: stats.pending,
        }
        return [
            ChartSlice(status=status, name=name, value=counts[status], fill=fill)
            for status, name, fill in CHART_SLICES
            if counts[status] > 0
        ]

    def build_request(
        self,
        kind: ReportKind,
        author: str,
        summary: str,
        analysis_text: str = "",
        chart_images: Optional[Dict[str, str]] = None
    ) -> ReportRequest:
        """组装报告请求

        Args:
            kind: 报告类型
            author: 报告作者
            summary: 报告摘要
            analysis_text: AI分析文本
            chart_images: 图表截图(名称 -> data URL)

        Raises:
            ReportInputError: 作者或摘要为空
        """
        author = (author or "").strip()
        summary = (summary or "").strip()
        if not author or not summary:
            error = ReportInputError(
                "请填写报告作者和摘要",
                data={"author": bool(author), "summary": bool(summary)}
            )
            self.notifier.error(NoticeKind.VALIDATION, "报告信息不完整", error)
            raise error
        cases = self.cases_for(kind)
        logger.info(f"组装{kind.value}报告: 会话 {self.replica.session_code}, 用例 {len(cases)} 条")
        return ReportRequest(
            kind=kind,
            session_code=self.replica.session_code,
            test_cases=cases,
            author_name=author,
            summary=summary,
            ai_analysis_text=analysis_text or "",
            chart_images=dict(chart_images or {}),
        )

    def render(self, renderer: ReportRenderer, request: ReportRequest) -> bytes:
        """调用外部渲染器生成报告文件"""
        return renderer.render(request)
