from typing import List, Optional

from loguru import logger
from pydantic import BaseModel

from src.ai_core.prompt_template import PromptTemplate
from src.ai_core.zhipu_api import ZhipuAI
from src.collab.errors import AIAnalysisError
from src.collab.models import TestCase
from src.collab.notifier import NoticeKind, Notifier
from src.config.settings import settings

NO_FAILED_CASES_TEXT = "No failed test cases were provided to generate an impact analysis."
NO_COMMENTED_CASES_TEXT = "No commented test cases were provided to generate an improvement analysis."


class AnalysisResult(BaseModel):
    analysis_text: str
    generated: bool = True


class AnalysisService:
    """AI报告分析服务

    根据失败用例生成影响分析，根据带备注的用例生成改进分析。
    失败时先发出 ai_error 提示再抛出 AIAnalysisError，由调用方决定是否重试。
    """

    def __init__(
        self,
        client: Optional[ZhipuAI] = None,
        templates: Optional[PromptTemplate] = None,
        language: Optional[str] = None,
        notifier: Optional[Notifier] = None
    ):
        self.client = client or ZhipuAI()
        self.templates = templates or PromptTemplate()
        self.language = language or settings.ai.AI_REPORT_LANGUAGE
        self.notifier = notifier or Notifier()

    async def failure_analysis(self, cases: List[TestCase], summary: str) -> AnalysisResult:
        """失败影响分析"""
        if not cases:
            return AnalysisResult(analysis_text=NO_FAILED_CASES_TEXT, generated=False)
        return await self._generate("failure_report", cases, summary)

    async def improvement_analysis(self, cases: List[TestCase], summary: str) -> AnalysisResult:
        """改进与观察分析"""
        if not cases:
            return AnalysisResult(analysis_text=NO_COMMENTED_CASES_TEXT, generated=False)
        return await self._generate("improvement_report", cases, summary)

    async def _generate(self, template_name: str, cases: List[TestCase], summary: str) -> AnalysisResult:
        prompt = self.templates.render(
            template_name,
            cases=cases,
            summary=summary or "",
            language=self.language
        )
        try:
            if not prompt:
                raise AIAnalysisError(f"提示词模板不可用: {template_name}")
            logger.info(f"开始生成AI分析: {template_name}, 用例 {len(cases)} 条")
            text = await self.client.chat([{"role": "user", "content": prompt}])
        except AIAnalysisError as e:
            self.notifier.error(NoticeKind.AI_ERROR, "AI分析失败", e)
            raise
        except Exception as e:
            logger.error(f"AI分析出现未预期的错误: {str(e)}")
            error = AIAnalysisError(data={"error": str(e)})
            self.notifier.error(NoticeKind.AI_ERROR, "AI分析失败", error)
            raise error from e
        logger.info(f"AI分析生成完成: {template_name}, 长度 {len(text)}")
        return AnalysisResult(analysis_text=text)
