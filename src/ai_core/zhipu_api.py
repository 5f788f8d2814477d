from typing import List, Dict, Any, Optional
from langchain_community.chat_models import ChatZhipuAI
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, AIMessage, SystemMessage
from src.collab.errors import AIAnalysisError
from src.config.settings import settings
from src.logger.logger import logger
import httpx

class ZhipuAI:
    """智谱AI API封装

    Args:
        chat_model: 对话模型，默认在首次调用时按配置创建 ChatZhipuAI
    """

    def __init__(self, chat_model: Optional[BaseChatModel] = None):
        self._chat_model = chat_model

    @property
    def chat_model(self) -> BaseChatModel:
        if self._chat_model is None:
            if not settings.ai.AI_ZHIPU_API_KEY:
                raise AIAnalysisError("未配置智谱AI API密钥")
            self._chat_model = ChatZhipuAI(
                api_key=settings.ai.AI_ZHIPU_API_KEY,
                model_name=settings.ai.AI_ZHIPU_MODEL_CHAT,
                temperature=settings.ai.AI_TEMPERATURE,
                top_p=0.2,
                streaming=False,
                timeout=httpx.Timeout(
                    connect=30.0,
                    read=float(settings.ai.AI_TIMEOUT),
                    write=60.0,
                    pool=30.0
                ),
                max_retries=0
            )
            logger.info(f"初始化AI客户端完成，对话模型: {settings.ai.AI_ZHIPU_MODEL_CHAT}")
        return self._chat_model

    def _convert_messages(self, messages: List[Dict[str, Any]]) -> List[Any]:
        """转换消息格式为LangChain格式"""
        message_map = {
            "system": SystemMessage,
            "user": HumanMessage,
            "assistant": AIMessage
        }
        return [message_map[msg["role"]](content=msg["content"])
                for msg in messages if msg["role"] in message_map]

    async def chat(self, messages: List[Dict[str, Any]]) -> str:
        """发送对话请求(不自动重试)

        Args:
            messages: 消息列表，格式为 {"role": ..., "content": ...}

        Returns:
            str: 响应内容

        Raises:
            AIAnalysisError: 请求失败或响应为空
        """
        langchain_messages = self._convert_messages(messages)
        chat_model = self.chat_model
        try:
            response = await chat_model.ainvoke(langchain_messages)
        except httpx.HTTPError as e:
            logger.error(f"HTTP请求错误: {str(e)}")
            raise AIAnalysisError(data={"error": str(e)}) from e
        except Exception as e:
            logger.error(f"AI请求失败: {type(e).__name__}: {str(e)}")
            raise AIAnalysisError(data={"error": str(e)}) from e

        # 提取响应内容
        result = response.content if isinstance(response, AIMessage) else response
        if not isinstance(result, str) or not result.strip():
            logger.error("响应内容为空")
            raise AIAnalysisError("AI返回内容为空")
        return result.strip()
