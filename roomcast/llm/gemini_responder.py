"""
roomcast.llm.gemini_responder
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

AI 回复协作方的 Gemini 实现 —— 只负责与 Google Gemini API 的连接和调用。

何时触发、回复如何落库与广播由 ``MessageRouter`` 负责。
"""
from __future__ import annotations

from google import genai
from google.genai import types

from roomcast.core.config import settings
from roomcast.core.logging import get_logger
from roomcast.llm.client import create_gemini_client
from roomcast.prompts.assistant import ASSISTANT_SYSTEM_PROMPT, build_context_prompt
from roomcast.schemas.messages import ChatMessage

logger = get_logger(__name__)


class GeminiResponder:
    """无状态的 Gemini 单轮回复生成器。

    Attributes:
        model_name: 使用的 Gemini 模型名称。
        system_prompt: 传递给模型的系统级指令。
        fallback_reply: 调用失败时返回的兜底文案。
    """

    def __init__(
        self,
        system_prompt: str = ASSISTANT_SYSTEM_PROMPT,
        model_name: str | None = None,
        client: genai.Client | None = None,
        fallback_reply: str | None = None,
    ) -> None:
        """初始化回复生成器。

        Args:
            system_prompt: 系统 Prompt。
            model_name: Gemini 模型名称，默认读取 ``settings.GEMINI_MODEL``。
            client: 可选的 ``genai.Client`` 实例（用于测试注入 mock）。
                为 ``None`` 时在首次调用时才创建，未配置 API Key 不影响启动。
            fallback_reply: 兜底文案，默认读取 ``settings.AI_FALLBACK_REPLY``。
        """
        self.model_name: str = model_name or settings.GEMINI_MODEL
        self.system_prompt: str = system_prompt
        self.fallback_reply: str = fallback_reply or settings.AI_FALLBACK_REPLY
        self._client: genai.Client | None = client

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = create_gemini_client()
            logger.info("LLM 客户端已初始化 | model=%s", self.model_name)
        return self._client

    async def generate(self, prompt: str, recent_context: list[ChatMessage]) -> str:
        """生成一条回复。

        Returns:
            模型回复文本。发生异常或回复为空时返回兜底文案。
        """
        contents = build_context_prompt(prompt, recent_context)
        try:
            response = await self._get_client().aio.models.generate_content(
                model=self.model_name,
                contents=contents,
                config=types.GenerateContentConfig(
                    system_instruction=self.system_prompt,
                ),
            )
            return response.text or self.fallback_reply
        except Exception as e:
            logger.error("LLM 调用异常: %s", e, exc_info=True)
            return self.fallback_reply
