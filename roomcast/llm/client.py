"""
roomcast.llm.client
~~~~~~~~~~~~~~~~~~~

Gemini API 客户端工厂。
"""
from __future__ import annotations

from google import genai

from roomcast.core.config import settings


def create_gemini_client() -> genai.Client:
    """创建 Gemini API 客户端实例。

    Returns:
        已认证的 ``genai.Client``。
    """
    return genai.Client(api_key=settings.GEMINI_API_KEY)
