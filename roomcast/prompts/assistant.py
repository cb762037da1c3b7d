"""
roomcast.prompts.assistant
~~~~~~~~~~~~~~~~~~~~~~~~~~

聊天室 AI 助手的系统 Prompt 与 Prompt 构建工具。
"""
from __future__ import annotations

from roomcast.schemas.messages import ChatMessage

ASSISTANT_SYSTEM_PROMPT: str = """\
You are a friendly assistant taking part in a group chat room.
Rules:
1. Answer the question you were mentioned with, in a conversational tone.
2. Keep replies short (three sentences at most); the room is busy.
3. Use the recent conversation only as context, do not repeat it back.\
"""


def build_context_prompt(question: str, recent_context: list[ChatMessage]) -> str:
    """将提问与最近的房间消息组装为最终发送给 LLM 的 Prompt。

    Args:
        question: 去掉 @ 提及后的提问文本。
        recent_context: 房间最近的消息（时间正序）。

    Returns:
        组装后的 Prompt。没有上下文时直接返回提问本身。
    """
    question = question or "Say hello to the room."
    if not recent_context:
        return question

    transcript = "\n".join(
        f"{msg.author}: {msg.body}" for msg in recent_context if msg.body
    )
    return (
        f"[Recent conversation]\n{transcript}\n\n"
        f"[Question]\n{question}"
    )
