from fastapi import Request

from roomcast.services.chat_system import ChatSystem


def get_chat_system(request: Request) -> ChatSystem:
    return request.app.state.chat_system
