from functools import lru_cache
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from app.core.config import Settings, get_settings
from app.modules.auth.dependencies import get_auth_context
from app.modules.auth.schemas import AuthContext
from app.modules.chat.service import ChatService

router = APIRouter(prefix="/chat", tags=["Chat"])


class ChatReply(BaseModel):
    reply: str


@lru_cache
def _chat_for(settings: Settings) -> ChatService:
    return ChatService(settings)


def get_chat_service(settings: Settings = Depends(get_settings)) -> ChatService:
    return _chat_for(settings)


@router.post("", response_model=ChatReply)
def chat(
    body: Dict[str, Any] = Body(default={}),
    service: ChatService = Depends(get_chat_service),
    auth: AuthContext = Depends(get_auth_context)
):
    """Conversación con el asistente: {messages, model?} -> {reply}"""
    body = body or {}
    return ChatReply(reply=service.reply(body.get("messages"), body.get("model")))
