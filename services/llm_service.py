import logging
from typing import List

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import BaseModel

from core.review_config import ReviewConfig
from schemas.review import TokenUsage

logger = logging.getLogger(__name__)


class ChatCompletion(BaseModel):
    content: str
    usage: TokenUsage


def get_chat_model(api_key: str, config: ReviewConfig) -> BaseChatModel:
    return ChatGoogleGenerativeAI(
        model=config.model,
        google_api_key=api_key,
        temperature=config.temperature,
        max_output_tokens=config.max_tokens,
    )


def _message_text(content) -> str:
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


class ReviewModelClient:
    """Single request/response chat completion on top of a langchain chat model."""

    def __init__(self, chat_model: BaseChatModel):
        self.chat_model = chat_model

    async def complete(self, messages: List[BaseMessage]) -> ChatCompletion:
        response = await self.chat_model.ainvoke(messages)

        usage_metadata = getattr(response, "usage_metadata", None) or {}
        usage = TokenUsage(
            input_tokens=usage_metadata.get("input_tokens", 0),
            output_tokens=usage_metadata.get("output_tokens", 0),
        )
        logger.debug(
            f"Model usage: {usage.input_tokens} input / {usage.output_tokens} output tokens"
        )
        return ChatCompletion(content=_message_text(response.content), usage=usage)
