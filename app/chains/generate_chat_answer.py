"""LLM chain that answers the user from the assembled context."""

from openai import OpenAI

from app.core.config import get_settings
from app.core.context_assembler import AssembledContext
from app.core.llm import get_openai_client
from app.core.logging import get_logger

logger = get_logger(__name__)

FALLBACK_ANSWER = "I'm sorry, I couldn't generate a response."


def generate_chat_answer(
    context: AssembledContext,
    client: OpenAI | None = None,
    user_id: str | None = None,
) -> str:
    """
    Generate the assistant answer for an assembled context.

    Args:
        context: System prompt, history and user message
        client: OpenAI client override
        user_id: For log context

    Returns:
        Answer text

    Raises:
        Exception: If the OpenAI call fails
    """
    settings = get_settings()
    client = client or get_openai_client()

    try:
        completion = client.chat.completions.create(
            model=settings.CHAT_MODEL,
            messages=context.messages,
            temperature=settings.CHAT_TEMPERATURE,
            max_tokens=settings.CHAT_MAX_TOKENS,
        )
    except Exception as e:
        logger.error(f"Chat answer generation failed: {e}", extra={"user_id": user_id} if user_id else None)
        raise

    content = completion.choices[0].message.content if completion.choices else None
    if not content:
        logger.warning("Chat model returned empty content", extra={"user_id": user_id} if user_id else None)
        return FALLBACK_ANSWER
    return content.strip()
