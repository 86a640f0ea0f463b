from openai import AsyncOpenAI

from config import OPENAI_API_KEY, OPENAI_BASE_URL, LLM_MODEL, LLM_TIMEOUT_SECONDS

_client = None


def get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        if not OPENAI_API_KEY:
            raise RuntimeError("LLM client not configured. Set OPENAI_API_KEY.")
        _client = AsyncOpenAI(api_key=OPENAI_API_KEY, base_url=OPENAI_BASE_URL, timeout=LLM_TIMEOUT_SECONDS)
    return _client


async def chat_completion(messages: list[dict], temperature: float = 0.3, model: str = LLM_MODEL) -> str:
    """Send chat messages to the hosted model and return the reply text."""
    response = await get_client().chat.completions.create(
        model=model,
        messages=messages,
        temperature=temperature,
    )
    return response.choices[0].message.content or ""
