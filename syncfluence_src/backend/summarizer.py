import asyncio

from errors import AIServiceError
from llm import chat_completion

MAX_TRANSCRIPT_CHARS = 3000
SUMMARY_TIMEOUT_SECONDS = 20.0

_PREFIXES = [
    "Here is a concise summary of the conversation:",
    "Here is a summary of the conversation:",
    "Here is a concise summary:",
    "Here is a summary:",
    "Here's a concise summary of the conversation:",
    "Here's a summary of the conversation:",
    "Here's a concise summary:",
    "Here's a summary:",
    "Summary:",
]


class SummaryError(AIServiceError):
    def __init__(self, detail: str = "Could not generate summary."):
        super().__init__(detail)


def build_transcript(messages: list[dict]) -> str:
    lines = []
    for m in messages:
        content = m.get("content") or ""
        if m.get("file_name"):
            content = f"{content} [attachment: {m['file_name']}]".strip()
        if content:
            lines.append(f"{m.get('sender', 'Unknown')}: {content}")
    transcript = "\n".join(lines)
    # Keep the most recent part of long conversations
    if len(transcript) > MAX_TRANSCRIPT_CHARS:
        transcript = transcript[-MAX_TRANSCRIPT_CHARS:]
    return transcript


def strip_preamble(summary: str) -> str:
    summary = summary.strip()
    for prefix in _PREFIXES:
        if summary.startswith(prefix):
            return summary[len(prefix):].strip()
    return summary


async def summarize_chat_history(messages: list[dict], complete=chat_completion,
                                 timeout: float = SUMMARY_TIMEOUT_SECONDS) -> str:
    """Summarize a room's conversation; messages are {"sender", "content"} dicts."""
    transcript = build_transcript(messages)
    if len(transcript.strip()) < 10:
        return "There isn't enough conversation here to summarize yet."

    prompt = [{
        "role": "user",
        "content": (
            "Provide a concise summary of this team chat conversation, covering the main topics, "
            "decisions made and any action items. Do not include any preamble like 'Here is a summary'. "
            f"Just provide the summary directly:\n\n{transcript}\n\nSummary:"
        ),
    }]

    try:
        summary = await asyncio.wait_for(complete(prompt), timeout=timeout)
    except asyncio.TimeoutError as e:
        print(f"⚠️  Summary timed out after {timeout}s")
        raise SummaryError() from e
    except Exception as e:
        print(f"❌ Summary generation failed: {e}")
        raise SummaryError() from e

    summary = strip_preamble(summary or "")
    if not summary:
        raise SummaryError()
    return summary
