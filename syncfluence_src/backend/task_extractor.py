import html
import json
from typing import Optional

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from errors import AIServiceError
from llm import chat_completion


class ChatLine(BaseModel):
    sender: str = Field(description="The sender of the message.")
    content: str = Field(description="The content of the message.")


class ExtractTasksInput(BaseModel):
    messages: list[ChatLine]


class ExtractedTask(BaseModel):
    task: str = Field(min_length=1, description="The extracted task.")
    assignee: Optional[str] = Field(default=None, description="The person assigned to the task, if any.")

    @field_validator("task", mode="before")
    @classmethod
    def strip_task(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("assignee", mode="before")
    @classmethod
    def blank_assignee(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


_output_adapter = TypeAdapter(list[ExtractedTask])


class TaskExtractionError(AIServiceError):
    def __init__(self, detail: str = "Could not extract tasks."):
        super().__init__(detail)


def build_prompt(payload: ExtractTasksInput) -> str:
    lines = "\n".join(f"Sender: {m.sender}\nContent: {m.content}" for m in payload.messages)
    return f"""You are a helpful assistant tasked with extracting tasks from a list of chat messages.

Analyze the following chat messages and extract any actionable tasks. For each task, identify the task itself and the person assigned to the task, if mentioned. If no assignee is explicitly mentioned, leave the assignee field blank.

Messages:
{lines}

Tasks should be specific and actionable. Return the tasks in a JSON array like this:
[{{"task": "Review landing page mockups", "assignee": "Alex"}}]

If no tasks found, return: []

Make sure the output is a valid JSON array."""


def parse_tasks(response: str) -> list[ExtractedTask]:
    """Pull the JSON array out of a model reply and validate it."""
    response = html.unescape((response or "").strip())

    # Extract JSON from markdown fences
    if "```json" in response:
        response = response.split("```json")[1].split("```")[0]
    elif "```" in response:
        response = response.split("```")[1].split("```")[0]

    start = response.find('[')
    end = response.rfind(']') + 1
    if start == -1 or end <= start:
        raise TaskExtractionError("Model response did not contain a JSON array.")

    try:
        raw = json.loads(response[start:end])
        return _output_adapter.validate_python(raw)
    except (json.JSONDecodeError, ValidationError) as e:
        raise TaskExtractionError(f"Model response did not match the task schema: {e}") from e


async def extract_tasks_from_messages(messages: list[dict], complete=chat_completion) -> list[ExtractedTask]:
    """Ask the model for action items in a conversation.

    ``messages`` is a list of ``{"sender", "content"}`` dicts, oldest first.
    Returns validated ``ExtractedTask`` items; raises TaskExtractionError when
    the call fails or the reply does not fit the output schema.
    """
    try:
        payload = ExtractTasksInput(messages=messages)
    except ValidationError as e:
        raise TaskExtractionError(f"Invalid extraction input: {e}") from e

    if not payload.messages:
        return []

    prompt = build_prompt(payload)
    print(f"🤖 Extracting tasks from {len(payload.messages)} messages")
    try:
        response = await complete([{"role": "user", "content": prompt}])
    except Exception as e:
        raise TaskExtractionError(f"Task extraction call failed: {e}") from e

    tasks = parse_tasks(response)
    print(f"✅ Model returned {len(tasks)} tasks")
    return tasks
