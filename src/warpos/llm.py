from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

from dotenv import load_dotenv
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

API_KEY_ENV_NAMES = ("DEVPACK_CODING_PLAN_API_KEY", "ZAI_API_KEY")
FRAMEWORK_SYSTEM_PREAMBLE = "You must follow this framework. Treat all observations as mandatory requirements.\n\n"

_DEFAULT_TEMPERATURE: float = 0.2
_DEFAULT_MAX_RETRIES: int = 3


@dataclass(frozen=True, slots=True)
class ChatResponse:
    text: str
    raw: Any


def ensure_api_key(repo_root: Path | None = None) -> str:
    """Load the provider API key from the environment or a ``.env`` file.

    ``DEVPACK_CODING_PLAN_API_KEY`` takes precedence over ``ZAI_API_KEY``.

    Raises:
        RuntimeError: If neither variable is set after loading ``.env``.
    """
    repo = repo_root if repo_root is not None else Path.cwd()
    env_path = repo / ".env"
    if env_path.is_file():
        load_dotenv(env_path)

    for name in API_KEY_ENV_NAMES:
        key = os.getenv(name, "").strip()
        if key:
            return key
    raise RuntimeError(
        "Missing API key. Set DEVPACK_CODING_PLAN_API_KEY (preferred) or ZAI_API_KEY in your environment."
    )


def get_chat_model(
    settings: RuntimeSettings,
    *,
    model_name: str | None = None,
    temperature: float = _DEFAULT_TEMPERATURE,
    max_retries: int = _DEFAULT_MAX_RETRIES,
) -> ChatOpenAI:
    """Construct a ChatOpenAI client pointed at the configured OpenAI-compatible provider."""
    model = (model_name or settings.llm_model).strip()
    if not model:
        raise ValueError("model_name must be a non-empty string")
    api_key = ensure_api_key(repo_root=settings.root_path)
    return ChatOpenAI(
        model=model,
        api_key=api_key,
        base_url=settings.llm_base_url,
        temperature=temperature,
        timeout=settings.llm_timeout_seconds,
        max_retries=max_retries,
    )


def _to_langchain_message(message: Mapping[str, str]) -> BaseMessage:
    role = message.get("role")
    content = message.get("content", "")
    if role == "system":
        return SystemMessage(content=content)
    if role == "assistant":
        return AIMessage(content=content)
    if role == "user":
        return HumanMessage(content=content)
    raise ValueError(f"Unsupported chat message role: {role!r}")


def _content_to_text(content: Any) -> str:
    """Flatten a model response's content (string or content-block list) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and isinstance(block.get("text"), str):
                parts.append(block["text"])
        return "".join(parts)
    return str(content)


def chat(
    messages: Sequence[Mapping[str, str]],
    *,
    settings: RuntimeSettings | None = None,
    model_name: str | None = None,
    temperature: float | None = None,
) -> ChatResponse:
    active = settings if settings is not None else RuntimeSettings.from_env()
    model = get_chat_model(
        active,
        model_name=model_name,
        temperature=_DEFAULT_TEMPERATURE if temperature is None else temperature,
    )
    logger.info("Sending %d message(s) to %s", len(messages), model_name or active.llm_model)
    response = model.invoke([_to_langchain_message(message) for message in messages])
    return ChatResponse(text=_content_to_text(response.content), raw=response)


def plan_prompt(prompt: str, *, settings: RuntimeSettings | None = None) -> ChatResponse:
    return chat([{"role": "user", "content": prompt}], settings=settings)


def run_with_framework(
    framework: str,
    user_input: str,
    *,
    settings: RuntimeSettings | None = None,
    model_name: str | None = None,
    temperature: float | None = None,
) -> ChatResponse:
    """Run one model turn with a compiled profile framework as the system prompt."""
    return chat(
        [
            {"role": "system", "content": FRAMEWORK_SYSTEM_PREAMBLE + framework},
            {"role": "user", "content": user_input},
        ],
        settings=settings,
        model_name=model_name,
        temperature=temperature,
    )
