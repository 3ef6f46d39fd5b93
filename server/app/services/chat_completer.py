"""
Language-model collaborators for the chat assistant.

Two implementations share the ``ChatCompleter`` interface:

- ``OpenAIChatCompleter`` calls the Chat Completions API (OpenAI or Azure
  OpenAI) and raises ``ChatCompletionError`` on any failure or empty reply.
- ``KeywordChatCompleter`` answers from ordered keyword rules and is used when
  no model credentials are configured.

``build_chat_completer`` picks one at startup from the configuration.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from app.config import Settings, settings
from app.services.system_prompts import build_system_prompt
from openai import AsyncAzureOpenAI, AsyncOpenAI

logger = logging.getLogger(__name__)

LUXURY_CHAT_MAKES = ("bmw", "mercedes", "audi", "volkswagen", "porsche")


class ChatCompletionError(Exception):
    """The language model could not produce a reply."""


class ChatCompleter(ABC):
    """Produces one assistant reply for a conversation and context bag."""

    mode = "unknown"

    @property
    def configured(self) -> bool:
        return False

    @abstractmethod
    async def complete(self, messages: List[Dict[str, str]], context: Optional[Dict[str, Any]] = None) -> str:
        """
        Args:
            messages: Conversation as ``[{"role": "user"|"assistant", "content": str}]``,
                oldest first
            context: Session context bag

        Returns:
            Assistant reply text
        """


class OpenAIChatCompleter(ChatCompleter):
    """
    Chat Completions client for OpenAI or Azure OpenAI.

    Example usage:
        completer = OpenAIChatCompleter(AsyncOpenAI(api_key="sk-..."), model="gpt-4o")
        reply = await completer.complete([{"role": "user", "content": "Hi"}], context)
    """

    mode = "openai"

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        max_tokens: int = 800,
        temperature: float = 0.7,
        top_p: float = 0.9,
        frequency_penalty: float = 0.1,
        presence_penalty: float = 0.1,
        timeout: float = 30.0,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.top_p = top_p
        self.frequency_penalty = frequency_penalty
        self.presence_penalty = presence_penalty
        self.timeout = timeout

        logger.info(f"OpenAIChatCompleter initialized with model: {model}")

    @property
    def configured(self) -> bool:
        return True

    async def complete(self, messages: List[Dict[str, str]], context: Optional[Dict[str, Any]] = None) -> str:
        request_messages = [{"role": "system", "content": build_system_prompt(context)}]
        request_messages.extend(messages)

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=request_messages,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                    top_p=self.top_p,
                    frequency_penalty=self.frequency_penalty,
                    presence_penalty=self.presence_penalty,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Chat completion timed out after {self.timeout}s")
            raise ChatCompletionError("Chat completion timed out") from e
        except Exception as e:
            logger.error(f"Error generating chat completion: {e}", exc_info=True)
            raise ChatCompletionError(str(e)) from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            logger.warning("Chat completion returned an empty reply")
            raise ChatCompletionError("Empty response from language model")

        if response.usage:
            logger.debug(
                f"Token usage: {response.usage.prompt_tokens} prompt, "
                f"{response.usage.completion_tokens} completion"
            )
        return content


class KeywordChatCompleter(ChatCompleter):
    """Deterministic replies chosen by ordered, case-insensitive keyword rules."""

    mode = "fallback"

    async def complete(self, messages: List[Dict[str, str]], context: Optional[Dict[str, Any]] = None) -> str:
        last = messages[-1]["content"] if messages else ""
        return self.reply_for(last, context or {})

    def reply_for(self, text: str, context: Dict[str, Any]) -> str:
        text = (text or "").lower()
        customer = context.get("customer_info") or {}
        first_name = customer.get("first_name")

        if customer:
            name = first_name or "there"
            appointment = context.get("appointment_info")
            if "appointment" in text and appointment:
                return (
                    f"Hi {name}! I can see your {appointment.get('status')} appointment. "
                    "How can I help you with it today?"
                )

            vehicle = context.get("vehicle_info")
            if vehicle and ("service" in text or "maintenance" in text):
                description = f"{vehicle.get('year')} {vehicle.get('make')} {vehicle.get('model')}"
                return (
                    f"Hello {name}! For your {description}, I'd recommend our comprehensive "
                    "maintenance package. Would you like to schedule a service appointment?"
                )

        if "hours" in text or "open" in text:
            return (
                "We're open Monday-Friday 8:00 AM - 6:00 PM, Saturday 9:00 AM - 4:00 PM, and "
                "closed Sundays. Is there a specific service you'd like to schedule?"
            )

        if any(word in text for word in ("price", "cost", "quote")):
            return (
                "I'd be happy to provide pricing! For example, oil changes range from $80-120 "
                "depending on your European vehicle. Could you tell me your vehicle make and "
                "model for a more accurate estimate?"
            )

        if any(word in text for word in ("appointment", "book", "schedule")):
            opener = f"I can help you schedule an appointment, {first_name}!" if first_name else (
                "I can help you schedule an appointment!"
            )
            return (
                f"{opener} We have availability this week. What type of service do you need, "
                "and what's your preferred date and time?"
            )

        if any(word in text for word in ("location", "address", "directions")):
            return (
                f"We're located at {settings.SHOP_ADDRESS}, specializing in European vehicles. "
                "Easy parking available. What brings your vehicle in today?"
            )

        if any(word in text for word in ("diagnostic", "check engine", "error code")):
            return (
                "Our diagnostic service costs $150-200 and uses professional Autel equipment "
                "for accurate results. We can explain any codes found and provide repair "
                "recommendations. Would you like to schedule a diagnostic?"
            )

        if any(make in text for make in LUXURY_CHAT_MAKES):
            return (
                "Excellent! We specialize in European vehicles with over 20 years of experience. "
                "Our technicians are trained specifically for your vehicle's needs. What service "
                "can we help you with?"
            )

        welcome = f"Welcome to {settings.SHOP_NAME}, {first_name}!" if first_name else f"Welcome to {settings.SHOP_NAME}!"
        return (
            f"{welcome} I'm here to help with scheduling, service information, pricing, or any "
            "questions about your European vehicle. How can I assist you today?"
        )


def build_chat_completer(config: Settings = settings) -> ChatCompleter:
    """Azure OpenAI when fully configured, else OpenAI, else keyword replies."""
    common = dict(
        max_tokens=config.LLM_MAX_TOKENS,
        temperature=config.LLM_TEMPERATURE,
        top_p=config.LLM_TOP_P,
        frequency_penalty=config.LLM_FREQUENCY_PENALTY,
        presence_penalty=config.LLM_PRESENCE_PENALTY,
        timeout=config.LLM_TIMEOUT,
    )

    if config.AZURE_OPENAI_ENDPOINT and config.AZURE_OPENAI_API_KEY and config.AZURE_OPENAI_DEPLOYMENT_NAME:
        client = AsyncAzureOpenAI(
            azure_endpoint=config.AZURE_OPENAI_ENDPOINT,
            api_key=config.AZURE_OPENAI_API_KEY,
            api_version=config.AZURE_OPENAI_API_VERSION,
        )
        logger.info("Using Azure OpenAI for chat completions")
        return OpenAIChatCompleter(client, model=config.AZURE_OPENAI_DEPLOYMENT_NAME, **common)

    if config.OPENAI_API_KEY:
        logger.info("Using OpenAI for chat completions")
        return OpenAIChatCompleter(AsyncOpenAI(api_key=config.OPENAI_API_KEY), model=config.OPENAI_MODEL, **common)

    logger.warning("Language model credentials not configured. AI features will use keyword replies.")
    return KeywordChatCompleter()
