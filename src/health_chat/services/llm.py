"""Inference gateway backed by Google's Gemini models."""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

import google.generativeai as genai
import structlog
from google.api_core import exceptions
from google.auth.exceptions import GoogleAuthError

from ..domain.errors import GatewayError, ValidationError
from ..domain.models import HealthMetrics, Message, RiskPrediction, UserContext
from .gateway import (
    PREDICTION_PERSONA,
    InferenceGateway,
    build_chat_messages,
    build_prediction_prompt,
    parse_prediction_reply,
)

logger = structlog.get_logger()

DEFAULT_MODEL = "gemini-1.5-flash"

CHAT_TEMPERATURE = 0.5
CHAT_MAX_OUTPUT_TOKENS = 500
PREDICTION_TEMPERATURE = 0.7

ModelFactory = Callable[[str, Dict[str, Any]], Any]


def to_gemini_contents(chat_messages: List[Dict[str, str]]) -> List[Dict[str, Any]]:
    """Convert role/content pairs (minus the system entry) to Gemini contents."""
    return [
        {"role": "model" if entry["role"] == "assistant" else "user", "parts": [entry["content"]]}
        for entry in chat_messages
        if entry["role"] != "system"
    ]


class GeminiGateway(InferenceGateway):
    """Gemini-backed gateway. Holds configuration only, no per-call state."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = DEFAULT_MODEL,
        advice_language: str = "Arabic",
        model_factory: Optional[ModelFactory] = None,
    ) -> None:
        self.model_name = model_name
        self.advice_language = advice_language
        if model_factory is None:
            if api_key:
                genai.configure(api_key=api_key)
            model_factory = self._gemini_model
        self._model_factory = model_factory
        logger.info("llm_gateway_init", model=model_name, api_key_configured=bool(api_key))

    def _gemini_model(self, system_instruction: str, generation_config: Dict[str, Any]) -> Any:
        return genai.GenerativeModel(
            self.model_name,
            system_instruction=system_instruction,
            generation_config=genai.GenerationConfig(**generation_config),
        )

    async def _generate(
        self,
        operation: str,
        system_instruction: str,
        contents: List[Dict[str, Any]],
        generation_config: Dict[str, Any],
    ) -> str:
        try:
            model = self._model_factory(system_instruction, generation_config)
            response = await model.generate_content_async(contents)
            text = response.text
        except exceptions.GoogleAPIError as e:
            logger.error("llm_request_failed", operation=operation, error=str(e))
            raise GatewayError(f"{operation} request failed: {e}") from e
        except GoogleAuthError as e:
            logger.error("llm_credentials_rejected", operation=operation, error=str(e))
            raise GatewayError(f"{operation} request was not authorized: {e}") from e
        except (asyncio.TimeoutError, OSError) as e:
            logger.error("llm_transport_error", operation=operation, error=str(e))
            raise GatewayError(f"{operation} request could not be sent: {e}") from e
        except ValueError as e:
            # response.text raises when the candidate carries no text parts
            logger.error("llm_empty_candidate", operation=operation, error=str(e))
            raise GatewayError(f"{operation} reply had no text") from e
        except Exception as e:
            logger.exception("llm_unexpected_error", operation=operation)
            raise GatewayError(f"{operation} request failed unexpectedly: {e}") from e
        return text

    async def predict_risk(self, metrics: HealthMetrics) -> RiskPrediction:
        prompt = build_prediction_prompt(metrics, self.advice_language)
        reply = await self._generate(
            "predict",
            PREDICTION_PERSONA,
            [{"role": "user", "parts": [prompt]}],
            {"temperature": PREDICTION_TEMPERATURE},
        )
        try:
            prediction = parse_prediction_reply(reply)
        except GatewayError:
            logger.error("prediction_reply_malformed", reply_length=len(reply))
            raise
        logger.info("prediction_generated")
        return prediction

    async def chat(
        self, messages: Sequence[Message], context: Optional[UserContext] = None
    ) -> str:
        if not messages:
            raise ValidationError("Conversation is empty")
        chat_messages = build_chat_messages(messages, context)
        reply = await self._generate(
            "chat",
            chat_messages[0]["content"],
            to_gemini_contents(chat_messages),
            {"temperature": CHAT_TEMPERATURE, "max_output_tokens": CHAT_MAX_OUTPUT_TOKENS},
        )
        logger.info(
            "chat_reply_generated",
            history_length=len(messages),
            with_context=context is not None and not context.is_empty(),
            reply_length=len(reply),
        )
        return reply.strip()
