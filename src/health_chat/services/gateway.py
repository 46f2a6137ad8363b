"""Inference gateway interface and the prompt/reply handling shared by gateways."""

import json
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from ..domain.errors import MalformedReplyError
from ..domain.models import HealthMetrics, Message, RiskPrediction, UserContext

CHAT_PERSONA = """You are a professional doctor providing medical advice. Use the provided user data for context to give personalized responses.

- For medical questions, provide detailed, accurate advice.
- For data requests (e.g. 'my data', 'show my information'), provide the user's data in a structured format.
- Politely decline to answer non-medical questions, stating that you can only provide medical advice.
- Reply in the language the user writes in.

Ensure all responses are professional, friendly, and formatted in Markdown.

Examples:
- User: 'What should I do about my headache?'
  AI: 'Based on your medical history, it might be caused by tension. I recommend trying over-the-counter pain relievers and relaxation techniques.'
- User: 'Can you provide my medical information?'
  AI: 'Here is your medical data: [data in Markdown format]'
- User: 'What is the capital of Canada?'
  AI: 'I am here to provide medical advice. For non-medical questions, please consult another source.'"""

PREDICTION_PERSONA = "You are a medical AI assistant providing structured health predictions."

PREDICTION_FIELDS = ("diabetes_risk", "hypertension_risk", "advice")

_OPENING_FENCE = re.compile(r"^\s*```[\w+-]*")
_CLOSING_FENCE = re.compile(r"```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove a leading and a trailing Markdown code fence, each if present."""
    text = _OPENING_FENCE.sub("", text, count=1)
    return _CLOSING_FENCE.sub("", text, count=1).strip()


def render_context_block(context: Optional[UserContext]) -> str:
    """Render the user documents as a Markdown block for the system instruction."""
    context = context or UserContext()
    sections = (
        ("User Profile", context.profile, "No user data available"),
        ("Lifestyle Data", context.lifestyle, "No lifestyle data available"),
        ("Medical History", context.medical_history, "No medical history available"),
    )
    parts = []
    for title, document, fallback in sections:
        if document:
            body = "```json\n" + json.dumps(document, indent=2, ensure_ascii=False, default=str) + "\n```"
        else:
            body = fallback
        parts.append(f"### {title}:\n{body}")
    return "\n\n".join(parts)


def build_chat_system_instruction(context: Optional[UserContext]) -> str:
    return f"{CHAT_PERSONA}\n\nUser Data Context:\n{render_context_block(context)}"


def build_chat_messages(
    messages: Sequence[Message], context: Optional[UserContext] = None
) -> List[Dict[str, str]]:
    """Map a conversation to role/content pairs, system instruction first."""
    return [{"role": "system", "content": build_chat_system_instruction(context)}] + [
        {"role": message.sender.role, "content": message.text} for message in messages
    ]


def build_prediction_prompt(metrics: HealthMetrics, advice_language: str = "Arabic") -> str:
    return f"""Based on the user's health data:
- Age: {metrics.age}
- Weight: {metrics.weight}kg
- Blood Pressure: {metrics.blood_pressure}
- Heart Rate: {metrics.heart_rate}

Predict the likelihood of developing diabetes and hypertension as a percentage.
Also, provide advice on how to prevent or manage these diseases in {advice_language}.

Respond **only** in JSON format with this structure:
{{
  "diabetes_risk": "percentage",
  "hypertension_risk": "percentage",
  "advice": "string"
}}"""


def parse_prediction_reply(reply: str) -> RiskPrediction:
    """Parse a (possibly fenced) JSON reply into a RiskPrediction."""
    cleaned = strip_code_fences(reply)
    try:
        payload: Any = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedReplyError(f"Prediction reply is not JSON: {e.msg}", raw_reply=reply) from e
    if not isinstance(payload, dict):
        raise MalformedReplyError("Prediction reply is not a JSON object", raw_reply=reply)
    return validate_prediction(payload, raw_reply=reply)


def validate_prediction(payload: Dict[str, Any], raw_reply: str = "") -> RiskPrediction:
    """Build a RiskPrediction from a decoded reply object."""
    try:
        return RiskPrediction(**{field: payload.get(field) for field in PREDICTION_FIELDS})
    except PydanticValidationError as e:
        raise MalformedReplyError("Prediction reply is missing fields", raw_reply=raw_reply) from e


class InferenceGateway(ABC):
    """Stateless translation of one request into one remote generation call."""

    @abstractmethod
    async def predict_risk(self, metrics: HealthMetrics) -> RiskPrediction:
        """Return the diabetes/hypertension risk prediction for ``metrics``."""
        pass

    @abstractmethod
    async def chat(
        self, messages: Sequence[Message], context: Optional[UserContext] = None
    ) -> str:
        """Return the assistant reply to the conversation ``messages``."""
        pass
