"""Test suite for prompt building, reply parsing and the Gemini gateway."""

import pytest
from google.api_core import exceptions
from google.auth.exceptions import DefaultCredentialsError

from health_chat.domain.errors import GatewayError, MalformedReplyError, ValidationError
from health_chat.domain.models import HealthMetrics, Message, RiskPrediction, Sender, UserContext
from health_chat.services.gateway import (
    CHAT_PERSONA,
    build_chat_messages,
    build_prediction_prompt,
    parse_prediction_reply,
    render_context_block,
    strip_code_fences,
)
from health_chat.services.llm import CHAT_MAX_OUTPUT_TOKENS, GeminiGateway

from fakes import FakeModelFactory

FENCED_PREDICTION = '```json\n{"diabetes_risk":"40%","hypertension_risk":"20%","advice":"x"}\n```'


def metrics() -> HealthMetrics:
    return HealthMetrics(age=54, weight=82, bp="130/85", heartRate=72)


def test_strip_code_fences():
    """Test removal of fences wrapped around a reply."""
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  ```JSON\n{"a": 1}```  ') == '{"a": 1}'
    assert strip_code_fences('{"a": 1}') == '{"a": 1}'
    assert strip_code_fences("plain text\n") == "plain text"
    # Fences are removed independently, so a truncated reply still parses
    assert strip_code_fences('```json\n{"a": 1}') == '{"a": 1}'
    assert strip_code_fences('{"a": 1}\n```') == '{"a": 1}'


def test_parse_fenced_prediction():
    """Test the fence-stripping property on a full prediction."""
    assert parse_prediction_reply(FENCED_PREDICTION) == RiskPrediction(
        diabetes_risk="40%", hypertension_risk="20%", advice="x"
    )


def test_parse_prediction_coerces_numbers():
    """Test numeric risks are returned as strings."""
    prediction = parse_prediction_reply('{"diabetes_risk": 40, "hypertension_risk": 12.5, "advice": "rest"}')
    assert prediction.diabetes_risk == "40"
    assert prediction.hypertension_risk == "12.5"


@pytest.mark.parametrize(
    "reply",
    [
        "I think your risk is low.",
        "```json\n{not valid}\n```",
        '["40%", "20%"]',
        '{"diabetes_risk": "40%", "advice": "x"}',
    ],
)
def test_parse_malformed_prediction(reply):
    """Test unparseable or incomplete replies are rejected."""
    with pytest.raises(MalformedReplyError) as exc_info:
        parse_prediction_reply(reply)
    assert exc_info.value.raw_reply == reply


def test_prediction_prompt_passes_values_through():
    """Test metrics are rendered as given, without validation."""
    prompt = build_prediction_prompt(HealthMetrics(age="fifty", weight=-3, bp="high", heartRate=0), "English")
    assert "- Age: fifty" in prompt
    assert "- Weight: -3kg" in prompt
    assert "- Blood Pressure: high" in prompt
    assert "- Heart Rate: 0" in prompt
    assert "in English" in prompt
    assert '"diabetes_risk"' in prompt


def test_context_block_renders_documents():
    """Test context documents are embedded as JSON blocks."""
    block = render_context_block(
        UserContext(profile={"name": "Sara", "age": 41}, medical_history={"conditions": ["asthma"]})
    )
    assert "### User Profile:\n```json" in block
    assert '"name": "Sara"' in block
    assert "### Lifestyle Data:\nNo lifestyle data available" in block
    assert '"asthma"' in block


def test_context_block_without_context():
    block = render_context_block(None)
    assert "No user data available" in block
    assert "No lifestyle data available" in block
    assert "No medical history available" in block


def test_build_chat_messages_maps_roles():
    """Test the system instruction leads and senders map to roles."""
    conversation = [
        Message.create(Sender.USER, "I have a headache"),
        Message.create(Sender.ASSISTANT, "How long has it lasted?"),
        Message.create(Sender.USER, "Two days"),
    ]
    chat_messages = build_chat_messages(conversation, UserContext(lifestyle={"sleep": "5h"}))

    assert [m["role"] for m in chat_messages] == ["system", "user", "assistant", "user"]
    assert chat_messages[0]["content"].startswith(CHAT_PERSONA)
    assert '"sleep": "5h"' in chat_messages[0]["content"]
    assert [m["content"] for m in chat_messages[1:]] == ["I have a headache", "How long has it lasted?", "Two days"]


@pytest.mark.asyncio
async def test_gemini_chat_sends_history_and_context():
    """Test one chat call produces one model request in Gemini format."""
    factory = FakeModelFactory("  **Rest** and drink water.\n")
    gateway = GeminiGateway(model_factory=factory)
    conversation = [
        Message.create(Sender.USER, "hello"),
        Message.create(Sender.ASSISTANT, "hi there"),
        Message.create(Sender.USER, "my head hurts"),
    ]

    reply = await gateway.chat(conversation, UserContext(profile={"name": "Sara"}))

    assert reply == "**Rest** and drink water."
    assert len(factory.calls) == 1
    call = factory.calls[0]
    assert call["contents"] == [
        {"role": "user", "parts": ["hello"]},
        {"role": "model", "parts": ["hi there"]},
        {"role": "user", "parts": ["my head hurts"]},
    ]
    assert "User Data Context" in call["system_instruction"]
    assert '"name": "Sara"' in call["system_instruction"]
    assert call["generation_config"]["max_output_tokens"] == CHAT_MAX_OUTPUT_TOKENS


@pytest.mark.asyncio
async def test_gemini_chat_rejects_empty_conversation():
    gateway = GeminiGateway(model_factory=FakeModelFactory())
    with pytest.raises(ValidationError):
        await gateway.chat([])


@pytest.mark.asyncio
async def test_gemini_predict_parses_fenced_reply():
    """Test prediction requests strip fences before parsing."""
    factory = FakeModelFactory(FENCED_PREDICTION)
    gateway = GeminiGateway(model_factory=factory, advice_language="Arabic")

    prediction = await gateway.predict_risk(metrics())

    assert prediction.diabetes_risk == "40%"
    assert prediction.advice == "x"
    assert "- Blood Pressure: 130/85" in factory.calls[0]["contents"][0]["parts"][0]
    assert "in Arabic" in factory.calls[0]["contents"][0]["parts"][0]


@pytest.mark.asyncio
async def test_gemini_predict_malformed_reply():
    gateway = GeminiGateway(model_factory=FakeModelFactory("Sorry, I cannot help with that."))
    with pytest.raises(MalformedReplyError):
        await gateway.predict_risk(metrics())


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "failure",
    [
        exceptions.ServiceUnavailable("backend down"),
        exceptions.PermissionDenied("bad key"),
        exceptions.DeadlineExceeded("too slow"),
        DefaultCredentialsError("no credentials found"),
        RuntimeError("unexpected client state"),
        ConnectionResetError("reset by peer"),
        None,  # candidate without text
    ],
)
async def test_gemini_failures_become_gateway_errors(failure):
    """Test transport and API failures surface as GatewayError, single attempt."""
    factory = FakeModelFactory(failure, "never used")
    gateway = GeminiGateway(model_factory=factory)

    with pytest.raises(GatewayError) as exc_info:
        await gateway.chat([Message.create(Sender.USER, "hello")])

    assert not isinstance(exc_info.value, MalformedReplyError)
    assert len(factory.calls) == 1
    assert factory.outcomes == ["never used"]


@pytest.mark.asyncio
async def test_gemini_model_construction_failure_becomes_gateway_error():
    """Test credential errors raised while building the model are translated."""

    def refusing_factory(system_instruction, generation_config):
        raise DefaultCredentialsError("no credentials found")

    gateway = GeminiGateway(model_factory=refusing_factory)
    with pytest.raises(GatewayError):
        await gateway.predict_risk(metrics())


def test_parse_prediction_with_unclosed_fence():
    """Test a reply cut off before its closing fence still parses."""
    reply = '```json\n{"diabetes_risk":"40%","hypertension_risk":"20%","advice":"x"}'
    assert parse_prediction_reply(reply).diabetes_risk == "40%"
