"""Inference gateway that goes through the HTTP relay instead of the LLM API."""

from typing import Any, Dict, Optional, Sequence

import httpx
import structlog

from ..domain.errors import GatewayError, MalformedReplyError, ValidationError
from ..domain.models import HealthMetrics, Message, RiskPrediction, UserContext
from .gateway import InferenceGateway, validate_prediction

logger = structlog.get_logger()


class RelayClient(InferenceGateway):
    """Client of the relay's ``POST /chat`` and ``POST /predict`` endpoints.

    The relay's chat surface takes a single message, so only the latest
    message of the conversation is sent and user context stays on the device.
    """

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(f"{self.base_url}{path}", json=payload)
        except httpx.HTTPError as e:
            logger.error("relay_request_failed", path=path, error=str(e))
            raise GatewayError(f"Relay request to {path} failed: {e}") from e

        if response.is_error:
            detail = _error_detail(response)
            logger.error("relay_error_response", path=path, status_code=response.status_code, detail=detail)
            raise GatewayError(f"Relay answered {response.status_code}: {detail}")

        try:
            body = response.json()
        except ValueError as e:
            raise MalformedReplyError(f"Relay reply to {path} is not JSON", raw_reply=response.text) from e
        if not isinstance(body, dict):
            raise MalformedReplyError(f"Relay reply to {path} is not an object", raw_reply=response.text)
        return body

    async def chat(
        self, messages: Sequence[Message], context: Optional[UserContext] = None
    ) -> str:
        if not messages:
            raise ValidationError("Conversation is empty")
        body = await self._post("/chat", {"message": messages[-1].text})
        reply = body.get("response")
        if not isinstance(reply, str):
            raise MalformedReplyError("Relay chat reply has no response text", raw_reply=str(body))
        return reply.strip()

    async def predict_risk(self, metrics: HealthMetrics) -> RiskPrediction:
        body = await self._post("/predict", metrics.model_dump(by_alias=True))
        return validate_prediction(body, raw_reply=str(body))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RelayClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and "error" in body:
        return str(body["error"])
    return str(body)[:200]
