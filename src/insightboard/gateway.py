"""HTTP gateway to the upstream model backend."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Sequence

import httpx

from .errors import MalformedResponseError, RequestTimeoutError, TransportError, UpstreamHttpError
from .mock import generate_mock_insight, generate_mock_reply, mock_latency_seconds
from .models import AnalysisRequest, ChatReply, ChatTurn, InsightResult
from .normalizer import normalize
from .validation import ValidationOptions, validate_request

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """You are an expert text analyst. Analyse the provided text or topic and return structured insights.

{file_context}Respond in language: {language}.

You MUST return only a valid JSON object with exactly these three keys:

{{
  "summary": "A detailed overview of the topic or file with the main conclusions and viewpoints (300-600 characters)",
  "keyConcepts": [
    {{ "name": "Key concept 1", "color": "a CSS colour name or class", "description": "Short description of the concept" }},
    {{ "name": "Key concept 2", "color": "colour" }}
  ],
  "relatedLinks": [
    {{ "title": "Resource title 1", "url": "http://example.com/resource1" }},
    {{ "title": "Resource title 2", "url": "http://example.com/resource2" }}
  ]
}}

Provide 3-6 key concepts and 2-4 related links. Use real URLs that point to reliable resources.
For colours use standard CSS colour names or classes such as "bg-blue-500"."""

_FILE_CONTEXT = (
    'You are analysing the contents of the file "{name}", size {size} ({chars} characters).\n'
    "Take the file type, size and structure into account.\n"
    "Identify the key topics and structural elements of the file.\n\n"
)


@dataclass(frozen=True, slots=True)
class GatewayConfig:
    base_url: str = "http://localhost:11434/api"
    api_key: str | None = None
    timeout_ms: int = 30_000
    use_mock_data: bool = False


def build_system_prompt(request: AnalysisRequest) -> str:
    file_context = ""
    if request.file_info is not None:
        file_context = _FILE_CONTEXT.format(
            name=request.file_info.name,
            size=request.file_info.size_label,
            chars=request.file_info.char_count,
        )
    return _SYSTEM_PROMPT.format(file_context=file_context, language=request.language)


def build_payload(request: AnalysisRequest) -> dict[str, Any]:
    """Render the upstream ``/generate`` request body."""

    return {
        "model": request.model_params.model,
        "prompt": request.topic,
        "system": build_system_prompt(request),
        "format": "json",
        "options": {"temperature": request.model_params.temperature},
        "stream": False,
    }


def build_chat_payload(
    turns: Sequence[ChatTurn],
    *,
    model: str,
    temperature: float,
    system_prompt: str | None = None,
) -> dict[str, Any]:
    """Render the upstream ``/chat`` request body."""

    messages = [turn.to_payload() for turn in turns if turn.role != "system"]
    prompt = system_prompt or next((turn.content for turn in turns if turn.role == "system"), None)
    if prompt:
        messages.insert(0, {"role": "system", "content": prompt})
    return {
        "model": model,
        "messages": messages,
        "options": {"temperature": temperature},
        "stream": False,
    }


class AIGateway:
    """Issue analysis and chat requests to the model backend under a hard deadline."""

    def __init__(
        self,
        config: GatewayConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        metrics: "MetricsRecorder" | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config
        self._metrics = metrics
        self._rng = rng or random.Random()
        self._client = httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(max(config.timeout_ms, 1) / 1000.0),
        )

    @property
    def config(self) -> GatewayConfig:
        return self._config

    async def aclose(self) -> None:
        await self._client.aclose()

    async def execute(self, request: AnalysisRequest) -> InsightResult:
        started = time.perf_counter()
        backend = "mock" if self._config.use_mock_data else "ollama"
        try:
            if self._config.use_mock_data:
                await asyncio.sleep(mock_latency_seconds(self._rng))
                result = generate_mock_insight(str(request.topic), self._rng)
            else:
                logger.info(
                    "insight.gateway.request model=%s temperature=%.2f chars=%s file=%s",
                    request.model_params.model,
                    request.model_params.temperature,
                    len(request.topic),
                    request.file_info.name if request.file_info else None,
                )
                body = await self._post("generate", build_payload(request), request.model_params.model)
                result = normalize(body, metrics=self._metrics)
        except Exception as exc:
            self._record_error(exc, backend=backend, operation="generate")
            raise

        elapsed = time.perf_counter() - started
        if self._metrics:
            self._metrics.record_timing("insight.gateway.duration", elapsed, backend=backend)
        logger.info(
            "insight.gateway.completed backend=%s model=%s duration_ms=%s concepts=%s",
            backend,
            request.model_params.model,
            round(elapsed * 1000),
            len(result.key_concepts),
        )
        return result.with_timing(
            round(elapsed * 1000),
            request_length=len(request.topic),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    async def chat(
        self,
        turns: Sequence[ChatTurn],
        *,
        model: str,
        temperature: float,
        system_prompt: str | None = None,
    ) -> ChatReply:
        """Ask the model for the next assistant message of a conversation."""

        started = time.perf_counter()
        backend = "mock" if self._config.use_mock_data else "ollama"
        try:
            if self._config.use_mock_data:
                await asyncio.sleep(mock_latency_seconds(self._rng))
                last_user = next((turn.content for turn in reversed(turns) if turn.role == "user"), "")
                content = generate_mock_reply(last_user)
            else:
                logger.info("insight.gateway.chat model=%s turns=%s", model, len(turns))
                payload = build_chat_payload(
                    turns,
                    model=model,
                    temperature=temperature,
                    system_prompt=system_prompt,
                )
                body = await self._post("chat", payload, model)
                message = body.get("message") if isinstance(body, dict) else None
                content = message.get("content") if isinstance(message, dict) else None
                if not isinstance(content, str):
                    raise MalformedResponseError("chat reply is missing message content")
        except Exception as exc:
            self._record_error(exc, backend=backend, operation="chat")
            raise

        elapsed = time.perf_counter() - started
        if self._metrics:
            self._metrics.record_timing("insight.gateway.chat_duration", elapsed, backend=backend)
        return ChatReply(content=content, model=model, generation_time_ms=round(elapsed * 1000))

    async def _post(self, endpoint: str, payload: dict[str, Any], model: str) -> Any:
        url = f"{self._config.base_url.rstrip('/')}/{endpoint}"
        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        timeout_ms = self._config.timeout_ms

        try:
            # wait_for cancels the request task on expiry, which closes its connection.
            response = await asyncio.wait_for(
                self._client.post(url, json=payload, headers=headers),
                timeout_ms / 1000.0,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            logger.warning("insight.gateway.timeout endpoint=%s model=%s timeout_ms=%s", endpoint, model, timeout_ms)
            raise RequestTimeoutError(timeout_ms) from exc
        except httpx.TransportError as exc:
            logger.error("insight.gateway.transport_error endpoint=%s model=%s error=%s", endpoint, model, exc)
            raise TransportError(f"Upstream model request failed: {exc}") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.error("insight.gateway.request_error endpoint=%s model=%s error=%s", endpoint, model, exc)
            raise TransportError(f"Upstream model request could not be sent: {exc}") from exc

        if response.is_error:
            logger.error(
                "insight.gateway.http_error endpoint=%s model=%s status=%s",
                endpoint,
                model,
                response.status_code,
            )
            raise UpstreamHttpError(response.status_code, response.reason_phrase)

        try:
            return response.json()
        except ValueError:
            return {"response": response.text}

    def _record_error(self, exc: Exception, *, backend: str, operation: str) -> None:
        if self._metrics:
            self._metrics.increment(
                "insight.gateway.errors",
                backend=backend,
                operation=operation,
                kind=getattr(exc, "kind", type(exc).__name__),
            )


async def analyze(
    request: AnalysisRequest,
    config: GatewayConfig | None = None,
    *,
    gateway: AIGateway | None = None,
    validation: ValidationOptions | None = None,
) -> InsightResult:
    """Validate and execute a request directly, bypassing the queue.

    Either an existing ``gateway`` or a ``config`` to build a short-lived one
    must be supplied.
    """

    validate_request(request, validation)
    if gateway is not None:
        return await gateway.execute(request)
    if config is None:
        raise ValueError("analyze() requires a gateway or a gateway config")
    owned = AIGateway(config)
    try:
        return await owned.execute(request)
    finally:
        await owned.aclose()


__all__ = [
    "AIGateway",
    "GatewayConfig",
    "analyze",
    "build_chat_payload",
    "build_payload",
    "build_system_prompt",
]
