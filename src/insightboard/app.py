"""FastAPI application exposing insight analysis, jobs, saved boards and chats."""

from __future__ import annotations

import logging
from typing import Any, Callable

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from .auth import Identity, resolve_identity
from .boards import InsightBoardStore
from .config import Settings
from .conversations import ConversationMessage, ConversationStore
from .errors import ServiceError
from .extraction import UnsupportedFormatError, extract_text, format_file_size
from .gateway import AIGateway, analyze
from .models import CHAT_ROLES, AnalysisRequest, ChatTurn, InsightResult, ModelParams
from .observability import MetricsRecorder
from .request_queue import InsightRequestQueue
from .validation import ValidationOptions

logger = logging.getLogger(__name__)

CHAT_FALLBACK_REPLY = "Sorry, the model could not answer right now. Please try again."

_LOGGING_CONFIGURED = False


def _ensure_logging() -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    package_logger = logging.getLogger("insightboard")
    uvicorn_logger = logging.getLogger("uvicorn.error")

    handlers = list(uvicorn_logger.handlers)
    if handlers:
        package_logger.handlers = []
        for handler in handlers:
            package_logger.addHandler(handler)
    else:
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        package_logger.addHandler(handler)

    if package_logger.level == logging.NOTSET or package_logger.level > logging.INFO:
        package_logger.setLevel(logging.INFO)
    package_logger.propagate = False
    _LOGGING_CONFIGURED = True


class ApplicationState:
    """Container for runtime dependencies used by the FastAPI app."""

    def __init__(
        self,
        *,
        settings: Settings,
        gateway: AIGateway,
        queue: InsightRequestQueue,
        board_store: InsightBoardStore,
        chat_store: ConversationStore,
        dialogue_store: ConversationStore,
        validation: ValidationOptions,
        metrics: MetricsRecorder | None,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.queue = queue
        self.board_store = board_store
        self.chat_store = chat_store
        self.dialogue_store = dialogue_store
        self.validation = validation
        self.metrics = metrics


def _service_error_response(exc: ServiceError) -> JSONResponse:
    return JSONResponse(exc.to_payload(), status_code=exc.status_code)


def create_app(
    *,
    settings: Settings | None = None,
    gateway: AIGateway | None = None,
    queue: InsightRequestQueue | None = None,
    board_store: InsightBoardStore | None = None,
    chat_store: ConversationStore | None = None,
    dialogue_store: ConversationStore | None = None,
    metrics: MetricsRecorder | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The app owns the lifetime of the gateway and the request queue; both are
    closed by the shutdown hook.
    """

    _ensure_logging()

    settings = settings or Settings.from_env()
    metrics = metrics or settings.build_metrics_recorder()
    validation = settings.validation_options()
    gateway = gateway or AIGateway(settings.gateway_config(), metrics=metrics)
    queue = queue or InsightRequestQueue(
        gateway.execute,
        max_concurrent=settings.queue_max_concurrent,
        validation=validation,
        progress_interval=settings.queue_progress_interval,
        max_history=settings.queue_max_history,
        metrics=metrics,
    )
    board_store = board_store or InsightBoardStore(settings.board_store_path())
    chat_store = chat_store or ConversationStore(settings.conversation_store_path(), kind="chat")
    dialogue_store = dialogue_store or ConversationStore(settings.conversation_store_path(), kind="dialogue")
    logger.info(
        "app.start upstream=%s mock=%s max_concurrent=%s",
        settings.ollama_base_url,
        settings.use_mock_data,
        queue.max_concurrent,
    )

    app = FastAPI()
    app.state.services = ApplicationState(
        settings=settings,
        gateway=gateway,
        queue=queue,
        board_store=board_store,
        chat_store=chat_store,
        dialogue_store=dialogue_store,
        validation=validation,
        metrics=metrics,
    )

    @app.on_event("shutdown")
    async def _shutdown_services() -> None:
        await queue.shutdown()
        await gateway.aclose()

    def get_state(request: Request) -> ApplicationState:
        return request.app.state.services

    def get_settings_dependency(request: Request) -> Settings:
        return get_state(request).settings

    def get_gateway(request: Request) -> AIGateway:
        return get_state(request).gateway

    def get_queue(request: Request) -> InsightRequestQueue:
        return get_state(request).queue

    def get_board_store(request: Request) -> InsightBoardStore:
        return get_state(request).board_store

    def get_chat_store(request: Request) -> ConversationStore:
        return get_state(request).chat_store

    def get_dialogue_store(request: Request) -> ConversationStore:
        return get_state(request).dialogue_store

    def get_metrics(request: Request) -> MetricsRecorder | None:
        return get_state(request).metrics

    def require_identity(request: Request) -> Identity:
        identity = resolve_identity(request.headers)
        if identity is None:
            raise HTTPException(status_code=401, detail="Authentication required")
        return identity

    async def _read_analysis_request(request: Request, settings_inst: Settings) -> AnalysisRequest:
        payload = await _read_json_object(request)
        return AnalysisRequest.from_payload(
            payload,
            default_model=settings_inst.ollama_model,
            default_temperature=settings_inst.ollama_temperature,
            default_language=settings_inst.analysis_language,
        )

    @app.post("/api/insight", response_class=JSONResponse)
    async def create_insight(
        request: Request,
        identity: Identity = Depends(require_identity),
        gateway_inst: AIGateway = Depends(get_gateway),
        settings_inst: Settings = Depends(get_settings_dependency),
    ) -> JSONResponse:
        analysis_request = await _read_analysis_request(request, settings_inst)
        logger.info(
            "insight.endpoint request user=%s model=%s file=%s",
            identity.user_id,
            analysis_request.model_params.model,
            analysis_request.file_info.name if analysis_request.file_info else None,
        )
        try:
            result = await analyze(
                analysis_request,
                gateway=gateway_inst,
                validation=get_state(request).validation,
            )
        except ServiceError as exc:
            logger.warning("insight.endpoint failed user=%s kind=%s", identity.user_id, exc.kind)
            return _service_error_response(exc)
        logger.info("insight.endpoint completed user=%s duration_ms=%s", identity.user_id, result.generation_time_ms)
        return JSONResponse(result.to_payload())

    @app.post("/api/insight/jobs", response_class=JSONResponse)
    async def enqueue_insight(
        request: Request,
        identity: Identity = Depends(require_identity),
        queue_inst: InsightRequestQueue = Depends(get_queue),
        settings_inst: Settings = Depends(get_settings_dependency),
    ) -> JSONResponse:
        analysis_request = await _read_analysis_request(request, settings_inst)

        def _on_complete(result: InsightResult) -> None:
            logger.info("insight.job.completed user=%s concepts=%s", identity.user_id, len(result.key_concepts))

        def _on_error(error: ServiceError) -> None:
            logger.info("insight.job.failed user=%s kind=%s", identity.user_id, error.kind)

        try:
            entry_id = queue_inst.enqueue(analysis_request, _on_complete, _on_error)
        except RuntimeError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        entry = queue_inst.get(entry_id)
        status = entry.status if entry is not None else "pending"
        return JSONResponse({"id": entry_id, "status": status}, status_code=202)

    @app.get("/api/insight/jobs/{entry_id}", response_class=JSONResponse)
    async def get_insight_job(
        entry_id: str,
        identity: Identity = Depends(require_identity),
        queue_inst: InsightRequestQueue = Depends(get_queue),
    ) -> JSONResponse:
        entry = queue_inst.get(entry_id)
        if entry is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return JSONResponse(entry.to_payload())

    @app.delete("/api/insight/jobs/{entry_id}", response_class=JSONResponse)
    async def cancel_insight_job(
        entry_id: str,
        identity: Identity = Depends(require_identity),
        queue_inst: InsightRequestQueue = Depends(get_queue),
    ) -> JSONResponse:
        if queue_inst.cancel(entry_id):
            return JSONResponse({"id": entry_id, "canceled": True})
        if queue_inst.get(entry_id) is None:
            raise HTTPException(status_code=404, detail="Job not found")
        raise HTTPException(status_code=409, detail="Job has already started")

    @app.post("/api/extract-text", response_class=JSONResponse)
    async def extract_text_endpoint(
        file: UploadFile = File(...),
        identity: Identity = Depends(require_identity),
    ) -> JSONResponse:
        data = await file.read()
        filename = file.filename or "upload"
        try:
            extracted = extract_text(data, filename)
        except UnsupportedFormatError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        logger.info(
            "extraction.endpoint completed user=%s file=%s format=%s chars=%s",
            identity.user_id,
            filename,
            extracted.format,
            len(extracted.text),
        )
        return JSONResponse(
            {
                "text": extracted.text,
                "format": extracted.format,
                "fileName": filename,
                "size": format_file_size(len(data)),
                "chars": len(extracted.text),
                "stats": extracted.stats,
            }
        )

    @app.get("/api/insight-boards", response_class=JSONResponse)
    async def list_insight_boards(
        identity: Identity = Depends(require_identity),
        store: InsightBoardStore = Depends(get_board_store),
    ) -> JSONResponse:
        boards = store.list_boards(identity.user_id)
        return JSONResponse({"boards": [board.summary_payload() for board in boards]})

    @app.post("/api/insight-boards", response_class=JSONResponse)
    async def create_insight_board(
        request: Request,
        identity: Identity = Depends(require_identity),
        store: InsightBoardStore = Depends(get_board_store),
    ) -> JSONResponse:
        payload = await _read_json_object(request)
        title = str(payload.get("title") or "").strip()
        insights = payload.get("insights")
        if not title or not isinstance(insights, dict):
            raise HTTPException(status_code=400, detail="title and insights are required")
        board = store.create_board(
            user_id=identity.user_id,
            title=title,
            insights=insights,
            source_text=str(payload.get("sourceText") or ""),
            file_name=payload.get("fileName"),
            model=payload.get("model"),
            temperature=_coerce_optional_float(payload.get("temperature")),
            metadata=payload.get("metadata") if isinstance(payload.get("metadata"), dict) else None,
        )
        return JSONResponse(board.to_payload(), status_code=201)

    @app.get("/api/insight-boards/{board_id}", response_class=JSONResponse)
    async def get_insight_board(
        board_id: str,
        identity: Identity = Depends(require_identity),
        store: InsightBoardStore = Depends(get_board_store),
    ) -> JSONResponse:
        board = store.get_board(board_id, identity.user_id)
        if board is None:
            raise HTTPException(status_code=404, detail="Board not found")
        return JSONResponse(board.to_payload())

    @app.patch("/api/insight-boards/{board_id}", response_class=JSONResponse)
    async def update_insight_board(
        board_id: str,
        request: Request,
        identity: Identity = Depends(require_identity),
        store: InsightBoardStore = Depends(get_board_store),
    ) -> JSONResponse:
        payload = await _read_json_object(request)
        updates: dict[str, Any] = {}
        if "title" in payload:
            updates["title"] = payload.get("title")
        if isinstance(payload.get("metadata"), dict):
            updates["metadata"] = payload["metadata"]
        board = store.update_board(board_id, identity.user_id, **updates)
        if board is None:
            raise HTTPException(status_code=404, detail="Board not found")
        return JSONResponse(board.to_payload())

    @app.delete("/api/insight-boards/{board_id}", response_class=JSONResponse)
    async def delete_insight_board(
        board_id: str,
        identity: Identity = Depends(require_identity),
        store: InsightBoardStore = Depends(get_board_store),
    ) -> JSONResponse:
        if not store.delete_board(board_id, identity.user_id):
            raise HTTPException(status_code=404, detail="Board not found")
        return JSONResponse({"status": "deleted", "id": board_id})

    @app.post("/api/chat", response_class=JSONResponse)
    async def chat_endpoint(
        request: Request,
        identity: Identity = Depends(require_identity),
        gateway_inst: AIGateway = Depends(get_gateway),
        settings_inst: Settings = Depends(get_settings_dependency),
    ) -> JSONResponse:
        payload = await _read_json_object(request)
        message = payload.get("message")
        if not isinstance(message, str) or not message.strip():
            raise HTTPException(status_code=400, detail="message is required")
        params = ModelParams.from_payload(
            payload,
            default_model=settings_inst.ollama_model,
            default_temperature=settings_inst.ollama_temperature,
        )
        turns = _chat_turns(payload.get("history"))
        turns.append(ChatTurn(role="user", content=message))
        system_prompt = payload.get("systemPrompt")
        try:
            reply = await gateway_inst.chat(
                turns,
                model=params.model,
                temperature=params.temperature,
                system_prompt=system_prompt if isinstance(system_prompt, str) else None,
            )
        except ServiceError as exc:
            # Upstream failures still answer 200 with a fallback reply.
            logger.warning("chat.endpoint failed user=%s kind=%s", identity.user_id, exc.kind)
            return JSONResponse({"reply": CHAT_FALLBACK_REPLY, "model": params.model, **exc.to_payload()})
        logger.info("chat.endpoint completed user=%s duration_ms=%s", identity.user_id, reply.generation_time_ms)
        return JSONResponse(reply.to_payload())

    def register_conversation_routes(prefix: str, get_store: Callable[[Request], ConversationStore]) -> None:
        collection = f"/api/{prefix}"
        missing = f"{prefix[:-1].capitalize()} not found"

        async def _assistant_reply(
            store: ConversationStore,
            conversation_id: str,
            user_id: str,
            gateway_inst: AIGateway,
            settings_inst: Settings,
        ) -> ConversationMessage | None:
            conversation = store.get_conversation(conversation_id, user_id)
            if conversation is None:
                return None
            params = ModelParams.from_payload(
                {"model": conversation.model, "temperature": conversation.temperature},
                default_model=settings_inst.ollama_model,
                default_temperature=settings_inst.ollama_temperature,
            )
            metadata: dict[str, Any] = {"model": params.model}
            try:
                reply = await gateway_inst.chat(
                    conversation.history(),
                    model=params.model,
                    temperature=params.temperature,
                    system_prompt=conversation.system_prompt,
                )
            except ServiceError as exc:
                logger.warning(
                    "conversation.reply failed kind=%s id=%s error=%s",
                    store.kind,
                    conversation_id,
                    exc.kind,
                )
                content = CHAT_FALLBACK_REPLY
                metadata["error"] = exc.kind
            else:
                content = reply.content
                metadata["generationTimeMs"] = reply.generation_time_ms
            return store.add_message(conversation_id, user_id, role="assistant", content=content, metadata=metadata)

        @app.get(collection, response_class=JSONResponse)
        async def list_conversations(
            identity: Identity = Depends(require_identity),
            store: ConversationStore = Depends(get_store),
        ) -> JSONResponse:
            conversations = store.list_conversations(identity.user_id)
            return JSONResponse({prefix: [item.summary_payload() for item in conversations]})

        @app.post(collection, response_class=JSONResponse)
        async def create_conversation(
            request: Request,
            identity: Identity = Depends(require_identity),
            store: ConversationStore = Depends(get_store),
        ) -> JSONResponse:
            payload = await _read_json_object(request)
            metadata = payload.get("metadata")
            system_prompt = payload.get("systemPrompt")
            initial_message = payload.get("initialMessage")
            conversation = store.create_conversation(
                user_id=identity.user_id,
                title=str(payload.get("title") or ""),
                model=str(payload["model"]) if payload.get("model") else None,
                system_prompt=system_prompt if isinstance(system_prompt, str) else None,
                temperature=_coerce_optional_float(payload.get("temperature")),
                metadata=metadata if isinstance(metadata, dict) else None,
                initial_message=initial_message if isinstance(initial_message, str) else None,
            )
            return JSONResponse(conversation.to_payload(), status_code=201)

        @app.get(collection + "/{conversation_id}", response_class=JSONResponse)
        async def get_conversation(
            conversation_id: str,
            identity: Identity = Depends(require_identity),
            store: ConversationStore = Depends(get_store),
        ) -> JSONResponse:
            conversation = store.get_conversation(conversation_id, identity.user_id)
            if conversation is None:
                raise HTTPException(status_code=404, detail=missing)
            return JSONResponse(conversation.to_payload())

        @app.api_route(collection + "/{conversation_id}", methods=["PUT", "PATCH"], response_class=JSONResponse)
        async def update_conversation(
            conversation_id: str,
            request: Request,
            identity: Identity = Depends(require_identity),
            store: ConversationStore = Depends(get_store),
        ) -> JSONResponse:
            payload = await _read_json_object(request)
            updates: dict[str, Any] = {}
            if "title" in payload:
                updates["title"] = payload.get("title")
            if "model" in payload:
                updates["model"] = str(payload["model"]) if payload.get("model") else None
            if "systemPrompt" in payload:
                prompt = payload.get("systemPrompt")
                updates["system_prompt"] = prompt if isinstance(prompt, str) else None
            if "temperature" in payload:
                updates["temperature"] = _coerce_optional_float(payload.get("temperature"))
            if isinstance(payload.get("metadata"), dict):
                updates["metadata"] = payload["metadata"]
            conversation = store.update_conversation(conversation_id, identity.user_id, **updates)
            if conversation is None:
                raise HTTPException(status_code=404, detail=missing)
            return JSONResponse(conversation.to_payload())

        @app.delete(collection + "/{conversation_id}", response_class=JSONResponse)
        async def delete_conversation(
            conversation_id: str,
            identity: Identity = Depends(require_identity),
            store: ConversationStore = Depends(get_store),
        ) -> JSONResponse:
            if not store.delete_conversation(conversation_id, identity.user_id):
                raise HTTPException(status_code=404, detail=missing)
            return JSONResponse({"status": "deleted", "id": conversation_id})

        @app.get(collection + "/{conversation_id}/messages", response_class=JSONResponse)
        async def list_messages(
            conversation_id: str,
            identity: Identity = Depends(require_identity),
            store: ConversationStore = Depends(get_store),
        ) -> JSONResponse:
            conversation = store.get_conversation(conversation_id, identity.user_id)
            if conversation is None:
                raise HTTPException(status_code=404, detail=missing)
            return JSONResponse({"messages": [message.to_payload() for message in conversation.messages]})

        @app.post(collection + "/{conversation_id}/messages", response_class=JSONResponse)
        async def add_message(
            conversation_id: str,
            request: Request,
            identity: Identity = Depends(require_identity),
            store: ConversationStore = Depends(get_store),
            gateway_inst: AIGateway = Depends(get_gateway),
            settings_inst: Settings = Depends(get_settings_dependency),
        ) -> JSONResponse:
            payload = await _read_json_object(request)
            content = payload.get("content")
            if not isinstance(content, str) or not content.strip():
                raise HTTPException(status_code=400, detail="Message content is required")
            role = payload.get("role") or "user"
            if role not in ("user", "assistant"):
                raise HTTPException(status_code=400, detail='Invalid role. Must be "user" or "assistant"')
            message = store.add_message(conversation_id, identity.user_id, role=role, content=content)
            if message is None:
                raise HTTPException(status_code=404, detail=missing)

            reply = None
            if role == "user" and payload.get("generateAiResponse") is True:
                reply = await _assistant_reply(store, conversation_id, identity.user_id, gateway_inst, settings_inst)
            return JSONResponse(
                {"message": message.to_payload(), "aiMessage": reply.to_payload() if reply else None},
                status_code=201,
            )

        @app.delete(collection + "/{conversation_id}/messages", response_class=JSONResponse)
        async def clear_messages(
            conversation_id: str,
            keep_system: bool = Query(True, alias="keepSystem"),
            identity: Identity = Depends(require_identity),
            store: ConversationStore = Depends(get_store),
        ) -> JSONResponse:
            removed = store.clear_messages(conversation_id, identity.user_id, keep_system=keep_system)
            if removed is None:
                raise HTTPException(status_code=404, detail=missing)
            return JSONResponse({"status": "cleared", "deletedCount": removed})

        @app.delete(collection + "/{conversation_id}/messages/{message_id}", response_class=JSONResponse)
        async def delete_message(
            conversation_id: str,
            message_id: str,
            identity: Identity = Depends(require_identity),
            store: ConversationStore = Depends(get_store),
        ) -> JSONResponse:
            if not store.delete_message(conversation_id, identity.user_id, message_id):
                raise HTTPException(status_code=404, detail="Message not found")
            return JSONResponse({"status": "deleted", "id": message_id})

    register_conversation_routes("chats", get_chat_store)
    register_conversation_routes("dialogues", get_dialogue_store)

    @app.get("/metrics")
    async def metrics_endpoint(metrics_inst: MetricsRecorder | None = Depends(get_metrics)) -> Response:
        if metrics_inst is None or not metrics_inst.prometheus_enabled:
            raise HTTPException(status_code=404, detail="Metrics export disabled")
        return Response(content=metrics_inst.render_prometheus(), media_type=metrics_inst.prometheus_content_type)

    return app


async def _read_json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Request body must be JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return payload


def _chat_turns(items: Any) -> list[ChatTurn]:
    """Keep the well-formed ``{role, content}`` items of a client supplied history."""

    if not isinstance(items, list):
        return []
    turns: list[ChatTurn] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        content = item.get("content")
        if role in CHAT_ROLES and isinstance(content, str):
            turns.append(ChatTurn(role=role, content=content))
    return turns


def _coerce_optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


__all__ = ["ApplicationState", "create_app"]
