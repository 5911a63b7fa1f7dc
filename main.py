import json
import logging
from typing import Any, AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, settings
from errors import (
    INVALID_REQUEST_ERROR,
    BackendStatusError,
    InvalidRequest,
    NormalizedError,
    classify_failure,
)
from models import ChatRequest, OpenAIModel, OpenAIModelList
from routing import ModelRouter
from streaming import StreamTranslator, translate_stream
from transforms import RequestTransformer, ResponseNormalizer


# --- Logging Setup ---
def configure_logging(level_name: str) -> int:
    """Configures root logging from a level name; NONE silences everything."""
    log_level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
        "NONE": logging.CRITICAL + 1,  # Effectively disable logging
    }
    log_level = log_level_map.get(level_name.upper(), logging.INFO)  # Default to INFO if invalid

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        # uvicorn configures logging too
        force=True,
    )
    return log_level


log_level = configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)
logger.info(f"Logging configured with level: {logging.getLevelName(log_level)}")
# --- End Logging Setup ---


def create_app(
    app_settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Builds the gateway app. Feature toggles are read from app_settings once,
    here, and handed to the translation components. `transport` replaces the
    network transport of every outbound httpx client.
    """
    app_settings = app_settings or settings

    app = FastAPI(
        title="OpenAI to NVIDIA NIM Proxy",
        description="OpenAI compatible chat completions in front of the NVIDIA NIM API.",
        version="1.0.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = app_settings
    app.state.backend_transport = transport
    app.state.router = ModelRouter.from_settings(app_settings)
    app.state.request_transformer = RequestTransformer.from_settings(app_settings)
    app.state.response_normalizer = ResponseNormalizer.from_settings(app_settings)

    if not app_settings.NIM_API_KEY:
        logger.warning("NIM_API_KEY is not configured. Backend requests will be unauthenticated.")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        status_code, message = exc.status_code, str(exc.detail)
        # A known path with the wrong method is reported like an unknown path
        if status_code in (404, 405):
            status_code, message = 404, f"Endpoint {request.url.path} not found"
        error = NormalizedError(http_status=status_code, message=message, kind=INVALID_REQUEST_ERROR)
        return error.to_response()

    @app.get("/")
    async def root():
        """Root endpoint for connection tests."""
        return {
            "status": "ok",
            "service": app_settings.SERVICE_NAME,
            "message": "Proxy is running. Use /v1/chat/completions endpoint.",
        }

    @app.get("/health")
    async def health_check():
        """Health check including the current feature toggles."""
        return {
            "status": "ok",
            "service": app_settings.SERVICE_NAME,
            "reasoning_display": app_settings.SHOW_REASONING,
            "thinking_mode": app_settings.ENABLE_THINKING_MODE,
        }

    @app.get("/v1/models", response_model=OpenAIModelList)
    async def get_models():
        """Lists the client-facing model names in the OpenAI API format."""
        router: ModelRouter = app.state.router
        return OpenAIModelList(
            data=[
                OpenAIModel(id=name, owned_by=app_settings.MODEL_OWNER)
                for name in router.client_models()
            ]
        )

    @app.post("/v1/chat/completions")
    async def chat_completions(request: Request):
        """
        Translates an OpenAI chat completion request for the NIM backend and the
        backend's answer (JSON or SSE stream) back into OpenAI format.
        """
        try:
            chat_request = await _parse_chat_request(request)
            logger.info(
                f"[REQUEST] Model: {chat_request.model}, Stream: {chat_request.stream}, "
                f"MaxTokens: {chat_request.max_tokens}"
            )

            backend_model = app.state.router.resolve(chat_request.model)
            logger.info(f"[NIM] Using model: {backend_model}")
            backend_request = app.state.request_transformer.build(chat_request, backend_model)
            logger.debug(f"Backend payload: {backend_request.to_payload()}")

            if chat_request.stream:
                return await _stream_chat_completion(app, backend_request.to_payload())
            return await _chat_completion(app, backend_request.to_payload(), chat_request.model)

        except Exception as e:
            if not isinstance(e, (InvalidRequest, BackendStatusError)):
                logger.exception(f"Error in chat_completions: {e}")
            return classify_failure(e).to_response()

    return app


async def _parse_chat_request(request: Request) -> ChatRequest:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidRequest("Invalid JSON body")
    try:
        return ChatRequest.model_validate(body)
    except ValidationError as e:
        raise InvalidRequest(f"Invalid request body: {e.errors(include_url=False)}")


def _backend_client(app: FastAPI) -> httpx.AsyncClient:
    app_settings: Settings = app.state.settings
    headers = {"Content-Type": "application/json"}
    if app_settings.NIM_API_KEY:
        headers["Authorization"] = f"Bearer {app_settings.NIM_API_KEY}"
    return httpx.AsyncClient(
        base_url=app_settings.NIM_API_BASE.rstrip("/") + "/",
        headers=headers,
        timeout=app_settings.REQUEST_TIMEOUT,
        transport=app.state.backend_transport,
    )


def _read_error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


async def _chat_completion(app: FastAPI, payload: dict, client_model: str) -> JSONResponse:
    logger.info("[API CALL] Starting non-streaming request to NIM")
    async with _backend_client(app) as client:
        backend_response = await client.post("chat/completions", json=payload)

    logger.info(f"[NIM RESPONSE] Status: {backend_response.status_code}")
    if not backend_response.is_success:
        body = _read_error_body(backend_response)
        logger.error(f"[NIM ERROR] {backend_response.status_code}: {body}")
        raise BackendStatusError(backend_response.status_code, body)

    normalized = app.state.response_normalizer.normalize(backend_response.json(), client_model)
    return JSONResponse(content=normalized.model_dump())


async def _stream_chat_completion(app: FastAPI, payload: dict) -> StreamingResponse:
    logger.info("[API CALL] Starting streaming request to NIM")
    client = _backend_client(app)
    try:
        backend_request = client.build_request("POST", "chat/completions", json=payload)
        backend_response = await client.send(backend_request, stream=True)
    except BaseException:
        await client.aclose()
        raise

    logger.info(f"[NIM RESPONSE] Status: {backend_response.status_code}")
    if not backend_response.is_success:
        try:
            await backend_response.aread()
            body = _read_error_body(backend_response)
        finally:
            await backend_response.aclose()
            await client.aclose()
        logger.error(f"[NIM ERROR] {backend_response.status_code}: {body}")
        raise BackendStatusError(backend_response.status_code, body)

    translator = StreamTranslator.from_settings(app.state.settings)

    async def event_stream() -> AsyncGenerator[str, None]:
        try:
            async for event in translate_stream(translator, backend_response.aiter_bytes()):
                yield event
        finally:
            # Also reached when the client disconnects and the generator is cancelled
            await backend_response.aclose()
            await client.aclose()

    logger.info("[STREAM] Starting stream response")
    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


app = create_app()


def run() -> None:
    import uvicorn

    logger.info(f"{settings.SERVICE_NAME} running on port {settings.PORT}")
    logger.info(f"Health check: http://localhost:{settings.PORT}/health")
    logger.info(f"Reasoning display: {'ENABLED' if settings.SHOW_REASONING else 'DISABLED'}")
    logger.info(f"Thinking mode: {'ENABLED' if settings.ENABLE_THINKING_MODE else 'DISABLED'}")
    uvicorn_level = logging.getLevelName(min(log_level, logging.CRITICAL)).lower()
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=uvicorn_level)


if __name__ == "__main__":
    run()
