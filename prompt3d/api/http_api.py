"""
HTTP API adapter for the prompt3d generation pipeline.

Architectural role:
- Expose the single generate operation used by the UI layer.
- Enforce adapter-level input validation.
- Delegate all provider work to `core.orchestrator.PipelineOrchestrator`.
- Normalize pipeline output to JSON or SSE response contracts.

Endpoint responsibilities:
- `POST /generate`: validate `{prompt?, imageUrl?}`, run the pipeline, return
  `{modelUrl, producedBy}`.
- `POST /generate/stream`: same input; streams progress as SSE frames, then a
  `result` (or `error`) event and a `[DONE]` sentinel.
- `GET /providers`: configured provider priority with enable/credential state.

Input validation behavior:
- Body that is not a JSON object, or has non-string fields -> HTTP 400.
- Neither `prompt` nor `imageUrl` -> HTTP 400.

Error handling strategy:
- `InvalidRequest` -> HTTP 400 `{error, details}`.
- Anything else escaping the pipeline is a defect: logged with traceback and
  returned as HTTP 500 `{error, details}`.
- Provider configuration errors (unknown id in `PROVIDER_ORDER`, bad numeric
  override) surface when the orchestrator or provider list is built and get
  the same 500 `{error, details}` shape.

Concurrency:
- The blocking pipeline runs in a worker thread via `asyncio.to_thread`.
- Streaming clients that disconnect set the run's cancel event; the pipeline
  stops at its next checkpoint (before a poll tick or the next provider).

Side effects:
- Loads environment variables at import time via `load_dotenv()`.
- Request/response debug logging is opt-in via `DEBUG == "true"`.
"""

from dotenv import load_dotenv

load_dotenv()

import asyncio
import json
import logging
import os
import threading

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError

from prompt3d.core.errors import GenerationCancelled, InvalidRequest
from prompt3d.core.orchestrator import PipelineOrchestrator
from prompt3d.core.types import GenerationRequest, ImageReference
from prompt3d.providers.registry import describe_providers

logger = logging.getLogger(__name__)

app = FastAPI(title="prompt3d")
DEBUG = os.getenv("DEBUG") == "true"

MISSING_INPUT_ERROR = "A text prompt or an image URL is required."
GENERATION_ERROR = "Failed to generate 3D model"
CONFIGURATION_ERROR = "Invalid provider configuration"


# ============================================================
# Orchestrator wiring
# ============================================================

_DEFAULT_ORCHESTRATOR: PipelineOrchestrator | None = None


def set_orchestrator(orchestrator: PipelineOrchestrator | None) -> None:
    """Override or clear the orchestrator used by request handlers."""
    global _DEFAULT_ORCHESTRATOR
    _DEFAULT_ORCHESTRATOR = orchestrator


def get_orchestrator() -> PipelineOrchestrator:
    """Lazily build and cache the default orchestrator from configuration."""
    global _DEFAULT_ORCHESTRATOR
    if _DEFAULT_ORCHESTRATOR is None:
        _DEFAULT_ORCHESTRATOR = PipelineOrchestrator()
    return _DEFAULT_ORCHESTRATOR


# ============================================================
# Request Schema
# ============================================================

class GenerateBody(BaseModel):
    """Body accepted by both generate endpoints."""

    prompt: str | None = None
    imageUrl: str | None = None

    def to_request(self) -> GenerationRequest:
        image = ImageReference.from_url(self.imageUrl.strip()) if self.imageUrl and self.imageUrl.strip() else None
        return GenerationRequest(prompt=self.prompt, source_image=image)


def _error(status_code: int, error: str, details: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "details": details})


async def _parse_generation_request(request: Request):
    """Return a valid `GenerationRequest` or the 400 response to send instead."""
    try:
        body = await request.json()
    except ValueError:
        return None, _error(400, MISSING_INPUT_ERROR, "Request body must be JSON.")

    try:
        parsed = GenerateBody.model_validate(body)
    except ValidationError as err:
        return None, _error(400, MISSING_INPUT_ERROR, str(err))

    generation_request = parsed.to_request()
    if not generation_request.is_valid:
        return None, _error(400, MISSING_INPUT_ERROR, "Provide 'prompt' and/or 'imageUrl'.")

    if DEBUG:
        logger.info("Generate request: prompt=%r imageUrl=%r", parsed.prompt, parsed.imageUrl)

    return generation_request, None


def _result_payload(result) -> dict:
    return {"modelUrl": result.model_reference, "producedBy": result.produced_by}


# ============================================================
# Provider Listing
# ============================================================

@app.get("/providers")
def list_providers():
    """Return configured providers in priority order."""
    try:
        providers = describe_providers()
    except Exception as err:
        logger.exception("Provider configuration error")
        return _error(500, CONFIGURATION_ERROR, str(err))
    return {"object": "list", "data": providers}


# ============================================================
# Generate
# ============================================================

@app.post("/generate")
async def generate(request: Request):
    """
    Run the provider-fallback pipeline for one request.

    Response formatting:
    - 200 `{modelUrl, producedBy}`
    - 400 `{error, details}` for missing/invalid input
    - 500 `{error, details}` for pipeline defects
    """
    generation_request, error_response = await _parse_generation_request(request)
    if error_response is not None:
        return error_response

    try:
        orchestrator = get_orchestrator()
        run = await asyncio.to_thread(orchestrator.run, generation_request)
    except InvalidRequest as err:
        return _error(400, MISSING_INPUT_ERROR, str(err))
    except Exception as err:
        logger.exception("3D generation pipeline error")
        return _error(500, GENERATION_ERROR, str(err))

    if DEBUG:
        logger.info(
            "Generate result: %s via %s after %d attempts",
            run.result.model_reference,
            run.result.produced_by,
            len(run.attempts),
        )

    return _result_payload(run.result)


@app.post("/generate/stream")
async def generate_stream(request: Request):
    """
    Run the pipeline and stream progress as Server-Sent Events.

    Frames:
    - `data: {"percent", "message", "provider"}` per progress event
    - `event: result` with `{modelUrl, producedBy}` on completion
    - `event: error` with `{error, details}` on a pipeline defect
    - `data: [DONE]` sentinel
    """
    generation_request, error_response = await _parse_generation_request(request)
    if error_response is not None:
        return error_response

    try:
        orchestrator = get_orchestrator()
    except Exception as err:
        logger.exception("Provider configuration error")
        return _error(500, GENERATION_ERROR, str(err))

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    cancel_event = threading.Event()

    def on_progress(progress):
        loop.call_soon_threadsafe(queue.put_nowait, ("progress", progress))

    async def run_pipeline():
        try:
            run = await asyncio.to_thread(
                orchestrator.run, generation_request, on_progress, cancel_event
            )
            await queue.put(("result", run.result))
        except GenerationCancelled:
            await queue.put(("cancelled", None))
        except Exception as err:
            logger.exception("3D generation pipeline error")
            await queue.put(("error", err))

    async def event_generator():
        """
        Yield SSE frames until the pipeline finishes.

        Side effects:
        - Sets the cancel event when the client disconnects or the stream is
          cancelled, so the worker thread stops at its next checkpoint.
        """
        worker = asyncio.create_task(run_pipeline())
        try:
            while True:
                kind, item = await queue.get()

                if await request.is_disconnected():
                    if DEBUG:
                        logger.info("Client disconnected during stream.")
                    cancel_event.set()
                    return

                if kind == "progress":
                    frame = {
                        "percent": round(item.percent, 1),
                        "message": item.message,
                        "provider": item.provider_id,
                    }
                    yield f"data: {json.dumps(frame)}\n\n"
                    continue

                if kind == "result":
                    yield f"event: result\ndata: {json.dumps(_result_payload(item))}\n\n"
                elif kind == "error":
                    frame = {"error": GENERATION_ERROR, "details": str(item)}
                    yield f"event: error\ndata: {json.dumps(frame)}\n\n"

                yield "data: [DONE]\n\n"
                return
        except (asyncio.CancelledError, BrokenPipeError, ConnectionResetError):
            if DEBUG:
                logger.info("Streaming cancelled by client.")
            cancel_event.set()
            return
        finally:
            if not worker.done():
                cancel_event.set()

    return StreamingResponse(event_generator(), media_type="text/event-stream")
