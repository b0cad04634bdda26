import asyncio
import uuid
import logging
import time
from typing import Annotated, Optional

from fastapi import FastAPI, Response, Body

from aiocache import Cache, SimpleMemoryCache
from aiocache.serializers import PickleSerializer

from config import (
    CACHE_TYPE,
    DEBUG_ENABLED,
    HEALTH_FAILURE_THRESHOLD,
    OUTPUT_DIR,
    POLL_TIMEOUT,
    WORKER_CONFIG,
    default_provider_settings,
)
from metrics import get_consecutive_failures, get_last_error
from providers import ImageProvider, StableDiffusionProvider, create_provider
from providers.errors import ImageGenerationError
from requestmodels.models import Payload, ProviderName
from responses.result import Result, TERMINAL_STATUSES
from workers.generation_worker import GenerationWorker
from workers.postprocess_worker import PostprocessWorker

# Configure logging
logging.basicConfig(level=logging.DEBUG if DEBUG_ENABLED else logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Image Generation API",
    description="Queue image generation requests against OpenAI or Stable Diffusion backends",
    version="1.0.0",
    redirect_slashes=False
)

if CACHE_TYPE == "redis":
    request_store = Cache(Cache.REDIS, namespace="request_store", serializer=PickleSerializer())
    response_store = Cache(Cache.REDIS, namespace="response_store", serializer=PickleSerializer())
else:
    request_store = SimpleMemoryCache(namespace="request_store")
    response_store = SimpleMemoryCache(namespace="response_store")

generation_queue = asyncio.Queue()
postprocess_queue = asyncio.Queue()

# Extra time a synchronous request waits beyond the provider poll deadline
SYNC_WAIT_MARGIN = 60


def get_provider(name: Optional[ProviderName] = None) -> ImageProvider:
    """Build a provider from environment configuration, optionally overriding its name."""
    return create_provider(default_provider_settings(name))


@app.on_event("startup")
async def startup_event():
    """Initialize workers on startup"""
    try:
        asyncio.create_task(main())
        logger.info("Workers initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize workers: {e}")
        raise


async def main():
    """Initialize and start all worker tasks"""
    worker_config = {
        "generation_queue": generation_queue,
        "postprocess_queue": postprocess_queue,
        "request_store": request_store,
        "response_store": response_store,
        "provider_factory": get_provider,
        "output_dir": OUTPUT_DIR,
    }

    generation_workers = [GenerationWorker(i, worker_config) for i in range(1, WORKER_CONFIG["generation_workers"] + 1)]
    generation_tasks = [asyncio.create_task(worker.work()) for worker in generation_workers]

    postprocess_workers = [PostprocessWorker(i, worker_config) for i in range(1, WORKER_CONFIG["postprocess_workers"] + 1)]
    postprocess_tasks = [asyncio.create_task(worker.work()) for worker in postprocess_workers]

    logger.info(f"Started {len(generation_workers)} generation workers")
    logger.info(f"Started {len(postprocess_workers)} postprocess workers")

    # Wait indefinitely
    try:
        await asyncio.gather(*generation_tasks, *postprocess_tasks)
    except Exception as e:
        logger.error(f"Worker task failed: {e}")
        raise


async def _enqueue(payload: Payload) -> Result:
    if not payload.input.request_id:
        payload.input.request_id = str(uuid.uuid4())
    request_id = payload.input.request_id

    result_pending = Result(id=request_id)
    await request_store.set(request_id, payload)
    await response_store.set(request_id, result_pending)
    await generation_queue.put(request_id)
    return result_pending


@app.post('/generate', response_model=Result)
async def generate(
    response: Response,
    payload: Annotated[
        Payload,
        Body(
            openapi_examples=Payload.get_openapi_examples()
        ),
    ],
):
    """Submit a new generation request (async)"""
    try:
        result_pending = await _enqueue(payload)
        logger.info(f"Queued request {result_pending.id}")
        response.status_code = 202
        return result_pending
    except Exception as e:
        request_id = payload.input.request_id or "unknown"
        logger.error(f"Failed to queue request {request_id}: {e}")
        response.status_code = 500  # Internal Server Error
        return Result(
            id=request_id,
            status="failed",
            message=f"Failed to queue request: {str(e)}"
        )


@app.post("/generate/sync", response_model=Result, status_code=200)
async def generate_sync(
    response: Response,
    payload: Annotated[
        Payload,
        Body(
            openapi_examples=Payload.get_openapi_examples()
        ),
    ],
):
    """Submit a request and wait for it to reach a terminal status"""
    result_pending = await _enqueue(payload)
    request_id = result_pending.id
    logger.info(f"Queued synchronous request {request_id}")

    deadline = time.time() + POLL_TIMEOUT + SYNC_WAIT_MARGIN
    while time.time() < deadline:
        result = await response_store.get(request_id)
        if result and result.status in TERMINAL_STATUSES:
            if result.status == "failed":
                response.status_code = 502
            return result
        await asyncio.sleep(0.5)

    # Processing continues; the client can keep polling /result
    logger.warning(f"Synchronous request {request_id} still running after {POLL_TIMEOUT + SYNC_WAIT_MARGIN:g}s")
    response.status_code = 202
    return await response_store.get(request_id)


@app.get('/result/{request_id}', response_model=Result, status_code=200)
async def result(request_id: str, response: Response):
    """Get the result of a processing request"""
    try:
        result = await response_store.get(request_id)
        if not result:
            result = Result(id=request_id, status="failed", message="Request ID not found")
            response.status_code = 404

        return result
    except Exception as e:
        logger.error(f"Failed to get result for {request_id}: {e}")
        result = Result(id=request_id, status="failed", message="Internal server error")
        response.status_code = 500
        return result


@app.get('/queue-info', response_model=dict)
async def queue_info():
    """Get information about current queue sizes"""
    return {
        "generation_queue_size": generation_queue.qsize(),
        "postprocess_queue_size": postprocess_queue.qsize(),
    }


@app.get('/health', response_model=dict)
async def health(response: Response):
    """Health check endpoint - verifies the configured image backend"""
    health_status = {
        "status": "healthy",
        "cache_type": CACHE_TYPE,
        "queues": {
            "generation": generation_queue.qsize(),
            "postprocess": postprocess_queue.qsize(),
        },
        "backend": {
            "provider": None,
            "accessible": False,
            "message": "",
        },
    }

    try:
        provider = get_provider()
        health_status["backend"] = await check_backend_health(provider)
    except ImageGenerationError as e:
        logger.error(f"Health check failed: {e}")
        health_status["backend"]["message"] = f"Configuration error: {e}"

    if not health_status["backend"]["accessible"]:
        health_status["status"] = "unhealthy"
        response.status_code = 503  # Service Unavailable
        return health_status

    # Fail health if we have consecutive generation failures >= threshold
    consecutive_failures = get_consecutive_failures()
    health_status["consecutive_failures"] = consecutive_failures
    if consecutive_failures >= HEALTH_FAILURE_THRESHOLD:
        health_status["status"] = "unhealthy"
        health_status["last_error"] = get_last_error()
        response.status_code = 503

    return health_status


async def check_backend_health(provider: ImageProvider) -> dict:
    """Minimal readiness probe for the configured provider (single attempt)."""
    name = provider.settings.name.value
    if isinstance(provider, StableDiffusionProvider):
        accessible = await provider.is_up()
        return {
            "provider": name,
            "accessible": accessible,
            "message": "HTTP reachable" if accessible else f"{provider.base_url} not reachable",
        }
    # Remote API providers are only checked for configuration
    return {"provider": name, "accessible": True, "message": "Configured"}
