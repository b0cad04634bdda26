# generation_worker
import logging
import time

from metrics import record_generation_outcome
from providers.errors import ImageGenerationError

logger = logging.getLogger(__name__)


class GenerationWorker:
    """
    Run the selected image provider for a request and hand the image to postprocessing
    """
    def __init__(self, worker_id, kwargs):
        self.worker_id = worker_id
        self.generation_queue = kwargs["generation_queue"]
        self.postprocess_queue = kwargs["postprocess_queue"]
        self.request_store = kwargs["request_store"]
        self.response_store = kwargs["response_store"]
        # Callable: Optional[ProviderName] -> ImageProvider
        self.provider_factory = kwargs["provider_factory"]

    async def work(self):
        logger.info(f"GenerationWorker {self.worker_id}: waiting for jobs")
        while True:
            # Get a task from the job queue
            request_id = await self.generation_queue.get()
            if request_id is None:
                # None is a signal that there are no more tasks
                self.generation_queue.task_done()
                break

            logger.info(f"GenerationWorker {self.worker_id} processing job: {request_id}")

            try:
                await self.process(request_id)
            except Exception as e:
                logger.error(f"GenerationWorker {self.worker_id} failed job {request_id}: {e}")
                record_generation_outcome(False, str(e))
                await self._mark_failed(request_id, e)
            finally:
                self.generation_queue.task_done()

        logger.info(f"GenerationWorker {self.worker_id} finished")

    async def _mark_failed(self, request_id: str, error: Exception) -> None:
        try:
            result = await self.response_store.get(request_id)
            if result:
                result.status = "failed"
                result.error = type(error).__name__
                result.message = f"Generation failed: {error}"
                await self.response_store.set(request_id, result)
        except Exception as store_error:
            logger.error(f"Failed to update result store for {request_id}: {store_error}")

    async def process(self, request_id: str) -> None:
        request = await self.request_store.get(request_id)
        result = await self.response_store.get(request_id)

        if not request:
            raise KeyError(f"Request {request_id} not found in store")
        if not result:
            raise KeyError(f"Result {request_id} not found in store")

        started = time.time()
        try:
            provider = self.provider_factory(request.input.provider)
            result.provider = provider.settings.name.value
            result.status = "generating"
            result.message = f"Generation started ({result.provider})"
            await self.response_store.set(request_id, result)

            image = await provider.text_to_image(request.input.params)

        except ImageGenerationError as e:
            logger.error(f"GenerationWorker {self.worker_id} failed job {request_id}: {type(e).__name__}: {e}")
            record_generation_outcome(False, str(e))
            result.status = "failed"
            result.error = type(e).__name__
            result.task_id = getattr(e, "task_id", None)
            result.message = f"Generation failed: {e}"
            result.timings["generation"] = round(time.time() - started, 3)
            await self.response_store.set(request_id, result)
            return

        result.timings["generation"] = round(time.time() - started, 3)
        result.image = image.image
        result.task_id = image.task_id
        result.status = "generated"
        result.message = "Generation complete. Queued for post-processing."
        await self.response_store.set(request_id, result)

        # Send for post-processing
        await self.postprocess_queue.put(request_id)
        logger.info(f"GenerationWorker {self.worker_id} completed job: {request_id}")
