# postprocess_worker
import logging
import time
from pathlib import Path

import aiofiles.os

from metrics import record_generation_outcome
from utils.artifacts import timestamped_image_path, write_base64_image
from utils.image_info import read_image_info_async

logger = logging.getLogger(__name__)


class PostprocessWorker:
    """
    Write generated images to disk and finalize the result
    """
    def __init__(self, worker_id, kwargs):
        self.worker_id = worker_id
        self.postprocess_queue = kwargs["postprocess_queue"]
        self.request_store = kwargs["request_store"]
        self.response_store = kwargs["response_store"]

        # Configuration
        self.output_dir = Path(kwargs["output_dir"])

    async def work(self):
        logger.info(f"PostprocessWorker {self.worker_id}: waiting for jobs")
        while True:
            # Get a task from the job queue
            request_id = await self.postprocess_queue.get()
            if request_id is None:
                # None is a signal that there are no more tasks
                self.postprocess_queue.task_done()
                break

            logger.info(f"PostprocessWorker {self.worker_id} processing job: {request_id}")

            try:
                request = await self.request_store.get(request_id)
                result = await self.response_store.get(request_id)

                if not request:
                    raise KeyError(f"Request {request_id} not found in store")
                if not result:
                    raise KeyError(f"Result {request_id} not found in store")

                started = time.time()
                output_path = await self.write_artifact(request_id, request, result)
                info = await read_image_info_async(output_path)

                result.output = [{"path": str(output_path), "image_info": info}]
                result.image = None
                result.timings["postprocess"] = round(time.time() - started, 3)
                result.status = "completed"
                result.message = "Processing complete."
                await self.response_store.set(request_id, result)

                record_generation_outcome(True)
                logger.info(f"PostprocessWorker {self.worker_id} completed job: {request_id}")

            except Exception as e:
                logger.error(f"PostprocessWorker {self.worker_id} failed job {request_id}: {e}")
                record_generation_outcome(False, str(e))

                try:
                    # Update result to show failure
                    result = await self.response_store.get(request_id)
                    if result:
                        result.status = "failed"
                        result.error = type(e).__name__
                        result.message = f"Post-processing failed: {e}"
                        result.image = None
                        await self.response_store.set(request_id, result)

                except Exception as store_error:
                    logger.error(f"Failed to update result store for {request_id}: {store_error}")

            finally:
                # Mark the job as complete
                self.postprocess_queue.task_done()

        logger.info(f"PostprocessWorker {self.worker_id} finished")

    async def write_artifact(self, request_id: str, request, result) -> Path:
        """Decode the stored image into ``<output_dir>/<request_id>/<timestamp>.png``.

        The client-supplied output_directory is ignored by the service.
        """
        if not result.image:
            raise ValueError(f"No generated image stored for {request_id}")

        job_output_dir = self.output_dir / request_id
        await aiofiles.os.makedirs(str(job_output_dir), exist_ok=True)

        return await write_base64_image(result.image, timestamped_image_path(job_output_dir))
