"""Queue-based Stable Diffusion provider (sd-webui agent-scheduler extension).

Processing flow:
    1. Build the queue request body from generation params.
    2. POST it to the scheduler queue and receive an opaque task id.
    3. Poll the task status on a fixed cadence, bounded by one deadline armed
       when polling starts.
    4. On ``done`` fetch the results once and return the first image.

Failure handling:
    - ``failed`` and ``interrupted`` are both hard failures (TaskFailed).
    - Deadline expiry raises TaskTimedOut. The scheduler has no cancellation
      endpoint, so the remote task is abandoned and may still complete.
    - Transport and parse errors on any call abort the request immediately.
      Nothing is retried here; callers retry with a fresh submission.
"""

import asyncio
import logging
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from providers.base import Base64Image
from providers.errors import EmptyResult, ParseError, TaskFailed, TaskTimedOut
from providers.stable_diffusion import StableDiffusionProvider
from requestmodels.models import GenerationParams

logger = logging.getLogger(__name__)

QUEUE_TXT2IMG = "/agent-scheduler/v1/queue/txt2img"
TASK_STATUS = "/agent-scheduler/v1/task/{task_id}"
TASK_RESULTS = "/agent-scheduler/v1/task/{task_id}/results"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    INTERRUPTED = "interrupted"

    @property
    def is_terminal(self) -> bool:
        return self not in (TaskStatus.PENDING, TaskStatus.RUNNING)

    @property
    def is_failure(self) -> bool:
        return self in (TaskStatus.FAILED, TaskStatus.INTERRUPTED)


class QueueTaskRequest(BaseModel):
    """Body for ``POST /agent-scheduler/v1/queue/txt2img``. None fields are not sent."""
    prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    seed: Optional[int] = None
    batch_size: Optional[int] = None
    steps: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    sampler_name: Optional[str] = None
    cfg_scale: Optional[float] = None
    script_name: str = ""
    checkpoint: Optional[str] = None
    vae: Optional[str] = None
    callback_url: Optional[str] = None

    @classmethod
    def from_params(cls, params: GenerationParams) -> "QueueTaskRequest":
        prompt = str(params.prompt)
        return cls(
            prompt=prompt or None,
            negative_prompt=params.prompt.negative,
            seed=params.seed,
            batch_size=1,
            steps=params.steps,
            width=params.width,
            height=params.height,
            sampler_name=params.sampler_name,
            cfg_scale=params.cfg_scale,
            checkpoint=params.model,
        )

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)


class QueueTaskResponse(BaseModel):
    task_id: str = Field(min_length=1)


class TaskStatusData(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    status: TaskStatus

    @field_validator("status", mode="before")
    @classmethod
    def lowercase_status(cls, value):
        if isinstance(value, str):
            return value.lower()
        return value


class TaskStatusResponse(BaseModel):
    success: bool = True
    data: TaskStatusData


class TaskResultEntry(BaseModel):
    image: str
    infotext: Optional[str] = None


class TaskResults(BaseModel):
    success: bool = True
    data: List[TaskResultEntry]


class StableDiffusionQueueProvider(StableDiffusionProvider):
    """
    Submit txt2img tasks to the agent-scheduler queue and poll them to completion
    """

    async def start_task(self, request: QueueTaskRequest) -> str:
        """Submit a task and return its id."""
        url = f"{self.base_url}{QUEUE_TXT2IMG}"
        data = await self._post_json(url, request.to_payload())
        try:
            task_id = QueueTaskResponse.model_validate(data).task_id
        except ValidationError as e:
            raise ParseError(f"Did not receive a task_id from {url}. Response received: {data!r}", url=url) from e

        logger.info(f"Queued txt2img task {task_id} at {self.base_url}")
        return task_id

    async def get_task_status(self, task_id: str) -> TaskStatus:
        url = f"{self.base_url}{TASK_STATUS.format(task_id=task_id)}"
        data = await self._get_json(url)
        try:
            return TaskStatusResponse.model_validate(data).data.status
        except ValidationError as e:
            raise ParseError(f"Unable to get status of task {task_id} from {url}: {e}", url=url) from e

    async def get_task_results(self, task_id: str) -> Base64Image:
        """Fetch the first result image of a finished task."""
        url = f"{self.base_url}{TASK_RESULTS.format(task_id=task_id)}"
        data = await self._get_json(url)
        try:
            results = TaskResults.model_validate(data)
        except ValidationError as e:
            raise ParseError(f"Unable to get results of task {task_id} from {url}: {e}", url=url) from e

        if not results.data:
            raise EmptyResult(task_id, url)
        return Base64Image.from_payload(results.data[0].image, task_id=task_id)

    async def _wait_for_done(self, task_id: str) -> int:
        """Poll until the task reports ``done``; returns the number of polls made.

        The first poll fires immediately, then one poll per interval.
        """
        loop = asyncio.get_running_loop()
        interval = self.settings.poll_interval
        next_tick = loop.time()
        polls = 0

        while True:
            delay = next_tick - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            # A slow status call delays the next tick but never bunches polls
            next_tick = max(next_tick + interval, loop.time())

            status = await self.get_task_status(task_id)
            polls += 1
            logger.debug(f"Task {task_id} poll {polls}: {status.value}")

            if status.is_terminal:
                if status.is_failure:
                    logger.error(f"Task {task_id} ended with status {status.value}")
                    raise TaskFailed(task_id, status)
                return polls

    async def poll_task(self, task_id: str) -> Base64Image:
        """Wait for a task to finish and return its image.

        The deadline runs concurrently with the polling loop and whichever
        finishes first wins. Results are fetched only after a ``done`` poll,
        outside the deadline.
        """
        timeout = self.settings.poll_timeout
        start = asyncio.get_running_loop().time()

        try:
            polls = await asyncio.wait_for(self._wait_for_done(task_id), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Task {task_id} not finished after {timeout:g}s - abandoning it")
            raise TaskTimedOut(task_id, timeout) from None

        elapsed = asyncio.get_running_loop().time() - start
        logger.info(f"Task {task_id} done after {polls} polls ({elapsed:.1f}s)")
        return await self.get_task_results(task_id)

    async def queue_txt2img(self, params: GenerationParams) -> Base64Image:
        """Add a txt2img task to the queue and wait for it to complete."""
        task_id = await self.start_task(QueueTaskRequest.from_params(params))
        return await self.poll_task(task_id)

    async def text_to_image(self, params: GenerationParams) -> Base64Image:
        return await self.queue_txt2img(params)
