import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .alerts import AlertEngine, Observation

logger = logging.getLogger(__name__)


class AlertWorker:
    """Runs alert evaluation off the ingestion request path.

    Ingestion only enqueues observations; a single background task evaluates
    them one by one, each in its own database session. Nothing raised here
    reaches the caller that submitted the observation.
    """

    def __init__(self, engine: AlertEngine, session_factory: async_sessionmaker[AsyncSession], maxsize: int = 1000):
        self.engine = engine
        self.session_factory = session_factory
        self.queue: asyncio.Queue[Observation] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run(), name="alert-worker")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def submit(self, observation: Observation) -> bool:
        try:
            self.queue.put_nowait(observation)
        except asyncio.QueueFull:
            logger.error("Alert queue full, dropping observation from %s", observation.device_id)
            return False
        return True

    async def join(self) -> None:
        await self.queue.join()

    async def process(self, observation: Observation) -> None:
        try:
            async with self.session_factory() as db:
                await self.engine.evaluate_and_notify(db, observation)
        except Exception:
            logger.exception("Alert evaluation failed for observation from %s", observation.device_id)

    async def _run(self) -> None:
        while True:
            observation = await self.queue.get()
            try:
                await self.process(observation)
            finally:
                self.queue.task_done()
