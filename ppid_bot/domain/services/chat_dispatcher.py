"""
Chat Dispatcher - per-chat ordered processing.

One FIFO queue and one worker task per active chat id: messages from the
same chat are handled strictly in arrival order, different chats run
concurrently. A worker exits after its queue stays empty for
``idle_seconds``.
"""
import asyncio
from typing import Awaitable, Callable, Generic, TypeVar

from ppid_bot.core.logging import bind_chat_context, generate_correlation_id, get_logger, set_correlation_id
from ppid_bot.core.validation import ChatIdValidator

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_IDLE_SECONDS = 60.0


class ChatDispatcher(Generic[T]):
    def __init__(
        self,
        handler: Callable[[T], Awaitable[None]],
        idle_seconds: float = DEFAULT_IDLE_SECONDS,
    ):
        self._handler = handler
        self._idle_seconds = idle_seconds
        self._queues: dict[str, asyncio.Queue] = {}
        self._workers: dict[str, asyncio.Task] = {}
        self._closed = False

    @property
    def active_chats(self) -> int:
        return len(self._workers)

    def submit(self, chat_id: str, item: T) -> None:
        if self._closed:
            logger.warning("Dispatcher closed, dropping message", extra_data={"chat_id": ChatIdValidator.mask(chat_id)})
            return

        queue = self._queues.get(chat_id)
        if queue is None:
            queue = self._queues[chat_id] = asyncio.Queue()
        queue.put_nowait(item)

        worker = self._workers.get(chat_id)
        if worker is None or worker.done():
            self._workers[chat_id] = asyncio.create_task(
                self._run(chat_id, queue), name=f"chat-worker-{ChatIdValidator.mask(chat_id)}"
            )

    async def _run(self, chat_id: str, queue: asyncio.Queue) -> None:
        bind_chat_context(ChatIdValidator.mask(chat_id))
        while True:
            try:
                item = await asyncio.wait_for(queue.get(), timeout=self._idle_seconds)
            except asyncio.TimeoutError:
                if queue.empty():
                    break
                continue

            set_correlation_id(generate_correlation_id())
            try:
                await self._handler(item)
            except Exception as exc:
                # One bad message must not kill the chat's worker
                logger.error(
                    "Unhandled error processing message",
                    extra_data={"chat_id": ChatIdValidator.mask(chat_id), "error": str(exc)},
                    exc_info=True,
                )
            finally:
                queue.task_done()

        if self._workers.get(chat_id) is asyncio.current_task():
            del self._workers[chat_id]
            self._queues.pop(chat_id, None)

    async def drain(self) -> None:
        """Wait until every queued message has been handled."""
        await asyncio.gather(*(q.join() for q in list(self._queues.values())))

    async def close(self) -> None:
        self._closed = True
        workers = list(self._workers.values())
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()
        self._queues.clear()
