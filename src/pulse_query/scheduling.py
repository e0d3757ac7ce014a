import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from anyio import from_thread

T = TypeVar("T")


def create_task(
	coroutine: Awaitable[T],
	*,
	name: str | None = None,
	on_done: Callable[[asyncio.Task[T]], None] | None = None,
) -> asyncio.Task[T]:
	"""Create and schedule a coroutine task on the event loop.

	From a thread without a running loop, the task is created through anyio's
	`from_thread` portal, which requires an anyio worker thread. When no event
	loop can be reached, `coroutine` is closed and `RuntimeError` is raised.
	"""

	def _create() -> asyncio.Task[T]:
		# ensure_future accepts Awaitable and returns a Task when given a coroutine
		task = asyncio.ensure_future(coroutine)
		if name is not None:
			task.set_name(name)
		if on_done:
			task.add_done_callback(on_done)
		return task

	try:
		asyncio.get_running_loop()
	except RuntimeError:

		async def _runner() -> asyncio.Task[T]:
			return _create()

		try:
			return from_thread.run(_runner)
		except RuntimeError:
			# No loop to run it on, the coroutine would otherwise never be awaited
			if inspect.iscoroutine(coroutine):
				coroutine.close()
			raise

	return _create()


class TaskRegistry:
	"""Tracks background tasks so their owner can await or cancel them."""

	_tasks: set[asyncio.Task[Any]]
	name: str | None

	def __init__(self, name: str | None = None) -> None:
		self._tasks = set()
		self.name = name

	def __len__(self) -> int:
		return len(self._tasks)

	def track(self, task: asyncio.Task[T]) -> asyncio.Task[T]:
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)
		return task

	def create(
		self,
		coroutine: Awaitable[T],
		*,
		name: str | None = None,
		on_done: Callable[[asyncio.Task[T]], None] | None = None,
	) -> asyncio.Task[T]:
		task = create_task(coroutine, name=name, on_done=on_done)
		return self.track(task)

	async def wait(self) -> None:
		"""Wait for every tracked task. Task errors are left to their done callbacks."""
		while self._tasks:
			await asyncio.gather(*list(self._tasks), return_exceptions=True)

	def cancel_all(self) -> None:
		for task in list(self._tasks):
			if not task.done():
				task.cancel()
		self._tasks.clear()
