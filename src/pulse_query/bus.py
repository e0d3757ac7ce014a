import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Generic, TypeVar, override

from pulse_query.errors import QueryDisposedError, errors
from pulse_query.helpers import Disposable
from pulse_query.scheduling import TaskRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

EventListener = Callable[[T], Awaitable[None] | None]
EventFilter = Callable[[T], bool]


class _Closed:
	pass


_CLOSED = _Closed()


class Subscription(Generic[T]):
	bus: "EventBus[T]"
	listener: EventListener[T]
	where: EventFilter[T] | None
	active: bool
	_on_cancel: Callable[[], None] | None

	def __init__(
		self,
		bus: "EventBus[T]",
		listener: EventListener[T],
		where: EventFilter[T] | None = None,
		on_cancel: Callable[[], None] | None = None,
	):
		self.bus = bus
		self.listener = listener
		self.where = where
		self.active = True
		self._on_cancel = on_cancel

	def cancel(self) -> None:
		if not self.active:
			return
		self.active = False
		self.bus._remove(self)  # pyright: ignore[reportPrivateUsage]
		if self._on_cancel is not None:
			self._on_cancel()


class EventBus(Generic[T], Disposable):
	"""
	Publish/subscribe bus for events of type T.

	`fire()` delivers the event synchronously to every listener, in
	subscription order. Listeners subscribed with a `where` predicate only
	receive the events it accepts. Async listeners are started as tasks.

		bus = EventBus[str]()
		sub = bus.listen(print, where=lambda msg: msg.startswith("user."))
		bus.fire("user.created")
		sub.cancel()
	"""

	name: str | None
	_subscriptions: list[Subscription[T]]
	_tasks: TaskRegistry
	_disposed: bool

	def __init__(self, name: str | None = None):
		self.name = name
		self._subscriptions = []
		self._tasks = TaskRegistry(name=f"bus({name})")
		self._disposed = False

	@property
	def disposed(self) -> bool:
		return self._disposed

	def __len__(self) -> int:
		return len(self._subscriptions)

	def fire(self, event: T) -> None:
		if self._disposed:
			logger.debug("Event bus %r: fire after dispose ignored", self.name)
			return
		for sub in self._subscriptions.copy():
			if not sub.active:
				continue
			try:
				if sub.where is not None and not sub.where(event):
					continue
				result = sub.listener(event)
			except Exception as exc:
				errors.report(
					exc,
					code="bus.listener",
					details={"bus": self.name, "listener": repr(sub.listener)},
				)
				continue
			if inspect.isawaitable(result):
				self._tasks.create(
					_await(result),
					name=f"bus({self.name}).listener",
					on_done=self._report_task_error,
				)

	def listen(
		self,
		listener: EventListener[T],
		where: EventFilter[T] | None = None,
	) -> Subscription[T]:
		return self._add(listener, where)

	def _add(
		self,
		listener: EventListener[T],
		where: EventFilter[T] | None,
		on_cancel: Callable[[], None] | None = None,
	) -> Subscription[T]:
		if self._disposed:
			raise QueryDisposedError(f"Event bus '{self.name}' is disposed")
		sub = Subscription(self, listener, where, on_cancel)
		self._subscriptions.append(sub)
		return sub

	def _remove(self, sub: Subscription[T]) -> None:
		if sub in self._subscriptions:
			self._subscriptions.remove(sub)

	async def stream(self, where: EventFilter[T] | None = None) -> AsyncIterator[T]:
		"""Iterate over fired events until the bus is disposed."""
		queue: asyncio.Queue[T | _Closed] = asyncio.Queue()
		sub = self._add(
			queue.put_nowait, where, on_cancel=lambda: queue.put_nowait(_CLOSED)
		)
		try:
			while True:
				event = await queue.get()
				if isinstance(event, _Closed):
					return
				yield event
		finally:
			sub.cancel()

	async def wait(self) -> None:
		"""Wait for async listeners that are still running."""
		await self._tasks.wait()

	def _report_task_error(self, task: asyncio.Task[Any]) -> None:
		if task.cancelled():
			return
		exc = task.exception()
		if exc is not None:
			errors.report(exc, code="bus.task", details={"bus": self.name})

	@override
	def dispose(self) -> None:
		if self._disposed:
			return
		self._disposed = True
		for sub in self._subscriptions.copy():
			sub.cancel()
		self._subscriptions.clear()
		self._tasks.cancel_all()


async def _await(awaitable: Awaitable[T]) -> T:
	return await awaitable
