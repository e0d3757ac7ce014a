import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, Generic, TypeAlias, TypeVar, override

from pulse_query.env import ENV_PULSE_QUERY_FETCH_ON_CREATE, env
from pulse_query.errors import QueryDisposedError, QueryError, errors
from pulse_query.helpers import Disposable
from pulse_query.mutation import Mutation, MutationPending, MutationState
from pulse_query.reactive import Batch, Computed, Signal
from pulse_query.scheduling import TaskRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")
TCursor = TypeVar("TCursor")

# Pages are stored as tuples, they never change once fetched
Page: TypeAlias = tuple[T, ...]
PageList: TypeAlias = tuple[Page[T], ...]

# Parameterized as FetchFunction[TCursor, T]
FetchFunction: TypeAlias = Callable[[TCursor | None], Awaitable[Sequence[T]]]
# (last_page, all_pages) -> next cursor, or None when there are no more pages.
# last_page is None when no page has been stored yet.
NextCursorFunction: TypeAlias = Callable[
	[Page[T] | None, PageList[T]], TCursor | None
]

InfinityQueryListener: TypeAlias = Callable[["InfinityQuery[Any, Any]"], None]


class PageStore(Generic[T, TCursor], Disposable):
	"""
	Ordered list of fetched pages with its derived state.

	`items` (all pages flattened) and `has_next` are recomputed synchronously
	whenever the page list is replaced. The three signals are written in one
	batch, so listeners are notified once, after every value is consistent.
	"""

	pages: Signal[PageList[T]]
	items: Signal[tuple[T, ...]]
	has_next: Signal[bool]
	_get_next_cursor: NextCursorFunction[T, TCursor]

	def __init__(
		self,
		get_next_cursor: NextCursorFunction[T, TCursor],
		name: str | None = None,
	):
		self._get_next_cursor = get_next_cursor
		self.pages = Signal((), name=f"inf_query.pages({name})")
		self.items = Signal((), name=f"inf_query.items({name})")
		# Nothing fetched yet: the first page is always available
		self.has_next = Signal(True, name=f"inf_query.has_next({name})")

	def snapshot(self) -> PageList[T]:
		return self.pages.value

	def next_cursor(self) -> TCursor | None:
		pages = self.pages.value
		return self._get_next_cursor(pages[-1] if pages else None, pages)

	def replace(self, pages: Iterable[Sequence[T]]):
		snapshot: PageList[T] = tuple(tuple(page) for page in pages)
		items = tuple(item for page in snapshot for item in page)
		has_next = (
			self._get_next_cursor(snapshot[-1] if snapshot else None, snapshot)
			is not None
		)
		with Batch():
			self.pages.write(snapshot)
			self.items.write(items)
			self.has_next.write(has_next)

	def append(self, page: Sequence[T]):
		self.replace((*self.pages.value, tuple(page)))

	def clear(self):
		self.replace(())

	@override
	def dispose(self):
		self.pages.dispose()
		self.items.dispose()
		self.has_next.dispose()


class InfinityQuery(Generic[T, TCursor], Disposable):
	"""
	Paginated query: fetches pages one at a time through `fetch(cursor)` and
	derives the next cursor from the pages fetched so far.

	At most one fetch is in flight at a time. `refresh()` restarts from the
	first page; results of fetches started before the refresh are discarded
	when they complete.

	Usage:
		query = InfinityQuery(
			fetch=lambda cursor: api.list_posts(after=cursor),
			get_next_cursor=lambda last, pages: last[-1].id if last else None,
		)
		await query.fetch_next_page()
		query.items, query.has_next, query.load_state
	"""

	name: str | None
	_fetch: FetchFunction[TCursor, T]
	_store: PageStore[T, TCursor]
	_mutation: Mutation[None]
	_is_loading: Computed[bool]
	_version: int
	_listeners: list[InfinityQueryListener]
	_unsubscribe: list[Callable[[], None]]
	_tasks: TaskRegistry
	_disposed: bool

	def __init__(
		self,
		fetch: FetchFunction[TCursor, T],
		get_next_cursor: NextCursorFunction[T, TCursor],
		*,
		name: str | None = None,
		fetch_on_create: bool | None = None,
	):
		self.name = name
		self._fetch = fetch
		self._store = PageStore(get_next_cursor, name=name)
		self._mutation = Mutation(name=f"inf_query.load_state({name})")
		self._is_loading = Computed(
			lambda: isinstance(self._mutation.signal(), MutationPending),
			name=f"inf_query.is_loading({name})",
		)
		self._version = 0
		self._listeners = []
		self._tasks = TaskRegistry(name=f"inf_query({name})")
		self._disposed = False
		self._unsubscribe = [
			signal.subscribe(self._notify)
			for signal in (
				self._store.pages,
				self._store.items,
				self._store.has_next,
				self._mutation.signal,
			)
		]

		from_env = fetch_on_create is None
		if fetch_on_create is None:
			fetch_on_create = env.fetch_on_create
		if fetch_on_create:
			try:
				self._tasks.create(
					self.fetch_next_page(),
					name=f"inf_query.fetch_on_create({name})",
					on_done=self._report_background_error,
				)
			except RuntimeError as exc:
				if not from_env:
					raise QueryError(
						f"Infinity query '{name}': fetch_on_create=True needs a running "
						"event loop or an anyio worker thread"
					) from exc
				logger.warning(
					"Infinity query %r: no event loop, skipping the first fetch requested by %s",
					name,
					ENV_PULSE_QUERY_FETCH_ON_CREATE,
				)

	# Observable surface
	@property
	def pages(self) -> list[list[T]]:
		return [list(page) for page in self._store.pages.read()]

	@property
	def items(self) -> list[T]:
		return list(self._store.items.read())

	@property
	def has_next(self) -> bool:
		return self._store.has_next.read()

	@property
	def load_state(self) -> MutationState[None]:
		return self._mutation.state

	@property
	def is_loading(self) -> bool:
		return self._is_loading()

	@property
	def error(self) -> Exception | None:
		return self._mutation.error

	@property
	def page_count(self) -> int:
		return len(self._store.pages.read())

	@property
	def store(self) -> PageStore[T, TCursor]:
		return self._store

	@property
	def mutation(self) -> Mutation[None]:
		return self._mutation

	@property
	def disposed(self) -> bool:
		return self._disposed

	def subscribe(self, listener: InfinityQueryListener) -> Callable[[], None]:
		"""
		Call `listener(query)` synchronously whenever the pages, items, has_next
		or load state change. Returns a function that removes the listener.
		"""
		self._ensure_alive()
		self._listeners.append(listener)

		def unsubscribe():
			if listener in self._listeners:
				self._listeners.remove(listener)

		return unsubscribe

	def _notify(self):
		for listener in self._listeners.copy():
			try:
				listener(self)
			except Exception as exc:
				errors.report(
					exc,
					code="query.listener",
					details={"query": self.name, "listener": repr(listener)},
				)

	def _ensure_alive(self):
		if self._disposed:
			raise QueryDisposedError(f"Infinity query '{self.name}' is disposed")

	def _is_stale(self, version: int) -> bool:
		return self._disposed or self._version != version

	# Actions
	async def fetch_next_page(self) -> None:
		"""
		Fetch the page after the last stored one, or the first page when none is
		stored yet. No-op while a fetch is pending or when there is no next
		cursor.
		"""
		self._ensure_alive()
		if isinstance(self._mutation.signal.value, MutationPending):
			logger.debug("Infinity query %r: fetch already pending, skipping", self.name)
			return

		if len(self._store.snapshot()) == 0:
			return await self._fetch_first_page()

		cursor = self._store.next_cursor()
		if cursor is None:
			logger.debug("Infinity query %r: no next cursor, skipping", self.name)
			return
		await self._run_fetch(cursor, first=False)

	async def refresh(self) -> None:
		"""Drop every page and fetch the first page again."""
		self._ensure_alive()
		self._version += 1
		self._store.clear()
		self._mutation.reset()
		await self._fetch_first_page()

	async def wait(self) -> None:
		"""Wait for background fetches started by the query itself."""
		await self._tasks.wait()

	async def _fetch_first_page(self) -> None:
		if isinstance(self._mutation.signal.value, MutationPending):
			return
		await self._run_fetch(None, first=True)

	async def _run_fetch(self, cursor: TCursor | None, *, first: bool) -> None:
		start_version = self._version

		async def load() -> None:
			page = await self._fetch(cursor)
			if self._is_stale(start_version):
				logger.debug(
					"Infinity query %r: discarding stale page for cursor=%r",
					self.name,
					cursor,
				)
				return
			if first:
				self._store.replace([page])
			else:
				self._store.append(page)

		try:
			await self._mutation.run(load)
		except Exception as exc:
			if self._is_stale(start_version):
				logger.debug(
					"Infinity query %r: discarding stale error for cursor=%r: %r",
					self.name,
					cursor,
					exc,
				)
				return
			raise

		# A refresh that happened meanwhile owns the load state now
		if self._is_stale(start_version):
			return
		if self._mutation.is_success:
			self._mutation.reset()

	def _report_background_error(self, task: asyncio.Task[None]):
		if task.cancelled():
			return
		exc = task.exception()
		if exc is not None:
			errors.report(exc, code="query.fetch", details={"query": self.name})

	@override
	def dispose(self) -> None:
		if self._disposed:
			return
		self._disposed = True
		# Invalidates every fetch still in flight
		self._version += 1
		for unsubscribe in self._unsubscribe:
			unsubscribe()
		self._unsubscribe.clear()
		self._listeners.clear()
		self._tasks.cancel_all()
		self._mutation.dispose()
		self._store.dispose()
		logger.debug("Infinity query %r: disposed", self.name)

	@override
	def __repr__(self) -> str:
		return (
			f"InfinityQuery({self.name!r}, pages={len(self._store.pages.value)}, "
			f"state={self._mutation.signal.value!r})"
		)


__all__ = [
	"FetchFunction",
	"InfinityQuery",
	"InfinityQueryListener",
	"NextCursorFunction",
	"Page",
	"PageList",
	"PageStore",
]
