import logging
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import ClassVar, Generic, Literal, TypeAlias, TypeVar, override

from pulse_query.errors import MutationPendingError, QueryDisposedError
from pulse_query.helpers import Disposable
from pulse_query.reactive import Listener, Signal

logger = logging.getLogger(__name__)

V = TypeVar("V")
TParam = TypeVar("TParam", bound=Hashable)

MutationStatus: TypeAlias = Literal["idle", "pending", "success", "error"]


@dataclass(frozen=True, slots=True)
class MutationIdle:
	status: ClassVar[MutationStatus] = "idle"


@dataclass(frozen=True, slots=True)
class MutationPending:
	status: ClassVar[MutationStatus] = "pending"


@dataclass(frozen=True, slots=True)
class MutationSuccess(Generic[V]):
	value: V
	status: ClassVar[MutationStatus] = "success"


@dataclass(frozen=True, slots=True)
class MutationError:
	error: Exception
	status: ClassVar[MutationStatus] = "error"


MutationState: TypeAlias = (
	MutationIdle | MutationPending | MutationSuccess[V] | MutationError
)


class Mutation(Generic[V], Disposable):
	"""
	Single-flight status cell for an async operation.

	`run()` moves the cell to pending before the action starts and to success or
	error when it ends. Only one run may be pending at a time. The cell belongs
	to the newest run: a run that completes after `reset()` or after a newer run
	started leaves the state untouched.
	"""

	name: str | None
	signal: Signal[MutationState[V]]
	_run_id: int
	_disposed: bool

	def __init__(self, name: str | None = None):
		self.name = name
		self.signal = Signal(MutationIdle(), name=f"mutation.state({name})")
		self._run_id = 0
		self._disposed = False

	@property
	def state(self) -> MutationState[V]:
		return self.signal.read()

	@property
	def status(self) -> MutationStatus:
		return self.state.status

	@property
	def is_idle(self) -> bool:
		return isinstance(self.state, MutationIdle)

	@property
	def is_pending(self) -> bool:
		return isinstance(self.state, MutationPending)

	@property
	def is_success(self) -> bool:
		return isinstance(self.state, MutationSuccess)

	@property
	def is_error(self) -> bool:
		return isinstance(self.state, MutationError)

	@property
	def data(self) -> V | None:
		state = self.state
		return state.value if isinstance(state, MutationSuccess) else None

	@property
	def error(self) -> Exception | None:
		state = self.state
		return state.error if isinstance(state, MutationError) else None

	@property
	def disposed(self) -> bool:
		return self._disposed

	def _owns(self, run_id: int) -> bool:
		return not self._disposed and run_id == self._run_id

	async def run(self, action: Callable[[], Awaitable[V]]) -> V:
		if self._disposed:
			raise QueryDisposedError(f"Mutation '{self.name}' is disposed")
		# Untracked read, the single-flight check is not a reactive dependency
		if isinstance(self.signal.value, MutationPending):
			raise MutationPendingError(f"Mutation '{self.name}' is already pending")

		self._run_id += 1
		run_id = self._run_id
		self.signal.write(MutationPending())

		try:
			value = await action()
		except Exception as exc:
			if self._owns(run_id):
				self.signal.write(MutationError(exc))
			else:
				logger.debug("Mutation %r: superseded run failed with %r", self.name, exc)
			raise
		except BaseException:
			# Cancelled or interrupted: no result, back to idle
			if self._owns(run_id):
				self.signal.write(MutationIdle())
			raise

		if self._owns(run_id):
			self.signal.write(MutationSuccess(value))
		else:
			logger.debug("Mutation %r: superseded run completed", self.name)
		return value

	def reset(self) -> None:
		if self._disposed:
			return
		# Any run still in flight no longer owns the cell
		self._run_id += 1
		self.signal.write(MutationIdle())

	def subscribe(self, listener: Listener) -> Callable[[], None]:
		return self.signal.subscribe(listener)

	@override
	def dispose(self) -> None:
		if self._disposed:
			return
		self._disposed = True
		self._run_id += 1
		self.signal.dispose()

	@override
	def __repr__(self) -> str:
		return f"Mutation({self.name!r}, {self.signal.value!r})"


class MutationAction(Generic[V], Disposable):
	"""An async action bound to its own Mutation. Call it to run the action."""

	action: Callable[[], Awaitable[V]]
	mutation: Mutation[V]

	def __init__(self, action: Callable[[], Awaitable[V]], name: str | None = None):
		self.action = action
		self.mutation = Mutation(name=name or getattr(action, "__name__", None))

	@property
	def state(self) -> MutationState[V]:
		return self.mutation.state

	async def run(self) -> V:
		return await self.mutation.run(self.action)

	async def __call__(self) -> V:
		return await self.run()

	def reset(self) -> None:
		self.mutation.reset()

	@override
	def dispose(self) -> None:
		self.mutation.dispose()


class MutationFamily(Generic[TParam, V], Disposable):
	"""
	A parameterized async action. Each distinct parameter gets its own Mutation,
	created on first use, so runs for different parameters do not block each
	other.
	"""

	action: Callable[[TParam], Awaitable[V]]
	name: str | None
	_mutations: dict[TParam, Mutation[V]]
	_disposed: bool

	def __init__(
		self, action: Callable[[TParam], Awaitable[V]], name: str | None = None
	):
		self.action = action
		self.name = name or getattr(action, "__name__", None)
		self._mutations = {}
		self._disposed = False

	def mutation(self, param: TParam) -> Mutation[V]:
		if self._disposed:
			raise QueryDisposedError(f"Mutation family '{self.name}' is disposed")
		mutation = self._mutations.get(param)
		if mutation is None:
			mutation = Mutation(name=f"{self.name}({param!r})")
			self._mutations[param] = mutation
		return mutation

	async def run(self, param: TParam) -> V:
		return await self.mutation(param).run(lambda: self.action(param))

	async def __call__(self, param: TParam) -> V:
		return await self.run(param)

	def reset(self, param: TParam) -> None:
		mutation = self._mutations.get(param)
		if mutation is not None:
			mutation.reset()

	def evict(self, param: TParam) -> None:
		"""Dispose the Mutation of `param` and forget it. A later use starts idle."""
		mutation = self._mutations.pop(param, None)
		if mutation is not None:
			mutation.dispose()

	def __len__(self) -> int:
		return len(self._mutations)

	@override
	def dispose(self) -> None:
		if self._disposed:
			return
		self._disposed = True
		for mutation in self._mutations.values():
			mutation.dispose()
		self._mutations.clear()


def mutation(action: Callable[[], Awaitable[V]]) -> MutationAction[V]:
	"""
	Bind an async function to a Mutation. Usable as a decorator:

		@mutation
		async def save() -> int: ...

		await save()
		save.state  # MutationSuccess(value=...)
	"""
	return MutationAction(action)


def mutation_family(
	action: Callable[[TParam], Awaitable[V]],
) -> MutationFamily[TParam, V]:
	return MutationFamily(action)


__all__ = [
	"Mutation",
	"MutationAction",
	"MutationError",
	"MutationFamily",
	"MutationIdle",
	"MutationPending",
	"MutationState",
	"MutationStatus",
	"MutationSuccess",
	"mutation",
	"mutation_family",
]
