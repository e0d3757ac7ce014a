import asyncio
from collections.abc import Callable
from contextvars import ContextVar, Token
from typing import Any, Generic, TypeVar, override

from pulse_query.errors import QueryDisposedError, errors

T = TypeVar("T")

Listener = Callable[[], None]

# NOTE: globals at the bottom of the file


class Scope:
	"""Collects the signals read and effects created while a reactive function runs."""

	deps: list["Signal[Any] | Computed[Any]"]
	effects: list["Effect"]
	_token: Token["Scope | None"] | None

	def __init__(self):
		# Lists preserve insertion order
		self.deps = []
		self.effects = []
		self._token = None

	def register_effect(self, effect: "Effect"):
		if effect not in self.effects:
			self.effects.append(effect)

	def register_dep(self, value: "Signal[Any] | Computed[Any]"):
		if value not in self.deps:
			self.deps.append(value)

	def __enter__(self):
		self._token = SCOPE.set(self)
		return self

	def __exit__(self, exc_type: Any, exc_value: Any, exc_traceback: Any):
		if self._token is not None:
			SCOPE.reset(self._token)
			self._token = None


class Untrack(Scope):
	"""Reads inside this scope are not registered as dependencies."""

	@override
	def register_dep(self, value: "Signal[Any] | Computed[Any]"):
		pass

	@override
	def register_effect(self, effect: "Effect"):
		pass


def _unlink(dep: "Signal[Any] | Computed[Any]", obs: "Computed[Any] | Effect"):
	if obs in dep.obs:
		dep.obs.remove(obs)


def _call_listener(listener: Listener):
	# A failing listener must not stop the write or the listeners after it
	try:
		listener()
	except Exception as exc:
		errors.report(exc, code="signal.listener", details={"listener": repr(listener)})


class Signal(Generic[T]):
	value: T
	name: str | None
	obs: list["Computed[Any] | Effect"]
	listeners: list[Listener]
	last_change: int
	disposed: bool

	def __init__(self, value: T, name: str | None = None):
		self.value = value
		self.name = name
		self.obs = []
		self.listeners = []
		self.last_change = -1
		self.disposed = False

	def read(self) -> T:
		if scope := SCOPE.get():
			scope.register_dep(self)
		return self.value

	def __call__(self) -> T:
		return self.read()

	def subscribe(self, listener: Listener) -> Callable[[], None]:
		"""
		Call `listener()` after every change of this signal, in subscription
		order. Inside an explicit `Batch`, listeners run once when the batch
		flushes. Exceptions raised by a listener are reported through `errors`
		and do not reach the writer. Returns a function that removes the listener.
		"""
		if self.disposed:
			raise QueryDisposedError(f"Cannot subscribe to disposed signal '{self.name}'")
		self.listeners.append(listener)

		def unsubscribe():
			if listener in self.listeners:
				self.listeners.remove(listener)

		return unsubscribe

	def write(self, value: T):
		if value == self.value:
			return
		increment_epoch()
		self.value = value
		self.last_change = epoch()
		for obs in self.obs.copy():
			obs._push_change()  # pyright: ignore[reportPrivateUsage]
		if not self.listeners:
			return
		batch = BATCH.get()
		for listener in self.listeners.copy():
			if batch.defers_listeners:
				batch.register_listener(listener)
			else:
				_call_listener(listener)

	def dispose(self):
		self.disposed = True
		self.listeners.clear()
		self.obs.clear()

	@override
	def __repr__(self) -> str:
		return f"Signal({self.name!r}, {self.value!r})"


class Computed(Generic[T]):
	fn: Callable[[], T]
	value: T
	name: str | None
	dirty: bool
	on_stack: bool
	last_change: int
	deps: list["Signal[Any] | Computed[Any]"]
	obs: list["Computed[Any] | Effect"]

	def __init__(self, fn: Callable[[], T], name: str | None = None):
		self.fn = fn
		self.value = None  # pyright: ignore[reportAttributeAccessIssue]
		self.name = name
		self.dirty = False
		self.on_stack = False
		self.last_change = -1
		self.deps = []
		self.obs = []

	def read(self) -> T:
		if self.on_stack:
			raise RuntimeError(f"Circular dependency detected in computed '{self.name}'")

		if scope := SCOPE.get():
			scope.register_dep(self)

		self._recompute_if_necessary()
		return self.value

	def __call__(self) -> T:
		return self.read()

	def _push_change(self):
		if self.dirty:
			return

		self.dirty = True
		for obs in self.obs.copy():
			obs._push_change()  # pyright: ignore[reportPrivateUsage]

	def _recompute(self):
		prev_value = self.value
		prev_deps = set(self.deps)
		execution_epoch = epoch()
		with Scope() as scope:
			self.on_stack = True
			try:
				self.value = self.fn()
			finally:
				self.on_stack = False
			if epoch() != execution_epoch:
				raise RuntimeError(
					f"Detected write to a signal in computed '{self.name}'. Computeds should be read-only."
				)
			if len(scope.effects) > 0:
				raise RuntimeError(
					f"An effect was created within computed '{self.name}'. "
					"Computed values should be pure calculations."
				)

		self.dirty = False
		if self.last_change < 0 or prev_value != self.value:
			self.last_change = execution_epoch

		self.deps = scope.deps
		new_deps = set(self.deps)
		for dep in new_deps - prev_deps:
			dep.obs.append(self)
		for dep in prev_deps - new_deps:
			_unlink(dep, self)

	def _recompute_if_necessary(self):
		if self.last_change < 0:
			self._recompute()
			return
		if not self.dirty:
			return

		for dep in self.deps:
			if isinstance(dep, Computed):
				dep._recompute_if_necessary()
			if dep.last_change > self.last_change:
				self._recompute()
				return

		self.dirty = False


EffectCleanup = Callable[[], None]
EffectFn = Callable[[], EffectCleanup | None]


class Effect:
	"""
	Runs `fn` and re-runs it whenever a signal or computed it read changes.

	Effects are scheduled on the current batch. `fn` may return a cleanup
	function, called before the next run and on disposal.
	"""

	fn: EffectFn
	name: str | None
	cleanup_fn: EffectCleanup | None
	deps: list[Signal[Any] | Computed[Any]]
	children: list["Effect"]
	parent: "Effect | None"
	runs: int
	last_run: int
	batch: "Batch | None"
	disposed: bool

	def __init__(
		self,
		fn: EffectFn,
		name: str | None = None,
		immediate: bool = False,
		lazy: bool = False,
	):
		if immediate and lazy:
			raise ValueError("An effect cannot be both immediate and lazy")

		self.fn = fn
		self.name = name
		self.cleanup_fn = None
		self.deps = []
		self.children = []
		self.parent = None
		# Used to detect the first run
		self.runs = 0
		self.last_run = -1
		self.batch = None
		self.disposed = False

		if scope := SCOPE.get():
			scope.register_effect(self)

		if immediate:
			self.run()
		elif not lazy:
			self.schedule()

	def _cleanup_before_run(self):
		for child in self.children:
			child._cleanup_before_run()
		if self.cleanup_fn:
			self.cleanup_fn()
			self.cleanup_fn = None

	def dispose(self):
		if self.disposed:
			return
		self.disposed = True
		# Children unregister themselves from self.children
		for child in self.children.copy():
			child.dispose()
		if self.cleanup_fn:
			self.cleanup_fn()
			self.cleanup_fn = None
		for dep in self.deps:
			_unlink(dep, self)
		self.deps = []
		if self.parent and self in self.parent.children:
			self.parent.children.remove(self)
		if self.batch and self in self.batch.effects:
			self.batch.effects.remove(self)

	def schedule(self):
		if self.disposed:
			return
		batch = BATCH.get()
		batch.register_effect(self)
		self.batch = batch

	def _push_change(self):
		self.schedule()

	def _should_run(self) -> bool:
		return self.runs == 0 or self._deps_changed_since_last_run()

	def _deps_changed_since_last_run(self) -> bool:
		for dep in self.deps:
			if isinstance(dep, Computed):
				dep._recompute_if_necessary()  # pyright: ignore[reportPrivateUsage]
			if dep.last_change > self.last_run:
				return True
		return False

	def __call__(self):
		self.run()

	def run(self):
		if self.disposed:
			return

		# Cleanups are not tracked
		with Untrack():
			self._cleanup_before_run()

		prev_deps = set(self.deps)
		execution_epoch = epoch()
		with Scope() as scope:
			# Clear the batch *before* running, the effect may write a signal
			# that reschedules it.
			self.batch = None
			self.cleanup_fn = self.fn()
			self.runs += 1
			self.last_run = execution_epoch

		self.children = scope.effects
		for child in self.children:
			child.parent = self
		self.deps = scope.deps
		new_deps = set(self.deps)
		for dep in new_deps - prev_deps:
			dep.obs.append(self)
		for dep in prev_deps - new_deps:
			_unlink(dep, self)

		if self._deps_changed_since_last_run():
			self.schedule()


class Batch:
	"""
	Groups signal writes. Effects and listeners triggered inside the batch run
	once, when it is flushed on exit.
	"""

	effects: list[Effect]
	listeners: list[Listener]
	defers_listeners: bool = True

	def __init__(self) -> None:
		self.effects = []
		self.listeners = []

	def register_effect(self, effect: Effect):
		if effect not in self.effects:
			self.effects.append(effect)

	def register_listener(self, listener: Listener):
		if listener not in self.listeners:
			self.listeners.append(listener)

	def flush(self):
		token = None
		if BATCH.get() is not self:
			token = BATCH.set(self)

		MAX_ITERS = 10000
		iters = 0

		try:
			while len(self.listeners) > 0 or len(self.effects) > 0:
				if iters > MAX_ITERS:
					raise RuntimeError(
						f"The reactive system ran more than {MAX_ITERS} iterations. "
						"There is likely an update cycle between effects and signal writes."
					)

				current_listeners = self.listeners
				self.listeners = []
				for listener in current_listeners:
					_call_listener(listener)

				current_effects = self.effects
				self.effects = []
				for effect in current_effects:
					if effect._should_run():  # pyright: ignore[reportPrivateUsage]
						effect.run()

				iters += 1
		finally:
			if token:
				BATCH.reset(token)

	def __enter__(self):
		self._token = BATCH.set(self)
		return self

	def __exit__(self, exc_type: Any, exc_value: Any, exc_traceback: Any):
		try:
			self.flush()
		finally:
			# Reset AFTER flushing, the batch needs to capture any writes
			# triggered while flushing.
			BATCH.reset(self._token)


class GlobalBatch(Batch):
	"""Default batch: listeners fire immediately, effects flush on the running loop."""

	is_scheduled: bool
	defers_listeners = False

	def __init__(self) -> None:
		self.is_scheduled = False
		super().__init__()

	@override
	def register_effect(self, effect: Effect):
		if not self.is_scheduled:
			try:
				loop = asyncio.get_running_loop()
				loop.call_soon_threadsafe(self.flush)
				self.is_scheduled = True
			except RuntimeError:
				pass
		return super().register_effect(effect)

	@override
	def flush(self):
		try:
			super().flush()
		finally:
			self.is_scheduled = False


def flush_effects():
	BATCH.get().flush()


def batch() -> Batch:
	return Batch()


def untrack() -> Untrack:
	return Untrack()


# --- Globals ---
class Epoch:
	current: int = 0


EPOCH: ContextVar[Epoch] = ContextVar("pulse_query_epoch", default=Epoch())
SCOPE: ContextVar[Scope | None] = ContextVar("pulse_query_scope", default=None)
BATCH: ContextVar[Batch] = ContextVar("pulse_query_batch", default=GlobalBatch())


def epoch() -> int:
	return EPOCH.get().current


def increment_epoch():
	EPOCH.get().current += 1
