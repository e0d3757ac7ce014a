import pytest
from pulse_query.errors import ErrorReporter, QueryDisposedError
from pulse_query.reactive import (
	Batch,
	Computed,
	Effect,
	Signal,
	Untrack,
	flush_effects,
)


def test_signal_creation_and_access():
	s = Signal(10, name="s")
	assert s() == 10


def test_signal_update():
	s = Signal(10, name="s")
	s.write(20)
	assert s() == 20


def test_simple_computed():
	s = Signal(10, name="s")
	c = Computed(lambda: s() * 2, name="c")
	assert c() == 20
	s.write(20)
	assert c() == 40


def test_computed_chain():
	s = Signal(2, name="s")
	c1 = Computed(lambda: s() * 2, name="c1")
	c2 = Computed(lambda: c1() * 2, name="c2")

	assert c2() == 8
	s.write(3)
	assert c2() == 12


def test_computed_returning_none_is_not_recomputed_on_every_read():
	calls = 0
	s = Signal(1, name="s")

	def fn():
		nonlocal calls
		calls += 1
		s()
		return None

	c = Computed(fn, name="c")
	c()
	c()
	assert calls == 1


def test_computed_cannot_write_signals():
	s = Signal(0, name="s")
	other = Signal(0, name="other")

	def bad():
		other.write(s() + 1)
		return 0

	c = Computed(bad, name="bad")
	with pytest.raises(RuntimeError, match="Computeds should be read-only"):
		c()


def test_simple_effect():
	s = Signal(10, name="s")
	effect_value = 0

	def my_effect():
		nonlocal effect_value
		effect_value = s()

	e = Effect(my_effect, name="my_effect")
	flush_effects()

	assert e.runs == 1
	assert effect_value == 10

	s.write(20)
	flush_effects()
	assert e.runs == 2
	assert effect_value == 20

	# Same value: no rerun
	s.write(20)
	flush_effects()
	assert e.runs == 2


def test_effect_cleanup_runs_before_rerun_and_on_dispose():
	s = Signal(0, name="s")
	cleanups: list[int] = []

	def fn():
		value = s()

		def cleanup():
			cleanups.append(value)

		return cleanup

	e = Effect(fn, name="cleanup", immediate=True)
	s.write(1)
	flush_effects()
	assert cleanups == [0]

	e.dispose()
	assert cleanups == [0, 1]

	s.write(2)
	flush_effects()
	assert e.runs == 2


def test_untrack_does_not_register_dependencies():
	s = Signal(0, name="s")
	runs = 0

	def fn():
		nonlocal runs
		runs += 1
		with Untrack():
			s()

	Effect(fn, name="untracked", immediate=True)
	s.write(1)
	flush_effects()
	assert runs == 1


def test_listeners_fire_synchronously_in_subscription_order():
	s = Signal(0, name="s")
	calls: list[str] = []
	s.subscribe(lambda: calls.append(f"a:{s.value}"))
	s.subscribe(lambda: calls.append(f"b:{s.value}"))

	s.write(1)
	assert calls == ["a:1", "b:1"]


def test_unsubscribe_removes_listener():
	s = Signal(0, name="s")
	calls: list[int] = []
	unsubscribe = s.subscribe(lambda: calls.append(s.value))

	s.write(1)
	unsubscribe()
	s.write(2)
	assert calls == [1]


def test_batch_defers_and_deduplicates_listeners():
	a = Signal(0, name="a")
	b = Signal(0, name="b")
	seen: list[tuple[int, int]] = []

	def listener():
		seen.append((a.value, b.value))

	a.subscribe(listener)
	b.subscribe(listener)

	with Batch():
		a.write(1)
		b.write(2)
		assert seen == []

	assert seen == [(1, 2)]


def test_batch_runs_effects_on_exit():
	s = Signal(0, name="s")
	values: list[int] = []
	Effect(lambda: values.append(s()), name="batched", immediate=True)

	with Batch():
		s.write(1)
		s.write(2)

	assert values == [0, 2]


def test_disposed_signal_notifies_nobody():
	s = Signal(0, name="s")
	calls: list[int] = []
	s.subscribe(lambda: calls.append(s.value))

	s.dispose()
	s.write(1)

	assert calls == []
	assert s.value == 1
	with pytest.raises(QueryDisposedError):
		s.subscribe(lambda: None)


def test_failing_listener_is_reported_and_does_not_stop_write(
	monkeypatch: pytest.MonkeyPatch,
):
	reported: list[str] = []
	reporter = ErrorReporter(lambda exc, code, details: reported.append(code))
	monkeypatch.setattr("pulse_query.reactive.errors", reporter)

	s = Signal(0, name="s")
	calls: list[int] = []

	def bad() -> None:
		raise RuntimeError("listener failed")

	s.subscribe(bad)
	s.subscribe(lambda: calls.append(s.value))

	s.write(1)
	assert s.value == 1
	assert calls == [1]

	with Batch():
		s.write(2)
	assert calls == [1, 2]
	assert reported == ["signal.listener", "signal.listener"]
