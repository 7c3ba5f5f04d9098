"""Cycle-count task scheduling and the tick-driven emulation loop."""

from __future__ import annotations

import enum
from typing import Any, Callable, Dict, Optional

_MASK32 = 0xFFFFFFFF


class TaskId(enum.IntEnum):
    """Identifiers of the tasks that can be scheduled on the cycle counter."""

    SUB_TICK = 0
    KYBD_RECEIVE_END_COMMAND = 1
    KYBD_RECEIVE_COMMAND = 2
    ADB_NEW_STATE = 3
    PMU_TASK = 4
    VIA1_TIMER1_CHECK = 5
    VIA1_TIMER2_CHECK = 6
    VIA2_TIMER1_CHECK = 7
    VIA2_TIMER2_CHECK = 8


class TaskScheduler:
    """Runs the CPU in slices that end exactly when a scheduled task is due.

    ``run_cpu(n)`` is called to execute ``n`` cycles.  Tasks are added with a
    delay relative to the current count and dispatched to their registered
    handler when the count reaches them.  Counts wrap at 32 bits.
    """

    def __init__(self, run_cpu: Callable[[int], Any]) -> None:
        self._run_cpu = run_cpu
        self._handlers: Dict[TaskId, Callable[[], Any]] = {}
        self._when: Dict[TaskId, int] = {}
        self._next_count = 0

    def register(self, task: TaskId, handler: Callable[[], Any]) -> None:
        """Set the function called when ``task`` becomes due."""
        self._handlers[TaskId(task)] = handler

    def add(self, task: TaskId, delay: int) -> None:
        """Schedule ``task`` to run ``delay`` cycles from now (delay > 0)."""
        if delay <= 0:
            raise ValueError("task delay must be positive")
        self._when[TaskId(task)] = (self._next_count + delay) & _MASK32

    def zap(self) -> None:
        """Cancel every scheduled task."""
        self._when.clear()

    def current_count(self) -> int:
        """The cycle count at the current slice boundary."""
        return self._next_count

    def _dispatch(self, task: TaskId) -> None:
        handler = self._handlers.get(task)
        if handler is None:
            raise LookupError(f"unknown task {task!r}")
        handler()

    def _do_current_tasks(self) -> None:
        # A task may reschedule any task, itself included, but never for
        # the current count, so a single pass suffices.
        for task in sorted(self._when):
            if self._when.get(task) == self._next_count:
                del self._when[task]
                self._dispatch(task)

    def _get_next(self, limit: int) -> int:
        waits = ((when - self._next_count) & _MASK32 for when in self._when.values())
        return min(limit, *waits) if self._when else limit

    def run_cycles(self, n: int) -> None:
        """Run ``n`` cycles, dispatching tasks as they fall due."""
        n &= _MASK32
        stop = (self._next_count + n) & _MASK32
        while True:
            self._do_current_tasks()
            step = self._get_next(n)
            self._next_count = (self._next_count + step) & _MASK32
            self._run_cpu(step)
            n = (stop - self._next_count) & _MASK32
            if n == 0:
                break


def _signed8(value: int) -> int:
    value &= 0xFF
    return value - 0x100 if value & 0x80 else value


class Emulation:
    """Drives emulated time: one tick per sixtieth of a second plus extra time.

    ``hooks`` is any object; the following optional methods are called on it
    when present: ``set_interrupt_button(value)``, ``mac_reset()``,
    ``sixtieth()``, ``sub_tick(index)``, ``end_tick()``,
    ``done_with_drawing()``, ``extra_time_begin()`` and ``extra_time_end()``.
    ``speed`` is the log2 of the speed multiplier, or ``None`` for all-out.
    """

    def __init__(
        self,
        scheduler: TaskScheduler,
        hooks: Any = None,
        num_sub_ticks: int = 16,
        cycles_per_tick: int = 130240,
        speed: Optional[int] = 0,
    ) -> None:
        if num_sub_ticks < 1:
            raise ValueError("num_sub_ticks must be at least 1")
        if cycles_per_tick < num_sub_ticks:
            raise ValueError("cycles_per_tick must not be less than num_sub_ticks")
        self.scheduler = scheduler
        self.hooks = hooks
        self.num_sub_ticks = num_sub_ticks
        self.cycles_per_tick = cycles_per_tick
        self.cycles_per_sub_tick = cycles_per_tick // num_sub_ticks
        self.speed = speed
        self.want_interrupt = False
        self.want_reset = False
        self.auto_slow = True
        self.want_not_auto_slow = False
        self.quiet_time = 0
        self.quiet_sub_ticks = 0
        self.extra_sub_ticks = 0
        self.cur_emulated_time = 0
        self.lag_time = 0
        self.video_disabled = False
        self._sub_tick_counter = 0
        scheduler.register(TaskId.SUB_TICK, self._sub_tick_task)

    def _notify(self, name: str, *args: Any) -> None:
        fn = getattr(self.hooks, name, None)
        if fn is not None:
            fn(*args)

    def _interrupt_reset_update(self) -> None:
        # The interrupt button only stays pressed for one sixtieth.
        self._notify("set_interrupt_button", False)
        if self.want_interrupt:
            self._notify("set_interrupt_button", True)
            self.want_interrupt = False
        if self.want_reset:
            self._notify("mac_reset")
            self.want_reset = False

    def _sub_tick_task(self) -> None:
        self._notify("sub_tick", self._sub_tick_counter)
        self._sub_tick_counter += 1
        # The final sub tick is signalled at the end of the tick, since the
        # sub tick lengths need not add up to the tick length.
        if self._sub_tick_counter < self.num_sub_ticks - 1:
            self.scheduler.add(TaskId.SUB_TICK, self.cycles_per_sub_tick)

    def _sixtieth_begin(self) -> None:
        self._interrupt_reset_update()
        self._notify("sixtieth")
        self._sub_tick_counter = 0
        self.scheduler.add(TaskId.SUB_TICK, self.cycles_per_sub_tick)

    def _sixtieth_end(self) -> None:
        self._notify("sub_tick", self.num_sub_ticks - 1)
        self._notify("end_tick")

    def emulate_one_tick(self) -> None:
        """Emulate one sixtieth of a second and accrue extra sub ticks."""
        if self.auto_slow:
            if self.quiet_time < _MASK32:
                self.quiet_time += 1
            if self.quiet_sub_ticks + self.num_sub_ticks <= _MASK32:
                self.quiet_sub_ticks += self.num_sub_ticks

        self._sixtieth_begin()
        self.scheduler.run_cycles(self.cycles_per_tick)
        self._sixtieth_end()

        if self.speed is None:
            self.extra_sub_ticks = _MASK32
        else:
            extra_add = (self.num_sub_ticks << self.speed) - self.num_sub_ticks
            extra_limit = extra_add << 3
            self.extra_sub_ticks = min(self.extra_sub_ticks + extra_add, extra_limit)

    def _more_sub_ticks_to_do(self, extra_time_not_over: Callable[[], bool]) -> bool:
        if not (extra_time_not_over() and self.extra_sub_ticks > 0):
            return False
        if (
            self.auto_slow
            and self.quiet_sub_ticks >= 16384
            and self.quiet_time >= 34
            and not self.want_not_auto_slow
        ):
            self.extra_sub_ticks = 0
            return False
        return True

    def emulate_extra_time(self, extra_time_not_over: Callable[[], bool]) -> None:
        """Run extra sub ticks (speeds above 1x) while time remains."""
        if not self._more_sub_ticks_to_do(extra_time_not_over):
            return
        self._notify("extra_time_begin")
        while True:
            if self.auto_slow and self.quiet_sub_ticks < _MASK32:
                self.quiet_sub_ticks += 1
            self.scheduler.run_cycles(self.cycles_per_sub_tick)
            self.extra_sub_ticks -= 1
            if not self._more_sub_ticks_to_do(extra_time_not_over):
                break
        self._notify("extra_time_end")

    def run_to_true_time(
        self, on_true_time: int, extra_time_not_over: Callable[[], bool]
    ) -> None:
        """Emulate ticks until caught up with ``on_true_time``, at most 8."""
        n = _signed8(on_true_time - self.cur_emulated_time)
        if n <= 0:
            return

        self.emulate_one_tick()
        self.cur_emulated_time = (self.cur_emulated_time + 1) & _MASK32
        self._notify("done_with_drawing")

        if n > 8:
            # emulation not fast enough; give up on the backlog
            n = 8
            self.cur_emulated_time = (on_true_time - n) & _MASK32

        if extra_time_not_over():
            n -= 1
            if n > 0:
                self.video_disabled = True
                while True:
                    self.emulate_one_tick()
                    self.cur_emulated_time = (self.cur_emulated_time + 1) & _MASK32
                    if not extra_time_not_over():
                        break
                    n -= 1
                    if n <= 0:
                        break
                self.video_disabled = False

        self.lag_time = n

    def run(
        self,
        wait_for_next_tick: Callable[[], int],
        should_stop: Callable[[], bool],
        extra_time_not_over: Callable[[], bool],
    ) -> None:
        """Main loop: ``wait_for_next_tick`` returns the current true time."""
        while True:
            on_true_time = wait_for_next_tick()
            if should_stop():
                return
            self.run_to_true_time(on_true_time, extra_time_not_over)
            self.emulate_extra_time(extra_time_not_over)