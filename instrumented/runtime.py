"""
This module registers observers reporting metrics about the Python runtime:
allocated memory blocks, loaded modules, CPU usage, garbage collection, memory usage,
and threads. Observers are sampled by the metric reader of the pipeline, on its export
interval.

A failure while sampling an observer is logged and results in no observations for that
observer, for that collection; it never propagates to the metric reader, nor to the
other observers. Likewise, failing to register an observer is logged and does not
prevent the registration of the others.
"""

import gc
import logging
import sys
import threading
import time
from functools import wraps
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import psutil
from opentelemetry.metrics import CallbackOptions, Meter, Observation

from instrumented import __version__
from instrumented.pipeline import TelemetryPipeline

logger = logging.getLogger("instrumented.runtime")

ObservationCallback = Callable[[CallbackOptions], Iterable[Observation]]


def safe_callback(observer_name: str, fn: ObservationCallback) -> ObservationCallback:
    @wraps(fn)
    def callback(options: CallbackOptions) -> Iterable[Observation]:
        try:
            return list(fn(options))
        except Exception:
            logger.warning(
                "The runtime observer '%s' failed to sample.",
                observer_name,
                exc_info=True,
            )
            return []

    return callback


class GarbageCollectionTimer:
    """
    Measures the time spent in garbage collection, by generation, using gc.callbacks.
    """

    def __init__(self, clock: Callable[[], float] = time.perf_counter) -> None:
        self._clock = clock
        self._started_at: Optional[float] = None
        self._pause_time: Dict[int, float] = {}

    def __call__(self, phase: str, info: Dict[str, int]) -> None:
        if phase == "start":
            self._started_at = self._clock()
            return

        if phase == "stop" and self._started_at is not None:
            generation = info.get("generation", -1)
            elapsed = self._clock() - self._started_at
            self._pause_time[generation] = self._pause_time.get(generation, 0.0) + elapsed
            self._started_at = None

    def pause_time(self) -> Dict[int, float]:
        return dict(self._pause_time)


class RuntimeObservers:
    def __init__(self, meter: Meter) -> None:
        self.meter = meter
        self.registered: List[str] = []
        self.failed: List[str] = []
        self.gc_timer: Optional[GarbageCollectionTimer] = None

    def close(self) -> None:
        """
        Detaches the garbage collection timer from the interpreter.
        Instruments stay registered with the meter provider until it shuts down.
        """
        if self.gc_timer is not None and self.gc_timer in gc.callbacks:
            gc.callbacks.remove(self.gc_timer)
        self.gc_timer = None


def observe_buffer_pools(observers: RuntimeObservers) -> None:
    def allocated_blocks(options: CallbackOptions) -> Iterable[Observation]:
        yield Observation(sys.getallocatedblocks())

    observers.meter.create_observable_gauge(
        "process.runtime.cpython.allocated_blocks",
        callbacks=[safe_callback("buffer_pools", allocated_blocks)],
        unit="{block}",
        description="Number of memory blocks currently allocated by the interpreter",
    )


def observe_classes(observers: RuntimeObservers) -> None:
    def loaded_modules(options: CallbackOptions) -> Iterable[Observation]:
        yield Observation(len(sys.modules))

    observers.meter.create_observable_up_down_counter(
        "process.runtime.cpython.modules.loaded",
        callbacks=[safe_callback("classes", loaded_modules)],
        unit="{module}",
        description="Number of modules currently loaded",
    )


def observe_cpu(observers: RuntimeObservers) -> None:
    process = psutil.Process()
    cpu_count = psutil.cpu_count() or 1

    def cpu_time(options: CallbackOptions) -> Iterable[Observation]:
        times = process.cpu_times()
        yield Observation(times.user, {"type": "user"})
        yield Observation(times.system, {"type": "system"})

    def utilization(options: CallbackOptions) -> Iterable[Observation]:
        yield Observation(process.cpu_percent(interval=None) / 100 / cpu_count)

    def system_utilization(options: CallbackOptions) -> Iterable[Observation]:
        yield Observation(psutil.cpu_percent(interval=None) / 100)

    meter = observers.meter
    meter.create_observable_counter(
        "process.runtime.cpython.cpu_time",
        callbacks=[safe_callback("cpu", cpu_time)],
        unit="s",
        description="CPU time used by the process",
    )
    meter.create_observable_gauge(
        "process.runtime.cpython.cpu.utilization",
        callbacks=[safe_callback("cpu", utilization)],
        unit="1",
        description="Recent CPU utilization of the process, over all processors",
    )
    meter.create_observable_gauge(
        "process.runtime.cpython.system.cpu.utilization",
        callbacks=[safe_callback("cpu", system_utilization)],
        unit="1",
        description="Recent CPU utilization of the whole system",
    )


def observe_garbage_collector(observers: RuntimeObservers) -> None:
    timer = GarbageCollectionTimer()

    def collections(options: CallbackOptions) -> Iterable[Observation]:
        for generation, stats in enumerate(gc.get_stats()):
            yield Observation(stats["collections"], {"generation": str(generation)})

    def pause_time(options: CallbackOptions) -> Iterable[Observation]:
        for generation, seconds in timer.pause_time().items():
            yield Observation(seconds, {"generation": str(generation)})

    meter = observers.meter
    meter.create_observable_counter(
        "process.runtime.cpython.gc_count",
        callbacks=[safe_callback("garbage_collector", collections)],
        unit="{collection}",
        description="Number of garbage collections, by generation",
    )
    meter.create_observable_counter(
        "process.runtime.cpython.gc.pause_time",
        callbacks=[safe_callback("garbage_collector", pause_time)],
        unit="s",
        description="Time spent in garbage collection, by generation",
    )

    gc.callbacks.append(timer)
    observers.gc_timer = timer


def observe_memory_pools(observers: RuntimeObservers) -> None:
    process = psutil.Process()

    def memory(options: CallbackOptions) -> Iterable[Observation]:
        info = process.memory_info()
        yield Observation(info.rss, {"type": "rss"})
        yield Observation(info.vms, {"type": "vms"})

    def tracked_objects(options: CallbackOptions) -> Iterable[Observation]:
        for generation, count in enumerate(gc.get_count()):
            yield Observation(count, {"generation": str(generation)})

    meter = observers.meter
    meter.create_observable_up_down_counter(
        "process.runtime.cpython.memory",
        callbacks=[safe_callback("memory_pools", memory)],
        unit="By",
        description="Memory used by the process",
    )
    meter.create_observable_gauge(
        "process.runtime.cpython.gc.objects",
        callbacks=[safe_callback("memory_pools", tracked_objects)],
        unit="{object}",
        description="Objects tracked by the garbage collector, by generation",
    )


def observe_threads(observers: RuntimeObservers) -> None:
    def thread_count(options: CallbackOptions) -> Iterable[Observation]:
        threads = threading.enumerate()
        daemons = sum(1 for thread in threads if thread.daemon)
        yield Observation(daemons, {"daemon": True})
        yield Observation(len(threads) - daemons, {"daemon": False})

    observers.meter.create_observable_up_down_counter(
        "process.runtime.cpython.thread_count",
        callbacks=[safe_callback("threads", thread_count)],
        unit="{thread}",
        description="Number of threads, daemon and non daemon",
    )


RUNTIME_OBSERVERS: Tuple[Tuple[str, Callable[[RuntimeObservers], None]], ...] = (
    ("buffer_pools", observe_buffer_pools),
    ("classes", observe_classes),
    ("cpu", observe_cpu),
    ("garbage_collector", observe_garbage_collector),
    ("memory_pools", observe_memory_pools),
    ("threads", observe_threads),
)


def register_runtime_observers(pipeline: TelemetryPipeline) -> RuntimeObservers:
    """
    Registers the runtime observers against the meter provider of the given pipeline.
    This function never raises because of an observer: failures are logged and the
    names of the observers that could not be registered are listed in the `failed`
    property of the returned object.
    """
    observers = RuntimeObservers(pipeline.get_meter("instrumented.runtime", __version__))

    for name, register in RUNTIME_OBSERVERS:
        try:
            register(observers)
        except Exception:
            logger.warning(
                "Cannot register the runtime observer '%s'.", name, exc_info=True
            )
            observers.failed.append(name)
        else:
            observers.registered.append(name)

    logger.debug("Runtime observers registered: %s", ", ".join(observers.registered))
    return observers
