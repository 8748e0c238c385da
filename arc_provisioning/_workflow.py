# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
"""Drive the steps one by one, threading discoveries from step to step.

Exactly one step runs at a time, on a single worker thread. The worker
never touches the run state: it gets a request built from a copy of it and
reports back through a queue. The driver thread applies the outcome
before dispatching the next step, so every step sees what all previous
steps discovered.
"""
import logging
import queue
from concurrent.futures import Future
from concurrent.futures import ThreadPoolExecutor
from typing import Callable
from typing import List
from typing import NamedTuple
from typing import Optional

from arc_provisioning._registry import Step
from arc_provisioning._registry import StepState
from arc_provisioning._steps import Services
from arc_provisioning._steps import StepRequest
from arc_provisioning._steps import StepResult
from arc_provisioning._wireguard_config import TunnelConfig

_logger = logging.getLogger(__name__)


class RunState(NamedTuple):
    bootstrap_user: str
    host: str
    address: str
    password: str
    use_sudo: bool = False
    pub_key_line: str = ''
    tunnel: TunnelConfig = TunnelConfig.empty()
    ready_as: str = ''

    def __repr__(self):
        return f'<RunState {self.bootstrap_user}@{self.address} ready_as={self.ready_as!r}>'

    def request(self, step_id: str) -> StepRequest:
        return StepRequest(
            bootstrap_user=self.bootstrap_user,
            host=self.host,
            address=self.address,
            password=self.password,
            use_sudo=self.use_sudo,
            pub_key_line=self.pub_key_line,
            tunnel=self.tunnel,
            step_id=step_id,
            )

    def merged(self, result: Optional[StepResult]) -> 'RunState':
        """Take only what the step has discovered."""
        if result is None:
            return self
        updates = {}
        if result.use_sudo is not None:
            updates['use_sudo'] = result.use_sudo
        if result.pub_key_line:
            updates['pub_key_line'] = result.pub_key_line
        if result.ready_as:
            updates['ready_as'] = result.ready_as
        if result.tunnel is not None and result.tunnel.is_built():
            updates['tunnel'] = result.tunnel
        return self._replace(**updates)


class _StepDone(NamedTuple):
    index: int
    result: Optional[StepResult]
    error: Optional[str]


Observer = Callable[[List[Step]], None]


class Workflow:

    def __init__(self, services: Services, initial_state: RunState):
        self._services = services
        self._initial_state = initial_state
        self._state = initial_state
        self._steps: List[Step] = []
        self._events: 'queue.Queue[_StepDone]' = queue.Queue()
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix='ArcStep')
        self._observers: List[Observer] = []
        self._in_flight = False
        self._cancel_requested = False
        self._cancelled = False

    def __repr__(self):
        return f'<Workflow {self._state!r}>'

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def add_observer(self, observer: Observer):
        self._observers.append(observer)

    def steps(self) -> List[Step]:
        return [step.copy() for step in self._steps]

    def state(self) -> RunState:
        return self._state

    def is_failed(self) -> bool:
        return any(step.state == StepState.FAILED for step in self._steps)

    def is_complete(self) -> bool:
        return bool(self._steps) and all(step.state == StepState.DONE for step in self._steps)

    def is_cancelled(self) -> bool:
        return self._cancelled

    def is_finished(self) -> bool:
        return not self._in_flight and (self.is_failed() or self.is_complete() or self._cancelled)

    def start(self):
        """Begin a fresh run from the first step, discarding the previous run."""
        if self._in_flight:
            raise RuntimeError("Cannot restart while a step is running")
        self._steps = self._services.setup_definition()
        self._state = self._initial_state
        self._cancel_requested = False
        self._cancelled = False
        if not self._steps:
            return
        _logger.info("Start run of %d steps", len(self._steps))
        self._begin(0)

    def request_cancel(self):
        """Stop after the running step; a running step is never interrupted."""
        _logger.info("Cancel requested")
        self._cancel_requested = True
        if not self._in_flight:
            self._cancelled = True

    def process_next_event(self, timeout_sec: Optional[float] = None):
        if not self._in_flight:
            raise RuntimeError("No step is running; nothing to wait for")
        event = self._events.get(timeout=timeout_sec)
        self._in_flight = False
        step = self._steps[event.index]
        if event.error is not None:
            step.state = StepState.FAILED
            step.error = event.error
            _logger.error("%s: failed: %s", step.label, event.error)
            self._notify()
            return
        step.state = StepState.DONE
        self._state = self._state.merged(event.result)
        _logger.info("%s: done", step.label)
        self._notify()
        if self._cancel_requested:
            _logger.warning("Run cancelled after %s", step.label)
            self._cancelled = True
            return
        if event.index + 1 < len(self._steps):
            self._begin(event.index + 1)
        else:
            _logger.info("All %d steps are done", len(self._steps))

    def run(self):
        self.start()
        while not self.is_finished():
            self.process_next_event()

    def close(self):
        self._worker.shutdown(wait=True)

    def _begin(self, index: int):
        step = self._steps[index]
        step.state = StepState.RUNNING
        _logger.info("%s: running", step.label)
        self._notify()
        request = self._state.request(step.id)
        self._in_flight = True
        future = self._worker.submit(self._services.run_step, request)
        future.add_done_callback(lambda f: self._events.put(_outcome(index, f)))

    def _notify(self):
        for observer in self._observers:
            observer(self.steps())


def _outcome(index: int, future: Future) -> _StepDone:
    try:
        result = future.result()
    except Exception as e:
        _logger.debug("Step #%d raised", index, exc_info=True)
        return _StepDone(index, None, str(e) or type(e).__name__)
    return _StepDone(index, result, None)
