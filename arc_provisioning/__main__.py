# Copyright 2018-present Network Optix, Inc. Licensed under MPL 2.0: www.mozilla.org/MPL/2.0/
import argparse
import getpass
import sys
from typing import List
from typing import Sequence

from arc_access import ElevationError
from arc_provisioning._config import load_config
from arc_provisioning._errors import ConfigurationError
from arc_provisioning._errors import ValidationError
from arc_provisioning._logging import init_logging
from arc_provisioning._registry import Step
from arc_provisioning._registry import StepState
from arc_provisioning._steps import Services
from arc_provisioning._target import parse_connect_target
from arc_provisioning._workflow import RunState
from arc_provisioning._workflow import Workflow

_marks = {
    StepState.PENDING: ' ',
    StepState.RUNNING: '>',
    StepState.DONE: '+',
    StepState.FAILED: '!',
    }


class _ConsoleObserver:

    def __init__(self):
        self._printed = {}

    def __call__(self, steps: List[Step]):
        for i, step in enumerate(steps):
            if self._printed.get(i) == step.state or step.state == StepState.PENDING:
                continue
            self._printed[i] = step.state
            print(f"[{_marks[step.state]}] {i + 1:2d}/{len(steps)} {step.label}", flush=True)
            if step.state == StepState.FAILED:
                print(step.error, file=sys.stderr, flush=True)


def main(args: Sequence[str]) -> int:
    parsed_args = _parse_args(args)
    try:
        target = parse_connect_target(parsed_args.target)
    except ValidationError as e:
        print(e, file=sys.stderr)
        return 2
    try:
        config = load_config(target.host)
    except ConfigurationError as e:
        print(e, file=sys.stderr)
        return 2
    init_logging(config.state_dir, parsed_args.verbose)
    try:
        services = Services(config)
        services.check_local_privilege()
    except (ConfigurationError, ElevationError) as e:
        print(e, file=sys.stderr)
        return 1
    password = getpass.getpass(f"Password for {target.user}@{target.host}: ")
    initial_state = RunState(
        bootstrap_user=target.user,
        host=target.host,
        address=target.address,
        password=password,
        )
    with Workflow(services, initial_state) as workflow:
        workflow.add_observer(_ConsoleObserver())
        try:
            workflow.run()
        except KeyboardInterrupt:
            # The running step cannot be interrupted; stop before the next one.
            workflow.request_cancel()
            print("Stopping after the running step...", file=sys.stderr)
            while not workflow.is_finished():
                workflow.process_next_event()
        if workflow.is_complete():
            print(f"Ready: ssh {workflow.state().ready_as}")
            return 0
        if workflow.is_cancelled():
            print("Cancelled; run again to start over", file=sys.stderr)
            return 130
        print("Failed; fix the problem and run again to start over", file=sys.stderr)
        return 1


def _parse_args(args: Sequence[str]):
    parser = argparse.ArgumentParser(
        prog='python -m arc_provisioning',
        description="Join this machine and a remote host with a WireGuard tunnel.",
        )
    parser.add_argument('target', help="Bootstrap login: user@host[:port].")
    parser.add_argument('--verbose', '-v', action='store_true', help="Log progress to stderr.")
    return parser.parse_args(args)


def cli():
    sys.exit(main(sys.argv[1:]))


if __name__ == '__main__':
    cli()
