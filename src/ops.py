from __future__ import annotations

import os
import signal
import sys
from typing import Dict, Iterable, List, Optional

from chain import (
    AND, OR, Chain, ParseError, Token, build_chain, tokenize,
)
from command import launch_pipeline
from jobs import JobController, reap_children, set_process_group, status_to_exitcode

EXIT_SYNTAX_ERROR = 2


class ShellSession:
    """Holds session-wide shell context: environment, terminal and jobs."""

    def __init__(self, inherit_env: bool = True, interactive: Optional[bool] = None) -> None:
        # String-only environment handed to every exec'd program
        self.env: Dict[str, str] = dict(os.environ) if inherit_env else {}
        self.controller = JobController(interactive=interactive)
        # Pids of detached background workers not yet reaped
        self.background_jobs: List[int] = []
        self.last_status: int = 0

    @property
    def interactive(self) -> bool:
        return self.controller.interactive

    def reap(self) -> list[tuple[int, int]]:
        """Reclaim finished children without blocking."""
        reaped = reap_children()
        done = {pid for pid, _ in reaped}
        self.background_jobs = [pid for pid in self.background_jobs if pid not in done]
        return reaped


# --------- List scheduling ---------

def _should_skip(connector: str, status: int) -> bool:
    if connector == AND:
        return status != 0
    if connector == OR:
        return status == 0
    return False


def _terminate_group(pid: int) -> None:
    try:
        pgid = os.getpgid(pid)
        if pgid == os.getpgrp():
            return
        os.killpg(pgid, signal.SIGTERM)
        os.killpg(pgid, signal.SIGCONT)
    except ProcessLookupError:
        pass


def _wait_pipeline(chain: Chain, end: int, pid: int, session: ShellSession) -> int:
    last = chain[end]
    try:
        _, raw = os.waitpid(pid, os.WUNTRACED)
    except OSError as e:
        sys.stderr.write(f"forksh: wait: {last.arguments[0]}: {e}\n")
        sys.stderr.flush()
        return 1
    if os.WIFSTOPPED(raw):
        # No fg/bg to resume it with; end the job so the reaper collects it.
        sys.stderr.write(f"forksh: [{pid}] stopped, terminating\n")
        sys.stderr.flush()
        _terminate_group(pid)
    elif os.WIFSIGNALED(raw) and os.WTERMSIG(raw) == signal.SIGINT:
        # Ctrl-C reached the foreground group; abandon the rest of the list.
        session.controller.interrupt()
    return status_to_exitcode(raw)


def _run_pipeline(chain: Chain, start: int, end: int, session: ShellSession,
                  detached: bool) -> int:
    controller = session.controller
    try:
        pid = launch_pipeline(chain, start, end, session, foreground=not detached)
        if pid is None:
            status = chain[end].exit_status
            return 1 if status is None else status
        status = _wait_pipeline(chain, end, pid, session)
        chain[end].exit_status = status
        return status
    finally:
        if not detached:
            controller.set_foreground(0)


def _spawn_background(chain: Chain, start: int, stop: int, session: ShellSession) -> Optional[int]:
    """Fork a worker that runs ``chain[start:stop]`` to completion on its own."""
    sys.stdout.flush()
    sys.stderr.flush()
    try:
        pid = os.fork()
    except OSError as e:
        sys.stderr.write(f"forksh: fork: {e}\n")
        sys.stderr.flush()
        return None
    if pid == 0:
        status = 1
        try:
            set_process_group(0, 0)
            session.controller.detach()
            signal.signal(signal.SIGINT, signal.SIG_DFL)
            status = run_list(chain, session, start, stop, detached=True)
        except Exception as e:
            sys.stderr.write(f"forksh: background job: {e}\n")
        finally:
            sys.stdout.flush()
            sys.stderr.flush()
            os._exit(status & 0xFF)
    set_process_group(pid, pid)
    session.background_jobs.append(pid)
    return pid


def run_list(chain: Chain, session: ShellSession, start: int = 0,
             stop: Optional[int] = None, detached: bool = False) -> int:
    """Run ``chain[start:stop]`` honouring ;, &&, ||, | and & semantics.

    ``detached`` is the mode of a background worker: every pipeline is
    waited on but none is given the terminal, and background flags are
    already accounted for.
    """
    if stop is None:
        stop = len(chain)
    status = 0
    i = start
    while i < stop:
        if session.controller.poll_interrupt():
            break

        if chain[i].is_background and not detached:
            boundary = chain.background_end(i)
            pid = _spawn_background(chain, i, boundary + 1, session)
            status = 0 if pid is not None else 1
            i = boundary + 1
            continue

        end = chain.pipeline_end(i)
        status = _run_pipeline(chain, i, end, session, detached)
        connector = chain[end].connector
        i = end + 1

        # A skipped pipeline takes on the controlling status, then its own
        # connector is evaluated with it.
        while i < stop and _should_skip(connector, status):
            end = chain.pipeline_end(i)
            chain[end].exit_status = status
            connector = chain[end].connector
            i = end + 1

    return status


# --------- Line execution ---------

def _syntax_error(e: Exception, session: ShellSession) -> int:
    sys.stderr.write(f"forksh: syntax error: {e}\n")
    sys.stderr.flush()
    session.last_status = EXIT_SYNTAX_ERROR
    return EXIT_SYNTAX_ERROR


def execute_tokens(tokens: Iterable[Token], session: ShellSession) -> int:
    session.controller.clear_interrupt()
    try:
        chain = build_chain(tokens)
    except ParseError as e:
        return _syntax_error(e, session)
    if len(chain) == 0:
        return session.last_status
    session.last_status = run_list(chain, session)
    return session.last_status


def execute_line(line: str, session: ShellSession) -> int:
    try:
        tokens = tokenize(line)
    except ParseError as e:
        return _syntax_error(e, session)
    return execute_tokens(tokens, session)
