# module for command execution

from __future__ import annotations

import os
import signal
import sys
from typing import TYPE_CHECKING, Optional

from chain import Chain, Command, Redirection, INPUT, OUTPUT, ERROR
from jobs import set_process_group

if TYPE_CHECKING:
    from ops import ShellSession

# Exit statuses of children that never reach their program
EXIT_REDIRECT_FAILED = 1
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127

_STREAM_FDS = {INPUT: 0, OUTPUT: 1, ERROR: 2}

_CHILD_DEFAULT_SIGNALS = (
    signal.SIGINT, signal.SIGQUIT, signal.SIGTSTP,
    signal.SIGTTIN, signal.SIGTTOU, signal.SIGPIPE,
)


def builtin_cd(args: list[str], session: "ShellSession") -> int:
    if len(args) < 2:
        target = session.env.get("HOME") or os.path.expanduser("~")
    else:
        target = args[1]
    try:
        os.chdir(target)
    except OSError as e:
        sys.stderr.write(f"forksh: cd: {target}: {e.strerror}\n")
        sys.stderr.flush()
        return 1
    session.env["PWD"] = os.getcwd()
    return 0


BUILTINS = {"cd": builtin_cd}


def open_redirection(r: Redirection) -> int:
    if r.direction == INPUT:
        return os.open(r.target, os.O_RDONLY)
    return os.open(r.target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o666)


def apply_redirections(redirections: list[Redirection]) -> None:
    """Rewire stdin/stdout/stderr of the calling process, in token order."""
    for r in redirections:
        fd = open_redirection(r)
        target_fd = _STREAM_FDS[r.direction]
        if fd != target_fd:
            os.dup2(fd, target_fd)
            os.close(fd)


def _flush_std_streams() -> None:
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (OSError, ValueError):
            continue


def run_builtin_in_shell(cmd: Command, session: "ShellSession") -> int:
    """Run a builtin in the shell with its redirections applied temporarily.

    The shell's own stdin/stdout/stderr are saved, rewired for the
    builtin, and restored afterwards, whatever the outcome.
    """
    _flush_std_streams()
    saved = {fd: os.dup(fd) for fd in sorted({_STREAM_FDS[r.direction] for r in cmd.redirections})}
    error: Optional[OSError] = None
    try:
        try:
            apply_redirections(cmd.redirections)
        except OSError as e:
            error = e
        else:
            return BUILTINS[cmd.arguments[0]](cmd.arguments, session)
    finally:
        _flush_std_streams()
        for fd, copy in saved.items():
            os.dup2(copy, fd)
            os.close(copy)
    sys.stderr.write(f"forksh: {error.filename}: {error.strerror}\n")
    sys.stderr.flush()
    return EXIT_REDIRECT_FAILED


def _exec_child(cmd: Command, stage: int, pipes: list[tuple[int, int]],
                pgid: int, session: "ShellSession", foreground: bool) -> None:
    """Runs in the forked child; never returns."""
    code = EXIT_NOT_EXECUTABLE
    try:
        set_process_group(0, pgid)
        if foreground:
            # The shell makes the same call after forking; SIGTTOU is still
            # ignored at this point.
            session.controller.set_foreground(pgid or os.getpid())
        for sig in _CHILD_DEFAULT_SIGNALS:
            signal.signal(sig, signal.SIG_DFL)

        if stage > 0:
            os.dup2(pipes[stage - 1][0], 0)
        if stage < len(pipes):
            os.dup2(pipes[stage][1], 1)
        for read_fd, write_fd in pipes:
            os.close(read_fd)
            os.close(write_fd)

        try:
            apply_redirections(cmd.redirections)
        except OSError as e:
            sys.stderr.write(f"forksh: {e.filename}: {e.strerror}\n")
            code = EXIT_REDIRECT_FAILED
            return

        name = cmd.arguments[0]
        builtin = BUILTINS.get(name)
        if builtin is not None:
            code = builtin(cmd.arguments, session)
            return

        try:
            os.execvpe(name, cmd.arguments, session.env)
        except FileNotFoundError:
            sys.stderr.write(f"forksh: {name}: command not found\n")
            code = EXIT_NOT_FOUND
        except OSError as e:
            sys.stderr.write(f"forksh: {name}: {e.strerror}\n")
            code = EXIT_NOT_EXECUTABLE
    except Exception as e:
        sys.stderr.write(f"forksh: {e}\n")
    finally:
        _flush_std_streams()
        os._exit(code)


def launch_pipeline(chain: Chain, start: int, end: int, session: "ShellSession",
                    foreground: bool = True) -> Optional[int]:
    """Start the pipeline ``chain[start..end]``.

    Returns the pid of its last process, which the caller waits on; the
    pipeline's status is that process's status. Returns None when the last
    member has no process (a builtin run in the shell, or a failed fork),
    in which case its ``exit_status`` is already set.
    """
    members = chain.commands[start:end + 1]

    if len(members) == 1 and members[0].arguments[0] in BUILTINS:
        cmd = members[0]
        cmd.exit_status = run_builtin_in_shell(cmd, session)
        return None

    pipes = [os.pipe() for _ in range(len(members) - 1)]
    pgid = 0
    try:
        for stage, cmd in enumerate(members):
            _flush_std_streams()
            try:
                pid = os.fork()
            except OSError as e:
                sys.stderr.write(f"forksh: fork: {e}\n")
                sys.stderr.flush()
                cmd.exit_status = 1
                continue
            if pid == 0:
                _exec_child(cmd, stage, pipes, pgid, session, foreground)
            set_process_group(pid, pgid)
            if pgid == 0:
                pgid = pid
            cmd.process_id = pid
    finally:
        for read_fd, write_fd in pipes:
            os.close(read_fd)
            os.close(write_fd)

    if foreground and pgid:
        session.controller.set_foreground(pgid)
    return members[-1].process_id
