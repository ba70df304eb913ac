"""Process groups, terminal ownership and interruption state for forksh."""
from __future__ import annotations

import os
import signal
import sys
from typing import Optional


def set_process_group(pid: int, pgid: int) -> bool:
    """Put ``pid`` (0 = caller) into group ``pgid`` (0 = its own pid).

    Called by both the new child and the launching shell, so one of the two
    calls may lose a race: the child may already have exec'd (EACCES) or
    exited (ESRCH). Both mean the group is already settled.
    """
    try:
        os.setpgid(pid, pgid)
        return True
    except (PermissionError, ProcessLookupError):
        return False


def status_to_exitcode(status: int) -> int:
    """Translate an ``os.waitpid`` status to a shell-style exit code."""
    if os.WIFEXITED(status):
        return os.WEXITSTATUS(status)
    if os.WIFSIGNALED(status):
        return 128 + os.WTERMSIG(status)
    if os.WIFSTOPPED(status):
        return 128 + os.WSTOPSIG(status)
    return 1


def reap_children() -> list[tuple[int, int]]:
    """Collect every child that has already terminated, without blocking."""
    reaped: list[tuple[int, int]] = []
    while True:
        try:
            pid, status = os.waitpid(-1, os.WNOHANG)
        except ChildProcessError:
            break
        if pid == 0:
            break
        reaped.append((pid, status))
    return reaped


class JobController:
    """Which process group owns the terminal, and whether Ctrl-C was seen.

    ``interrupted`` is written by the SIGINT handler, by :meth:`interrupt`
    and by :meth:`clear_interrupt`; the scheduler reads it only through
    :meth:`poll_interrupt`, right before it dispatches a pipeline.

    ``interactive`` only says whether stdin is a terminal (prompts, job
    control signals ignored). Terminal ownership is claimed by
    :meth:`install` whenever a controlling terminal is available.
    """

    def __init__(self, interactive: Optional[bool] = None) -> None:
        if interactive is None:
            interactive = os.isatty(0)
        self.interactive = interactive
        self.interrupted = False
        self.foreground = 0
        self.shell_pgid = os.getpgrp()
        # Set while the shell blocks reading a command line
        self.reading = False
        self._tty_fd: Optional[int] = None

    # --- interruption ---
    def _on_interrupt(self, signum, frame) -> None:
        self.interrupted = True
        if self.reading:
            raise KeyboardInterrupt

    def interrupt(self) -> None:
        self.interrupted = True

    def clear_interrupt(self) -> None:
        self.interrupted = False

    def poll_interrupt(self) -> bool:
        return self.interrupted

    # --- terminal ---
    def install(self) -> None:
        # Taking the terminal back from a child group raises SIGTTOU in the
        # shell; it must be ignored before the first set_foreground.
        signal.signal(signal.SIGTTOU, signal.SIG_IGN)
        if self.interactive:
            signal.signal(signal.SIGTSTP, signal.SIG_IGN)
            signal.signal(signal.SIGTTIN, signal.SIG_IGN)
        signal.signal(signal.SIGINT, self._on_interrupt)
        self._tty_fd = self._claim_terminal()
        self.set_foreground(0)

    def _claim_terminal(self) -> Optional[int]:
        """Open the controlling terminal if the shell is its foreground group.

        Independent of where commands come from: a script run from a
        terminal still hands the terminal to each foreground pipeline.
        """
        if self._tty_fd is not None:
            return self._tty_fd
        try:
            fd = os.open("/dev/tty", os.O_RDWR | os.O_CLOEXEC)
        except OSError:
            return None
        try:
            owner = os.tcgetpgrp(fd)
        except OSError:
            owner = -1
        if owner != self.shell_pgid:
            # Started in the background; leave the terminal alone.
            os.close(fd)
            return None
        return fd

    def _terminal(self) -> Optional[int]:
        return self._tty_fd

    def set_foreground(self, pgid: int) -> bool:
        """Hand the terminal to ``pgid``; 0 hands it back to the shell."""
        fd = self._terminal()
        if fd is None:
            return False
        target = pgid or self.shell_pgid
        try:
            os.tcsetpgrp(fd, target)
        except OSError as e:
            sys.stderr.write(f"forksh: tcsetpgrp: {e}\n")
            sys.stderr.flush()
            return False
        self.foreground = pgid
        return True

    def detach(self) -> None:
        """Forget the terminal; used by background workers."""
        if self._tty_fd is not None:
            try:
                os.close(self._tty_fd)
            except OSError:
                pass
        self._tty_fd = None
        self.interactive = False
        self.reading = False
        self.foreground = 0
        self.interrupted = False
