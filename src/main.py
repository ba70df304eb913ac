#!/usr/bin/env python3

# Entry of forksh

from __future__ import annotations

import argparse
import os
import sys
from typing import Iterator, Optional, TextIO

try:
    import readline  # type: ignore
except Exception:  # pragma: no cover - fallback when readline unavailable
    readline = None

READLINE_ACTIVE = bool(readline)

PROMPT = "forksh[{pid}]$ "

from jobs import JobController  # local modules in the same folder
from ops import ShellSession, execute_line


def get_prompt() -> str:
    """Prompt text; FORKSH_PROMPT overrides it and may use {pid}."""
    template = os.environ.get("FORKSH_PROMPT", PROMPT)
    try:
        return template.format(pid=os.getpid())
    except (KeyError, IndexError, ValueError):
        return template


def setup_readline() -> None:
    if not READLINE_ACTIVE:
        return
    try:
        readline.parse_and_bind("set editing-mode emacs")
    except Exception:
        pass


def read_lines(source: Optional[TextIO], quiet: bool,
               controller: Optional[JobController] = None) -> Iterator[str]:
    """Yield input lines from a script file, or from stdin with a prompt.

    While waiting on stdin, ``controller.reading`` is set so that Ctrl-C
    abandons the half-typed line instead of being queued for the next one.
    """
    if source is not None:
        for line in source:
            yield line
        return
    while True:
        prompt = "" if quiet else get_prompt()
        try:
            if controller is not None:
                controller.reading = True
            line = input(prompt)
        except EOFError:
            if not quiet and sys.stdin.isatty():
                print()
            return
        except KeyboardInterrupt:
            # Ctrl-C at prompt -> new line and continue
            print()
            continue
        finally:
            if controller is not None:
                controller.reading = False
        yield line


def repl(session: ShellSession, source: Optional[TextIO] = None, quiet: bool = False) -> int:
    if source is None and session.interactive:
        setup_readline()

    status = 0
    session.reap()
    for line in read_lines(source, quiet, session.controller):
        status = execute_line(line, session)
        # Idle point: collect finished background jobs before the next prompt.
        session.reap()
    session.reap()
    return status


def parse_args(args=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="forksh - a small job-control shell",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  forksh                   # interactive shell
  forksh -q script.sh      # run commands from a file, no prompts
  echo 'ls | wc -l' | forksh -q

Environment:
  FORKSH_PROMPT            prompt template, {pid} is the shell's pid
"""
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Do not print prompts"
    )
    parser.add_argument(
        "file",
        nargs="?",
        metavar="FILE",
        help="Read commands from FILE instead of standard input"
    )

    return parser.parse_args(args)


def main() -> None:
    args = parse_args()
    source: Optional[TextIO] = None
    if args.file:
        try:
            source = open(args.file, "r")
        except OSError as e:
            print(f"forksh: {args.file}: {e.strerror}", file=sys.stderr)
            sys.exit(1)

    # Claims the terminal even when commands come from a script file
    session = ShellSession()
    session.controller.install()
    try:
        status = repl(session, source=source, quiet=args.quiet)
    finally:
        if source is not None:
            source.close()
    sys.exit(status)


if __name__ == "__main__":
    main()
