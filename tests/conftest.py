import os
import signal
import sys
from pathlib import Path
import pytest

# Ensure we can import modules from src/ at collection time
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture()
def sandbox(tmp_path, monkeypatch):
    # Work in an isolated temp directory
    monkeypatch.chdir(tmp_path)
    # Prune environment to a minimal safe set
    safe_env = {
        "PATH": os.environ.get("PATH", "/usr/bin:/bin"),
        "HOME": str(tmp_path),
        "LANG": os.environ.get("LANG", "C"),
        "LC_ALL": os.environ.get("LC_ALL", "C"),
        "TERM": os.environ.get("TERM", "dumb"),
    }
    monkeypatch.setenv("PATH", safe_env["PATH"])
    return tmp_path, safe_env


@pytest.fixture()
def session(sandbox):
    from ops import ShellSession
    tmp_path, safe_env = sandbox
    sess = ShellSession(inherit_env=False, interactive=False)
    sess.env.update(safe_env)
    yield sess
    # Let background workers finish so they do not outlive the test
    for pid in list(sess.background_jobs):
        try:
            os.waitpid(pid, 0)
        except ChildProcessError:
            pass
    sess.reap()


@pytest.fixture()
def sigint_handler(session):
    """Install the session's SIGINT handler for the duration of a test."""
    previous = signal.getsignal(signal.SIGINT)
    signal.signal(signal.SIGINT, session.controller._on_interrupt)
    yield session.controller
    signal.signal(signal.SIGINT, previous)
