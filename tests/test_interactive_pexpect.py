#!/usr/bin/env python3
"""Interactive tests on a real pseudo-terminal using pexpect"""

import os
import sys
import time
from pathlib import Path

import pytest

# Try to import pexpect
try:
    import pexpect
    HAS_PEXPECT = True
except ImportError:
    HAS_PEXPECT = False
    pytestmark = pytest.mark.skip(reason="pexpect not installed")

ROOT = Path(__file__).resolve().parent.parent
MAIN = ROOT / "src" / "main.py"
PROMPT_RE = r"forksh\[\d+\]\$ "


def spawn(cwd):
    env = {k: v for k, v in os.environ.items() if k != "FORKSH_PROMPT"}
    env["TERM"] = "dumb"
    return pexpect.spawn(sys.executable, [str(MAIN)], cwd=str(cwd), env=env,
                         timeout=10, encoding="utf-8")


@pytest.mark.skipif(not HAS_PEXPECT, reason="requires pexpect")
class TestInteractiveShell:
    """Drive forksh the way a user at a terminal would"""

    def test_prompt_and_command(self, tmp_path):
        child = spawn(tmp_path)
        try:
            child.expect(PROMPT_RE)
            child.sendline("echo hel''lo")
            child.expect("hello")
            child.expect(PROMPT_RE)
            child.sendeof()
            child.expect(pexpect.EOF)
        finally:
            if child.isalive():
                child.terminate(force=True)

    def test_ctrl_c_cancels_rest_of_list(self, tmp_path):
        child = spawn(tmp_path)
        try:
            child.expect(PROMPT_RE)
            child.sendline("sleep 10 ; echo AFT''ER")
            time.sleep(1.0)
            start = time.time()
            child.sendintr()
            child.expect(PROMPT_RE)
            assert time.time() - start < 5
            assert "AFTER" not in child.before
            # the shell is still usable afterwards
            child.sendline("echo al''ive")
            child.expect("alive")
            child.expect(PROMPT_RE)
        finally:
            if child.isalive():
                child.terminate(force=True)

    def test_cd_changes_shell_directory(self, tmp_path):
        (tmp_path / "inner").mkdir()
        child = spawn(tmp_path)
        try:
            child.expect(PROMPT_RE)
            child.sendline("cd inner")
            child.expect(PROMPT_RE)
            child.sendline("pwd")
            child.expect_exact(str((tmp_path / "inner").resolve()))
            child.expect(PROMPT_RE)
        finally:
            if child.isalive():
                child.terminate(force=True)

    def test_terminal_returns_to_shell_after_pipeline(self, tmp_path):
        child = spawn(tmp_path)
        try:
            child.expect(PROMPT_RE)
            child.sendline("echo one | cat | cat")
            child.expect("one")
            child.expect(PROMPT_RE)
            # reading the next line needs the terminal back in the shell's group
            child.sendline("echo tw''o")
            child.expect("two")
            child.expect(PROMPT_RE)
        finally:
            if child.isalive():
                child.terminate(force=True)

    def test_ctrl_c_at_prompt_discards_partial_line(self, tmp_path):
        child = spawn(tmp_path)
        try:
            child.expect(PROMPT_RE)
            child.send("touch half-typed")
            time.sleep(0.3)
            child.sendintr()
            child.expect(PROMPT_RE)
            child.sendline("echo fre''sh")
            child.expect("fresh")
            child.expect(PROMPT_RE)
            assert not (tmp_path / "half-typed").exists()
            assert not (tmp_path / "half-typedecho").exists()
        finally:
            if child.isalive():
                child.terminate(force=True)


@pytest.mark.skipif(not HAS_PEXPECT, reason="requires pexpect")
class TestScriptOnTerminal:
    """Run a script file while a terminal is attached"""

    def spawn_script(self, tmp_path, text):
        script = tmp_path / "script.sh"
        script.write_text(text)
        env = {k: v for k, v in os.environ.items() if k != "FORKSH_PROMPT"}
        env["TERM"] = "dumb"
        return pexpect.spawn(sys.executable, [str(MAIN), str(script)], cwd=str(tmp_path),
                             env=env, timeout=10, encoding="utf-8")

    def test_ctrl_c_reaches_foreground_command(self, tmp_path):
        child = self.spawn_script(tmp_path, "sleep 5 ; echo AFT''ER\n")
        try:
            time.sleep(1.0)
            start = time.time()
            child.sendintr()
            child.expect(pexpect.EOF)
            assert time.time() - start < 2
            assert "AFTER" not in child.before
        finally:
            if child.isalive():
                child.terminate(force=True)

    def test_command_can_read_terminal(self, tmp_path):
        child = self.spawn_script(tmp_path, "cat > got.txt\n")
        try:
            time.sleep(0.5)
            child.sendline("typed")
            child.sendeof()
            index = child.expect([r"stopped", pexpect.EOF])
            assert index == 1
            assert (tmp_path / "got.txt").read_text() == "typed\n"
        finally:
            if child.isalive():
                child.terminate(force=True)
