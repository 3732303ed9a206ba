"""
Process runner: exit handling, timeouts and line forwarding into the log.
"""

import os
import signal
import sys
import tempfile
import time
import unittest
from unittest.mock import MagicMock, patch

from renderer.errors import ProcessFailure, TimeoutFailure
from renderer.process import run_process

PYTHON = sys.executable


class TestRunProcess(unittest.TestCase):
    def test_success_captures_both_streams(self):
        script = "import sys; print('hello'); print('world'); print('oops', file=sys.stderr)"
        with self.assertLogs("bms", level="INFO") as logs:
            result = run_process(PYTHON, ["-c", script], timeout=30)

        self.assertEqual(result.exit_code, 0)
        self.assertEqual(result.stdout, ["hello", "world"])
        self.assertEqual(result.stderr, ["oops"])
        forwarded = [line for line in logs.output if "> " in line]
        self.assertTrue(any(line.endswith("> hello") for line in forwarded))
        self.assertTrue(any(line.endswith("> oops") for line in forwarded))
        # Arrival order is kept per stream
        out_lines = [line for line in forwarded if line.endswith(("> hello", "> world"))]
        self.assertTrue(out_lines[0].endswith("> hello"))

    def test_stream_loggers_are_tagged_by_tool_and_stream(self):
        name = os.path.basename(PYTHON)
        with self.assertLogs("bms", level="INFO") as logs:
            run_process(PYTHON, ["-c", "import sys; print('a'); print('b', file=sys.stderr)"], timeout=30)
        self.assertIn(f"bms.{name}.out", "\n".join(logs.output))
        self.assertIn(f"bms.{name}.err", "\n".join(logs.output))

    def test_non_zero_exit_raises_process_failure(self):
        script = "import sys; print('boom', file=sys.stderr); sys.exit(3)"
        with self.assertRaises(ProcessFailure) as cm:
            run_process(PYTHON, ["-c", script], timeout=30)

        self.assertEqual(cm.exception.exit_code, 3)
        self.assertEqual(cm.exception.stderr_tail, ["boom"])
        self.assertIn("exit code 3", str(cm.exception))

    def test_timeout_kills_process(self):
        with self.assertRaises(TimeoutFailure) as cm:
            run_process(PYTHON, ["-c", "import time; time.sleep(30)"], timeout=0.5)

        self.assertEqual(cm.exception.timeout, 0.5)
        self.assertIn("timed out", str(cm.exception))

    def test_missing_executable_is_a_process_failure(self):
        with self.assertRaises(ProcessFailure) as cm:
            run_process("/nonexistent/bms-tool-that-does-not-exist", ["x"], timeout=5)
        self.assertIsNone(cm.exception.exit_code)
        self.assertTrue(cm.exception.stderr_tail)

    def test_runs_in_working_directory(self):
        with tempfile.TemporaryDirectory() as tmp:
            result = run_process(PYTHON, ["-c", "import os; print(os.getcwd())"], cwd=tmp, timeout=30)
            self.assertEqual(os.path.realpath(result.stdout[0]), os.path.realpath(tmp))

    @unittest.skipUnless(os.name == "posix", "sessions are POSIX only")
    def test_returns_while_detached_grandchild_holds_output(self):
        script = (
            "import subprocess, sys\n"
            "p = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(20)'],"
            " start_new_session=True)\n"
            "print(p.pid, flush=True)\n"
        )
        started = time.monotonic()
        with patch("renderer.process.READER_JOIN_TIMEOUT", 0.5):
            result = run_process(PYTHON, ["-c", script], timeout=30)
        elapsed = time.monotonic() - started

        grandchild = int(result.stdout[0])
        self.addCleanup(self._kill_quietly, grandchild)
        self.assertEqual(result.exit_code, 0)
        self.assertLess(elapsed, 10)

    @staticmethod
    def _kill_quietly(pid):
        try:
            os.kill(pid, signal.SIGKILL)
        except OSError:
            pass

    def test_log_failure_does_not_fail_the_process(self):
        broken_log = MagicMock()
        broken_log.info.side_effect = RuntimeError("handler broke")
        with patch("renderer.process.setup_logger", return_value=broken_log):
            result = run_process(PYTHON, ["-c", "print('hello')"], timeout=30)

        self.assertEqual(result.exit_code, 0)
        self.assertEqual(result.stdout, ["hello"])
        self.assertIn("handler broke", broken_log.error.call_args[0][0])

    def test_failure_tail_is_bounded(self):
        script = "import sys\nfor i in range(100): print(i, file=sys.stderr)\nsys.exit(1)"
        with self.assertRaises(ProcessFailure) as cm:
            run_process(PYTHON, ["-c", script], timeout=30)
        self.assertEqual(len(cm.exception.stderr_tail), 20)
        self.assertEqual(cm.exception.stderr_tail[-1], "99")


if __name__ == "__main__":
    unittest.main()
