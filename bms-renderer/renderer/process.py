"""
Process runner for external tools.
Spawns a child with captured streams, forwards every output line into the log
and converts non-zero exits and timeouts into typed failures.
"""

import os
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from renderer.core import setup_logger
from renderer.errors import ProcessFailure, TimeoutFailure

# Lines of captured output attached to a failure
TAIL_LINES = 20

# Upper bound for draining readers after the child is gone. Grandchildren that
# inherited the pipes can keep them open indefinitely.
READER_JOIN_TIMEOUT = 5


@dataclass(frozen=True)
class ProcessResult:
    command: str
    args: List[str]
    exit_code: int
    stdout: List[str] = field(default_factory=list)
    stderr: List[str] = field(default_factory=list)


class StreamReader(threading.Thread):
    """Forwards one output stream of a child process into its logger, line by line."""

    def __init__(self, stream, log, context):
        super().__init__(name=f"reader-{context}", daemon=True)
        self.stream = stream
        self.log = log
        self.context = context
        self.lines = []

    def run(self):
        try:
            for raw in self.stream:
                line = raw.rstrip("\r\n")
                self.lines.append(line)
                self.log.info(f"> {line}", extra={'context': self.context})
        except Exception as e:
            # Observability only; never fails the process
            self.log.error(f"Error while reading: {e}", extra={'context': self.context})

    def tail(self, count=TAIL_LINES):
        return self.lines[-count:]


def _kill(proc):
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except OSError:
            pass
    proc.kill()


def _drain(proc, readers):
    for reader in readers:
        reader.join(READER_JOIN_TIMEOUT)
        if reader.is_alive():
            # close() would block on the reader's buffer lock; the daemon reader ends at EOF
            reader.log.warning(
                f"Output still open after {READER_JOIN_TIMEOUT:g}s (pid {proc.pid}); detaching reader",
                extra={'context': reader.context}
            )
            continue
        reader.stream.close()


def run_process(command: str, args: Sequence, cwd: Optional[str] = None,
                timeout: Optional[float] = None) -> ProcessResult:
    """
    Run `command args...` to completion.
    Raises ProcessFailure on a non-zero exit (or when the executable cannot start)
    and TimeoutFailure when `timeout` seconds elapse first; the child is killed then.
    """
    name = os.path.basename(command)
    argv = [command] + [str(a) for a in args]

    try:
        proc = subprocess.Popen(
            argv,
            cwd=str(cwd) if cwd is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            start_new_session=(os.name == "posix"),
        )
    except OSError as e:
        raise ProcessFailure(command, argv[1:], None, stderr_tail=[str(e)]) from e

    out_reader = StreamReader(proc.stdout, setup_logger(f"bms.{name}.out"), f"{name}:out")
    err_reader = StreamReader(proc.stderr, setup_logger(f"bms.{name}.err"), f"{name}:err")
    readers = (out_reader, err_reader)
    for reader in readers:
        reader.start()

    try:
        exit_code = proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill(proc)
        proc.wait()
        _drain(proc, readers)
        raise TimeoutFailure(command, timeout, out_reader.tail(), err_reader.tail()) from None
    except BaseException:
        _kill(proc)
        proc.wait()
        _drain(proc, readers)
        raise

    _drain(proc, readers)
    if exit_code != 0:
        raise ProcessFailure(command, argv[1:], exit_code, out_reader.tail(), err_reader.tail())

    return ProcessResult(
        command=command,
        args=argv[1:],
        exit_code=exit_code,
        stdout=list(out_reader.lines),
        stderr=list(err_reader.lines),
    )
