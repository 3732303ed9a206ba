import traceback
from typing import List, Optional, Sequence


class RenderError(Exception):
    """Base rendering exception."""

    def details(self) -> List[str]:
        """Structured payload rendered as extra lines of the stored description."""
        return []


class ProcessFailure(RenderError):
    """Raised when an external tool exits with a non-zero status (or cannot start)."""

    def __init__(self, command: str, args: Sequence[str], exit_code: Optional[int],
                 stdout_tail: Sequence[str] = (), stderr_tail: Sequence[str] = ()):
        self.command = command
        self.args_list = list(args)
        self.exit_code = exit_code
        self.stdout_tail = list(stdout_tail)
        self.stderr_tail = list(stderr_tail)
        if exit_code is None:
            message = f"Command failed to start: {command}"
        else:
            message = f"Command failed with exit code {exit_code}: {command}"
        super().__init__(message)

    def details(self) -> List[str]:
        lines = [f"Arguments: {self.args_list}"]
        if self.stdout_tail:
            lines.append("Stdout:\n" + "\n".join(self.stdout_tail))
        if self.stderr_tail:
            lines.append("Stderr:\n" + "\n".join(self.stderr_tail))
        return lines


class TimeoutFailure(RenderError):
    """Raised when an external tool exceeds its time limit."""

    def __init__(self, command: str, timeout: float,
                 stdout_tail: Sequence[str] = (), stderr_tail: Sequence[str] = ()):
        self.command = command
        self.timeout = timeout
        self.stdout_tail = list(stdout_tail)
        self.stderr_tail = list(stderr_tail)
        super().__init__(f"Command timed out after {timeout:g}s: {command}")

    def details(self) -> List[str]:
        lines = []
        if self.stdout_tail:
            lines.append("Stdout:\n" + "\n".join(self.stdout_tail))
        if self.stderr_tail:
            lines.append("Stderr:\n" + "\n".join(self.stderr_tail))
        return lines


class NoSongFound(RenderError):
    """The index manifest has no song entry."""

    def __init__(self, manifest_path=None):
        self.manifest_path = manifest_path
        super().__init__("No song found")


class NoUsableChart(RenderError):
    """The song entry has no renderable chart."""

    def __init__(self):
        super().__init__("No usable chart found")


class NetworkFailure(RenderError):
    """Dispatcher to render service call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 response_body: Optional[str] = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)

    def details(self) -> List[str]:
        if self.response_body:
            return [f"Response: {self.response_body}"]
        return []


class ParseFailure(RenderError):
    """The streamed render result could not be decoded."""

    def __init__(self, message: str, payload: Optional[str] = None):
        self.payload = payload
        super().__init__(message)

    def details(self) -> List[str]:
        if self.payload is not None:
            return [f"Response: {self.payload}"]
        return []


def describe_error(error: BaseException) -> str:
    """Human-readable description of a failure, used for storage."""
    text = "".join(traceback.format_exception(type(error), error, error.__traceback__)).rstrip()
    if isinstance(error, RenderError):
        for line in error.details():
            text += "\n" + line
    return text
