from renderer.models import Diagnostics, DiagnosticEvent
from renderer.errors import (
    RenderError,
    ProcessFailure,
    TimeoutFailure,
    NoSongFound,
    NoUsableChart,
    NetworkFailure,
    ParseFailure,
    describe_error
)
from renderer.process import run_process, ProcessResult
from renderer.pipeline import RenderPipeline, select_chart, remove_unrelated_files
