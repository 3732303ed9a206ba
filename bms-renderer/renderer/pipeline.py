"""
FILE DESCRIPTION: Render pipeline turning a BMS package URL into a normalized MP3.
KEY FUNCTIONS/CLASSES: RenderPipeline, RenderRun, select_chart, remove_unrelated_files

FLOW: start -> download -> extract -> prune -> convert sounds -> move charts -> index ->
select chart -> render -> normalize -> trim -> encode.
Each stage is gated on the previous one. Any failure ends the run; it is recorded on the
diagnostics and never raised to the caller. Working directories are left in place.
"""

import json
import os
import shutil
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from renderer.core import (
    BEMUSE_TOOLS, BMS_RENDERER, CHART_ENCODING_MARKER, CHART_EXTENSIONS, DOWNLOAD_TIMEOUT,
    ENCODE_TIMEOUT, EXTRACT_TIMEOUT, INDEX_TIMEOUT, KEPT_EXTENSIONS, LAME, MP3_BITRATE,
    NORMALIZE_TIMEOUT, RENDER_TIMEOUT, SEVEN_ZIP, SILENCE_THRESHOLD, SOX, TRIM_TIMEOUT,
    WAVEGAIN, WGET, WORK_ROOT, setup_logger
)
from renderer.errors import NoSongFound, NoUsableChart, describe_error
from renderer.models import Diagnostics
from renderer.process import run_process
from renderer.sounds import prepare_sounds

logger = setup_logger("bms.render")

# Song id the indexer assigns to the directory holding the charts
SONG_ID = "song"


def _extension(name) -> str:
    return os.path.splitext(str(name))[1][1:].lower()


def remove_unrelated_files(directory, extensions=KEPT_EXTENSIONS) -> List[Path]:
    """Delete every file below `directory` whose extension is not allowed. Returns the removed paths."""
    allowed = {e.lower() for e in extensions}
    removed = []
    for root, _dirs, files in os.walk(directory):
        for name in files:
            if _extension(name) not in allowed:
                path = Path(root) / name
                path.unlink()
                removed.append(path)
    return removed


def find_charts(directory) -> List[Path]:
    return sorted(
        entry for entry in Path(directory).iterdir()
        if entry.is_file() and _extension(entry.name) in CHART_EXTENSIONS
    )


def select_chart(charts: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Median chart by note count: sorted ascending (stable), index floor((N-1)/2).
    Skips both the trivially easy and the extreme charts.
    """
    if not charts:
        raise NoUsableChart()
    ordered = sorted(charts, key=lambda chart: chart.get("noteCount") or 0)
    return ordered[(len(ordered) - 1) // 2]


class RenderRun:
    """One pipeline invocation: owns its working directory and its diagnostics."""

    def __init__(self, url: str, work_dir: Path, diagnostics: Diagnostics, runner, sound_preparer,
                 output_path=None):
        self.url = url
        self.work_dir = work_dir
        self.diagnostics = diagnostics
        self.runner = runner
        self.sound_preparer = sound_preparer
        self.output_path = output_path
        self.context = diagnostics.operation_id or "render"

        self.download_dir = work_dir / "downloads"
        self.archive_path = self.download_dir / "archive.zip"
        self.extracted_dir = work_dir / "extracted"
        self.render_dir = work_dir / "render"
        self.song_dir = self.render_dir / SONG_ID
        self.render_wav = work_dir / "render.wav"
        self.song_wav = work_dir / "song.wav"
        self.song_mp3 = work_dir / "song.mp3"

    def log(self, level, msg, **kwargs):
        getattr(logger, level)(msg, extra={'context': self.context}, **kwargs)

    def execute(self) -> Diagnostics:
        diagnostics = self.diagnostics
        diagnostics.record("start")
        try:
            self.log("info", f"Using working directory: {self.work_dir}")
            diagnostics.working_directory = str(self.work_dir)
            self.work_dir.mkdir(parents=True, exist_ok=True)

            self.download()
            diagnostics.record("downloaded")

            self.extract()
            diagnostics.record("extracted")

            self.prune()
            diagnostics.record("unrelatedFilesRemoved")

            self.convert_sounds()
            diagnostics.record("converted")

            self.move_charts()
            diagnostics.record("chartsMoved")

            self.index()
            diagnostics.record("indexed")
            charts = self.read_charts()

            chart = select_chart(charts)
            self.log("info", f"Selected chart: {chart.get('file')} ({chart.get('noteCount')} notes)")
            diagnostics.record("chartSelected")

            self.render(chart)
            diagnostics.record("rendered")

            self.normalize()
            diagnostics.record("normalized")

            self.trim()
            diagnostics.record("trimmed")

            self.encode()
            diagnostics.record("encoded")

            diagnostics.out_file = str(self.song_mp3)
            if self.output_path:
                shutil.move(str(self.song_mp3), str(self.output_path))
                diagnostics.out_file = str(self.output_path)
        except Exception as e:
            self.log("error", f"Render failed: {e}", exc_info=True)
            diagnostics.out_file = None
            diagnostics.error = describe_error(e)
        finally:
            diagnostics.finish()
        return diagnostics

    # ------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------
    def download(self):
        self.log("info", f"Downloading archive from: {self.url}")
        self.download_dir.mkdir(parents=True, exist_ok=True)
        self.runner(WGET, [f"-O{self.archive_path}", self.url], timeout=DOWNLOAD_TIMEOUT)

    def extract(self):
        self.log("info", f"Extracting archive to: {self.extracted_dir}")
        self.extracted_dir.mkdir(parents=True, exist_ok=True)
        self.runner(SEVEN_ZIP, ["x", "-y", str(self.archive_path)],
                    cwd=self.extracted_dir, timeout=EXTRACT_TIMEOUT)

    def prune(self):
        self.log("info", "Removing unrelated files to save space...")
        removed = remove_unrelated_files(self.extracted_dir)
        for path in removed:
            self.log("debug", f"Removed {path}")

    def convert_sounds(self):
        self.log("info", "Converting sound files to 44khz")
        self.sound_preparer(self.extracted_dir, self.song_dir, runner=self.runner, context=self.context)

    def move_charts(self):
        self.log("info", "Moving chart files")
        self.song_dir.mkdir(parents=True, exist_ok=True)
        for chart in find_charts(self.extracted_dir):
            target = self.song_dir / f"{chart.stem}.{CHART_ENCODING_MARKER}{chart.suffix}"
            shutil.move(str(chart), str(target))
            self.log("debug", f"Moved to {target}")

    def index(self):
        self.log("info", "Indexing BMS files...")
        self.runner(BEMUSE_TOOLS, ["index"], cwd=self.render_dir, timeout=INDEX_TIMEOUT)

    def read_charts(self) -> List[Dict[str, Any]]:
        manifest_path = self.render_dir / "index.json"
        with open(manifest_path, encoding="utf-8") as f:
            data = json.load(f)
        song = next((s for s in data.get("songs") or [] if s.get("id") == SONG_ID), None)
        if song is None:
            raise NoSongFound(str(manifest_path))
        charts = list(song.get("charts") or [])
        self.log("info", f"Found {len(charts)} charts")
        if not charts:
            raise NoUsableChart()
        return charts

    def render(self, chart: Dict[str, Any]):
        source = self.song_dir / chart["file"]
        self.log("info", f'Rendering "{source}" to "{self.render_wav}"...')
        self.runner(BMS_RENDERER, [str(source), str(self.render_wav)],
                    cwd=self.work_dir, timeout=RENDER_TIMEOUT)

    def normalize(self):
        self.log("info", "Normalizing...")
        self.runner(WAVEGAIN, ["-y", str(self.render_wav)], cwd=self.work_dir, timeout=NORMALIZE_TIMEOUT)

    def trim(self):
        self.log("info", "Trimming...")
        silence = ["silence", "1", "0", SILENCE_THRESHOLD]
        self.runner(
            SOX,
            [str(self.render_wav), "-b", "16", str(self.song_wav)]
            + silence + ["reverse"] + silence + ["reverse"],
            cwd=self.work_dir,
            timeout=TRIM_TIMEOUT,
        )
        self.render_wav.unlink()

    def encode(self):
        self.log("info", "Converting to MP3...")
        self.runner(LAME, [f"-b{MP3_BITRATE}", str(self.song_wav), str(self.song_mp3)],
                    cwd=self.work_dir, timeout=ENCODE_TIMEOUT)
        self.song_wav.unlink()


class RenderPipeline:
    """
    Entry point for rendering. Stateless across invocations, so one instance can
    serve concurrent requests; each call gets its own uniquely named working directory.
    """

    def __init__(self, runner=run_process, sound_preparer=prepare_sounds, work_root=None):
        self.runner = runner
        self.sound_preparer = sound_preparer
        self.work_root = Path(work_root) if work_root is not None else WORK_ROOT

    def render(self, url: str, output_path: Optional[str] = None,
               diagnostics: Optional[Diagnostics] = None) -> Diagnostics:
        if diagnostics is None:
            diagnostics = Diagnostics()
        work_dir = self.work_root / uuid.uuid4().hex
        run = RenderRun(url, work_dir, diagnostics, self.runner, self.sound_preparer, output_path)
        return run.execute()
