"""
Sound preparation: resample every audio asset of a package to the format the
renderer accepts (stereo, 44.1khz WAV) before rendering.
"""

import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List

from renderer.core import (
    AUDIO_EXTENSIONS, CONVERT_TIMEOUT, SOUND_CHANNELS, SOUND_SAMPLE_RATE, SOX, setup_logger
)
from renderer.errors import RenderError
from renderer.process import run_process

log = setup_logger("bms.prepareSounds")


def find_sounds(src) -> List[Path]:
    """Audio files directly inside `src`, matched case-insensitively."""
    found = []
    for entry in sorted(Path(src).iterdir()):
        if entry.is_file() and entry.suffix[1:].lower() in AUDIO_EXTENSIONS:
            found.append(entry)
    return found


class SoundPreparer:
    """
    FLOW: Discover sounds -> Convert each on a CPU-sized pool -> Remove the source whatever happened.
    A failing file never aborts the batch.
    """

    def __init__(self, runner=run_process, max_workers=None, context="root"):
        self.runner = runner
        self.max_workers = max_workers or os.cpu_count() or 1
        self.context = context
        self._lock = threading.Lock()
        self._done = 0

    def prepare(self, src, dest) -> Dict[str, int]:
        log.info(f"Preparing sounds from {src} into {dest}", extra={'context': self.context})
        Path(dest).mkdir(parents=True, exist_ok=True)
        sounds = find_sounds(src)
        log.info(f"Found {len(sounds)} sound file(s)", extra={'context': self.context})

        summary = {"ok": 0, "skipped": 0, "error": 0}
        if not sounds:
            return summary

        self._done = 0
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="Sound") as executor:
            future_to_sound = {
                executor.submit(self._convert, sound, Path(dest), len(sounds)): sound
                for sound in sounds
            }
            for future in as_completed(future_to_sound):
                try:
                    outcome = future.result()
                except Exception as e:
                    outcome = "error"
                    log.error(f"Sound worker exception for {future_to_sound[future]}: {e}",
                              extra={'context': self.context})
                summary[outcome] += 1

        log.info(
            f"Sounds prepared | ok={summary['ok']} skipped={summary['skipped']} error={summary['error']}",
            extra={'context': self.context}
        )
        return summary

    def _convert(self, source: Path, dest: Path, total: int) -> str:
        outcome = "error"
        label = "???"
        stderr = []
        try:
            if source.stat().st_size == 0:
                outcome, label = "skipped", "skip; blank file"
                return outcome
            target = dest / f"{source.stem}.wav"
            result = self.runner(
                SOX,
                [str(source), "-r", SOUND_SAMPLE_RATE, "-c", str(SOUND_CHANNELS), str(target)],
                timeout=CONVERT_TIMEOUT,
            )
            stderr = list(getattr(result, "stderr", None) or [])
            outcome, label = "ok", "ok"
        except Exception as e:
            label = "error"
            log.warning(
                f"[CONVERSION WARNING] prepare phase: Cannot convert sound file '{source}': {e}",
                extra={'context': self.context}
            )
            if isinstance(e, RenderError):
                stderr = list(getattr(e, "stderr_tail", []))
        finally:
            with self._lock:
                self._done += 1
                done = self._done
            message = f'Converted audio ({done}/{total}) "{source.name}" [{label}]'
            if stderr:
                message += " stderr: " + " | ".join(stderr)
            log.info(message, extra={'context': self.context})
            try:
                source.unlink()
            except OSError as e:
                log.warning(f"Cannot remove sound file '{source}': {e}", extra={'context': self.context})
        return outcome


def prepare_sounds(src, dest, runner=run_process, max_workers=None, context="root") -> Dict[str, int]:
    return SoundPreparer(runner=runner, max_workers=max_workers, context=context).prepare(src, dest)
