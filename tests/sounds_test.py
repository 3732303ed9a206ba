import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from renderer.core import SOX
from renderer.errors import ProcessFailure
from renderer.sounds import find_sounds, prepare_sounds


class TestPrepareSounds(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.src = Path(self._tmp.name) / "extracted"
        self.dest = Path(self._tmp.name) / "song"
        self.src.mkdir()

    def tearDown(self):
        self._tmp.cleanup()

    def test_converts_to_stereo_44k_wav(self):
        (self.src / "kick.ogg").write_bytes(b"OggS")
        runner = MagicMock()

        summary = prepare_sounds(self.src, self.dest, runner=runner, max_workers=2)

        self.assertEqual(summary, {"ok": 1, "skipped": 0, "error": 0})
        command, args = runner.call_args[0]
        self.assertEqual(command, SOX)
        self.assertEqual(args, [str(self.src / "kick.ogg"), "-r", "44.1k", "-c", "2",
                                str(self.dest / "kick.wav")])
        self.assertFalse((self.src / "kick.ogg").exists())

    def test_blank_file_is_skipped_without_conversion(self):
        (self.src / "blank.wav").write_bytes(b"")
        runner = MagicMock()

        with self.assertLogs("bms", level="INFO") as logs:
            summary = prepare_sounds(self.src, self.dest, runner=runner)

        self.assertEqual(summary["skipped"], 1)
        runner.assert_not_called()
        self.assertFalse((self.src / "blank.wav").exists())
        self.assertTrue(any("skip; blank file" in line for line in logs.output))

    def test_failed_conversion_still_removes_source_and_continues(self):
        (self.src / "bad.mp3").write_bytes(b"ID3")
        (self.src / "good.wav").write_bytes(b"RIFF")

        def runner(command, args, cwd=None, timeout=None):
            if args[0].endswith("bad.mp3"):
                raise ProcessFailure(command, args, 2, stderr_tail=["sox FAIL formats"])
            return MagicMock(stderr=[])

        with self.assertLogs("bms", level="INFO") as logs:
            summary = prepare_sounds(self.src, self.dest, runner=runner)

        self.assertEqual(summary, {"ok": 1, "skipped": 0, "error": 1})
        self.assertEqual(list(self.src.iterdir()), [])
        self.assertTrue(any("[CONVERSION WARNING]" in line for line in logs.output))
        self.assertTrue(any("sox FAIL formats" in line for line in logs.output))

    def test_progress_counts_every_file(self):
        for name in ("a.wav", "b.wav", "c.wav"):
            (self.src / name).write_bytes(b"RIFF")

        with self.assertLogs("bms", level="INFO") as logs:
            prepare_sounds(self.src, self.dest, runner=MagicMock(), max_workers=3)

        progress = [line for line in logs.output if "Converted audio" in line]
        self.assertEqual(len(progress), 3)
        self.assertTrue(any("(3/3)" in line for line in progress))

    def test_no_sounds(self):
        (self.src / "chart.bms").write_bytes(b"#TITLE")
        summary = prepare_sounds(self.src, self.dest, runner=MagicMock())
        self.assertEqual(summary, {"ok": 0, "skipped": 0, "error": 0})
        self.assertTrue(self.dest.is_dir())

    def test_find_sounds_is_case_insensitive_and_top_level(self):
        nested = self.src / "sub"
        nested.mkdir()
        (self.src / "A.WAV").write_bytes(b"x")
        (self.src / "b.Ogg").write_bytes(b"x")
        (self.src / "c.bms").write_bytes(b"x")
        (nested / "d.wav").write_bytes(b"x")

        self.assertEqual([p.name for p in find_sounds(self.src)], ["A.WAV", "b.Ogg"])


if __name__ == "__main__":
    unittest.main()
