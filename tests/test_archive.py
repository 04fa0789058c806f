"""Tests for GAF archive repacking."""

import os
import shutil
import tempfile
import unittest
import zipfile
from unittest import mock

from AtfBrew.config import Codec
from AtfBrew.core import (
    ArchiveMemberFormatError,
    CompressorToolFailure,
    EmptyArchiveError,
    FilesystemFailure,
    TempWorkspace,
)
from AtfBrew.phases.archive import (
    ArchiveRepacker,
    MemberKind,
    classify_member,
    scan_members,
)
from AtfBrew.phases.atlas import AtlasCompressor

from conftest import (
    FAKE_TOOL,
    PNG_BYTES,
    entry_dir,
    failing_run_tool,
    fake_run_tool,
    make_config,
    write_archive,
)


class TestClassifyMember(unittest.TestCase):
    def test_kinds(self):
        self.assertIs(classify_member("a/frame.png"), MemberKind.BITMAP)
        self.assertIs(classify_member("a/FRAME.PNG"), MemberKind.OTHER)
        self.assertIs(classify_member("hud.gaf"), MemberKind.ANIMATION_DATA)
        self.assertIs(classify_member("readme.txt"), MemberKind.OTHER)
        self.assertIs(classify_member("noext"), MemberKind.OTHER)

    def test_scan_members_sorted_with_forward_slashes(self):
        root = tempfile.mkdtemp()
        try:
            os.makedirs(os.path.join(root, "b"))
            for rel in ("b/z.png", "a.gaf", "b/a.png"):
                with open(os.path.join(root, *rel.split("/")), "wb") as f:
                    f.write(b"x")
            names = [m.relative_name for m in scan_members(root)]
            self.assertEqual(names, ["a.gaf", "b/a.png", "b/z.png"])
        finally:
            shutil.rmtree(root, ignore_errors=True)


class RepackerTestCase(unittest.TestCase):
    platform = "web"

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.config = make_config(self.tmpdir, platform=self.platform)
        self.compressor = AtlasCompressor(self.config, tool_path=FAKE_TOOL)
        self.repacker = ArchiveRepacker(self.config, compressor=self.compressor)
        patcher = mock.patch("AtfBrew.phases.atlas.run_tool", side_effect=fake_run_tool)
        self.run_tool = patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _names(self, path):
        with zipfile.ZipFile(path) as zf:
            return sorted(zf.namelist())

    def _workspace_gone(self):
        ws = self.config.workspace
        return not os.path.exists(ws.temp_dir) and not os.path.exists(ws.gaf_temp_result_dir)


class TestRepackWeb(RepackerTestCase):
    def test_bitmaps_replaced_and_animation_data_kept(self):
        archive = write_archive(self.config, "hud", {
            "hud.gaf": b"GAF",
            "hud_1.png": PNG_BYTES,
            "hud_2.png": PNG_BYTES,
        })
        result = self.repacker.run([archive])

        self.assertEqual(result.issues, [])
        self.assertEqual(result.processed, 1)
        out = os.path.join(entry_dir(self.config, "hud"), "hud-0001.zip")
        self.assertEqual(result.outputs, [out])
        self.assertEqual(
            self._names(out),
            ["hud-0001/hud.gaf", "hud-0001/hud_1.atf", "hud-0001/hud_2.atf"],
        )
        with zipfile.ZipFile(out) as zf:
            self.assertEqual(zf.read("hud-0001/hud.gaf"), b"GAF")
            self.assertEqual(zf.read("hud-0001/hud_1.atf"), b"ATF:hud_1.png")
            for info in zf.infolist():
                self.assertEqual(info.compress_type, zipfile.ZIP_DEFLATED)
        self.assertEqual(self.run_tool.call_count, 2)
        self.assertTrue(self._workspace_gone())

    def test_archive_members_use_rgba_and_no_suffix(self):
        archive = write_archive(self.config, "hud", {"hud_1.png": PNG_BYTES})
        self.repacker.run([archive])
        cmd = self.run_tool.call_args[0][0]
        self.assertIn("-q", cmd)
        self.assertTrue(cmd[cmd.index("-o") + 1].endswith("hud_1.atf"))

    def test_empty_archive_produces_no_output(self):
        archive = write_archive(self.config, "menu", {})
        with open(archive, "rb") as f:
            original = f.read()
        with self.assertLogs("atf_pipeline.archive", level="ERROR"):
            result = self.repacker.run([archive])

        self.assertEqual(result.processed, 0)
        self.assertEqual(result.outputs, [])
        self.assertEqual(len(result.issues), 1)
        self.assertIsInstance(result.issues[0], EmptyArchiveError)
        self.assertIn("menu", str(result.issues[0]))
        with open(archive, "rb") as f:
            self.assertEqual(f.read(), original)
        self.assertTrue(self._workspace_gone())

    def test_unexpected_member_is_skipped_and_reported(self):
        archive = write_archive(self.config, "hud", {
            "hud.gaf": b"GAF",
            "notes.txt": b"hello",
        })
        with self.assertLogs("atf_pipeline.archive", level="ERROR"):
            result = self.repacker.run([archive])

        self.assertEqual(len(result.issues), 1)
        self.assertIsInstance(result.issues[0], ArchiveMemberFormatError)
        self.assertIn("notes.txt", str(result.issues[0]))
        self.assertEqual(self._names(result.outputs[0]), ["hud-0001/hud.gaf"])

    def test_only_unexpected_members_counts_as_empty(self):
        archive = write_archive(self.config, "hud", {"notes.txt": b"hello"})
        with self.assertLogs("atf_pipeline.archive", level="ERROR"):
            result = self.repacker.run([archive])
        kinds = sorted(type(i).__name__ for i in result.issues)
        self.assertEqual(kinds, ["ArchiveMemberFormatError", "EmptyArchiveError"])
        self.assertEqual(result.outputs, [])

    def test_tool_warning_keeps_written_output(self):
        archive = write_archive(self.config, "hud", {
            "hud.gaf": b"GAF",
            "hud_1.png": PNG_BYTES,
        })

        def _warns(cmd, *args, **kwargs):
            run = fake_run_tool(cmd, *args, **kwargs)
            run.stderr = "Warning: non power of two"
            return run

        self.run_tool.side_effect = _warns
        result = self.repacker.run([archive])

        self.assertEqual(len(result.issues), 1)
        self.assertIsInstance(result.issues[0], CompressorToolFailure)
        self.assertEqual(
            self._names(result.outputs[0]), ["hud-0001/hud.gaf", "hud-0001/hud_1.atf"]
        )

    def test_non_zero_exit_with_output_keeps_member(self):
        archive = write_archive(self.config, "hud", {"hud_1.png": PNG_BYTES})

        def _exits_one(cmd, *args, **kwargs):
            run = fake_run_tool(cmd, *args, **kwargs)
            run.returncode = 1
            return run

        self.run_tool.side_effect = _exits_one
        result = self.repacker.run([archive])
        self.assertEqual(len(result.issues), 1)
        self.assertEqual(self._names(result.outputs[0]), ["hud-0001/hud_1.atf"])

    def test_stale_workspace_is_not_published(self):
        ws = self.config.workspace
        os.makedirs(ws.temp_dir)
        stale = write_archive(self.config, "menu", {"menu.gaf": b"GAF"})
        shutil.move(stale, os.path.join(ws.temp_dir, "menu-0001.zip"))
        os.makedirs(ws.gaf_temp_result_dir)
        with open(os.path.join(ws.gaf_temp_result_dir, "intro-0001.zip"), "wb") as f:
            f.write(b"stale")
        hud = write_archive(self.config, "hud", {"hud.gaf": b"GAF"})

        result = self.repacker.run([hud])

        self.assertEqual(result.outputs, [hud])
        self.assertFalse(os.path.exists(
            os.path.join(entry_dir(self.config, "menu"), "menu-0001.zip")))
        self.assertFalse(os.path.exists(
            os.path.join(entry_dir(self.config, "intro"), "intro-0001.zip")))
        self.assertTrue(self._workspace_gone())

    def test_failed_bitmap_is_dropped_and_recorded(self):
        archive = write_archive(self.config, "hud", {
            "hud.gaf": b"GAF",
            "hud_1.png": PNG_BYTES,
        })
        self.run_tool.side_effect = failing_run_tool
        result = self.repacker.run([archive])
        self.assertEqual(len(result.issues), 1)
        self.assertIsInstance(result.issues[0], CompressorToolFailure)
        self.assertEqual(self._names(result.outputs[0]), ["hud-0001/hud.gaf"])

    def test_missing_archive_is_fatal(self):
        missing = os.path.join(entry_dir(self.config, "ghost"), "ghost-0001.zip")
        with self.assertRaises(FilesystemFailure):
            self.repacker.run([missing])
        self.assertTrue(self._workspace_gone())

    def test_corrupt_archive_is_fatal(self):
        directory = entry_dir(self.config, "bad")
        os.makedirs(directory)
        path = os.path.join(directory, "bad-0001.zip")
        with open(path, "wb") as f:
            f.write(b"not a zip")
        with self.assertRaises(FilesystemFailure):
            self.repacker.run([path])
        self.assertTrue(self._workspace_gone())

    def test_target_filter_skips_other_archives(self):
        config = make_config(self.tmpdir, target="hud")
        repacker = ArchiveRepacker(config, compressor=AtlasCompressor(config, tool_path=FAKE_TOOL))
        hud = write_archive(config, "hud", {"hud.gaf": b"GAF"})
        menu = write_archive(config, "menu", {"menu.gaf": b"GAF"})
        with open(menu, "rb") as f:
            menu_before = f.read()

        result = repacker.run([hud, menu])
        self.assertEqual(result.outputs, [hud])
        with open(menu, "rb") as f:
            self.assertEqual(f.read(), menu_before)


class TestRepackIos(RepackerTestCase):
    platform = "ios"

    def test_both_variants_written(self):
        archive = write_archive(self.config, "hud", {
            "hud.gaf": b"GAF",
            "hud_1.png": PNG_BYTES,
        })
        result = self.repacker.run([archive])

        directory = entry_dir(self.config, "hud")
        self.assertEqual(result.issues, [])
        self.assertEqual(result.processed, 2)
        self.assertEqual(
            result.outputs,
            [os.path.join(directory, "hud-0001.zip"),
             os.path.join(directory, "hud-0001.zip_low")],
        )
        for path in result.outputs:
            self.assertEqual(self._names(path), ["hud-0001/hud.gaf", "hud-0001/hud_1.atf"])

        codecs = []
        for call in self.run_tool.call_args_list:
            cmd = call[0][0]
            codecs.append("pvr" if "p" in cmd else "rgba")
        self.assertEqual(codecs, ["rgba", "pvr"])
        self.assertTrue(self._workspace_gone())


class TestCopyToSlot(RepackerTestCase):
    def test_ignores_directories_and_other_files(self):
        ws = TempWorkspace(self.config.workspace)
        ws.ensure_result()
        os.makedirs(os.path.join(ws.result_dir, "leftover"))
        with open(os.path.join(ws.result_dir, "stray.txt"), "w") as f:
            f.write("x")
        with open(os.path.join(ws.result_dir, "hud-0001.zip"), "wb") as f:
            f.write(b"zip")

        moved = self.repacker.copy_to_slot(ws, Codec.PVR)
        expected = os.path.join(entry_dir(self.config, "hud"), "hud-0001.zip_low")
        self.assertEqual(moved, [expected])
        self.assertFalse(os.path.exists(os.path.join(ws.result_dir, "hud-0001.zip")))
        self.assertTrue(os.path.exists(os.path.join(ws.result_dir, "stray.txt")))
        ws.teardown()

    def test_missing_result_dir(self):
        ws = TempWorkspace(self.config.workspace)
        self.assertEqual(self.repacker.copy_to_slot(ws, Codec.RGBA), [])


if __name__ == "__main__":
    unittest.main(verbosity=2)
