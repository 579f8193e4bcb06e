# Copyright (C) 2025 The Android Open Source Project
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for patch_generator.py"""

import logging
import os
import pathlib
import stat
import tempfile
import unittest
from unittest import mock

from absl.testing import absltest

from bcachefs_patch import glue
from bcachefs_patch import patch_generator
from bcachefs_patch.patch_errors import PatchGeneratorError
from bcachefs_patch.testing import fake_repos

_SNAPSHOT_TAG = "v1.28.0_pre20250928123456"


class ConfirmTest(absltest.TestCase):

    def test_answers(self):
        for answer, expected in (("", True), ("y", True), ("YES", True),
                                 ("n", False), (" No ", False)):
            with self.subTest(answer):
                with mock.patch("builtins.input", return_value=answer):
                    self.assertEqual(expected, patch_generator.confirm())

    def test_repeats_on_bad_answer(self):
        with mock.patch("builtins.input",
                        side_effect=["maybe", "n"]) as mock_input:
            self.assertFalse(patch_generator.confirm("Write?"))
        self.assertEqual(2, mock_input.call_count)
        mock_input.assert_called_with("Write? [Y/n]: ")

    def test_eof(self):
        with mock.patch("builtins.input", side_effect=EOFError):
            with self.assertRaisesRegex(PatchGeneratorError, "--yes"):
                patch_generator.confirm()


class ParseArgsTest(absltest.TestCase):

    def test_defaults(self):
        args = patch_generator.parse_args([])
        self.assertIsNone(args.output)
        self.assertIsNone(args.tag)
        self.assertIsNone(args.snapshot)
        self.assertTrue(args.append_glue)
        self.assertFalse(args.yes)
        self.assertEqual("origin", args.linux_remote)
        self.assertEqual("bcachefs", args.bcachefs_remote)
        self.assertEqual("origin", args.tools_remote)
        self.assertEqual("master", args.branch)
        self.assertEqual(glue.DEFAULT_GLUE_DIR, args.glue_dir)

    def test_short_flags(self):
        args = patch_generator.parse_args(
            ["-o", "out.patch", "-t", "v6.17", "-s", "abc", "-y", "--no_glue"])
        self.assertEqual(pathlib.Path("out.patch"), args.output)
        self.assertEqual("v6.17", args.tag)
        self.assertEqual("abc", args.snapshot)
        self.assertTrue(args.yes)
        self.assertFalse(args.append_glue)


@unittest.skipUnless(fake_repos.has_git(), "git is not installed")
class PatchGeneratorTest(absltest.TestCase):

    def setUp(self):
        super().setUp()
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        root = pathlib.Path(tmp.name).resolve()
        self.repos = fake_repos.FakeRepos.create(root)
        self.out_dir = root / "out"
        self.out_dir.mkdir()

    def _argv(self, *extra: str) -> list[str]:
        return [
            "--linux_repo", str(self.repos.linux),
            "--tools_repo", str(self.repos.tools),
            "-o", str(self.out_dir),
            "--log", "warning",
        ] + list(extra)

    def _generator(self, *extra: str) -> patch_generator.PatchGenerator:
        args = vars(patch_generator.parse_args(self._argv(*extra)))
        del args["log"]
        return patch_generator.PatchGenerator(**args)

    def _out_files(self) -> list[pathlib.Path]:
        return sorted(self.out_dir.iterdir())

    def test_stable_release_without_glue(self):
        self.assertEqual(0, patch_generator.main(self._argv("-t", "v6.17",
                                                            "-y")))
        patch = self.out_dir / "bcachefs-v1.25.2-for-v6.17.patch"
        self.assertEqual([patch], self._out_files())
        content = patch.read_text()
        self.assertIn("diff --git a/fs/bcachefs/super.c", content)
        self.assertIn("x(extent_flags,", content)
        self.assertNotIn("closure.h", content)
        self.assertNotIn("fs/Kconfig", content)

    def test_latest_tag_appends_glue(self):
        self.assertEqual(0, patch_generator.main(self._argv("-y")))
        patch = self.out_dir / "bcachefs-v1.25.2-for-v6.18.patch"
        self.assertEqual([patch], self._out_files())
        content = patch.read_text()
        self.assertIn("diff --git a/fs/bcachefs/super.c", content)
        self.assertIn("# bcachefs v1.25.2\n", content)
        self.assertNotIn(glue.VERSION_PLACEHOLDER, content)
        # Glue comes after the diff.
        self.assertLess(content.index("fs/bcachefs/super.c"),
                        content.index("a/fs/Kconfig"))

    def test_no_glue(self):
        self.assertEqual(0, patch_generator.main(self._argv("-y",
                                                            "--no_glue")))
        content = (self.out_dir /
                   "bcachefs-v1.25.2-for-v6.18.patch").read_text()
        self.assertNotIn("fs/Kconfig", content)

    def test_snapshot(self):
        self.assertEqual(0, patch_generator.main(self._argv(
            "-y", "-s", self.repos.bcachefs_commit)))
        patch = self.out_dir / f"bcachefs-{_SNAPSHOT_TAG}-for-v6.18.patch"
        self.assertEqual([patch], self._out_files())
        self.assertIn(f"# bcachefs {_SNAPSHOT_TAG}\n", patch.read_text())

    def test_snapshot_ref(self):
        generator = self._generator("-s", self.repos.bcachefs_commit)
        self.assertEqual(
            patch_generator.BcachefsRef(tag=_SNAPSHOT_TAG,
                                        commit=self.repos.bcachefs_commit),
            generator.snapshot_ref(fake_repos.TOOLS_TAG))

    def test_snapshot_without_version(self):
        generator = self._generator("-y", "-s", "v6.17", "-t", "v6.17")
        with mock.patch.object(patch_generator, "_BCACHEFS_FORMAT_H",
                               "Makefile"):
            with self.assertRaisesRegex(PatchGeneratorError, "version"):
                generator.run()
        self.assertEqual([], self._out_files())

    def test_explicit_output_file(self):
        patch = self.out_dir / "custom.patch"
        self.assertEqual(0, patch_generator.main(self._argv(
            "-y", "-t", "v6.17", "-o", str(patch))))
        self.assertEqual([patch], self._out_files())

    def test_unknown_linux_release_writes_nothing(self):
        fake_repos.git(self.repos.linux, "tag", "-a", "-m", "v6.16", "v6.16",
                       "v6.17^{commit}")
        generator = self._generator("-y", "-t", "v6.16")
        with self.assertRaisesRegex(PatchGeneratorError, "Unknown Linux tag"):
            generator.run()
        self.assertEqual([], self._out_files())

    def test_unknown_linux_release_without_glue(self):
        fake_repos.git(self.repos.linux, "tag", "-a", "-m", "v6.16", "v6.16",
                       "v6.17^{commit}")
        self.assertEqual(0, self._generator("-y", "-t", "v6.16",
                                            "--no_glue").run())
        self.assertEqual([self.out_dir / "bcachefs-v1.25.2-for-v6.16.patch"],
                         self._out_files())

    def test_missing_tag(self):
        self.assertEqual(1, patch_generator.main(self._argv("-y", "-t",
                                                            "v5.0")))
        self.assertEqual([], self._out_files())

    def test_missing_remote(self):
        fake_repos.git(self.repos.linux, "remote", "remove", "bcachefs")
        self.assertEqual(1, patch_generator.main(self._argv("-y")))
        self.assertEqual([], self._out_files())

    def test_missing_repo(self):
        self.assertEqual(1, patch_generator.main(self._argv(
            "-y", "--tools_repo", str(self.out_dir))))

    def test_bad_output(self):
        self.assertEqual(1, patch_generator.main(self._argv(
            "-y", "-o", str(self.out_dir / "missing"))))

    def test_declined(self):
        with mock.patch("builtins.input", return_value="n"):
            self.assertEqual(0, patch_generator.main(self._argv()))
        self.assertEqual([], self._out_files())

    def test_confirmed(self):
        with mock.patch("builtins.input", return_value="") as mock_input:
            self.assertEqual(0, patch_generator.main(self._argv()))
        self.assertIn(str(self.out_dir), mock_input.call_args[0][0])
        self.assertLen(self._out_files(), 1)

    def test_no_answer(self):
        with mock.patch("builtins.input", side_effect=EOFError):
            self.assertEqual(1, patch_generator.main(self._argv()))
        self.assertEqual([], self._out_files())

    def test_output_mode_follows_umask(self):
        old_umask = os.umask(0o022)
        self.addCleanup(os.umask, old_umask)
        self.assertEqual(0, patch_generator.main(self._argv("-y")))
        (patch,) = self._out_files()
        self.assertEqual(0o644, stat.S_IMODE(patch.stat().st_mode))

    def test_failed_write_keeps_destination(self):
        patch = self.out_dir / "existing.patch"
        patch.write_text("old\n")
        generator = self._generator("-y")
        ref = patch_generator.BcachefsRef(tag=fake_repos.TOOLS_TAG,
                                          commit=self.repos.bcachefs_commit)
        with self.assertRaises(PatchGeneratorError):
            generator.write_patch(patch, "v5.0", ref, [])
        self.assertEqual([patch], self._out_files())
        self.assertEqual("old\n", patch.read_text())

    def test_write_replaces_destination(self):
        patch = self.out_dir / "existing.patch"
        patch.write_text("old\n")
        generator = self._generator("-y")
        ref = patch_generator.BcachefsRef(tag=fake_repos.TOOLS_TAG,
                                          commit=self.repos.bcachefs_commit)
        kconf = glue.DEFAULT_GLUE_DIR / "6.18/bcachefs-glue-kconf.patch"
        generator.write_patch(patch, "v6.17", ref, [kconf])
        self.assertEqual([patch], self._out_files())
        content = patch.read_text()
        self.assertTrue(content.startswith("diff --git"))
        self.assertIn("# bcachefs v1.25.2\n", content)
        self.assertLess(content.index("fs/bcachefs/super.c"),
                        content.index("a/fs/Kconfig"))


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.DEBUG, format="%(levelname)s: %(message)s"
    )
    absltest.main()
