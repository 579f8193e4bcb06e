#!/usr/bin/env python3
#
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

"""Generates a patch that applies bcachefs on top of a mainline Linux tag.

Assumptions:
- The Linux working copy has two remotes:
  - origin -> git://git.kernel.org/pub/scm/linux/kernel/git/torvalds/linux.git
  - bcachefs -> git://evilpiepirate.org/bcachefs.git
- The bcachefs-tools working copy has the remote:
  - origin -> git://evilpiepirate.org/bcachefs-tools.git

Examples:

    bcachefs-patch --tag v6.17 -o /tmp
    bcachefs-patch --snapshot bcachefs/master -o bcachefs.patch
"""

import argparse
import dataclasses
import logging
import os
import pathlib
import shutil
import sys
import tempfile

from bcachefs_patch import bch_version
from bcachefs_patch import glue
from bcachefs_patch import out_file
from bcachefs_patch.git_repo import GitRepo
from bcachefs_patch.patch_errors import PatchGeneratorError

_DEFAULT_LINUX_REPO = pathlib.Path("../linux")
_DEFAULT_LINUX_REMOTE = "origin"
_DEFAULT_BCACHEFS_REMOTE = "bcachefs"
_DEFAULT_TOOLS_REPO = pathlib.Path("../bcachefs-tools")
_DEFAULT_TOOLS_REMOTE = "origin"
_DEFAULT_BRANCH = "master"

_BCACHEFS_REVISION = ".bcachefs_revision"
_BCACHEFS_FORMAT_H = "fs/bcachefs/bcachefs_format.h"

# Only bcachefs paths are diffed, so that unrelated changes in the bcachefs
# tree (e.g. closures.h, generic-radix-tree.h) are not pulled in when diffing
# against older tags. DKMS would not have those changes either.
BCACHEFS_PATHS = [
    "Documentation/filesystems/bcachefs",
    "fs/bcachefs",
]


@dataclasses.dataclass(frozen=True)
class BcachefsRef:
    """A bcachefs commit and the tag used to name it."""
    tag: str
    commit: str


def _current_umask() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return umask


def confirm(prompt: str = "Confirm?") -> bool:
    """Asks a Y/n question until a valid answer is given."""
    while True:
        try:
            response = input(f"{prompt} [Y/n]: ").strip().lower()
        except EOFError as err:
            raise PatchGeneratorError(
                "No answer on stdin. Use --yes to skip confirmation.") from err
        if response in {"y", "yes", ""}:
            return True
        if response in {"n", "no"}:
            return False
        logging.warning("Bad response: %s", response)


@dataclasses.dataclass(kw_only=True)
class PatchGenerator:
    """Writes `git diff <linux tag>..<bcachefs commit>` plus glue patches."""

    output: pathlib.Path | None
    tag: str | None
    snapshot: str | None
    append_glue: bool
    yes: bool
    linux_repo: pathlib.Path
    linux_remote: str
    bcachefs_remote: str
    tools_repo: pathlib.Path
    tools_remote: str
    branch: str
    glue_dir: pathlib.Path

    def _linux(self) -> GitRepo:
        return GitRepo(self.linux_repo)

    def _tools(self) -> GitRepo:
        return GitRepo(self.tools_repo)

    def update_linux(self) -> str:
        """Fetches the Linux working copy and returns the Linux tag."""
        logging.info("Preparing linux source tree %s", self.linux_repo)
        linux = self._linux()
        linux.check_remotes(self.linux_remote, self.bcachefs_remote)
        linux.fetch(self.linux_remote)
        linux.fetch(self.bcachefs_remote)

        if self.tag:
            if not linux.has_rev(self.tag):
                raise PatchGeneratorError(
                    f"Specified tag does not exist: {self.tag}")
            logging.info("Using specified tag: %s", self.tag)
            return self.tag

        tag = linux.last_tag(f"{self.linux_remote}/{self.branch}")
        logging.info("Detected last tag: %s", tag)
        return tag

    def update_tools(self) -> str:
        """Fetches the bcachefs-tools working copy and returns its last tag."""
        logging.info("Preparing bcachefs-tools source tree %s",
                     self.tools_repo)
        tools = self._tools()
        tools.check_remotes(self.tools_remote)
        tools.fetch(self.tools_remote)
        tag = tools.last_tag(f"{self.tools_remote}/{self.branch}")
        logging.info("Detected last bcachefs-tools tag: %s", tag)
        return tag

    def stable_ref(self, tools_tag: str) -> BcachefsRef:
        """Returns the bcachefs commit pinned by a bcachefs-tools release."""
        commit = self._tools().cat_file(tools_tag, _BCACHEFS_REVISION).strip()
        if not commit:
            raise PatchGeneratorError(
                f"{_BCACHEFS_REVISION} is empty at tag {tools_tag}")
        logging.info("Detected commit %s for tag %s", commit, tools_tag)
        return BcachefsRef(tag=tools_tag, commit=commit)

    def snapshot_ref(self, tools_tag: str) -> BcachefsRef:
        """Returns a reference naming --snapshot after its on-disk version."""
        linux = self._linux()
        header = linux.cat_file(self.snapshot, _BCACHEFS_FORMAT_H)
        version = bch_version.parse_bch_version(header.splitlines())
        logging.info("Detected bcachefs version %s at %s", version,
                     self.snapshot)
        date = bch_version.format_commit_date(linux.commit_date(self.snapshot))
        tag = bch_version.snapshot_tag(version, tools_tag, date)
        logging.info("Using snapshot tag %s for %s", tag, self.snapshot)
        return BcachefsRef(tag=tag, commit=self.snapshot)

    def resolve(self) -> tuple[str, BcachefsRef]:
        """Returns the Linux tag and the bcachefs reference to diff."""
        linux_tag = self.update_linux()
        tools_tag = self.update_tools()
        if self.snapshot:
            ref = self.snapshot_ref(tools_tag)
        else:
            ref = self.stable_ref(tools_tag)
        if not self._linux().has_rev(f"{ref.commit}^{{commit}}"):
            raise PatchGeneratorError(
                f"bcachefs commit {ref.commit} does not exist in "
                f"{self.linux_repo}. Is {self.bcachefs_remote} up to date?")
        return linux_tag, ref

    def write_patch(self, path: pathlib.Path, linux_tag: str,
                    ref: BcachefsRef, glue_patches: list[pathlib.Path]):
        """Writes the patch to |path|, replacing it only on success."""
        with tempfile.NamedTemporaryFile(
                mode="w", encoding="utf-8", dir=path.parent,
                prefix=f".{path.name}.", delete=False) as tmp:
            tmp_path = pathlib.Path(tmp.name)
            try:
                self._linux().diff_to(f"{linux_tag}..{ref.commit}",
                                      BCACHEFS_PATHS, tmp)
                # git wrote through the descriptor; continue after its output.
                tmp.seek(0, os.SEEK_END)
                for content in glue.render_glue(glue_patches, ref.tag):
                    tmp.write(content)
                tmp.flush()
                # Temporary files are 0600; match a file created by open().
                os.chmod(tmp_path, 0o666 & ~_current_umask())
                shutil.move(tmp_path, path)
            finally:
                tmp_path.unlink(missing_ok=True)
        logging.info("Wrote %s", path)

    def run(self) -> int:
        linux_tag, ref = self.resolve()
        path = out_file.generate_out_file(self.output, ref.tag, linux_tag)

        glue_patches = []
        if self.append_glue:
            glue_patches = glue.select_glue(self.glue_dir, linux_tag, ref.tag)

        diff_range = f"{linux_tag}..{ref.commit}"
        logging.info("About to diff: %s", diff_range)
        if not self.yes and not confirm(f"Write patch to {path}"):
            logging.info("Nothing written.")
            return 0
        self.write_patch(path, linux_tag, ref, glue_patches)
        return 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=__doc__, formatter_class=argparse.RawTextHelpFormatter
    )
    parser.add_argument(
        "-o", "--output",
        help="""Output file or directory.
            If it ends with .patch, this exact file is used.
            If it is a directory (must exist), the file name is generated.
            If unset, the file is generated in the current directory.""",
        type=pathlib.Path,
        default=None,
    )
    parser.add_argument(
        "-t", "--tag",
        help="Linux tag to base the patch on. Latest if unset.",
        default=None,
    )
    parser.add_argument(
        "-s", "--snapshot",
        help="bcachefs snapshot (commit) to use instead of the last tagged "
             "release.",
        default=None,
    )
    parser.add_argument(
        "--no_glue",
        help="Do not append Kconfig/Makefile glue patches.",
        dest="append_glue",
        action="store_false",
    )
    parser.add_argument(
        "-y", "--yes",
        help="Write the patch without asking for confirmation.",
        action="store_true",
    )
    parser.add_argument(
        "--linux_repo",
        help="Path to the Linux working copy.",
        type=pathlib.Path,
        default=_DEFAULT_LINUX_REPO,
    )
    parser.add_argument(
        "--linux_remote",
        help="Remote of mainline Linux in --linux_repo.",
        default=_DEFAULT_LINUX_REMOTE,
    )
    parser.add_argument(
        "--bcachefs_remote",
        help="Remote of the bcachefs tree in --linux_repo.",
        default=_DEFAULT_BCACHEFS_REMOTE,
    )
    parser.add_argument(
        "--tools_repo",
        help="Path to the bcachefs-tools working copy.",
        type=pathlib.Path,
        default=_DEFAULT_TOOLS_REPO,
    )
    parser.add_argument(
        "--tools_remote",
        help="Remote of bcachefs-tools in --tools_repo.",
        default=_DEFAULT_TOOLS_REMOTE,
    )
    parser.add_argument(
        "--branch",
        help="Branch of the remotes that latest tags are searched on.",
        default=_DEFAULT_BRANCH,
    )
    parser.add_argument(
        "--glue_dir",
        help="Directory containing glue patches, one subdirectory per Linux "
             "release.",
        type=pathlib.Path,
        default=glue.DEFAULT_GLUE_DIR,
    )
    parser.add_argument("--log", help="log level", default="info")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = vars(parse_args(argv))
    log = args.pop("log")
    numeric_level = getattr(logging, log.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError("Invalid log level: %s" % log)
    logging.basicConfig(level=numeric_level,
                        format="%(levelname)s: %(message)s")
    try:
        return PatchGenerator(**args).run()
    except PatchGeneratorError as e:
        logging.error("%s", e, exc_info=numeric_level <= logging.DEBUG)
        return 1


if __name__ == "__main__":
    sys.exit(main())
