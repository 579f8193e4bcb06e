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

"""Wrapper for git operations on a local working copy."""

import dataclasses
import logging
import pathlib
import subprocess
from typing import IO

from bcachefs_patch.patch_errors import PatchGeneratorError


@dataclasses.dataclass
class GitRepo:
    """A git working copy, addressed with `git -C`."""

    path: pathlib.Path

    def _run(self, args: list[str], **kwargs) -> subprocess.CompletedProcess:
        """Executes a git command, raising on a non-zero exit code."""
        cmd = ["git", "-C", str(self.path)] + args
        logging.debug("+ %s", " ".join(cmd))
        kwargs.setdefault("stdout", subprocess.PIPE)
        res = subprocess.run(cmd, text=True, stderr=subprocess.PIPE,
                             check=False, **kwargs)
        if res.returncode != 0:
            raise PatchGeneratorError(
                f"`{' '.join(cmd)}` failed with code {res.returncode}: "
                f"{res.stderr.strip()}")
        return res

    def _output(self, args: list[str]) -> str:
        return self._run(args).stdout.strip()

    def check_is_repo(self) -> None:
        if not (self.path / ".git").exists():
            raise PatchGeneratorError(
                f"{self.path}/.git does not exist. "
                "Is this directory a git working copy?")

    def check_remotes(self, *remotes: str) -> None:
        """Checks the working copy has all of |remotes| configured."""
        self.check_is_repo()
        for remote in remotes:
            try:
                url = self._output(["remote", "get-url", remote])
            except PatchGeneratorError as err:
                raise PatchGeneratorError(
                    f"Expected remote {remote} does not exist in {self.path}"
                ) from err
            logging.info("Using remote %s from %s", remote, url)

    def fetch(self, remote: str) -> None:
        logging.info("Fetching %s in %s", remote, self.path)
        self._run(["fetch", remote], stdout=None)

    def last_tag(self, ref: str) -> str:
        """Returns the last annotated tag reachable from |ref|."""
        try:
            return self._output(["describe", "--abbrev=0", ref])
        except PatchGeneratorError as err:
            raise PatchGeneratorError(
                f"Failed to get tag for ref: {ref}") from err

    def has_rev(self, rev: str) -> bool:
        try:
            self._run(["rev-parse", "--verify", "--quiet", rev])
        except PatchGeneratorError:
            return False
        return True

    def cat_file(self, ref: str, path: str) -> str:
        """Returns the content of |path| at |ref|."""
        try:
            return self._run(["cat-file", "-p", f"{ref}:{path}"]).stdout
        except PatchGeneratorError as err:
            raise PatchGeneratorError(
                f"Failed to read {path} at {ref}") from err

    def commit_date(self, ref: str) -> str:
        """Returns the committer date of |ref| in strict ISO 8601 format."""
        try:
            return self._output(
                ["show", "--no-patch", "--format=format:%cI", ref])
        except PatchGeneratorError as err:
            raise PatchGeneratorError(
                f"Failed to get date for ref: {ref}") from err

    def diff_to(self, diff_range: str, paths: list[str], out: IO) -> None:
        """Writes `git diff |diff_range| -- |paths|` to |out|."""
        self._run(["diff", diff_range, "--"] + paths, stdout=out)
