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

"""Determines where the generated patch is written."""

import pathlib
import re

from bcachefs_patch.patch_errors import PatchGeneratorError

_PATCH_SUFFIX = ".patch"


def strip_rc(linux_tag: str) -> str:
    """Drops the release candidate suffix from a Linux tag.

    >>> strip_rc("v6.18-rc3")
    'v6.18'
    """
    return re.sub(r"-rc.*$", "", linux_tag)


def out_file_name(bcachefs_tag: str, linux_tag: str) -> str:
    return f"bcachefs-{bcachefs_tag}-for-{strip_rc(linux_tag)}{_PATCH_SUFFIX}"


def generate_out_file(
    out: pathlib.Path | None,
    bcachefs_tag: str,
    linux_tag: str,
    cwd: pathlib.Path | None = None,
) -> pathlib.Path:
    """Returns the absolute path of the output file.

    Args:
        out: A file ending with .patch, which is used as is, or an existing
          directory to put an automatically named patch in. If None, the
          current directory is used.
        bcachefs_tag: The resolved bcachefs tag.
        linux_tag: The resolved Linux tag.
        cwd: Directory that relative paths are resolved against.
    """
    cwd = cwd or pathlib.Path.cwd()
    if out is None:
        out = cwd
    elif not out.is_absolute():
        out = cwd / out

    if out.name.endswith(_PATCH_SUFFIX):
        out = out.resolve()
        if not out.parent.is_dir():
            raise PatchGeneratorError(
                f"Parent directory of output {out} does not exist")
        return out

    if not out.is_dir():
        raise PatchGeneratorError(
            f"Output {out} does not end with {_PATCH_SUFFIX} and is not an "
            "existing directory")
    return (out / out_file_name(bcachefs_tag, linux_tag)).resolve()
