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

"""Selects glue patches to append to a generated bcachefs patch.

Mainline dropped the bcachefs Kconfig and Makefile hooks in 6.18, so patches
against 6.18 and later need these hooks added back.
"""

import logging
import pathlib
import re
from typing import Iterator

from bcachefs_patch.patch_errors import PatchGeneratorError

DEFAULT_GLUE_DIR = pathlib.Path(__file__).parent / "glue"

# Replaced with the bcachefs tag in glue patches.
VERSION_PLACEHOLDER = "@BCACHEFS_VERSION@"

# Linux release -> glue patches applied to every bcachefs tag, in order.
_GLUE_BY_RELEASE: dict[str, tuple[str, ...]] = {
    "6.17": (),
    "6.18": ("bcachefs-glue-kconf.patch",),
}


def linux_release(linux_tag: str) -> str | None:
    """Returns the major.minor release of a Linux tag.

    >>> linux_release("v6.18-rc3")
    '6.18'

    >>> linux_release("next-20250101")
    """
    mo = re.match(r"^v(\d+)\.(\d+)(?:[.-]|$)", linux_tag)
    if not mo:
        return None
    return f"{mo.group(1)}.{mo.group(2)}"


def select_glue(glue_dir: pathlib.Path, linux_tag: str,
                bcachefs_tag: str) -> list[pathlib.Path]:
    """Returns the glue patches needed for |linux_tag|, in order.

    Besides the per-release patches, any *.patch files in
    <glue_dir>/<release>/<bcachefs_tag>/ are added in sorted order.
    """
    release = linux_release(linux_tag)
    if release not in _GLUE_BY_RELEASE:
        raise PatchGeneratorError(f"Unknown Linux tag: {linux_tag}")

    release_glue = _GLUE_BY_RELEASE[release]
    if not release_glue:
        return []

    release_dir = glue_dir / release
    glue = [release_dir / name for name in release_glue]
    tag_dir = release_dir / bcachefs_tag
    if tag_dir.is_dir():
        glue.extend(sorted(tag_dir.glob("*.patch")))

    for path in glue:
        if not path.is_file():
            raise PatchGeneratorError(f"Glue patch does not exist: {path}")
    return glue


def render_glue(glue: list[pathlib.Path], bcachefs_tag: str) -> Iterator[str]:
    """Yields the content of each glue patch with the version filled in."""
    for path in glue:
        logging.info("Appending glue patch: %s", path)
        content = path.read_text(encoding="utf-8")
        yield content.replace(VERSION_PLACEHOLDER, bcachefs_tag)
