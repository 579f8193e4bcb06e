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

"""Derives bcachefs version strings for snapshot patches.

The on-disk format version is declared in fs/bcachefs/bcachefs_format.h as a
list of x-macros, e.g.

    x(reflink_p_may_update_opts,    BCH_VERSION(1, 16))

The last declaration is the current version.

$ git cat-file -p <commit>:fs/bcachefs/bcachefs_format.h \\
    | python3 -m bcachefs_patch.bch_version
1.16
"""

import argparse
import logging
import re
import sys
from typing import Iterable

from bcachefs_patch.patch_errors import PatchGeneratorError

_BCH_VERSION_RE = re.compile(r"x\(\S+,\s+BCH_VERSION\((\d+), (\d+)\)\)")
_UTC_OFFSET_RE = re.compile(r"(?:[+-]\d\d:\d\d|Z)$")
_STABLE_TAG_RE = re.compile(r"^(v?)(\d+)\.(\d+)\.(\d+)$")


def parse_bch_version(lines: Iterable[str]) -> str:
    """Returns "major.minor" of the last BCH_VERSION declaration.

    >>> parse_bch_version(["x(a, BCH_VERSION(1, 2))", "x(b, BCH_VERSION(1, 3))"])
    '1.3'
    """
    version = None
    for line in lines:
        mo = _BCH_VERSION_RE.search(line)
        if mo:
            version = f"{mo.group(1)}.{mo.group(2)}"
    if not version:
        raise PatchGeneratorError("Failed to parse bcachefs version")
    return version


def format_commit_date(iso_date: str) -> str:
    """Converts a strict ISO 8601 commit date to YYYYMMDDHHMMSS.

    The UTC offset is dropped, not applied.

    >>> format_commit_date("2025-09-28T12:34:56+02:00")
    '20250928123456'
    """
    stripped = _UTC_OFFSET_RE.sub("", iso_date.strip())
    digits = re.sub(r"[T:-]", "", stripped)
    if len(digits) != 14 or not digits.isdigit():
        raise PatchGeneratorError(f"Unrecognized commit date: {iso_date}")
    return digits


def snapshot_tag(bch_version: str, last_stable_tag: str,
                 commit_date: str) -> str:
    """Names a snapshot relative to the last stable bcachefs-tools release.

    >>> snapshot_tag("1.25", "v1.25.2", "20250928123456")
    'v1.25.3_pre20250928123456'

    >>> snapshot_tag("1.28", "v1.25.2", "20250928123456")
    'v1.28.0_pre20250928123456'
    """
    prefix = "v"
    mo = _STABLE_TAG_RE.match(last_stable_tag)
    if mo:
        prefix = mo.group(1)
        major_minor = f"{mo.group(2)}.{mo.group(3)}"
        if major_minor == bch_version:
            patch = int(mo.group(4)) + 1
            return f"{prefix}{major_minor}.{patch}_pre{commit_date}"
    else:
        logging.warning("Last stable tag %s is not major.minor.patch",
                        last_stable_tag)
    return f"{prefix}{bch_version}.0_pre{commit_date}"


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__,
                                     formatter_class=argparse.RawTextHelpFormatter)
    parser.parse_args()
    logging.basicConfig(stream=sys.stderr,
                        level=logging.WARNING,
                        format="%(levelname)s: %(message)s")
    try:
        print(parse_bch_version(sys.stdin))
    except PatchGeneratorError as e:
        logging.error("%s", e)
        sys.exit(1)
