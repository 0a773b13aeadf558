from __future__ import annotations

"""
haunti.version — semantic version string with optional git-describe suffix.

Rules:
- BASE_VERSION follows `core.version` so every package reports one number.
- If HAUNTI_VERSION is set in the environment, that wins.
- Inside a git checkout, a PEP440 local suffix derived from
  `git describe --tags --dirty --always --abbrev=7` is appended, e.g.:
    0.3.0+3.gabc1234          (3 commits after tag)
    0.3.0+gabc1234.dirty      (no tag, dirty tree)
- If git is unavailable, fall back to BASE_VERSION.
"""


import os
import re
import subprocess
from typing import Optional

from core.version import __version__ as BASE_VERSION


def _git_describe() -> Optional[str]:
    try:
        out = subprocess.check_output(
            ["git", "describe", "--tags", "--dirty", "--always", "--abbrev=7"],
            stderr=subprocess.DEVNULL,
            cwd=os.path.dirname(os.path.abspath(__file__)),
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    return out.decode("utf-8", "replace").strip() or None


_PEP440_LOCAL_CLEAN = re.compile(r"[^a-zA-Z0-9.]+")


def _pep440_local_from_describe(desc: str) -> str:
    s = desc.replace("-", ".").replace("+", ".")
    # drop the tag itself; it duplicates BASE_VERSION
    s = re.sub(r"^v?\d+\.\d+\.\d+\.?", "", s)
    s = _PEP440_LOCAL_CLEAN.sub(".", s)
    s = re.sub(r"\.{2,}", ".", s).strip(".")
    return s


def build_version() -> str:
    v = os.getenv("HAUNTI_VERSION")
    if v:
        return v

    desc = _git_describe()
    if not desc:
        return BASE_VERSION

    local = _pep440_local_from_describe(desc)
    return f"{BASE_VERSION}+{local}" if local else BASE_VERSION


__version__ = build_version()


def get_version() -> str:
    return __version__


__all__ = ["__version__", "get_version", "BASE_VERSION"]
