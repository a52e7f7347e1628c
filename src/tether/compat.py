import os
import sys

if sys.version_info < (3, 11):
    import tomli as tomllib
else:
    import tomllib


def is_windows_like() -> bool:
    return os.name == "nt"


def is_posix_like() -> bool:
    return os.name == "posix"


__all__ = [
    "is_posix_like",
    "is_windows_like",
    "tomllib",
]
