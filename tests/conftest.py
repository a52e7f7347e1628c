import sys
from collections.abc import Callable

import pytest


@pytest.fixture
def python() -> Callable[[str], list[str]]:
    def command(code: str) -> list[str]:
        return [sys.executable, "-c", code]

    return command
