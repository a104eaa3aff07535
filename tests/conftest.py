from __future__ import annotations

import pytest

from camvault.commands import CmdResult

OK = CmdResult(0, "", "")
FAIL = CmdResult(1, "", "")


def _matches(cmd: list[str], prefix: list[str]) -> bool:
    # The last prefix element matches as a string prefix, so
    # ["gphoto2", "--get-file"] matches "--get-file=5-15".
    if not prefix:
        return True
    n = len(prefix)
    return len(cmd) >= n and cmd[: n - 1] == prefix[:-1] and cmd[n - 1].startswith(prefix[-1])


class FakeRunner:
    """
    Scripted stand-in for run_command.

    `on(prefix, *results)` queues results for commands starting with
    `prefix`; the last queued result repeats. Later scripts take precedence
    over earlier ones. Unmatched commands succeed.
    """

    def __init__(self):
        self.calls: list[tuple[list[str], dict]] = []
        self._scripts: list[tuple[list[str], list[CmdResult]]] = []

    def on(self, prefix: list[str], *results: CmdResult) -> "FakeRunner":
        self._scripts.insert(0, (list(prefix), list(results)))
        return self

    def __call__(self, cmd, **kwargs) -> CmdResult:
        cmd = list(cmd)
        self.calls.append((cmd, kwargs))
        for prefix, results in self._scripts:
            if _matches(cmd, prefix):
                return results.pop(0) if len(results) > 1 else results[0]
        return OK

    def calls_to(self, prefix: list[str]) -> list[tuple[list[str], dict]]:
        return [c for c in self.calls if _matches(c[0], prefix)]


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()
