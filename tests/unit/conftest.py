from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

import pytest

from gasnet_graph_api.executor import AccessMode


def unwrap(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Strip Jsonb wrappers so tests can compare plain values."""
    return {key: getattr(value, "obj", value) for key, value in (params or {}).items()}


class FakeSession:
    def __init__(self, executor: "FakeExecutor", mode: AccessMode) -> None:
        self.executor = executor
        self.mode = mode

    async def run(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return await self.executor.execute(query, params, self.mode)


class FakeExecutor:
    """Stands in for GraphExecutor; ``handler(query, params)`` supplies rows."""

    def __init__(self, handler: Optional[Callable[[str, Dict[str, Any]], List[Dict[str, Any]]]] = None) -> None:
        self.handler = handler or (lambda query, params: [])
        self.calls: List[tuple] = []
        self.sessions: List[AccessMode] = []

    async def execute(
        self,
        query: str,
        params: Optional[Dict[str, Any]] = None,
        mode: AccessMode = AccessMode.READ,
    ) -> List[Dict[str, Any]]:
        plain = unwrap(params)
        self.calls.append((query, plain, mode))
        return self.handler(query, plain)

    @asynccontextmanager
    async def session(self, mode: AccessMode = AccessMode.READ):
        self.sessions.append(mode)
        yield FakeSession(self, mode)

    async def ping(self) -> bool:
        return True

    def queries(self, fragment: str) -> List[tuple]:
        return [call for call in self.calls if fragment in call[0]]


@pytest.fixture
def fake_executor():
    return FakeExecutor()
