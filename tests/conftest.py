from __future__ import annotations

from pathlib import Path
import sys
from typing import Callable, Dict, List, Sequence, Tuple

import numpy as np
import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from facepipe.backends import NETWORK_OUTPUTS, InferenceBackend, NetworkContext, NetworkHandle  # noqa: E402


class RecordingBackend(InferenceBackend):
    """Runs plain Python callables as networks and records every call."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: List[Tuple[str, Tuple[int, ...]]] = []

    def _run(self, network: NetworkHandle, inputs: np.ndarray) -> Sequence[np.ndarray]:
        self.calls.append((network.name, tuple(inputs.shape)))
        return network.model(inputs)

    def called(self, role: str) -> int:
        return sum(1 for name, _ in self.calls if name == role)


def build_context(networks: Dict[str, Callable[[np.ndarray], Sequence[np.ndarray]]]) -> NetworkContext:
    context = NetworkContext(RecordingBackend())
    for role, fn in networks.items():
        context.register(role, NetworkHandle(role, fn, NETWORK_OUTPUTS[role]))
    return context


@pytest.fixture
def make_context():
    return build_context
