#!/usr/bin/env python3
"""
Inference Backends - tensor bookkeeping and model runners
Wraps ONNX Runtime sessions and NCNN nets behind one forward() contract

Created: 2025
"""

from __future__ import annotations

import itertools
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .errors import BackendError, InvalidInputError

logger = logging.getLogger(__name__)

try:
    import onnxruntime as ort
    ONNX_AVAILABLE = True
except ImportError:
    ONNX_AVAILABLE = False

try:
    import ncnn
    NCNN_AVAILABLE = True
except ImportError:
    NCNN_AVAILABLE = False


@dataclass(frozen=True)
class TensorHandle:
    """Opaque reference to a tensor owned by a backend."""

    tensor_id: int
    shape: Tuple[int, ...]


@dataclass
class NetworkHandle:
    """A loaded model plus the contract needed to feed and read it.

    ``outputs`` are the canonical names under which the model's outputs are
    returned, in the model's output order.
    """

    name: str
    model: Any
    outputs: Tuple[str, ...]
    input_name: Optional[str] = None
    channels_first: bool = False
    options: Dict[str, Any] = field(default_factory=dict)


class InferenceBackend:
    """Base class tracking every tensor a backend hands out.

    Subclasses implement ``_run`` (and ``load_network`` where models come
    from disk); everything else is shared.
    """

    def __init__(self) -> None:
        self._tensors: Dict[int, np.ndarray] = {}
        self._ids = itertools.count(1)

    @property
    def num_tensors(self) -> int:
        return len(self._tensors)

    def allocate(self, array: np.ndarray) -> TensorHandle:
        data = np.ascontiguousarray(array)
        tensor_id = next(self._ids)
        self._tensors[tensor_id] = data
        return TensorHandle(tensor_id, tuple(data.shape))

    def read(self, handle: TensorHandle) -> np.ndarray:
        try:
            data = self._tensors[handle.tensor_id]
        except KeyError:
            raise InvalidInputError(f"tensor {handle.tensor_id} was already disposed") from None
        return np.array(data, copy=True)

    def dispose(self, handle: TensorHandle) -> None:
        self._tensors.pop(handle.tensor_id, None)

    def forward(self, network: NetworkHandle, batch: TensorHandle) -> Dict[str, TensorHandle]:
        """Run ``network`` on ``batch`` and return one handle per output."""
        inputs = self._tensors.get(batch.tensor_id)
        if inputs is None:
            raise InvalidInputError(f"tensor {batch.tensor_id} was already disposed")
        if network.channels_first:
            inputs = np.ascontiguousarray(inputs.transpose(0, 3, 1, 2))

        try:
            raw = self._run(network, inputs)
        except BackendError:
            raise
        except Exception as exc:
            raise BackendError(f"forward pass of {network.name!r} failed: {exc}") from exc

        if len(raw) != len(network.outputs):
            raise BackendError(
                f"{network.name!r} returned {len(raw)} outputs, expected {len(network.outputs)}"
            )
        return {name: self.allocate(value) for name, value in zip(network.outputs, raw)}

    def _run(self, network: NetworkHandle, inputs: np.ndarray) -> Sequence[np.ndarray]:
        raise NotImplementedError

    def unload(self, network: NetworkHandle) -> None:
        network.model = None


@contextmanager
def forward_scope(
    backend: InferenceBackend,
    network: NetworkHandle,
    batch: np.ndarray,
) -> Iterator[Dict[str, np.ndarray]]:
    """Run one forward pass and yield its outputs as host arrays.

    Input and output tensors are released when the block exits, whether it
    exits normally or through an exception.
    """
    handles: List[TensorHandle] = []
    try:
        batch_handle = backend.allocate(batch.astype(np.float32, copy=False))
        handles.append(batch_handle)
        outputs = backend.forward(network, batch_handle)
        handles.extend(outputs.values())
        yield {name: backend.read(handle) for name, handle in outputs.items()}
    finally:
        for handle in handles:
            backend.dispose(handle)


class OnnxBackend(InferenceBackend):
    """ONNX Runtime sessions on the CPU execution provider."""

    def __init__(self, providers: Optional[Sequence[str]] = None) -> None:
        super().__init__()
        if not ONNX_AVAILABLE:
            raise BackendError("onnxruntime is not installed. Install with: pip install onnxruntime")
        self.providers = list(providers or ["CPUExecutionProvider"])

    def load_network(
        self,
        name: str,
        model_path: str,
        outputs: Sequence[str],
        channels_first: bool = True,
    ) -> NetworkHandle:
        if not os.path.exists(model_path):
            raise BackendError(f"model file not found: {model_path}")
        try:
            session = ort.InferenceSession(model_path, providers=self.providers)
        except Exception as exc:
            raise BackendError(f"failed to load {model_path}: {exc}") from exc

        input_name = session.get_inputs()[0].name
        logger.info("Loaded ONNX model %s from %s", name, model_path)
        return NetworkHandle(
            name=name,
            model=session,
            outputs=tuple(outputs),
            input_name=input_name,
            channels_first=channels_first,
        )

    def _run(self, network: NetworkHandle, inputs: np.ndarray) -> Sequence[np.ndarray]:
        if network.model is None:
            raise BackendError(f"network {network.name!r} has been unloaded")
        return network.model.run(None, {network.input_name: inputs})


class NcnnBackend(InferenceBackend):
    """NCNN nets, fed one image at a time and re-stacked into a batch."""

    def __init__(self, use_vulkan: bool = False) -> None:
        super().__init__()
        if not NCNN_AVAILABLE:
            raise BackendError("NCNN Python bindings not available. Install with: pip install ncnn")
        self.use_vulkan = use_vulkan

    def load_network(
        self,
        name: str,
        param_path: str,
        bin_path: str,
        outputs: Dict[str, str],
        input_name: str = "data",
    ) -> NetworkHandle:
        """``outputs`` maps canonical output names to NCNN blob names."""
        if not (os.path.exists(param_path) and os.path.exists(bin_path)):
            raise BackendError(f"NCNN model files not found: {param_path}, {bin_path}")

        net = ncnn.Net()
        net.opt.use_vulkan_compute = self.use_vulkan
        ret1 = net.load_param(param_path)
        ret2 = net.load_model(bin_path)
        if ret1 != 0 or ret2 != 0:
            raise BackendError(f"Failed to load NCNN model (ret1={ret1}, ret2={ret2})")

        logger.info("Loaded NCNN model %s from %s", name, param_path)
        return NetworkHandle(
            name=name,
            model=net,
            outputs=tuple(outputs.keys()),
            input_name=input_name,
            channels_first=True,
            options={"blobs": dict(outputs)},
        )

    def _run(self, network: NetworkHandle, inputs: np.ndarray) -> Sequence[np.ndarray]:
        if network.model is None:
            raise BackendError(f"network {network.name!r} has been unloaded")

        blobs = network.options["blobs"]
        per_output: Dict[str, List[np.ndarray]] = {key: [] for key in network.outputs}
        for chw in inputs:
            ex = network.model.create_extractor()
            ex.set_light_mode(True)
            ex.input(network.input_name, ncnn.Mat(np.ascontiguousarray(chw)))
            for key in network.outputs:
                ret, mat = ex.extract(blobs[key])
                if ret != 0:
                    raise BackendError(f"NCNN extract of {blobs[key]!r} failed (ret={ret})")
                per_output[key].append(np.array(mat))
        return [np.stack(per_output[key], axis=0) for key in network.outputs]

    def unload(self, network: NetworkHandle) -> None:
        if network.model is not None:
            network.model.clear()
        super().unload(network)


@dataclass
class NetworkContext:
    """Explicit set of loaded networks shared by pipeline calls.

    The caller owns its lifecycle: build it once, pass it to every call and
    ``dispose()`` it when done.
    """

    backend: InferenceBackend
    networks: Dict[str, NetworkHandle] = field(default_factory=dict)

    def register(self, role: str, network: NetworkHandle) -> None:
        self.networks[role] = network

    def get(self, role: str) -> NetworkHandle:
        network = self.networks.get(role)
        if network is None or network.model is None:
            raise BackendError(f"no network loaded for role {role!r}")
        return network

    def has(self, role: str) -> bool:
        network = self.networks.get(role)
        return network is not None and network.model is not None

    def dispose(self) -> None:
        for network in self.networks.values():
            self.backend.unload(network)
        self.networks.clear()


# Canonical output names per network role.
NETWORK_OUTPUTS: Dict[str, Tuple[str, ...]] = {
    "ssd": ("scores", "boxes"),
    "tiny": ("grid",),
    "pnet": ("prob", "regions"),
    "rnet": ("prob", "regions"),
    "onet": ("prob", "regions", "points"),
    "landmarks": ("landmarks",),
    "recognition": ("descriptor",),
    "expression": ("expressions",),
    "age_gender": ("age", "gender"),
}


def load_onnx_context(models_dir: str, roles: Optional[Sequence[str]] = None, **backend_kwargs: Any) -> NetworkContext:
    """Load ``<models_dir>/<role>.onnx`` for every available role."""
    backend = OnnxBackend(**backend_kwargs)
    context = NetworkContext(backend)
    for role in roles or NETWORK_OUTPUTS.keys():
        path = os.path.join(models_dir, f"{role}.onnx")
        if not os.path.exists(path):
            if roles:
                raise BackendError(f"model file not found: {path}")
            continue
        context.register(role, backend.load_network(role, path, NETWORK_OUTPUTS[role]))
    if not context.networks:
        logger.warning("No ONNX models found in %s", models_dir)
    return context


def load_ncnn_context(
    models_dir: str,
    blobs: Dict[str, Dict[str, str]],
    input_names: Optional[Dict[str, str]] = None,
    use_vulkan: bool = False,
) -> NetworkContext:
    """Load ``<models_dir>/<role>.param`` / ``.bin`` for every role in ``blobs``.

    ``blobs`` maps each role to its canonical output -> NCNN blob names.
    """
    backend = NcnnBackend(use_vulkan=use_vulkan)
    context = NetworkContext(backend)
    input_names = input_names or {}
    for role, outputs in blobs.items():
        if role not in NETWORK_OUTPUTS:
            raise BackendError(f"unknown network role {role!r}")
        missing = set(NETWORK_OUTPUTS[role]) - set(outputs)
        if missing:
            raise BackendError(f"NCNN blob names missing for {role}: {sorted(missing)}")
        ordered = {name: outputs[name] for name in NETWORK_OUTPUTS[role]}
        param_path = os.path.join(models_dir, f"{role}.param")
        bin_path = os.path.join(models_dir, f"{role}.bin")
        context.register(
            role,
            backend.load_network(role, param_path, bin_path, ordered, input_names.get(role, "data")),
        )
    return context
