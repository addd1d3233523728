import os
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import torch
import triton
from triton.compiler.errors import CompilationError
from triton.runtime.errors import OutOfResources

from .backends import select_backend
from .errors import DeviceError, SolverError

# Failures raised by the torch runtime (CUDA errors, out of memory) and by
# Triton when compiling or launching a kernel
RUNTIME_ERRORS = (RuntimeError, CompilationError, OutOfResources)

DEVICE_TYPES = {"cpu": "Cpu", "cuda": "DiscreteGpu"}


def default_device() -> torch.device:
    return torch.device("cuda" if torch.cuda.is_available() else "cpu")


@contextmanager
def device_guard(operation: str, iteration: Optional[int] = None):
    """Re-raise runtime failures from the backend as DeviceError"""
    try:
        yield
    except SolverError:
        raise
    except RUNTIME_ERRORS as exc:
        raise DeviceError(operation, iteration) from exc


def read_scalar(
    value: torch.Tensor, operation: str = "readback", iteration: Optional[int] = None
) -> float:
    """
    Copy a one-element device tensor to the host.

    This blocks until every previously issued dispatch has finished, so the
    solver only calls it for scalars that drive host control flow.
    """
    with device_guard(operation, iteration):
        return value.reshape(-1)[0].item()


def read_scalars(
    values: torch.Tensor, operation: str = "readback", iteration: Optional[int] = None
) -> List[float]:
    """Like read_scalar, for a small buffer of scalars drained in one wait"""
    with device_guard(operation, iteration):
        return values.tolist()


def device_info(device=None, backend: Optional[str] = None) -> Dict[str, Any]:
    """
    Describe the device and the compute backend a solve on it would use.

    backend is resolved the same way PCGSolver resolves it, so an unknown
    name raises ValueError.
    """
    device = torch.device(device) if device is not None else default_device()
    info = {
        "device": str(device),
        "backend": select_backend(device, backend).name,
        "adapter_name": device.type,
        "device_type": DEVICE_TYPES.get(device.type, "Other"),
        "vendor": None,
        "capability": None,
        "total_memory": None,
        "multi_processor_count": None,
        "torch_version": torch.__version__,
        "triton_version": triton.__version__,
    }
    if device.type == "cuda":
        props = torch.cuda.get_device_properties(device)
        info.update(
            adapter_name=props.name,
            vendor="nvidia" if torch.version.hip is None else "amd",
            capability=f"{props.major}.{props.minor}",
            total_memory=props.total_memory,
            multi_processor_count=props.multi_processor_count,
        )
    return info


def git_rev() -> Optional[str]:
    """Revision the package was built from, taken from GIT_REV when set"""
    return os.environ.get("GIT_REV") or None


def describe(info: Dict[str, Any]) -> str:
    line = f"{info['adapter_name']} ({info['device']}, {info['device_type']})"
    line += f" backend {info['backend']}"
    if info["capability"] is not None:
        line += f" compute capability {info['capability']}"
    return line
