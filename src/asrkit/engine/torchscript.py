"""TorchScript inference backend.

Each model artifact is a ``torch.jit`` archive. torch is imported lazily so
the rest of the package (and the unit tests) run without it.
"""

import gc
import logging
from pathlib import Path

import numpy as np

from asrkit.models import ComputeUnits

logger = logging.getLogger(__name__)


def select_device(compute_units: ComputeUnits) -> str:
    """Map a compute unit preference onto a torch device string."""
    import torch

    if compute_units is ComputeUnits.CPU_ONLY:
        return "cpu"
    if torch.cuda.is_available():
        return "cuda"
    mps = getattr(torch.backends, "mps", None)
    if compute_units is ComputeUnits.ALL and mps is not None and mps.is_available():
        return "mps"
    return "cpu"


class TorchScriptModel:
    """A loaded TorchScript module pinned to one device."""

    def __init__(self, module, device: str, path: Path):
        self._module = module
        self._device = device
        self._path = path

    def predict(self, *inputs: np.ndarray) -> np.ndarray:
        import torch

        if self._module is None:
            raise RuntimeError(f"Model {self._path.name} has been unloaded")

        with torch.no_grad():
            tensors = [
                torch.from_numpy(np.ascontiguousarray(x)).to(self._device) for x in inputs
            ]
            output = self._module(*tensors)
        if isinstance(output, (tuple, list)):
            output = output[0]
        return output.float().cpu().numpy()

    def unload(self) -> None:
        """Drop the module and return cached accelerator memory."""
        import torch

        if self._module is None:
            return
        logger.debug("Unloading %s from %s", self._path.name, self._device)
        self._module = None
        gc.collect()
        if self._device == "cuda" and torch.cuda.is_available():
            torch.cuda.empty_cache()

    @property
    def device(self) -> str:
        return self._device

    @property
    def is_loaded(self) -> bool:
        return self._module is not None


class TorchScriptBackend:
    """Loads ``*.pt`` TorchScript artifacts."""

    def __init__(self, dtype: str | None = None):
        """
        Args:
            dtype: Optional torch dtype name ("float16", "bfloat16") applied to
                modules loaded onto an accelerator.
        """
        self._dtype = dtype

    def load(self, path: Path, compute_units: ComputeUnits) -> TorchScriptModel:
        import torch

        device = select_device(compute_units)
        module = torch.jit.load(str(path), map_location=device)
        module.eval()
        if self._dtype and device != "cpu":
            module = module.to(getattr(torch, self._dtype))
        logger.info("Loaded %s on %s", Path(path).name, device)
        return TorchScriptModel(module, device, Path(path))
