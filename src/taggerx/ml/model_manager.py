"""Model manager: resolve assets, load and cache the ONNX tagger session.

Assets live under ``assets_path``. When a file is missing and a Hugging Face
repo is configured it is downloaded there; otherwise startup fails with
``AssetNotFound``.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import numpy as np
from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from taggerx.errors import AssetNotFound

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from taggerx.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_asset(self, filename: str) -> Path:
        """Return the local path of an asset, downloading it if configured."""
        ...

    def forward(self, batch: NDArray[np.floating]) -> NDArray[np.floating]:
        """Run the model on a (B, 3, S, S) batch and return raw scores."""
        ...

    def is_loaded(self) -> bool:
        """Return True if the inference session has been created."""
        ...

    def shutdown(self) -> None:
        """Drop the cached session."""
        ...


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Resolves tagger assets and owns a lazily created InferenceSession."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._assets_dir = Path(settings.assets_path)

        self._lock = threading.Lock()
        self._session: InferenceSession | None = None

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_asset(self, filename: str) -> Path:
        """Return ``assets_path / filename``, downloading it from ``model_repo`` if missing.

        Raises:
            AssetNotFound: If the file is missing and no repo is configured.
        """
        local = self._assets_dir / filename
        if local.is_file():
            return local

        repo_id = self._settings.model_repo
        if repo_id is None:
            raise AssetNotFound(f"Asset not found: {local} (set TAGGERX_MODEL_REPO to download it)")

        self._assets_dir.mkdir(parents=True, exist_ok=True)
        downloaded = Path(
            hf_hub_download(
                repo_id=repo_id,
                filename=filename,
                local_dir=str(self._assets_dir),
            )
        )
        logger.info("Downloaded %s from %s to %s", filename, repo_id, downloaded)
        return downloaded

    def get_session(self) -> InferenceSession:
        """Return the cached InferenceSession, creating one if needed."""
        with self._lock:
            if self._session is not None:
                return self._session

        model_path = self.ensure_asset(self._settings.model_file)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            if self._session is not None:
                return self._session
            self._session = session
            logger.info("Loaded session for %s (providers=%s)", model_path, session.get_providers())
            return session

    def forward(self, batch: NDArray[np.floating]) -> NDArray[np.floating]:
        """Score a batch with the first model input and output."""
        session = self.get_session()
        input_name = session.get_inputs()[0].name
        outputs = session.run(None, {input_name: np.ascontiguousarray(batch)})
        return np.asarray(outputs[0])

    def is_loaded(self) -> bool:
        with self._lock:
            return self._session is not None

    def shutdown(self) -> None:
        """Drop the cached session."""
        with self._lock:
            self._session = None
            logger.info("Model session cleared")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
