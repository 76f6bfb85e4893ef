"""Tests for the ONNX model manager."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from taggerx.config import Settings
from taggerx.errors import AssetNotFound
from taggerx.ml.model_manager import OnnxModelManager

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "assets_path": "/tmp/taggerx_test_assets",
        "model_repo": None,
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def _local_model(tmp_path: Path) -> Settings:
    (tmp_path / "model.onnx").touch()
    return _make_settings(assets_path=str(tmp_path))


# ---------------------------------------------------------------------------
# Asset resolution
# ---------------------------------------------------------------------------


class TestEnsureAsset:
    @patch("taggerx.ml.model_manager.hf_hub_download")
    def test_existing_file_skips_download(self, mock_download: MagicMock, tmp_path: Path) -> None:
        tag_file = tmp_path / "selected_tags.csv"
        tag_file.touch()
        mgr = OnnxModelManager(_make_settings(assets_path=str(tmp_path), model_repo="org/tagger"))

        assert mgr.ensure_asset("selected_tags.csv") == tag_file
        mock_download.assert_not_called()

    @patch("taggerx.ml.model_manager.hf_hub_download")
    def test_downloads_from_configured_repo(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "model.onnx")
        mgr = OnnxModelManager(_make_settings(assets_path=str(tmp_path), model_repo="org/tagger"))

        path = mgr.ensure_asset("model.onnx")

        mock_download.assert_called_once_with(
            repo_id="org/tagger",
            filename="model.onnx",
            local_dir=str(tmp_path),
        )
        assert path == tmp_path / "model.onnx"

    def test_missing_without_repo_raises(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(assets_path=str(tmp_path)))
        with pytest.raises(AssetNotFound, match="TAGGERX_MODEL_REPO"):
            mgr.ensure_asset("model.onnx")

    def test_asset_not_found_is_file_not_found(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(assets_path=str(tmp_path)))
        with pytest.raises(FileNotFoundError):
            mgr.ensure_asset("selected_tags.csv")


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


class TestSession:
    @patch("taggerx.ml.model_manager.InferenceSession")
    def test_get_session_creates_and_caches(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        mock_session = MagicMock()
        mock_session_cls.return_value = mock_session
        mgr = OnnxModelManager(_local_model(tmp_path))

        assert mgr.is_loaded() is False
        session1 = mgr.get_session()
        session2 = mgr.get_session()

        assert session1 is mock_session
        assert session2 is mock_session
        assert mgr.is_loaded() is True
        mock_session_cls.assert_called_once()
        assert mock_session_cls.call_args.args[0] == str(tmp_path / "model.onnx")

    @patch("taggerx.ml.model_manager.InferenceSession")
    def test_forward_feeds_first_input(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        session = MagicMock()
        model_input = MagicMock()
        model_input.name = "input_1:0"
        session.get_inputs.return_value = [model_input]
        session.run.return_value = [np.zeros((2, 10), dtype=np.float32)]
        mock_session_cls.return_value = session
        mgr = OnnxModelManager(_local_model(tmp_path))

        batch = np.ones((2, 3, 8, 8), dtype=np.float32)
        scores = mgr.forward(batch)

        assert scores.shape == (2, 10)
        output_names, feeds = session.run.call_args.args
        assert output_names is None
        assert list(feeds) == ["input_1:0"]
        assert feeds["input_1:0"].shape == (2, 3, 8, 8)

    @patch("taggerx.ml.model_manager.InferenceSession")
    def test_shutdown_clears_session(self, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_local_model(tmp_path))
        mgr.get_session()
        assert mgr.is_loaded() is True

        mgr.shutdown()
        assert mgr.is_loaded() is False

    def test_missing_model_fails_before_session(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(assets_path=str(tmp_path)))
        with pytest.raises(AssetNotFound):
            mgr.get_session()
        assert mgr.is_loaded() is False


# ---------------------------------------------------------------------------
# Execution providers
# ---------------------------------------------------------------------------


class TestProviders:
    def test_provider_building_cpu(self) -> None:
        mgr = OnnxModelManager(_make_settings(device="cpu"))
        assert mgr._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self) -> None:
        mgr = OnnxModelManager(_make_settings(device="cuda"))
        assert len(mgr._providers) == 2
        provider_name, provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["device_id"] == 0
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_provider_building_openvino(self) -> None:
        mgr = OnnxModelManager(_make_settings(device="openvino"))
        assert len(mgr._providers) == 2
        provider_name, _provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "OpenVINOExecutionProvider"
        assert mgr._providers[1] == "CPUExecutionProvider"
