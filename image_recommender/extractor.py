"""
Feature extraction boundary.

The model that turns a preprocessed tensor into a feature vector is an
external collaborator. Anything with an ``extract(tensor)`` method can be
plugged in; OnnxFeatureExtractor runs an ONNX classification backbone
(ResNet-50 by default) through ONNX Runtime.

Whatever the engine, callers go through ``extract()``, which turns every
engine failure, timeout, or empty output into an ExtractionError so that a
partial vector is never handed on.
"""

import os
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Optional, Protocol

import numpy as np
import onnxruntime as ort

from .preprocessing import PreprocessConfig

logger = logging.getLogger(__name__)

# Seconds to wait for a single inference call; unset means no limit.
_timeout_env = os.environ.get("EXTRACTION_TIMEOUT")
DEFAULT_TIMEOUT = float(_timeout_env) if _timeout_env else None


class ExtractionError(RuntimeError):
    """Raised when the inference engine fails to produce a feature vector."""


class FeatureExtractor(Protocol):
    """Capability: map a preprocessed tensor to a flat feature vector."""

    def extract(self, tensor: np.ndarray) -> np.ndarray:
        ...


def _run_with_timeout(extractor: FeatureExtractor,
                      tensor: np.ndarray,
                      timeout: float) -> np.ndarray:
    executor = ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(extractor.extract, tensor)
        return future.result(timeout=timeout)
    finally:
        # A hung engine call can't be interrupted; don't block on it.
        executor.shutdown(wait=False)


def extract(tensor: np.ndarray,
            extractor: FeatureExtractor,
            timeout: Optional[float] = DEFAULT_TIMEOUT) -> np.ndarray:
    """
    Run the feature extractor on one tensor.

    Args:
        tensor: Output of preprocess().
        extractor: Inference engine.
        timeout: Optional limit in seconds for the engine call.

    Returns:
        Non-empty 1-D float32 feature vector.

    Raises:
        ExtractionError: If the engine raises, times out, or returns an
            empty or non-finite vector.
    """
    try:
        if timeout is not None:
            output = _run_with_timeout(extractor, tensor, timeout)
        else:
            output = extractor.extract(tensor)
    except ExtractionError:
        raise
    except FutureTimeoutError as e:
        raise ExtractionError(
            f"Feature extraction timed out after {timeout}s"
        ) from e
    except Exception as e:
        raise ExtractionError(f"Feature extraction failed: {e}") from e

    if output is None:
        raise ExtractionError("Feature extractor returned no output")

    try:
        features = np.asarray(output, dtype=np.float32).reshape(-1)
    except (TypeError, ValueError) as e:
        raise ExtractionError(f"Feature extractor returned non-numeric output: {e}") from e

    if features.size == 0:
        raise ExtractionError("Feature extractor returned an empty vector")
    if not np.all(np.isfinite(features)):
        raise ExtractionError("Feature vector contains NaN or Inf values")

    return features


class OnnxFeatureExtractor:
    """
    Feature extractor backed by an ONNX model.

    The model takes a float32 NCHW tensor of shape [1, 3, H, W] and its
    first output is used as the feature vector (flattened).
    """

    def __init__(self,
                 model_path: str,
                 config: PreprocessConfig = None,
                 intra_op_threads: int = 1):
        """
        Load the model.

        Args:
            model_path: Path to the .onnx file (e.g. resnet50-v1-7.onnx).
            config: Preprocessing config; its target size defines the
                input height/width.
            intra_op_threads: ONNX Runtime intra-op thread count.

        Raises:
            ExtractionError: If the model file is missing or can't be loaded.
        """
        self.model_path = model_path
        self.config = config or PreprocessConfig()

        if not os.path.exists(model_path):
            raise ExtractionError(f"Model not found: {model_path}")

        options = ort.SessionOptions()
        options.intra_op_num_threads = intra_op_threads
        options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL

        try:
            self.session = ort.InferenceSession(
                model_path, sess_options=options,
                providers=["CPUExecutionProvider"],
            )
        except Exception as e:
            raise ExtractionError(f"Could not load model {model_path}: {e}") from e

        self.input_name = self.session.get_inputs()[0].name
        self.output_name = self.session.get_outputs()[0].name
        logger.info(
            f"Loaded ONNX model {model_path}: input '{self.input_name}', "
            f"output '{self.output_name}'"
        )

    def to_model_input(self, tensor: np.ndarray) -> np.ndarray:
        """Reshape a pixel-major tensor into an NCHW batch of one."""
        h = self.config.target_height
        w = self.config.target_width
        if tensor.size != h * w * 3:
            raise ExtractionError(
                f"Tensor length {tensor.size} doesn't match "
                f"model input {h}x{w}x3"
            )
        chw = tensor.reshape(h, w, 3).transpose(2, 0, 1)
        return np.ascontiguousarray(chw[None, ...], dtype=np.float32)

    def extract(self, tensor: np.ndarray) -> np.ndarray:
        batch = self.to_model_input(tensor)
        outputs = self.session.run([self.output_name], {self.input_name: batch})
        return np.asarray(outputs[0], dtype=np.float32).reshape(-1)
