"""Shared test fixtures for image recommender tests."""

import time

import numpy as np
import pytest

from image_recommender.corpus import Corpus, ImageFeature
from image_recommender.preprocessing import PreprocessConfig, RawImage


class ChannelMeanExtractor:
    """Fake model: the feature vector is the mean of each tensor channel."""

    def __init__(self):
        self.calls = 0

    def extract(self, tensor):
        self.calls += 1
        return tensor.reshape(-1, 3).mean(axis=0)


class FailingExtractor:
    """Fake model that always crashes."""

    def extract(self, tensor):
        raise RuntimeError("model crashed")


class DarkImageFailingExtractor(ChannelMeanExtractor):
    """Fails on near-black images, works on everything else."""

    def extract(self, tensor):
        if tensor.mean() < -1.5:
            raise RuntimeError("no activations")
        return super().extract(tensor)


class ConstantExtractor:
    """Fake model returning a fixed output."""

    def __init__(self, output):
        self.output = output

    def extract(self, tensor):
        return self.output


class SlowExtractor(ChannelMeanExtractor):
    """Fake model that takes longer than any test timeout."""

    def __init__(self, delay=1.0):
        super().__init__()
        self.delay = delay

    def extract(self, tensor):
        time.sleep(self.delay)
        return super().extract(tensor)


class SlowOnDarkExtractor(SlowExtractor):
    """Stalls on near-black images, answers immediately otherwise."""

    def extract(self, tensor):
        if tensor.mean() < -1.5:
            return super().extract(tensor)
        return ChannelMeanExtractor.extract(self, tensor)


def solid_image(rgb, width=8, height=6, alpha=None):
    channels = 3 if alpha is None else 4
    img = np.zeros((height, width, channels), dtype=np.uint8)
    img[:, :, :3] = rgb
    if alpha is not None:
        img[:, :, 3] = alpha
    return RawImage.from_array(img)


@pytest.fixture
def small_config():
    """ImageNet constants with a small 8x8 target to keep tests fast."""
    return PreprocessConfig(target_width=8, target_height=8)


@pytest.fixture
def red_image():
    return solid_image((200, 30, 30))


@pytest.fixture
def dark_red_image():
    return solid_image((150, 20, 20), width=5, height=9)


@pytest.fixture
def blue_image():
    return solid_image((30, 30, 200))


@pytest.fixture
def black_image():
    return solid_image((0, 0, 0))


@pytest.fixture
def gradient_rgba_image():
    """A 16x12 RGBA image with a horizontal/vertical gradient."""
    h, w = 12, 16
    img = np.zeros((h, w, 4), dtype=np.uint8)
    img[:, :, 0] = np.linspace(0, 255, w, dtype=np.uint8)[None, :]
    img[:, :, 1] = np.linspace(0, 255, h, dtype=np.uint8)[:, None]
    img[:, :, 2] = 128
    img[:, :, 3] = 255
    return RawImage.from_array(img)


@pytest.fixture
def abc_corpus():
    """A: x axis, B: y axis, C: close to A."""
    return Corpus([
        ImageFeature("A", np.array([1.0, 0.0, 0.0])),
        ImageFeature("B", np.array([0.0, 1.0, 0.0])),
        ImageFeature("C", np.array([0.9, 0.1, 0.0])),
    ])


@pytest.fixture
def channel_mean_extractor():
    return ChannelMeanExtractor()
