"""Tests for image preprocessing."""

import cv2
import numpy as np
import pytest

from image_recommender.preprocessing import (
    InvalidImageError, PreprocessConfig, RawImage, IMAGENET_MEAN, IMAGENET_STD,
    preprocess, decode_image, load_image, compute_average_rgb,
)


def normalized(rgb):
    """Expected tensor values for one RGB pixel."""
    pixel = np.asarray(rgb, dtype=np.float32) / np.float32(255.0)
    return (pixel - np.asarray(IMAGENET_MEAN, dtype=np.float32)) / np.asarray(
        IMAGENET_STD, dtype=np.float32
    )


class TestPreprocess:
    """Tests for nearest-neighbor resampling and normalization."""

    def test_output_length(self, gradient_rgba_image, small_config):
        tensor = preprocess(gradient_rgba_image, small_config)
        assert tensor.shape == (8 * 8 * 3,)

    def test_output_dtype(self, red_image, small_config):
        tensor = preprocess(red_image, small_config)
        assert tensor.dtype == np.float32

    def test_default_target_size(self, red_image):
        tensor = preprocess(red_image)
        config = PreprocessConfig()
        assert tensor.size == config.target_width * config.target_height * 3

    def test_explicit_target_overrides_config(self, red_image, small_config):
        tensor = preprocess(red_image, small_config, target_width=3, target_height=2)
        assert tensor.size == 3 * 2 * 3

    def test_explicit_zero_target_rejected(self, red_image):
        with pytest.raises(ValueError, match="target size"):
            preprocess(red_image, target_width=0, target_height=0)
        with pytest.raises(ValueError, match="target size"):
            preprocess(red_image, target_width=4, target_height=-1)

    def test_normalization_values(self, red_image, small_config):
        tensor = preprocess(red_image, small_config).reshape(-1, 3)
        expected = normalized((200, 30, 30))
        np.testing.assert_allclose(tensor, np.tile(expected, (64, 1)), rtol=1e-6)

    def test_upscale_2x2_rgba_to_4x4(self):
        pixels = np.array([
            [[10, 20, 30, 255], [40, 50, 60, 0]],
            [[70, 80, 90, 128], [100, 110, 120, 7]],
        ], dtype=np.uint8)
        raw = RawImage.from_array(pixels)

        tensor = preprocess(raw, target_width=4, target_height=4)
        grid = tensor.reshape(4, 4, 3)

        for y in range(4):
            for x in range(4):
                expected = normalized(pixels[y // 2, x // 2, :3])
                np.testing.assert_allclose(grid[y, x], expected, rtol=1e-6)

        # Each source pixel shows up exactly 4 times
        values, counts = np.unique(grid.reshape(-1, 3), axis=0, return_counts=True)
        assert len(values) == 4
        assert list(counts) == [4, 4, 4, 4]

    def test_alpha_channel_ignored(self, small_config):
        opaque = np.full((4, 4, 4), 90, dtype=np.uint8)
        transparent = opaque.copy()
        transparent[:, :, 3] = 0
        a = preprocess(RawImage.from_array(opaque), small_config)
        b = preprocess(RawImage.from_array(transparent), small_config)
        np.testing.assert_array_equal(a, b)

    def test_rgb_and_rgba_agree(self, small_config):
        rgb = np.random.RandomState(0).randint(0, 255, (5, 7, 3), dtype=np.uint8)
        rgba = np.dstack([rgb, np.full((5, 7), 255, dtype=np.uint8)])
        np.testing.assert_array_equal(
            preprocess(RawImage.from_array(rgb), small_config),
            preprocess(RawImage.from_array(rgba), small_config),
        )

    def test_downscale_index_mapping(self):
        # 6 columns → 4: src_x = x * 6 // 4 = 0, 1, 3, 4
        row = np.zeros((1, 6, 3), dtype=np.uint8)
        row[0, :, 0] = [0, 10, 20, 30, 40, 50]
        tensor = preprocess(RawImage.from_array(row), target_width=4, target_height=1)
        reds = tensor.reshape(4, 3)[:, 0]
        expected = [normalized((v, 0, 0))[0] for v in (0, 10, 30, 40)]
        np.testing.assert_allclose(reds, expected, rtol=1e-6)

    def test_deterministic(self, gradient_rgba_image, small_config):
        a = preprocess(gradient_rgba_image, small_config)
        b = preprocess(gradient_rgba_image, small_config)
        np.testing.assert_array_equal(a, b)

    def test_custom_normalization(self, red_image):
        config = PreprocessConfig(mean=(0.0, 0.0, 0.0), std=(1.0, 1.0, 1.0),
                                  target_width=2, target_height=2)
        tensor = preprocess(red_image, config).reshape(-1, 3)
        np.testing.assert_allclose(tensor[0], np.array([200, 30, 30]) / 255.0, rtol=1e-6)

    def test_no_nan_or_inf(self, gradient_rgba_image, small_config):
        tensor = preprocess(gradient_rgba_image, small_config)
        assert np.all(np.isfinite(tensor))


class TestInvalidImages:
    """Tests for RawImage validation."""

    def test_empty_buffer(self):
        with pytest.raises(InvalidImageError, match="empty"):
            preprocess(RawImage(width=2, height=2, channels=3, data=b""))

    def test_buffer_too_short(self):
        with pytest.raises(InvalidImageError, match="doesn't match"):
            preprocess(RawImage(width=2, height=2, channels=3, data=bytes(11)))

    def test_buffer_too_long(self):
        with pytest.raises(InvalidImageError):
            preprocess(RawImage(width=2, height=2, channels=4, data=bytes(17)))

    def test_zero_dimension(self):
        with pytest.raises(InvalidImageError, match="dimensions"):
            preprocess(RawImage(width=0, height=2, channels=3, data=bytes(6)))

    def test_unsupported_channels(self):
        with pytest.raises(InvalidImageError, match="channel"):
            preprocess(RawImage(width=2, height=2, channels=1, data=bytes(4)))

    def test_is_value_error(self):
        assert issubclass(InvalidImageError, ValueError)


class TestDecodeImage:
    """Tests for the OpenCV decoding wrappers."""

    def test_decode_png_rgb(self):
        rgb = np.zeros((3, 5, 3), dtype=np.uint8)
        rgb[:, :] = [200, 100, 50]
        ok, encoded = cv2.imencode(".png", cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR))
        assert ok

        raw = decode_image(encoded.tobytes())
        assert (raw.width, raw.height, raw.channels) == (5, 3, 3)
        np.testing.assert_array_equal(raw.to_array(), rgb)

    def test_decode_png_rgba(self):
        rgba = np.zeros((4, 4, 4), dtype=np.uint8)
        rgba[:, :] = [10, 20, 30, 40]
        ok, encoded = cv2.imencode(".png", cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGRA))
        assert ok

        raw = decode_image(encoded.tobytes())
        assert raw.channels == 4
        np.testing.assert_array_equal(raw.to_array(), rgba)

    def test_decode_grayscale_expands_to_rgb(self):
        gray = np.full((4, 4), 77, dtype=np.uint8)
        _, encoded = cv2.imencode(".png", gray)
        raw = decode_image(encoded.tobytes())
        assert raw.channels == 3
        assert np.all(raw.to_array() == 77)

    def test_decode_garbage_raises(self):
        with pytest.raises(InvalidImageError):
            decode_image(b"definitely not an image")

    def test_decode_empty_raises(self):
        with pytest.raises(InvalidImageError):
            decode_image(b"")

    def test_load_image(self, tmp_path):
        rgb = np.zeros((6, 6, 3), dtype=np.uint8)
        rgb[:, :, 2] = 255
        path = str(tmp_path / "blue.png")
        cv2.imwrite(path, cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR))

        raw = load_image(path)
        np.testing.assert_array_equal(raw.to_array(), rgb)

    def test_load_corrupt_file(self, tmp_path):
        path = tmp_path / "broken.jpg"
        path.write_bytes(b"\x00\x01\x02")
        with pytest.raises(InvalidImageError, match="broken.jpg"):
            load_image(str(path))


class TestAverageRgb:
    """Tests for per-channel mean color."""

    def test_solid_color(self, red_image):
        assert compute_average_rgb(red_image) == (200.0, 30.0, 30.0)

    def test_ignores_alpha(self):
        img = np.zeros((2, 2, 4), dtype=np.uint8)
        img[:, :, 3] = 255
        img[0, 0, :3] = [100, 100, 100]
        assert compute_average_rgb(RawImage.from_array(img)) == (25.0, 25.0, 25.0)
