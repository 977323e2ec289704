import unittest

import cv2
import numpy as np

from yolo_annotate.codec import (
    CodecConfig,
    ScaleInfo,
    TensorCodec,
    decode_image,
    encode,
    map_back,
    normalize_format,
    sniff_format,
)
from yolo_annotate.errors import DecodeError, ShapeError
from yolo_annotate.letterbox import letterbox
from yolo_annotate.types import Image


def _png(pixels: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(".png", pixels)
    assert ok
    return buf.tobytes()


class TestDecodeImage(unittest.TestCase):
    def test_decode_png(self) -> None:
        pixels = np.zeros((40, 60, 3), dtype=np.uint8)
        pixels[10, 20] = (1, 2, 3)
        image = decode_image(_png(pixels))
        self.assertEqual(image.size, (60, 40))
        self.assertEqual(image.format, ".png")
        self.assertTrue(np.array_equal(image.pixels, pixels))

    def test_decoded_pixels_are_read_only(self) -> None:
        image = decode_image(_png(np.zeros((8, 8, 3), dtype=np.uint8)))
        with self.assertRaises(ValueError):
            image.pixels[0, 0, 0] = 255

    def test_grayscale_becomes_three_channels(self) -> None:
        image = decode_image(_png(np.full((5, 7), 200, dtype=np.uint8)))
        self.assertEqual(image.pixels.shape, (5, 7, 3))

    def test_jpeg_format_is_kept(self) -> None:
        ok, buf = cv2.imencode(".jpg", np.zeros((16, 16, 3), dtype=np.uint8))
        self.assertTrue(ok)
        self.assertEqual(decode_image(buf.tobytes()).format, ".jpg")

    def test_garbage_bytes_rejected(self) -> None:
        with self.assertRaises(DecodeError) as ctx:
            decode_image(b"definitely not an image")
        self.assertEqual(ctx.exception.stage, "decode_image")

    def test_truncated_png_rejected(self) -> None:
        data = _png(np.zeros((64, 64, 3), dtype=np.uint8))
        with self.assertRaises(DecodeError):
            decode_image(data[:24])

    def test_empty_rejected(self) -> None:
        with self.assertRaises(DecodeError):
            decode_image(b"")

    def test_sniff_format(self) -> None:
        self.assertEqual(sniff_format(b"RIFF\x00\x00\x00\x00WEBPVP8 "), ".webp")
        self.assertEqual(sniff_format(b"BM\x00\x00"), ".bmp")
        self.assertIsNone(sniff_format(b"GIF89a"))

    def test_normalize_format(self) -> None:
        self.assertEqual(normalize_format("JPEG"), ".jpg")
        self.assertEqual(normalize_format(".jpg"), ".jpg")
        self.assertEqual(normalize_format("tif"), ".tiff")
        self.assertEqual(normalize_format(".PNG"), ".png")


class TestLetterbox(unittest.TestCase):
    def test_letterbox_keeps_aspect_and_pads(self) -> None:
        img = np.zeros((320, 640, 3), dtype=np.uint8)
        out, ratio, pad = letterbox(img, new_shape=(640, 640))
        self.assertEqual(out.shape, (640, 640, 3))
        self.assertEqual(ratio, (1.0, 1.0))
        self.assertEqual(pad, (0.0, 160.0))
        self.assertTrue(np.all(out[0, 0] == 114))
        self.assertTrue(np.all(out[320, 320] == 0))

    def test_stretch_has_no_padding(self) -> None:
        img = np.zeros((100, 200, 3), dtype=np.uint8)
        out, ratio, pad = letterbox(img, new_shape=(640, 640), scale_fill=True)
        self.assertEqual(out.shape, (640, 640, 3))
        self.assertEqual(ratio, (3.2, 6.4))
        self.assertEqual(pad, (0.0, 0.0))

    def test_non_positive_target_rejected(self) -> None:
        img = np.zeros((10, 10, 3), dtype=np.uint8)
        with self.assertRaises(ShapeError):
            letterbox(img, new_shape=(0, 640))

    def test_degenerate_resize_rejected(self) -> None:
        # 1 x 2000 strip squeezed into 32 x 32 rounds to zero rows.
        img = np.zeros((1, 2000, 3), dtype=np.uint8)
        with self.assertRaises(ShapeError):
            letterbox(img, new_shape=(32, 32))


class TestTensorCodec(unittest.TestCase):
    def _image(self, pixels: np.ndarray) -> Image:
        pixels = np.ascontiguousarray(pixels)
        pixels.setflags(write=False)
        return Image(pixels=pixels)

    def test_encode_shape_and_range(self) -> None:
        pixels = np.full((480, 320, 3), 255, dtype=np.uint8)
        blob, scale = TensorCodec(CodecConfig()).encode(self._image(pixels))
        self.assertEqual(blob.shape, (1, 3, 640, 640))
        self.assertEqual(blob.dtype, np.float32)
        self.assertAlmostEqual(float(blob.max()), 1.0)
        self.assertAlmostEqual(float(blob.min()), 1.0)
        self.assertEqual(scale.orig_size, (320, 480))

    def test_rgb_planar_order(self) -> None:
        pixels = np.zeros((64, 64, 3), dtype=np.uint8)
        pixels[..., 0] = 255  # blue in BGR
        blob, _ = TensorCodec(CodecConfig(input_size=(64, 64))).encode(self._image(pixels))
        self.assertTrue(np.allclose(blob[0, 2], 1.0))
        self.assertTrue(np.allclose(blob[0, 0], 0.0))

        blob_bgr, _ = TensorCodec(CodecConfig(input_size=(64, 64), channel_order="bgr")).encode(self._image(pixels))
        self.assertTrue(np.allclose(blob_bgr[0, 0], 1.0))

    def test_encode_with_explicit_target(self) -> None:
        blob, scale = encode(self._image(np.zeros((100, 50, 3), dtype=np.uint8)), 96, 64)
        self.assertEqual(blob.shape, (1, 3, 64, 96))
        self.assertEqual(scale.ratio, (96 / 50, 64 / 100))

    def test_encode_rejects_non_positive_target(self) -> None:
        with self.assertRaises(ShapeError):
            encode(self._image(np.zeros((10, 10, 3), dtype=np.uint8)), 0, 10)

    def test_invalid_config_rejected(self) -> None:
        with self.assertRaises(ValueError):
            CodecConfig(resize_mode="crop")
        with self.assertRaises(ValueError):
            CodecConfig(channel_order="rgba")


class TestMapBack(unittest.TestCase):
    def test_inverse_of_letterbox(self) -> None:
        img = np.zeros((320, 1280, 3), dtype=np.uint8)
        _, ratio, pad = letterbox(img, new_shape=(640, 640))
        scale = ScaleInfo(orig_size=(1280, 320), ratio=ratio, pad=pad)
        self.assertEqual(pad, (0.0, 240.0))
        # (100, 20)-(300, 120) in original pixels lands at (50, 250)-(150, 300) in model space.
        out = map_back(np.array([[50, 250, 150, 300]], dtype=np.float32), scale)
        self.assertTrue(np.allclose(out, [[100, 20, 300, 120]]))

    def test_inverse_of_stretch(self) -> None:
        scale = ScaleInfo(orig_size=(200, 100), ratio=(3.2, 6.4))
        out = map_back(np.array([[320, 320, 640, 640]], dtype=np.float32), scale)
        self.assertTrue(np.allclose(out, [[100, 50, 200, 100]]))

    def test_clamps_to_image_bounds(self) -> None:
        scale = ScaleInfo(orig_size=(100, 80))
        boxes = np.array([[-10, -5, 150, 90]], dtype=np.float32)
        out = map_back(boxes, scale)
        self.assertTrue(np.allclose(out, [[0, 0, 100, 80]]))
        # input untouched
        self.assertEqual(float(boxes[0, 0]), -10.0)


if __name__ == "__main__":
    unittest.main()
