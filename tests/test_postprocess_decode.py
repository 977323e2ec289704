import unittest

import numpy as np

from yolo_annotate.codec import ScaleInfo
from yolo_annotate.errors import ShapeError
from yolo_annotate.labels import LabelTable
from yolo_annotate.postprocess import DecoderConfig, YoloDecoder, decode


LABELS = LabelTable(["person", "bicycle", "car"])


class TestYoloDecode(unittest.TestCase):
    def test_decode_rows_with_objectness(self) -> None:
        # (N, 5 + C): [cx, cy, w, h, obj, class_scores...]
        # 2 boxes, 3 classes
        p = np.array(
            [
                [50, 60, 10, 20, 0.5, 0.1, 0.9, 0.2],  # class 1 (0.9)
                [55, 66, 12, 18, 0.8, 0.7, 0.1, 0.2],  # class 0 (0.7)
            ],
            dtype=np.float32,
        )[None, ...]
        dec = YoloDecoder(DecoderConfig(conf_threshold=0.1, layout="rows", has_objectness=True), labels=LABELS)
        dets = dec.decode(p)
        self.assertEqual(len(dets), 2)
        self.assertAlmostEqual(dets[0].score, 0.5 * 0.9, places=5)
        self.assertAlmostEqual(dets[1].score, 0.8 * 0.7, places=5)
        self.assertEqual([d.class_id for d in dets], [1, 0])
        self.assertEqual([d.label for d in dets], ["bicycle", "person"])
        self.assertEqual((dets[0].x, dets[0].y, dets[0].width, dets[0].height), (45.0, 50.0, 10.0, 20.0))

    def test_decode_channels_layout_class_scores(self) -> None:
        # (C + 4, A) without objectness, as exported by YOLOv8.
        a = 32
        boxes = np.zeros((4, a), dtype=np.float32)
        boxes[:, :] = np.array([[50], [60], [10], [20]], dtype=np.float32)
        boxes[:, 1] = [55, 66, 12, 18]

        class_scores = np.zeros((3, a), dtype=np.float32)
        class_scores[:, 0] = [0.1, 0.9, 0.2]
        class_scores[:, 1] = [0.7, 0.1, 0.2]

        p = np.vstack([boxes, class_scores])[None, ...]  # (1, 7, 32)
        dets = YoloDecoder(DecoderConfig(conf_threshold=0.5), labels=LABELS).decode(p)
        self.assertEqual(len(dets), 2)
        self.assertEqual([d.class_id for d in dets], [1, 0])
        self.assertTrue(np.allclose([d.score for d in dets], [0.9, 0.7]))
        self.assertEqual([d.index for d in dets], [0, 1])

    def test_auto_layout_matches_explicit(self) -> None:
        rng = np.random.default_rng(3)
        rows = rng.uniform(0, 1, size=(50, 7)).astype(np.float32)
        rows[:, :4] *= 100
        dec_rows = YoloDecoder(DecoderConfig(layout="rows"), labels=LABELS)
        dec_auto = YoloDecoder(DecoderConfig(layout="auto"), labels=LABELS)
        self.assertEqual(dec_rows.decode(rows[None]), dec_auto.decode(rows[None]))
        self.assertEqual(dec_auto.decode(rows.T[None]), dec_auto.decode(rows[None]))

    def test_rejects_rows_below_threshold(self) -> None:
        p = np.array(
            [
                [10, 10, 4, 4, 0.9, 0.2, 0.1, 0.1],  # 0.18
                [20, 20, 4, 4, 0.5, 0.6, 0.1, 0.1],  # 0.30
                [30, 30, 4, 4, 0.2, 0.1, 0.1, 0.9],  # 0.18
            ],
            dtype=np.float32,
        )
        dec = YoloDecoder(DecoderConfig(conf_threshold=0.25, layout="rows", has_objectness=True), labels=LABELS)
        dets = dec.decode(p)
        self.assertEqual(len(dets), 1)
        self.assertEqual(dets[0].index, 1)
        self.assertGreaterEqual(dets[0].score, 0.25)

    def test_per_call_threshold_override(self) -> None:
        p = np.array([[10, 10, 4, 4, 0.3, 0.1, 0.1]], dtype=np.float32)
        dec = YoloDecoder(DecoderConfig(conf_threshold=0.5, layout="rows"), labels=LABELS)
        self.assertEqual(dec.decode(p), [])
        self.assertEqual(len(dec.decode(p, conf_threshold=0.25)), 1)

    def test_scores_at_threshold_never_fall_below_it(self) -> None:
        # float32(0.7) is just under 0.7; it must be rejected, not reported as 0.6999...
        for t in (0.7, 0.45, 0.3, 0.25, 0.1):
            with self.subTest(threshold=t):
                out = np.zeros((1, 3, 4 + 80), dtype=np.float32)
                out[0, :, :4] = [320, 320, 50, 50]
                out[0, 0, 4] = t
                out[0, 1, 4] = np.nextafter(np.float32(t), np.float32(1))
                out[0, 2, 4] = t + 0.01
                dets = decode(out, 80, conf_threshold=t, layout="rows")
                self.assertTrue(all(d.score >= t for d in dets), msg=[d.score for d in dets])
                self.assertIn(2, [d.index for d in dets])

                out_obj = np.zeros((1, 1, 5 + 3), dtype=np.float32)
                out_obj[0, 0, :6] = [320, 320, 50, 50, 1.0, t]
                dets = decode(out_obj, 3, conf_threshold=t, layout="rows", has_objectness=True)
                self.assertTrue(all(d.score >= t for d in dets))

    def test_accepts_shape(self) -> None:
        auto = YoloDecoder(DecoderConfig(), num_classes=80)
        self.assertTrue(auto.accepts_shape((1, 84, 8400)))
        self.assertTrue(auto.accepts_shape((1, 8400, 84)))
        self.assertTrue(auto.accepts_shape((None, 84, None)))
        self.assertFalse(auto.accepts_shape((1, 85, 8400)))
        self.assertFalse(auto.accepts_shape((2, 84, 8400)))
        self.assertFalse(auto.accepts_shape((1, 3)))

        rows = YoloDecoder(DecoderConfig(layout="rows", has_objectness=True), labels=LABELS)
        self.assertTrue(rows.accepts_shape((1, 25200, 8)))
        self.assertFalse(rows.accepts_shape((1, 8, 25200)))

    def test_native_row_order_is_kept(self) -> None:
        p = np.array(
            [
                [10, 10, 4, 4, 0.3, 0.0, 0.0],
                [20, 20, 4, 4, 0.9, 0.0, 0.0],
                [30, 30, 4, 4, 0.6, 0.0, 0.0],
            ],
            dtype=np.float32,
        )
        dets = YoloDecoder(DecoderConfig(layout="rows"), labels=LABELS).decode(p)
        self.assertEqual([d.index for d in dets], [0, 1, 2])

    def test_maps_back_and_clamps(self) -> None:
        # Model space 640x640, original 1280x640 letterboxed (ratio 0.5, pad top 160).
        scale = ScaleInfo(orig_size=(1280, 640), ratio=(0.5, 0.5), pad=(0.0, 160.0))
        p = np.array(
            [
                [100, 260, 40, 40, 0.0, 0.0, 0.9],
                [630, 170, 40, 40, 0.0, 0.0, 0.9],  # runs off right/top edges
            ],
            dtype=np.float32,
        )
        dets = YoloDecoder(DecoderConfig(layout="rows"), labels=LABELS).decode(p, scale=scale)
        self.assertEqual(len(dets), 2)
        self.assertEqual(dets[0].as_xyxy(), (160.0, 160.0, 240.0, 240.0))
        x1, y1, x2, y2 = dets[1].as_xyxy()
        self.assertEqual((y1, x2), (0.0, 1280.0))
        self.assertAlmostEqual(x1, 1220.0)
        self.assertAlmostEqual(y2, 60.0)
        self.assertEqual(dets[1].label, "car")

    def test_class_filter(self) -> None:
        p = np.array(
            [
                [10, 10, 4, 4, 0.9, 0.0, 0.0],
                [20, 20, 4, 4, 0.0, 0.9, 0.0],
            ],
            dtype=np.float32,
        )
        dets = YoloDecoder(DecoderConfig(layout="rows", class_ids=[1]), labels=LABELS).decode(p)
        self.assertEqual([d.class_id for d in dets], [1])

    def test_empty_output(self) -> None:
        dec = YoloDecoder(DecoderConfig(layout="rows"), labels=LABELS)
        self.assertEqual(dec.decode(np.zeros((1, 0, 7), dtype=np.float32)), [])

    def test_nan_rows_never_pass(self) -> None:
        p = np.array([[10, 10, 4, 4, np.nan, 0.0, 0.0]], dtype=np.float32)
        self.assertEqual(YoloDecoder(DecoderConfig(layout="rows"), labels=LABELS).decode(p), [])

    def test_channel_count_mismatch(self) -> None:
        dec = YoloDecoder(DecoderConfig(layout="rows", has_objectness=True), labels=LABELS)
        with self.assertRaises(ShapeError) as ctx:
            dec.decode(np.zeros((1, 10, 7), dtype=np.float32))
        self.assertEqual(ctx.exception.stage, "decode_detections")

        auto = YoloDecoder(DecoderConfig(), labels=LABELS)
        with self.assertRaises(ShapeError):
            auto.decode(np.zeros((1, 10, 9), dtype=np.float32))

    def test_batch_greater_than_one_rejected(self) -> None:
        dec = YoloDecoder(DecoderConfig(layout="rows"), labels=LABELS)
        with self.assertRaises(ShapeError):
            dec.decode(np.zeros((2, 4, 7), dtype=np.float32))

    def test_module_level_decode(self) -> None:
        p = np.zeros((1, 85, 3), dtype=np.float32)
        p[0, :4, 1] = [125, 125, 50, 50]
        p[0, 4, 1] = 0.9
        p[0, 5, 1] = 1.0
        dets = decode(p, 80, has_objectness=True, layout="channels")
        self.assertEqual(len(dets), 1)
        self.assertEqual(dets[0].label, "person")
        self.assertEqual(dets[0].index, 1)
        self.assertEqual((dets[0].x, dets[0].y, dets[0].width, dets[0].height), (100.0, 100.0, 50.0, 50.0))

    def test_invalid_config(self) -> None:
        with self.assertRaises(ValueError):
            DecoderConfig(conf_threshold=1.5)
        with self.assertRaises(ValueError):
            DecoderConfig(layout="planar")


if __name__ == "__main__":
    unittest.main()
