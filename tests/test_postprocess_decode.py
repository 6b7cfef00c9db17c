import unittest

import numpy as np

from yolo_edge.postprocess import ModelConfig, YoloPostConfig, YoloPostprocessor, decode

NAMES = ("person", "car", "dog")


def _raw(anchors, num_classes=len(NAMES)):
    """anchors: [(cx, cy, w, h, [class scores...]), ...] in model-input units."""
    p = np.zeros((4 + num_classes, len(anchors)), dtype=np.float32)
    for i, (cx, cy, w, h, scores) in enumerate(anchors):
        p[0:4, i] = (cx, cy, w, h)
        p[4:, i] = scores
    return p


def _anchor(box, scores, size=640):
    """Model-space anchor for a normalized (left, top, right, bottom) box."""
    left, top, right, bottom = box
    return (
        (left + right) / 2 * size,
        (top + bottom) / 2 * size,
        (right - left) * size,
        (bottom - top) * size,
        scores,
    )


class TestDecode(unittest.TestCase):
    def _decode(self, raw, threshold=0.5, names=NAMES, input_size=640, width=640, height=640):
        return decode(raw, threshold, names, input_size, width, height)

    def test_square_frame_maps_back_to_normalized_box(self) -> None:
        raw = _raw([_anchor((0.1, 0.2, 0.5, 0.6), [0.1, 0.9, 0.2])])
        dets = self._decode(raw)
        self.assertEqual(len(dets), 1)
        d = dets[0]
        for got, want in zip(d.as_xyxy(), (0.1, 0.2, 0.5, 0.6)):
            self.assertAlmostEqual(got, want, places=5)
        self.assertAlmostEqual(d.confidence, 0.9, places=6)
        self.assertEqual(d.class_index, 1)
        self.assertEqual(d.label, "car")

    def test_non_square_frame_uses_separate_axis_scales(self) -> None:
        # 1280x720 frame stretched to 640x640
        raw = _raw([(320.0, 320.0, 64.0, 64.0, [0.8, 0.0, 0.0])])
        dets = self._decode(raw, width=1280, height=720)
        self.assertEqual(len(dets), 1)
        left, top, right, bottom = dets[0].as_xyxy()
        self.assertAlmostEqual(left, 0.45, places=6)
        self.assertAlmostEqual(right, 0.55, places=6)
        self.assertAlmostEqual(top, 0.45, places=6)
        self.assertAlmostEqual(bottom, 0.55, places=6)

    def test_small_input_size(self) -> None:
        raw = _raw([_anchor((0.25, 0.25, 0.75, 0.5), [0.0, 0.0, 0.6], size=320)])
        dets = self._decode(raw, input_size=320, width=400, height=300)
        self.assertEqual(len(dets), 1)
        for got, want in zip(dets[0].as_xyxy(), (0.25, 0.25, 0.75, 0.5)):
            self.assertAlmostEqual(got, want, places=5)
        self.assertEqual(dets[0].label, "dog")

    def test_boxes_are_clamped(self) -> None:
        raw = _raw(
            [
                (10.0, 10.0, 100.0, 100.0, [0.9, 0.0, 0.0]),
                (630.0, 630.0, 100.0, 100.0, [0.9, 0.0, 0.0]),
            ]
        )
        dets = self._decode(raw)
        self.assertEqual(len(dets), 2)
        self.assertEqual(dets[0].box.left, 0.0)
        self.assertEqual(dets[0].box.top, 0.0)
        self.assertEqual(dets[1].box.right, 1.0)
        self.assertEqual(dets[1].box.bottom, 1.0)

    def test_negative_size_does_not_invert_box(self) -> None:
        raw = _raw([(320.0, 320.0, -64.0, -64.0, [0.9, 0.0, 0.0])])
        d = self._decode(raw)[0]
        self.assertLessEqual(d.box.left, d.box.right)
        self.assertLessEqual(d.box.top, d.box.bottom)

    def test_first_maximal_class_wins_ties(self) -> None:
        raw = _raw(
            [
                (320.0, 320.0, 10.0, 10.0, [0.7, 0.7, 0.2]),
                (100.0, 100.0, 10.0, 10.0, [0.2, 0.7, 0.7]),
            ]
        )
        dets = self._decode(raw)
        self.assertEqual([d.class_index for d in dets], [0, 1])

    def test_threshold_is_inclusive(self) -> None:
        raw = _raw([(320.0, 320.0, 10.0, 10.0, [0.0, 0.5, 0.0])])
        self.assertEqual(len(self._decode(raw, threshold=0.5)), 1)
        self.assertEqual(self._decode(raw, threshold=0.50001), [])

    def test_non_positive_scores_report_class_zero_with_zero_confidence(self) -> None:
        raw = _raw([(320.0, 320.0, 10.0, 10.0, [-0.3, -0.1, -0.2])])
        dets = self._decode(raw, threshold=0.0)
        self.assertEqual(len(dets), 1)
        self.assertEqual(dets[0].class_index, 0)
        self.assertEqual(dets[0].confidence, 0.0)

    def test_batch_axis_of_one_is_accepted(self) -> None:
        raw = _raw([_anchor((0.1, 0.1, 0.5, 0.5), [0.9, 0.0, 0.0])])[None, ...]
        self.assertEqual(len(self._decode(raw)), 1)

    def test_nested_lists_are_accepted(self) -> None:
        raw = _raw([_anchor((0.1, 0.1, 0.5, 0.5), [0.9, 0.0, 0.0])]).tolist()
        self.assertEqual(len(self._decode(raw)), 1)

    def test_empty_class_names_yields_nothing(self) -> None:
        raw = np.zeros((4, 10), dtype=np.float32)
        self.assertEqual(self._decode(raw, names=()), [])

    def test_zero_anchors_yields_nothing(self) -> None:
        raw = np.zeros((4 + len(NAMES), 0), dtype=np.float32)
        self.assertEqual(self._decode(raw), [])

    def test_wrong_channel_count_fails_fast(self) -> None:
        raw = np.zeros((4 + 80, 8400), dtype=np.float32)
        with self.assertRaises(ValueError):
            self._decode(raw)

    def test_ragged_rows_fail_fast(self) -> None:
        raw = [[1.0, 2.0], [1.0], [1.0, 2.0], [1.0, 2.0], [0.1, 0.2], [0.1, 0.2], [0.1, 0.2]]
        with self.assertRaises(ValueError):
            self._decode(raw)

    def test_batch_greater_than_one_fails_fast(self) -> None:
        raw = np.zeros((2, 4 + len(NAMES), 10), dtype=np.float32)
        with self.assertRaises(ValueError):
            self._decode(raw)

    def test_one_dimensional_output_fails_fast(self) -> None:
        with self.assertRaises(ValueError):
            self._decode(np.zeros((7,), dtype=np.float32))

    def test_non_positive_dimensions_fail_fast(self) -> None:
        raw = _raw([(320.0, 320.0, 10.0, 10.0, [0.9, 0.0, 0.0])])
        for kwargs in ({"input_size": 0}, {"width": 0}, {"height": -1}):
            with self.subTest(**kwargs):
                with self.assertRaises(ValueError):
                    self._decode(raw, **kwargs)

    def test_raising_threshold_never_adds_candidates(self) -> None:
        rng = np.random.default_rng(7)
        raw = rng.random((4 + len(NAMES), 500), dtype=np.float32)
        raw[0:4] *= 640
        counts = [len(self._decode(raw, threshold=t)) for t in np.linspace(0.0, 1.0, 21)]
        for lower, higher in zip(counts, counts[1:]):
            self.assertGreaterEqual(lower, higher)

    def test_coordinates_stay_in_unit_range(self) -> None:
        rng = np.random.default_rng(11)
        raw = rng.random((4 + len(NAMES), 300), dtype=np.float32)
        raw[0:2] = raw[0:2] * 800 - 80
        raw[2:4] *= 400
        for d in self._decode(raw, threshold=0.0, width=1920, height=1080):
            left, top, right, bottom = d.as_xyxy()
            for v in (left, top, right, bottom):
                self.assertGreaterEqual(v, 0.0)
                self.assertLessEqual(v, 1.0)
            self.assertLessEqual(left, right)
            self.assertLessEqual(top, bottom)
            self.assertTrue(0 <= d.class_index < len(NAMES))
            self.assertEqual(d.label, NAMES[d.class_index])


class TestModelConfig(unittest.TestCase):
    def test_anchor_counts(self) -> None:
        self.assertEqual(ModelConfig(input_size=640).num_anchors, 8400)
        self.assertEqual(ModelConfig(input_size=320).num_anchors, 2100)

    def test_expected_output_shape(self) -> None:
        model = ModelConfig(input_size=640, class_names=[f"c{i}" for i in range(80)])
        self.assertEqual(model.class_names[3], "c3")
        self.assertEqual(model.expected_output_shape, (1, 84, 8400))
        self.assertEqual(model.input_nbytes, 640 * 640 * 3 * 4)

    def test_invalid_input_size(self) -> None:
        with self.assertRaises(ValueError):
            ModelConfig(input_size=0)


class TestYoloPostConfig(unittest.TestCase):
    def test_defaults(self) -> None:
        cfg = YoloPostConfig()
        self.assertEqual(cfg.confidence_threshold, 0.5)
        self.assertEqual(cfg.iou_threshold, 0.3)
        self.assertEqual(cfg.max_results, 3)

    def test_rejects_out_of_range_values(self) -> None:
        for kwargs in ({"confidence_threshold": 1.5}, {"iou_threshold": -0.1}, {"max_results": -1}):
            with self.subTest(**kwargs):
                with self.assertRaises(ValueError):
                    YoloPostConfig(**kwargs)


class TestYoloPostprocessor(unittest.TestCase):
    def _post(self, **cfg) -> YoloPostprocessor:
        params = {"confidence_threshold": 0.5, "iou_threshold": 0.3, "max_results": 3}
        params.update(cfg)
        return YoloPostprocessor(YoloPostConfig(**params), ModelConfig(input_size=640, class_names=NAMES))

    def test_overlapping_duplicate_is_suppressed(self) -> None:
        raw = _raw(
            [
                _anchor((0.1, 0.1, 0.5, 0.5), [0.0, 0.9, 0.0]),
                _anchor((0.12, 0.12, 0.52, 0.52), [0.0, 0.6, 0.0]),
            ]
        )
        dets = self._post().process(raw, (640, 640))
        self.assertEqual(len(dets), 1)
        self.assertAlmostEqual(dets[0].confidence, 0.9, places=6)
        self.assertEqual(dets[0].class_index, 1)
        for got, want in zip(dets[0].as_xyxy(), (0.1, 0.1, 0.5, 0.5)):
            self.assertAlmostEqual(got, want, places=5)

    def test_disjoint_boxes_are_both_kept_in_confidence_order(self) -> None:
        raw = _raw(
            [
                _anchor((0.0, 0.0, 0.2, 0.2), [0.0, 0.6, 0.0]),
                _anchor((0.8, 0.8, 1.0, 1.0), [0.0, 0.9, 0.0]),
            ]
        )
        dets = self._post().process(raw, (640, 640))
        self.assertEqual(len(dets), 2)
        self.assertAlmostEqual(dets[0].confidence, 0.9, places=6)
        self.assertAlmostEqual(dets[1].confidence, 0.6, places=6)
        self.assertAlmostEqual(dets[0].box.left, 0.8, places=5)

    def test_nothing_above_threshold(self) -> None:
        raw = _raw(
            [
                _anchor((0.1, 0.1, 0.5, 0.5), [0.0, 0.9, 0.0]),
                _anchor((0.12, 0.12, 0.52, 0.52), [0.0, 0.6, 0.0]),
            ]
        )
        self.assertEqual(self._post(confidence_threshold=0.99).process(raw, (640, 640)), [])

    def test_result_cap(self) -> None:
        anchors = [_anchor((0.1 * i, 0.0, 0.1 * i + 0.05, 0.05), [0.5 + 0.04 * i, 0.0, 0.0]) for i in range(10)]
        dets = self._post(max_results=3).process(_raw(anchors), (640, 480))
        self.assertEqual(len(dets), 3)
        self.assertEqual([round(d.confidence, 2) for d in dets], [0.86, 0.82, 0.78])

    def test_per_class_nms_keeps_overlapping_boxes_of_other_classes(self) -> None:
        raw = _raw(
            [
                _anchor((0.1, 0.1, 0.5, 0.5), [0.9, 0.0, 0.0]),
                _anchor((0.1, 0.1, 0.5, 0.5), [0.0, 0.8, 0.0]),
            ]
        )
        agnostic = self._post().process(raw, (640, 640))
        per_class = self._post(class_agnostic_nms=False).process(raw, (640, 640))
        self.assertEqual([d.class_index for d in agnostic], [0])
        self.assertEqual([d.class_index for d in per_class], [0, 1])


if __name__ == "__main__":
    unittest.main()
