import unittest

import numpy as np

from scan_kit.postprocess import PostConfig, ScanPostprocessor, decode, filter_and_suppress
from scan_kit.types import ClassMap


def _rows(rows):
    return np.asarray(rows, dtype=np.float32)


class TestDecode(unittest.TestCase):
    def setUp(self) -> None:
        self.class_map = ClassMap(names={0: "Normal", 1: "Incipient"}, fallback="Incipient")

    def test_decode_center_to_corners(self) -> None:
        raw = _rows([[50, 60, 10, 20, 0.1, 0.9]])
        cands = decode(raw, self.class_map, conf_threshold=0.3)
        self.assertEqual(len(cands), 1)
        self.assertTrue(np.allclose(cands.xyxy[0], [45, 50, 55, 70]))
        self.assertTrue(np.allclose(cands.wh[0], [10, 20]))
        self.assertAlmostEqual(float(cands.scores[0]), 0.9, places=6)
        self.assertEqual(int(cands.class_ids[0]), 1)

    def test_first_maximum_wins_on_ties(self) -> None:
        raw = _rows([[50, 60, 10, 20, 0.5, 0.5]])
        cands = decode(raw, self.class_map, conf_threshold=0.3)
        self.assertEqual(int(cands.class_ids[0]), 0)

    def test_unknown_class_index_uses_fallback(self) -> None:
        raw = _rows([[50, 60, 10, 20, 0.1, 0.2, 0.8]])
        cands = decode(raw, self.class_map, conf_threshold=0.3)
        box = next(cands.boxes())
        self.assertEqual(box.class_id, 2)
        self.assertEqual(box.classification, "Incipient")

    def test_rows_below_threshold_are_dropped(self) -> None:
        raw = _rows(
            [
                [100, 100, 20, 20, 0.25, 0.1],  # max 0.25 < 0.3
                [200, 200, 20, 20, 0.1, 0.3],  # exactly at threshold survives
            ]
        )
        cands = decode(raw, self.class_map, conf_threshold=0.3)
        self.assertEqual(len(cands), 1)
        self.assertTrue(np.allclose(cands.xyxy[0], [190, 190, 210, 210]))

    def test_all_below_threshold_gives_empty(self) -> None:
        raw = _rows([[100, 100, 20, 20, 0.1, 0.2], [10, 10, 5, 5, 0.29, 0.0]])
        cands = decode(raw, self.class_map, conf_threshold=0.3)
        self.assertEqual(len(cands), 0)
        self.assertEqual(cands.xyxy.shape, (0, 4))

    def test_zero_candidates(self) -> None:
        cands = decode(np.zeros((0, 6), dtype=np.float32), self.class_map)
        self.assertEqual(len(cands), 0)

    def test_rejects_output_without_class_columns(self) -> None:
        with self.assertRaises(ValueError):
            decode(_rows([[1, 2, 3, 4]]), self.class_map)
        with self.assertRaises(ValueError):
            decode(np.zeros((1, 6, 2), dtype=np.float32), self.class_map)


class TestFilterAndSuppress(unittest.TestCase):
    def setUp(self) -> None:
        self.class_map = ClassMap()
        self.pair = _rows(
            [
                [320, 320, 100, 100, 0.9, 0.05],
                [325, 320, 100, 100, 0.8, 0.1],
            ]
        )

    def _run(self, raw, **kwargs):
        conf = kwargs.pop("conf_threshold", 0.3)
        return filter_and_suppress(decode(raw, self.class_map, conf), conf_threshold=conf, **kwargs)

    def test_overlapping_pair_suppressed_to_best(self) -> None:
        dets = self._run(self.pair, iou_threshold=0.75)
        self.assertEqual(len(dets), 1)
        det = dets[0]
        self.assertAlmostEqual(det.x, 270.0, places=4)
        self.assertAlmostEqual(det.y, 270.0, places=4)
        self.assertAlmostEqual(det.width, 100.0, places=4)
        self.assertAlmostEqual(det.height, 100.0, places=4)
        self.assertAlmostEqual(det.probability, 0.9, places=6)
        self.assertEqual(det.classification, "Normal")

    def test_overlapping_pair_kept_with_high_threshold(self) -> None:
        dets = self._run(self.pair, iou_threshold=0.95)
        self.assertEqual(len(dets), 2)
        self.assertAlmostEqual(dets[0].probability, 0.9, places=6)
        self.assertAlmostEqual(dets[0].x, 270.0, places=4)
        self.assertAlmostEqual(dets[1].probability, 0.8, places=6)
        self.assertAlmostEqual(dets[1].x, 275.0, places=4)

    def test_identical_boxes_collapse_to_one(self) -> None:
        raw = _rows([[100, 100, 40, 40, 0.7, 0.0]] * 3)
        dets = self._run(raw, iou_threshold=0.75)
        self.assertEqual(len(dets), 1)

    def test_low_confidence_row_contributes_nothing(self) -> None:
        raw = _rows([[320, 320, 100, 100, 0.25, 0.1]])
        self.assertEqual(self._run(raw), [])

    def test_zero_area_boxes_are_never_suppressed(self) -> None:
        raw = _rows([[100, 100, 0, 0, 0.9, 0.0], [100, 100, 0, 0, 0.8, 0.0]])
        dets = self._run(raw, iou_threshold=0.5)
        self.assertEqual(len(dets), 2)

    def test_output_sorted_by_probability(self) -> None:
        raw = _rows(
            [
                [50, 50, 20, 20, 0.4, 0.0],
                [300, 300, 20, 20, 0.0, 0.95],
                [500, 500, 20, 20, 0.6, 0.0],
            ]
        )
        dets = self._run(raw)
        self.assertEqual([round(d.probability, 2) for d in dets], [0.95, 0.6, 0.4])
        self.assertEqual([d.classification for d in dets], ["Incipient", "Normal", "Normal"])

    def test_max_detections_cap(self) -> None:
        raw = _rows([[x, 50, 10, 10, 0.9 - x / 1000, 0.0] for x in range(20, 620, 40)])
        dets = self._run(raw, max_detections=3)
        self.assertEqual(len(dets), 3)

    def test_per_class_nms_keeps_other_class(self) -> None:
        raw = _rows([[320, 320, 100, 100, 0.9, 0.0], [322, 320, 100, 100, 0.0, 0.8]])
        self.assertEqual(len(self._run(raw, class_agnostic=True)), 1)
        dets = self._run(raw, class_agnostic=False)
        self.assertEqual([d.classification for d in dets], ["Normal", "Incipient"])


class TestScanPostprocessor(unittest.TestCase):
    def test_process_uses_config(self) -> None:
        raw = _rows(
            [
                [320, 320, 100, 100, 0.9, 0.05],
                [325, 320, 100, 100, 0.8, 0.1],
                [50, 50, 10, 10, 0.2, 0.1],
            ]
        )
        post = ScanPostprocessor(PostConfig(conf_threshold=0.3, iou_threshold=0.95))
        dets = post.process(raw)
        self.assertEqual(len(dets), 2)

    def test_config_validation(self) -> None:
        with self.assertRaises(ValueError):
            PostConfig(conf_threshold=1.5)
        with self.assertRaises(ValueError):
            PostConfig(iou_threshold=0.0)
        with self.assertRaises(ValueError):
            PostConfig(max_detections=0)


if __name__ == "__main__":
    unittest.main()
