import json
import tempfile
import unittest
from pathlib import Path

from roi_trainset.core.models import ROI, AnnotationClass
from roi_trainset.services.annotations import Annotation, AnnotationSet, load_geojson

TUMOR = AnnotationClass("Tumor", (255, 0, 0))
STROMA = AnnotationClass("Stroma", (0, 255, 0))


def _square(x, y, s):
    return [[x, y], [x + s, y], [x + s, y + s], [x, y + s], [x, y]]


class TestAnnotationSet(unittest.TestCase):
    def setUp(self):
        self.events = []
        self.aset = AnnotationSet()
        self.aset.add_listener(self.events.append)

    def test_grouping_and_filters(self):
        a = self.aset.add(Annotation(ROI.rectangle(0, 0, 4, 4), TUMOR))
        self.aset.add(Annotation(ROI.rectangle(8, 0, 4, 4), STROMA))
        self.aset.add(Annotation(ROI.rectangle(16, 0, 4, 4), TUMOR, locked=True))
        self.aset.add(Annotation(ROI.rectangle(24, 0, 4, 4), None))
        self.aset.add(Annotation(ROI.rectangle(32, 0, 4, 4), AnnotationClass("Region*")))
        grouped = self.aset.grouped_rois()
        self.assertEqual([c.name for c in grouped], ["Stroma", "Tumor"])
        self.assertEqual(grouped[TUMOR], [a.roi])
        self.assertEqual(len(self.aset), 5)

    def test_shared_roi_listed_once(self):
        roi = ROI.rectangle(0, 0, 4, 4)
        self.aset.add_all([Annotation(roi, TUMOR), Annotation(roi, TUMOR)])
        self.assertEqual(self.aset.grouped_rois()[TUMOR], [roi])

    def test_events(self):
        a = self.aset.add(Annotation(ROI.rectangle(0, 0, 4, 4), TUMOR))
        self.aset.update(a, roi=ROI.rectangle(0, 0, 8, 8), is_changing=True)
        self.aset.set_locked(a)
        self.assertTrue(self.aset.remove(a))
        self.assertFalse(self.aset.remove(a))
        self.assertEqual([e.kind for e in self.events], ["added", "changed", "changed", "removed"])
        self.assertTrue(self.events[1].is_changing)
        self.assertTrue(a.locked)

    def test_update_class(self):
        a = self.aset.add(Annotation(ROI.rectangle(0, 0, 4, 4), TUMOR))
        self.aset.update(a, path_class=STROMA)
        self.assertIn(STROMA, self.aset.grouped_rois())
        self.aset.update(a, path_class=None)
        self.assertEqual(self.aset.grouped_rois(), {})

    def test_remove_listener(self):
        self.aset.remove_listener(self.events.append)
        self.aset.remove_listener(self.events.append)
        self.aset.add(Annotation(ROI.rectangle(0, 0, 4, 4), TUMOR))
        self.assertEqual(self.events, [])

    def test_clear(self):
        self.aset.add_all([Annotation(ROI.rectangle(0, 0, 4, 4), TUMOR)])
        self.aset.clear()
        self.assertEqual(len(self.aset), 0)
        self.assertEqual(self.events[-1].kind, "removed")


class TestGeoJSON(unittest.TestCase):
    def _write(self, payload) -> Path:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        path = Path(tmp.name) / "annotations.geojson"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_feature_collection(self):
        payload = {
            "type": "FeatureCollection",
            "features": [
                {
                    "type": "Feature",
                    "geometry": {"type": "Polygon", "coordinates": [_square(0, 0, 10), _square(2, 2, 2)]},
                    "properties": {"classification": {"name": "Tumor", "color": [255, 0, 0]}},
                },
                {
                    "type": "Feature",
                    "geometry": {
                        "type": "MultiPolygon",
                        "coordinates": [[_square(20, 0, 5)], [_square(40, 0, 5)]],
                        "plane": {"z": 2, "t": 1},
                    },
                    "properties": {"classification": {"name": "Stroma", "colorRGB": -16711936}},
                },
                {
                    "type": "Feature",
                    "geometry": {"type": "LineString", "coordinates": [[0, 50], [30, 50]]},
                    "properties": {"classification": {"name": "Stroma"}},
                },
                {
                    "type": "Feature",
                    "geometry": {"type": "Polygon", "coordinates": [_square(60, 0, 5)]},
                    "properties": {"classification": {"name": "Tumor"}, "isLocked": True},
                },
                {
                    "type": "Feature",
                    "geometry": {"type": "Polygon", "coordinates": [_square(70, 0, 5)]},
                    "properties": {},
                },
            ],
        }
        aset = load_geojson(self._write(payload))
        self.assertEqual(len(aset), 6)

        anns = aset.annotations()
        self.assertEqual(anns[0].path_class, AnnotationClass("Tumor", (255, 0, 0)))
        self.assertEqual(len(anns[0].roi.holes), 1)
        self.assertEqual(anns[1].path_class.color, (0, 255, 0))
        self.assertEqual((anns[1].roi.z, anns[1].roi.t), (2, 1))
        self.assertEqual(anns[3].roi.kind, "polyline")

        grouped = aset.grouped_rois()
        self.assertEqual([c.name for c in grouped], ["Stroma", "Tumor"])
        self.assertEqual(len(grouped[AnnotationClass("Tumor")]), 1)
        self.assertEqual(len(grouped[AnnotationClass("Stroma")]), 3)

    def test_points_and_unknown_geometry(self):
        payload = [
            {"geometry": {"type": "MultiPoint", "coordinates": [[1, 1], [2, 2]]}, "properties": {}},
            {"geometry": {"type": "GeometryCollection", "geometries": []}, "properties": {}},
        ]
        with self.assertLogs("roi_trainset.annotations", level="WARNING"):
            aset = load_geojson(self._write(payload))
        self.assertEqual(len(aset), 1)
        self.assertEqual(aset.annotations()[0].roi.kind, "points")


if __name__ == "__main__":
    unittest.main()
