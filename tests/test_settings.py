import json
import tempfile
import unittest
from pathlib import Path

from progress_index import config
from progress_index.errors import SettingsValidationError
from progress_index.settings import EngineSettings, load_settings, validate_settings


class SettingsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def write(self, payload) -> Path:
        path = self.root / "settings.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_defaults_follow_config(self) -> None:
        settings = load_settings()
        self.assertEqual(settings.chunk_size, config.CHUNK_SIZE)
        self.assertEqual(settings.key_field, "plot")
        self.assertEqual(settings.candidates["PLOT_NUMBER"], config.MODEL_PROPERTIES["PLOT_NUMBER"])
        self.assertIsNot(settings.model_properties["PLOT_NUMBER"], config.MODEL_PROPERTIES["PLOT_NUMBER"])

    def test_overrides_merge_candidate_lists(self) -> None:
        path = self.write(
            {
                "chunk_size": 100,
                "model_properties": {"PLOT_NUMBER": ["Identity Data/Plot"]},
                "column_map": {"plot": "Plot No"},
                "key_prefixes": ["plot"],
                "subtree_root": None,
            }
        )
        settings = load_settings(path)
        self.assertEqual(settings.chunk_size, 100)
        self.assertEqual(settings.model_properties["PLOT_NUMBER"], ["Identity Data/Plot"])
        self.assertEqual(settings.model_properties["BLOCK"], config.MODEL_PROPERTIES["BLOCK"])
        self.assertEqual(settings.column_map["plot"], "Plot No")
        self.assertEqual(settings.column_map["status"], "Status")
        self.assertEqual(settings.key_prefixes, ("plot",))
        self.assertIsNone(settings.subtree_root)
        self.assertEqual(json.loads(json.dumps(settings.to_dict()))["chunk_size"], 100)

    def test_invalid_values_rejected(self) -> None:
        for payload in ({"chunk_size": 0}, {"unknown": 1}, {"key_field": "villa"}, {"model_properties": {"X": []}}):
            with self.subTest(payload=payload):
                with self.assertRaises(SettingsValidationError) as ctx:
                    load_settings(self.write(payload))
                self.assertEqual(ctx.exception.code, "INVALID_SETTINGS")

    def test_unreadable_files_rejected(self) -> None:
        with self.assertRaises(SettingsValidationError):
            load_settings(self.root / "missing.json")
        path = self.root / "broken.json"
        path.write_text("{", encoding="utf-8")
        with self.assertRaises(SettingsValidationError):
            load_settings(path)

    def test_validate_reports_path(self) -> None:
        with self.assertRaises(SettingsValidationError) as ctx:
            validate_settings({"attribute_properties": {"LEVEL": [""]}})
        self.assertEqual(ctx.exception.details["path"], ["attribute_properties", "LEVEL", 0])

    def test_with_overrides_is_a_copy(self) -> None:
        base = EngineSettings()
        changed = base.with_overrides({"strict_plot_integers": True})
        self.assertFalse(base.strict_plot_integers)
        self.assertTrue(changed.strict_plot_integers)


if __name__ == "__main__":
    unittest.main()
