import tempfile
import unittest
from pathlib import Path

EXAMPLE_CONFIG = Path(__file__).resolve().parents[1] / "config" / "sync.yaml"


class LoadSyncConfigTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def _write(self, text):
        path = self.tmp / "sync.yaml"
        path.write_text(text, encoding="utf-8")
        return path

    def test_example_config_loads(self):
        from jpdsync.models.sync_config import SyncDirection, load_sync_config

        config = load_sync_config(EXAMPLE_CONFIG)

        self.assertIs(config.sync.direction, SyncDirection.BIDIRECTIONAL)
        self.assertEqual(config.project_key(), "MTT")
        self.assertFalse(config.statuses["Parking lot"].sync)
        self.assertEqual(config.statuses["Done"].target_state, "closed")
        self.assertEqual(config.fields[0].id, "customfield_14385")
        self.assertFalse(config.target_to_source_creation.enabled)

    def test_empty_file_gives_defaults(self):
        from jpdsync.models.sync_config import load_sync_config

        config = load_sync_config(self._write(""))

        self.assertEqual(config.mappings, [])
        self.assertTrue(config.hierarchy.enabled)
        self.assertEqual(config.hierarchy.link_type, "Subtask")

    def test_problems_are_configuration_errors(self):
        from jpdsync.errors import ConfigurationError
        from jpdsync.models.sync_config import load_sync_config

        cases = {
            "missing": self.tmp / "nope.yaml",
            "bad yaml": self._write("sync: [unclosed"),
            "not a mapping": self._write("- a\n- b\n"),
        }
        for name, path in cases.items():
            with self.subTest(name):
                with self.assertRaises(ConfigurationError):
                    load_sync_config(path)

    def test_schema_errors_are_configuration_errors(self):
        from jpdsync.errors import ConfigurationError
        from jpdsync.models.sync_config import load_sync_config

        path = self._write("sync:\n  direction: sideways\n")

        with self.assertRaises(ConfigurationError) as ctx:
            load_sync_config(path)
        self.assertIn("schema validation", str(ctx.exception))


class SyncConfigTests(unittest.TestCase):
    def test_project_key_from_jql_or_fallback(self):
        from jpdsync.models.sync_config import SyncConfig

        self.assertEqual(SyncConfig.model_validate({"sync": {"jql": 'project = "mtt" AND x'}}).project_key(), "MTT")
        self.assertEqual(SyncConfig().project_key("ABC"), "ABC")
        self.assertIsNone(SyncConfig().project_key())

    def test_direction_passes(self):
        from jpdsync.models.sync_config import SyncDirection

        self.assertTrue(SyncDirection.SOURCE_TO_TARGET.pushes_to_target)
        self.assertFalse(SyncDirection.SOURCE_TO_TARGET.pulls_to_source)
        self.assertTrue(SyncDirection.BIDIRECTIONAL.pulls_to_source)
        self.assertFalse(SyncDirection.TARGET_TO_SOURCE.pushes_to_target)


if __name__ == "__main__":
    unittest.main()
