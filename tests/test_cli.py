import contextlib
import io
import json
import unittest
from unittest.mock import Mock, patch


def _settings(**overrides):
    from jpdsync.config import Settings

    data = dict(jpd_base_url="https://example.atlassian.net", sync_config_path="config/sync.yaml")
    data.update(overrides)
    return Settings(**data)


def _main(argv, engine):
    from jpdsync.cli import main

    out, err = io.StringIO(), io.StringIO()
    with patch("jpdsync.services.sync_service.build_engine", return_value=engine) as build:
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = main(argv, base_settings=_settings())
    return code, out.getvalue(), err.getvalue(), build


class CliTests(unittest.TestCase):
    def test_validation_failure_exits_2_with_report(self):
        from jpdsync.errors import ValidationFailedError
        from jpdsync.services.validator import FieldValidationError, ValidationResult

        failed = ValidationResult(
            valid=False,
            errors=[FieldValidationError(field="Category", field_id="customfield_1", error="missing", expected="select")],
        )
        engine = Mock()
        engine.run.side_effect = ValidationFailedError(failed)

        code, _, err, _ = _main(["run"], engine)

        self.assertEqual(code, 2)
        self.assertIn("JPD FIELD VALIDATION FAILED", err)
        self.assertIn("Category (customfield_1): missing", err)

    def test_configuration_error_exits_2(self):
        from jpdsync.errors import ConfigurationError

        engine = Mock()
        engine.validate.side_effect = ConfigurationError("Sync config not found: x.yaml")

        code, _, err, _ = _main(["validate"], engine)

        self.assertEqual(code, 2)
        self.assertIn("Sync config not found", err)

    def test_dry_run_and_direction_are_passed_through(self):
        from jpdsync.models.report import RunResult, SyncReport

        engine = Mock()
        engine.run.return_value = RunResult(dry_run=True, source_to_target=SyncReport(created=["X-1"]))

        code, out, _, build = _main(["--config", "other.yaml", "run", "--dry-run", "--direction", "jpd-to-gitlab"], engine)

        self.assertEqual(code, 0)
        settings = build.call_args.args[0]
        self.assertEqual(settings.sync_config_path, "other.yaml")
        self.assertTrue(settings.dry_run)
        self.assertEqual(build.call_args.kwargs, {"dry_run": True, "direction": "jpd-to-gitlab"})
        self.assertIn("Sync finished (dry run)", out)
        self.assertIn("JPD -> GitLab: created=1", out)

    def test_json_report(self):
        from jpdsync.models.report import RunResult, SyncReport

        engine = Mock()
        engine.run.return_value = RunResult(source_to_target=SyncReport(skipped_up_to_date=["X-1"]))

        code, out, _, _ = _main(["run", "--json"], engine)

        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["source_to_target"]["skipped_up_to_date"], ["X-1"])

    def test_validate_success(self):
        engine = Mock()

        code, out, _, build = _main(["validate"], engine)

        self.assertEqual(code, 0)
        self.assertIn("Field validation passed", out)
        self.assertEqual(build.call_args.kwargs, {"dry_run": True})


if __name__ == "__main__":
    unittest.main()
