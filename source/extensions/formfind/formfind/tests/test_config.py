"""
Tests for settings, the error hierarchy and logging setup.
"""

import logging
import os
import tempfile
import unittest


class TestSolverSettings(unittest.TestCase):

    def test_defaults(self):
        from formfind.config import SolverSettings

        s = SolverSettings()
        self.assertEqual(s.merge_threshold, 0.001)
        self.assertEqual(s.interaction_weight, 30.0)
        self.assertEqual(s.damping, 0.9)
        self.assertEqual(s.pick_range, 0.03)
        self.assertTrue(s.momentum)
        self.assertTrue(s.parallel)
        self.assertIsNone(s.max_workers)

    def test_invalid_values(self):
        from formfind.config import SolverSettings
        from formfind.exceptions import ConfigError

        for kwargs in (
            {"merge_threshold": -1.0},
            {"interaction_weight": 0.0},
            {"damping": 1.5},
            {"damping": 0.0},
            {"pick_range": 0.0},
            {"max_workers": 0},
            {"parallel_min_goals": -1},
        ):
            with self.subTest(**kwargs):
                with self.assertRaises(ConfigError):
                    SolverSettings(**kwargs)

    def test_dict_round_trip(self):
        from formfind.config import SolverSettings

        s = SolverSettings(merge_threshold=0.01, parallel=False, max_workers=2)
        self.assertEqual(SolverSettings.from_dict(s.to_dict()), s)

    def test_unknown_key(self):
        from formfind.config import SolverSettings
        from formfind.exceptions import ConfigError

        with self.assertRaises(ConfigError) as ctx:
            SolverSettings.from_dict({"merge_treshold": 0.1})
        self.assertIn("merge_treshold", str(ctx.exception))


class TestLoadSettings(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmpdir.cleanup()

    def _write(self, text):
        path = os.path.join(self.tmpdir.name, "formfind.toml")
        with open(path, "w", encoding="utf-8") as fh:
            fh.write(text)
        return path

    def test_load(self):
        from formfind.config import load_settings

        path = self._write("[solver]\nmerge_threshold = 0.01\nparallel = false\n")
        s = load_settings(path)
        self.assertEqual(s.merge_threshold, 0.01)
        self.assertFalse(s.parallel)
        self.assertEqual(s.interaction_weight, 30.0)

    def test_missing_table_gives_defaults(self):
        from formfind.config import SolverSettings, load_settings

        path = self._write("[other]\nkey = 1\n")
        self.assertEqual(load_settings(path), SolverSettings())

    def test_missing_file(self):
        from formfind.config import load_settings
        from formfind.exceptions import ConfigError

        with self.assertRaises(ConfigError):
            load_settings(os.path.join(self.tmpdir.name, "nope.toml"))

    def test_invalid_toml(self):
        from formfind.config import load_settings
        from formfind.exceptions import ConfigError

        with self.assertRaises(ConfigError):
            load_settings(self._write("[solver\nmerge_threshold = \n"))

    def test_solver_not_a_table(self):
        from formfind.config import load_settings
        from formfind.exceptions import ConfigError

        with self.assertRaises(ConfigError):
            load_settings(self._write("solver = 3\n"))


class TestExceptions(unittest.TestCase):

    def test_message_includes_context_and_suggestions(self):
        from formfind.exceptions import FormFindError

        err = FormFindError("Bad goal", context={"node_count": 2}, suggestions=["Try again"])
        text = str(err)
        self.assertTrue(text.startswith("Bad goal"))
        self.assertIn("node_count: 2", text)
        self.assertIn("- Try again", text)
        self.assertEqual(err.message, "Bad goal")

    def test_hierarchy(self):
        from formfind.exceptions import (
            ArityMismatchError,
            ConfigError,
            DegenerateGeometryError,
            FormFindError,
        )

        for cls in (ArityMismatchError, DegenerateGeometryError, ConfigError):
            self.assertTrue(issubclass(cls, FormFindError))
        self.assertTrue(issubclass(ArityMismatchError, ValueError))
        self.assertTrue(issubclass(DegenerateGeometryError, ValueError))

    def test_arity_error_names_goal(self):
        from formfind.exceptions import ArityMismatchError
        from formfind.kernel.goal import Goal

        with self.assertRaises(ArityMismatchError) as ctx:
            Goal([(0, 0, 0)], node_count=2).check_arity()
        self.assertIn("Goal", str(ctx.exception))
        self.assertEqual(ctx.exception.context["starting_positions"], 1)


class TestLogging(unittest.TestCase):

    def tearDown(self):
        logger = logging.getLogger("formfind")
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)

    def test_setup_logging(self):
        from formfind.logging_config import setup_logging

        logger = setup_logging(logging.DEBUG)
        self.assertEqual(logger.name, "formfind")
        self.assertEqual(logger.level, logging.DEBUG)
        self.assertEqual(len(logger.handlers), 1)

        # Calling again replaces rather than duplicates handlers
        setup_logging(logging.INFO)
        self.assertEqual(len(logger.handlers), 1)
        self.assertEqual(logger.level, logging.INFO)

    def test_level_by_name(self):
        from formfind.logging_config import setup_logging

        self.assertEqual(setup_logging("debug").level, logging.DEBUG)
        with self.assertRaises(ValueError):
            setup_logging("chatty")

    def test_host_handlers_are_kept(self):
        """Reconfiguring only swaps the handlers formfind installed."""
        from formfind.logging_config import setup_logging

        logger = logging.getLogger("formfind")
        host = logging.NullHandler()
        logger.addHandler(host)
        setup_logging(logging.INFO)
        setup_logging(logging.WARNING)
        self.assertIn(host, logger.handlers)
        self.assertEqual(len(logger.handlers), 2)

    def test_api_configures_logging(self):
        """FormFindAPI(log_level=...) routes solver records to the given stream."""
        import io
        from unittest import mock

        from formfind.api import FormFindAPI
        from formfind.config import SolverSettings

        with mock.patch("sys.stderr", new=io.StringIO()) as stderr:
            api = FormFindAPI(SolverSettings(parallel=False), log_level="INFO")
            with tempfile.TemporaryDirectory() as tmp:
                api.add_anchor_goal((0, 0, 0))
                api.save(os.path.join(tmp, "model.json"))
        self.assertEqual(logging.getLogger("formfind").level, logging.INFO)
        self.assertIn("[formfind] INFO formfind.api: Saved 1 nodes", stderr.getvalue())

    def test_api_without_log_level_leaves_logging_alone(self):
        from formfind.api import FormFindAPI

        FormFindAPI()
        self.assertEqual(logging.getLogger("formfind").handlers, [])

    def test_log_file(self):
        from formfind.logging_config import setup_logging

        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "formfind.log")
            logger = setup_logging(logging.INFO, log_file=path)
            logging.getLogger("formfind.kernel.solver").info("hello from the solver")
            for handler in logger.handlers:
                handler.flush()
            with open(path, encoding="utf-8") as fh:
                text = fh.read()
            self.tearDown()
        self.assertIn("hello from the solver", text)

    def test_registration_warning_is_logged(self):
        from formfind.exceptions import ArityMismatchError
        from formfind.kernel.goal import Goal
        from formfind.kernel.solver import Solver

        with self.assertLogs("formfind.kernel.solver", level="WARNING"):
            with self.assertRaises(ArityMismatchError):
                Solver().add_goal(Goal([(0, 0, 0)], node_count=2))


if __name__ == "__main__":
    unittest.main()
