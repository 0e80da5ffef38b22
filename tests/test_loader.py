"""
Unit tests for the Experiment Loader.
"""

import asyncio
import os
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from experiment_runtime.app import DEFAULT_WWW_ROOT
from experiment_runtime.core.loader import (
    ExperimentLoader,
    FileScriptDocument,
    ScriptDocument,
    experiment_path,
)
from experiment_runtime.core.models import ExperimentModule, LoadFailure, LoadState
from experiment_runtime.core.registry import ExperimentRegistry


def _steps(engine):
    return []


class FakeDocument(ScriptDocument):
    """
    Document whose units settle on the next loop iteration.

    ``outcomes`` maps a path to ("load", exports) or ("error", exception);
    paths missing from it load with empty exports. Tracks how many loads
    are outstanding at once.
    """

    def __init__(self, outcomes=None):
        super().__init__()
        self.outcomes = outcomes or {}
        self.pending = 0
        self.max_pending = 0

    def append(self, element):
        super().append(element)
        self.pending += 1
        self.max_pending = max(self.max_pending, self.pending)

        kind, payload = self.outcomes.get(element.src, ("load", {}))
        loop = asyncio.get_running_loop()

        def settle():
            self.pending -= 1
            if kind == "load":
                element.exports = payload
                element.on_load()
            else:
                element.on_error(payload)

        loop.call_soon(settle)


class ManualDocument(ScriptDocument):
    """Document that never settles on its own."""


class TestLoadScript(unittest.IsolatedAsyncioTestCase):
    """Tests for ExperimentLoader.load_script."""

    def setUp(self):
        self.document = ManualDocument()
        self.loader = ExperimentLoader(ExperimentRegistry(), self.document)

    async def test_appends_one_element_and_resolves(self):
        task = asyncio.ensure_future(self.loader.load_script("test.js"))
        await asyncio.sleep(0)

        self.assertEqual(len(self.document.head), 1)
        element = self.document.head[0]
        self.assertEqual(element.src, "test.js")
        self.assertTrue(callable(element.on_load))
        self.assertTrue(callable(element.on_error))

        element.on_load()
        self.assertIsNone(await task)

    async def test_rejects_on_error(self):
        task = asyncio.ensure_future(self.loader.load_script("error.js"))
        await asyncio.sleep(0)

        cause = OSError("boom")
        self.document.head[0].on_error(cause)

        with self.assertRaises(LoadFailure) as ctx:
            await task
        self.assertEqual(ctx.exception.path, "error.js")
        self.assertIs(ctx.exception.__cause__, cause)

    async def test_rejects_without_cause(self):
        task = asyncio.ensure_future(self.loader.load_script("error.js"))
        await asyncio.sleep(0)

        self.document.head[0].on_error()

        with self.assertRaises(LoadFailure) as ctx:
            await task
        self.assertIsNone(ctx.exception.__cause__)

    async def test_completion_signalled_once(self):
        task = asyncio.ensure_future(self.loader.load_script("test.js"))
        await asyncio.sleep(0)

        element = self.document.head[0]
        element.on_load()
        element.on_error(RuntimeError("late"))
        element.on_load()

        self.assertIsNone(await task)
        self.assertEqual(len(self.document.head), 1)


class TestLoadExperiments(unittest.IsolatedAsyncioTestCase):
    """Tests for ExperimentLoader.load_experiments."""

    def setUp(self):
        self.registry = ExperimentRegistry()

    def _loader(self, outcomes=None):
        self.document = FakeDocument(outcomes)
        return ExperimentLoader(self.registry, self.document)

    def test_experiment_path(self):
        self.assertEqual(experiment_path("profile"), "js/experiments/profile/index.js")

    async def test_constructs_paths_in_order(self):
        loader = self._loader()
        await loader.load_experiments(["profile", "sample"])

        self.assertEqual(
            [e.src for e in self.document.head],
            ["js/experiments/profile/index.js", "js/experiments/sample/index.js"],
        )

    async def test_registers_what_units_define(self):
        profile = ExperimentModule(run=_steps, check_user_id=lambda: None)
        loader = self._loader({
            experiment_path("profile"): ("load", {"experiment": profile}),
            experiment_path("sample-experiment"): ("load", {"run": _steps}),
        })

        result = await loader.load_experiments(["profile", "sample-experiment"])

        self.assertEqual(set(result), {"profile", "sample-experiment"})
        self.assertIs(result["profile"], profile)
        for module in result.values():
            self.assertTrue(callable(module.run))

    async def test_loads_sequentially(self):
        loader = self._loader()

        with self.assertLogs("experiment_runtime.core", level="INFO") as logs:
            await loader.load_experiments(["a", "b", "c"])

        messages = [r.getMessage() for r in logs.records if r.getMessage().startswith("Load")]
        self.assertEqual(messages, [
            "Loading experiments: ['a', 'b', 'c']",
            "Loaded experiment: a",
            "Loaded experiment: b",
            "Loaded experiment: c",
        ])
        self.assertEqual(self.document.max_pending, 1)

    async def test_failure_is_isolated(self):
        loader = self._loader({
            experiment_path("a"): ("load", {"run": _steps}),
            experiment_path("broken"): ("error", RuntimeError("Failed to load")),
            experiment_path("c"): ("load", {"run": _steps}),
        })

        with self.assertLogs("experiment_runtime.core.loader", level="ERROR") as logs:
            result = await loader.load_experiments(["a", "broken", "c"])

        self.assertEqual(set(result), {"a", "c"})
        self.assertIn("Failed to load experiment broken: Failed to load", logs.output[0])
        self.assertEqual(loader.failed_names(), ["broken"])
        self.assertEqual(loader.load_records["broken"].state, LoadState.FAILED)
        self.assertEqual(loader.load_records["a"].state, LoadState.LOADED)

    async def test_failed_name_kept_when_registered_before(self):
        existing = ExperimentModule(run=_steps)
        self.registry.register("x", existing)
        loader = self._loader({experiment_path("x"): ("error", None)})

        result = await loader.load_experiments(["x"])

        self.assertIs(result["x"], existing)

    async def test_unit_without_definition_is_loaded_but_absent(self):
        loader = self._loader({experiment_path("empty"): ("load", {"__name__": "unit"})})

        with self.assertLogs("experiment_runtime.core.loader", level="WARNING"):
            result = await loader.load_experiments(["empty"])

        self.assertEqual(result, {})
        self.assertEqual(loader.load_records["empty"].state, LoadState.LOADED)

    async def test_invalid_definition_counts_as_failure(self):
        loader = self._loader({
            experiment_path("bad"): ("load", {"run": _steps, "check_user_id": "nope"}),
        })

        result = await loader.load_experiments(["bad"])

        self.assertEqual(result, {})
        self.assertEqual(loader.failed_names(), ["bad"])

    async def test_bad_metadata_fails_only_that_unit(self):
        loader = self._loader({
            experiment_path("a"): ("load", {"run": _steps}),
            experiment_path("bad"): ("load", {"run": _steps, "METADATA": "Stroop task"}),
            experiment_path("c"): ("load", {"run": _steps}),
        })

        with self.assertLogs("experiment_runtime.core.loader", level="ERROR") as logs:
            result = await loader.load_experiments(["a", "bad", "c"])

        self.assertEqual(set(result), {"a", "c"})
        self.assertEqual(loader.failed_names(), ["bad"])
        self.assertIn("Failed to load experiment bad", logs.output[0])
        self.assertIsInstance(loader.load_records["bad"].error.__cause__, TypeError)

    async def test_empty_name_fails_only_that_entry(self):
        loader = self._loader({
            experiment_path(name): ("load", {"run": _steps}) for name in ("a", "", "c")
        })

        result = await loader.load_experiments(["a", "", "c"])

        self.assertEqual(set(result), {"a", "c"})
        self.assertEqual(loader.failed_names(), [""])
        self.assertIsInstance(loader.load_records[""].error.__cause__, ValueError)

    async def test_returns_live_registry(self):
        loader = self._loader()
        self.registry.register("exp1", ExperimentModule(run=_steps))

        result = await loader.load_experiments(["exp1"])

        self.assertIs(result, self.registry.get_all())

    async def test_empty_request(self):
        loader = self._loader()
        self.assertEqual(await loader.load_experiments([]), {})
        self.assertEqual(self.document.head, [])


class TestFileScriptDocument(unittest.IsolatedAsyncioTestCase):
    """Tests for loading units from disk."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.registry = ExperimentRegistry()

    def tearDown(self):
        self.tmp.cleanup()

    def _write_unit(self, name, source):
        path = self.root / experiment_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(source, encoding="utf-8")

    async def test_loads_units_from_disk(self):
        self._write_unit("good", "def run(engine):\n    return [{'type': 'call-function', 'func': lambda: 1}]\n")
        self._write_unit("broken", "raise RuntimeError('syntax of a broken unit')\n")

        document = FileScriptDocument(str(self.root))
        loader = ExperimentLoader(self.registry, document)

        result = await loader.load_experiments(["good", "broken", "missing"])

        self.assertEqual(list(result), ["good"])
        self.assertEqual(len(result["good"].run(None)), 1)
        self.assertEqual(sorted(loader.failed_names()), ["broken", "missing"])
        self.assertEqual(len(document.head), 3)

    async def test_bad_unit_between_good_ones(self):
        self._write_unit("a", "def run(engine):\n    return []\n")
        self._write_unit("bad", "METADATA = 'Stroop task'\ndef run(engine):\n    return []\n")
        self._write_unit("c", "def run(engine):\n    return []\n")

        loader = ExperimentLoader(self.registry, FileScriptDocument(str(self.root)))
        result = await loader.load_experiments(["a", "bad", "c"])

        self.assertEqual(list(result), ["a", "c"])
        self.assertEqual(loader.failed_names(), ["bad"])

    async def test_unit_runs_in_own_namespace(self):
        self._write_unit("where", "def run(engine):\n    return [__name__, __file__]\n")
        argv0 = sys.argv[0]

        loader = ExperimentLoader(self.registry, FileScriptDocument(str(self.root)))
        await loader.load_experiments(["where"])

        name, path = self.registry.get("where").run(None)
        self.assertEqual(name, "experiment_unit.where")
        self.assertEqual(Path(path), self.root / experiment_path("where"))
        self.assertEqual(sys.argv[0], argv0)
        self.assertNotIn("experiment_unit.where", sys.modules)

    async def test_injected_globals_visible_to_unit(self):
        self._write_unit("ident", (
            "def run(engine):\n"
            "    return []\n"
            "def check_user_id():\n"
            "    return stored_id\n"
        ))

        document = FileScriptDocument(str(self.root), unit_globals={"stored_id": "USER-42"})
        loader = ExperimentLoader(self.registry, document)
        await loader.load_experiments(["ident"])

        module = self.registry.get("ident")
        self.assertEqual(await module.resolve_user_id(), "USER-42")

    async def test_load_script_failure_for_missing_file(self):
        loader = ExperimentLoader(self.registry, FileScriptDocument(str(self.root)))

        with self.assertRaises(LoadFailure) as ctx:
            await loader.load_script("js/experiments/nope/index.js")
        self.assertIsInstance(ctx.exception.__cause__, FileNotFoundError)

    async def test_builtin_units(self):
        loader = ExperimentLoader(self.registry, FileScriptDocument(DEFAULT_WWW_ROOT))

        result = await loader.load_experiments(["profile", "sample-experiment"])

        self.assertEqual(set(result), {"profile", "sample-experiment"})
        for module in result.values():
            self.assertTrue(callable(module.run))
        self.assertTrue(result["profile"].has_identity_check)
        self.assertIsNone(await result["profile"].resolve_user_id())


if __name__ == "__main__":
    unittest.main()
