"""
Experiment Loader
=================

Loads experiment units one at a time and registers what they define.

Each unit lives at ``js/experiments/<name>/index.js`` under the web root.
Loading is two-phase: the document evaluates the unit and hands back its
exports, then the loader builds an ExperimentModule from them and inserts it
into the registry itself.

A unit that fails to load is logged and skipped; ``load_experiments`` always
returns the registry contents once every name has been attempted. Which names
failed is only visible by comparing the result with the request (or through
``load_records``).
"""

from typing import Any, Callable, Dict, Iterable, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
import asyncio
import logging

from .models import ExperimentModule, LoadFailure, LoadRecord, LoadState
from .registry import ExperimentRegistry

logger = logging.getLogger(__name__)

EXPERIMENT_PATH_TEMPLATE = "js/experiments/{name}/index.js"


def experiment_path(name: str) -> str:
    """Path of the unit that defines experiment ``name``."""
    return EXPERIMENT_PATH_TEMPLATE.format(name=name)


@dataclass
class ScriptElement:
    """Descriptor of one loadable unit appended to a document."""
    src: str = ""
    on_load: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[..., None]] = None
    exports: Dict[str, Any] = field(default_factory=dict)


class ScriptDocument:
    """
    Insertion point for loadable units.

    Subclasses evaluate appended elements and call ``on_load`` or
    ``on_error`` on them when the unit has finished loading.
    """

    def __init__(self):
        self.head: List[ScriptElement] = []

    def create_element(self) -> ScriptElement:
        return ScriptElement()

    def append(self, element: ScriptElement):
        self.head.append(element)


class FileScriptDocument(ScriptDocument):
    """
    Document that evaluates units from files under a web root.

    Unit files contain Python source (they keep the ``index.js`` name of the
    app layout). They are run off the event loop thread; completion is
    reported back on the loop.
    """

    def __init__(self, root: str, unit_globals: Optional[Dict[str, Any]] = None):
        """
        Initialize the document.

        Args:
            root: Web root the element paths are relative to
            unit_globals: Names made visible to every evaluated unit
        """
        super().__init__()
        self.root = Path(root)
        self.unit_globals = dict(unit_globals or {})

    def append(self, element: ScriptElement):
        super().append(element)

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self._evaluate, element.src)
        future.add_done_callback(lambda f: self._settle(element, f))

    def _evaluate(self, src: str) -> Dict[str, Any]:
        """Run a unit file in a fresh namespace and return that namespace."""
        path = self.root / src
        if not path.is_file():
            raise FileNotFoundError(f"No experiment unit at {path}")

        code = compile(path.read_text(encoding="utf-8"), str(path), "exec")

        # Runs on an executor thread: leave sys.argv and sys.modules alone.
        namespace = dict(self.unit_globals)
        namespace.update({
            "__name__": f"experiment_unit.{path.parent.name}",
            "__file__": str(path),
        })
        exec(code, namespace)
        return namespace

    def _settle(self, element: ScriptElement, future: "asyncio.Future"):
        if future.cancelled():
            if element.on_error:
                element.on_error(None)
            return

        error = future.exception()
        if error is not None:
            logger.debug(f"Unit {element.src} raised {error!r}")
            if element.on_error:
                element.on_error(error)
            return

        element.exports = future.result()
        if element.on_load:
            element.on_load()


class ExperimentLoader:
    """
    Loads experiment units sequentially into a registry.

    At most one load is outstanding at a time, so units never race each
    other on the registry and log output follows the request order.
    """

    def __init__(self, registry: ExperimentRegistry, document: ScriptDocument):
        """
        Initialize the loader.

        Args:
            registry: Registry that receives loaded modules
            document: Insertion point used to load units
        """
        self.registry = registry
        self.document = document

        self.load_records: Dict[str, LoadRecord] = {}

    async def load_script(self, path: str):
        """
        Load a single unit.

        Args:
            path: Unit path relative to the document root

        Raises:
            LoadFailure: If the document reports a load error
        """
        await self._load_element(path)

    async def _load_element(self, path: str) -> ScriptElement:
        loop = asyncio.get_running_loop()
        done = loop.create_future()

        def on_load():
            if not done.done():
                done.set_result(None)

        def on_error(error: Optional[BaseException] = None):
            if done.done():
                return
            failure = LoadFailure(path)
            failure.__cause__ = error
            done.set_exception(failure)

        element = self.document.create_element()
        element.on_load = on_load
        element.on_error = on_error
        element.src = path

        self.document.append(element)

        await done
        return element

    async def load_experiments(self, names: Iterable[str]) -> Dict[str, ExperimentModule]:
        """
        Load every named experiment, one after the other.

        Args:
            names: Experiment names, in load order

        Returns:
            The registry's live name → module mapping
        """
        names = list(names)
        logger.info(f"Loading experiments: {names}")

        for name in names:
            record = LoadRecord(name=name, path=experiment_path(name))
            self.load_records[name] = record
            await self._load_one(record)

        return self.registry.get_all()

    async def _load_one(self, record: LoadRecord):
        record.state = LoadState.LOADING
        record.started_at = datetime.now()

        try:
            element = await self._load_element(record.path)
        except LoadFailure as e:
            record.state = LoadState.FAILED
            record.error = e
            record.finished_at = datetime.now()
            logger.error(f"Failed to load experiment {record.name}: {e.__cause__ or e}")
            return

        # A malformed definition fails only its own name.
        try:
            module = ExperimentModule.from_exports(element.exports)
            if module is None:
                logger.warning(f"Experiment unit {record.path} did not define an experiment")
            else:
                self.registry.register(record.name, module)
        except Exception as e:
            record.state = LoadState.FAILED
            record.error = LoadFailure(record.path)
            record.error.__cause__ = e
            record.finished_at = datetime.now()
            logger.error(f"Failed to load experiment {record.name}: {e}")
            return

        record.state = LoadState.LOADED
        record.finished_at = datetime.now()
        logger.info(f"Loaded experiment: {record.name}")

    def failed_names(self) -> List[str]:
        """Names whose most recent load failed."""
        return [
            name for name, record in self.load_records.items()
            if record.state == LoadState.FAILED
        ]
