"""Generation orchestrator for Stoke.

This module ties the pieces together. Templates are ingested into a
:class:`SiteState`, templates that declare a ``generate`` path are *cued*,
and :meth:`SiteEngine.generate` runs one generation pass over the cue table:

1. Expired cache entries are swept.
2. The ``preGenerate`` hook runs alone, so it can set global data.
3. Every other cued template runs concurrently. A template without a
   generate script renders one page at its literal path; a template with
   one runs it and renders each page the script requests.
4. The ``postGenerate`` hook runs alone, after everything was written.

After each task its script's response is reconciled into the cache, global
data, dependency graph and output. When a change notification arrives the
dependency graph decides which templates to cue again.

Key classes:
- SiteState: Owns the template registry, dependency graph, cache, global
  data and files-written ledger.
- SiteEngine: Ingestion, cueing, generation passes and change handling.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Any

from .cache import CacheStore
from .changes import ChangeKind, ChangeNotification, TriggerReason
from .compiler import TemplateCompiler
from .config import DEFAULT_CONFIG, load_config
from .console import log, log_error, script_log, warn
from .data import DataFiles
from .dependencies import DependencyGraph
from .errors import (
    CompileError,
    ConfigurationError,
    ErrorCounter,
    ScriptRuntimeError,
    StokeError,
)
from .extractors import ExtractedTemplate, ScriptKind, extract_frontmatter, extract_template
from .global_data import GlobalDataAccessor, GlobalDataStore
from .output import FilesWritten, OutputWriter
from .rendering import Renderer
from .sandbox import ScriptContext, ScriptInputs, ScriptSandbox, TriggeredBy
from .templates import TemplateRecord, TemplateRegistry
from .utils import (
    entry_script_name,
    fix_path,
    is_template,
    json_default,
    template_name,
)

HOOK_PRE = "preGenerate"
HOOK_POST = "postGenerate"
HOOKS = frozenset({HOOK_PRE, HOOK_POST})
LIB_DIR = "js"
RESPONSE_KEYS = frozenset({"cache", "site_files", "watch_files", "watch_globs", "global"})


class TaskState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass
class GenerateTask:
    """One cued template.

    Attributes:
        name: Template name.
        pattern: Output path pattern from front matter, with at most one ``*``.
        triggered_by: Path of the change that cued the template, if any.
        reason: What happened to ``triggered_by``.
        state: Lifecycle state.
        rendered: Pages requested so far.
        pending_writes: Writes scheduled by this task, awaited before it ends.
    """

    name: str
    pattern: str
    triggered_by: str | None = None
    reason: TriggerReason = TriggerReason.MODIFIED
    state: TaskState = TaskState.PENDING
    rendered: int = 0
    pending_writes: list[asyncio.Task] = field(default_factory=list)


@dataclass
class SiteState:
    templates: TemplateRegistry
    graph: DependencyGraph
    cache: CacheStore
    global_data: GlobalDataStore
    files_written: FilesWritten


def _front_matter_parse(text: str) -> tuple[dict[str, Any], str]:
    front_matter, body, _ = extract_frontmatter(text)
    return front_matter, body


class SiteEngine:
    """Incremental site generator.

    Attributes:
        input_dir: Template root.
        data_dir: Data file root.
        output_dir: Output root.
        state: All mutable site state.
        errors: Count of every reported error.
        cued: Tasks due in the next pass, keyed by template name.
    """

    def __init__(
        self,
        input_dir: Path,
        data_dir: Path,
        output_dir: Path,
        cache_dir: Path,
        *,
        verbose: bool = False,
        liveness_interval: float = 3.0,
        allowed_modules: Iterable[str] = tuple(DEFAULT_CONFIG["allowed_modules"]),
        max_followup_passes: int = 3,
    ):
        self.input_dir = Path(input_dir).resolve()
        self.data_dir = Path(data_dir).resolve()
        self.output_dir = Path(output_dir).resolve()
        self.verbose = verbose
        self.max_followup_passes = max_followup_passes

        files_written = FilesWritten()
        self.state = SiteState(
            templates=TemplateRegistry(),
            graph=DependencyGraph(verbose=verbose),
            cache=CacheStore(Path(cache_dir).resolve()),
            global_data=GlobalDataStore(files_written),
            files_written=files_written,
        )
        self.state.cache.load()
        self.errors = ErrorCounter()
        self.compiler = TemplateCompiler()
        self.sandbox = ScriptSandbox(allowed_modules, liveness_interval)
        self.renderer = Renderer(self.state.templates, self.state.graph)
        self.writer = OutputWriter(self.output_dir, files_written)
        self.data_files = DataFiles(self.data_dir)
        self.cued: dict[str, GenerateTask] = {}
        self._entry_scripts_written: set[str] = set()

    @classmethod
    def from_config(
        cls, project_root: Path, config: Mapping[str, Any] | None = None
    ) -> SiteEngine:
        """Create an engine from ``stoke.yaml`` settings.

        Args:
            project_root: Directory relative paths are resolved against.
            config: Settings; loaded from the project root when omitted.
        """
        if config is None:
            config = load_config(project_root)
        return cls(
            project_root / config["input_dir"],
            project_root / config["data_dir"],
            project_root / config["output_dir"],
            project_root / config["cache_dir"],
            verbose=bool(config["verbose"]),
            liveness_interval=float(config["liveness_interval"]),
            allowed_modules=config["allowed_modules"],
            max_followup_passes=int(config["max_followup_passes"]),
        )

    @property
    def error_count(self) -> int:
        return self.errors.count

    # -- ingestion -----------------------------------------------------------

    def ingest_all(self) -> list[str]:
        """Ingest every template under the input root.

        Returns:
            Names of the templates ingested.
        """
        if not self.input_dir.is_dir():
            self._report(ConfigurationError(f"Could not scan {self.input_dir}"))
            return []
        files = sorted(path for path in self.input_dir.rglob("*") if path.is_file())
        log(f"Processing {len(files)} input files.", fg="green")
        names = []
        for path in files:
            name = self.ingest(path)
            if name is not None:
                names.append(name)
        return names

    def ingest(self, path: Path) -> str | None:
        """Read, extract, compile, register and cue one template file.

        Returns:
            The template name, or None if the file was skipped.
        """
        path = Path(path).resolve()
        name = template_name(path, self.input_dir)
        if name is None:
            if not is_template(path):
                warn(f"Skipping {path}: not a template")
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            self._report(ConfigurationError(f"Could not read {path}: {exc}"))
            return None
        return self.ingest_source(name, text, path)

    def ingest_source(self, name: str, text: str, path: Path | None = None) -> str | None:
        """Register template ``name`` from source text and cue it.

        Returns:
            The template name, or None if its front matter is malformed.
        """
        try:
            extracted = extract_template(text)
        except ConfigurationError as exc:
            self._report(exc, f"Error reading template {name}")
            return None
        record = TemplateRecord(name=name, path=path, front_matter=extracted.front_matter)
        self._bind_scripts(record, extracted)
        if self.verbose:
            log(f"compiling template: {name}")
        try:
            record.render = self.compiler.compile(extracted.body, name)
        except CompileError as exc:
            self._report(exc)
        self.state.templates.add(record)
        self.cue(name)
        return name

    def _bind_scripts(self, record: TemplateRecord, extracted: ExtractedTemplate) -> None:
        name = record.name
        filename = str(record.path) if record.path else f"<{name}>"
        for block in extracted.scripts:
            if block.kind is ScriptKind.GENERATE:
                if record.generate_script is not None:
                    warn(f"{name}: ignoring extra generate script at line {block.line}")
                    continue
                script = self.sandbox.compile(name, block.body, block.line, filename)
                record.generate_script = script
                if script.compile_error is not None:
                    self._report(script.compile_error)
            elif block.kind is ScriptKind.GENERATE_USE:
                if block.reference is None:
                    self._report(
                        ConfigurationError(
                            f"Generate-use script template in {name!r} not specified "
                            f"correctly: {block.raw_reference}"
                        )
                    )
                    continue
                record.generate_ref = block.reference
                self.state.graph.mark_depends_on(name, block.reference)
            elif block.kind is ScriptKind.ENTRY:
                record.entry_script = block.body
            elif block.kind is ScriptKind.LIB:
                try:
                    self.writer.write(Path(LIB_DIR) / f"{name}.js", block.body, "lib", name)
                except (StokeError, OSError) as exc:
                    self._report(exc, f"Error writing lib script for {name}")

    def remove_template(self, name: str) -> set[str]:
        """Forget template ``name`` and everything recorded about it.

        Returns:
            Templates that rendered ``name`` and should be regenerated.
        """
        dependents = self.state.graph.resolve_template_dependents(name) - {name}
        self.state.templates.remove(name)
        self.state.graph.forget(name)
        self.state.cache.drop(name)
        self.cued.pop(name, None)
        return dependents

    # -- cueing and generation -----------------------------------------------

    def cue(
        self,
        name: str,
        triggered_by: str | None = None,
        reason: TriggerReason = TriggerReason.MODIFIED,
    ) -> bool:
        """Cue template ``name`` for the next pass.

        Only templates with a ``generate`` path, and the hooks, are cued.
        Cueing an already cued template replaces its trigger.

        Returns:
            True if the template was cued.
        """
        record = self.state.templates.get(name)
        if record is None:
            return False
        pattern = record.pattern
        if pattern is None:
            if name not in HOOKS:
                return False
            pattern = ""
        self.cued[name] = GenerateTask(name, pattern, triggered_by, reason)
        return True

    async def generate(self) -> None:
        """Run generation passes until global data settles.

        Templates that read a global key another task changed are cued again
        and a follow-up pass runs, at most ``max_followup_passes`` times.
        """
        if not self.cued:
            log("Nothing to do. Will wait for changes.", fg="yellow")
            return
        for _ in range(self.max_followup_passes + 1):
            updated = await self._generate_pass()
            dependents = self.state.graph.resolve_global_dependents(updated) - HOOKS
            cued = sorted(name for name in dependents if self.cue(name))
            if not self.cued:
                return
            # the post hook sees the follow-up writes too
            self.cue(HOOK_POST)
            log(
                f"Global data changed ({', '.join(sorted(updated))}), "
                f"regenerating: {', '.join(cued)}",
                fg="yellow",
            )
        warn(
            f"Global data still changing after {self.max_followup_passes} follow-up "
            "passes; remaining templates wait for the next change"
        )

    async def _generate_pass(self) -> set[str]:
        self._entry_scripts_written.clear()
        invalid = self.state.cache.expire()
        for error in invalid.values():
            self._report(error)

        pre = self.cued.pop(HOOK_PRE, None)
        if pre is not None:
            pre_updated = await self._run_task(pre, invalid)
            readers = self.state.graph.resolve_global_dependents(pre_updated) - HOOKS
            for name in sorted(readers):
                if name not in self.cued:
                    self.cue(name)

        post = self.cued.pop(HOOK_POST, None)
        batch = list(self.cued.values())
        self.cued.clear()
        updated: set[str] = set()
        for keys in await asyncio.gather(*(self._run_task(task, invalid) for task in batch)):
            updated |= keys

        if post is not None:
            updated |= await self._run_task(post, invalid)
        return updated

    async def _run_task(self, task: GenerateTask, invalid: Mapping[str, Any]) -> set[str]:
        updated: set[str] = set()
        record = self.state.templates.get(task.name)
        if record is None:
            task.state = TaskState.FAILED
            return updated
        if task.name in invalid:
            log_error(f"Skipping {task.name}: its cache held an invalid entry")
            task.state = TaskState.FAILED
            return updated

        task.state = TaskState.RUNNING
        hook = task.name in HOOKS
        stars = task.pattern.count("*")
        try:
            if stars > 1:
                raise ConfigurationError(
                    f"{task.name}: generate path {task.pattern!r} can only include "
                    "a single path replacement *"
                )
            script = self.state.templates.generate_script_for(task.name)
            if script is None:
                if not hook:
                    self._render_page(task, record, task.pattern)
            else:
                if self.verbose and record.generate_ref:
                    log(
                        f"using reference generate script {record.generate_ref!r} "
                        f"for {task.name!r}",
                        fg="yellow",
                    )
                log(f"Running generator: {task.name}", fg="yellow")
                response = await self.sandbox.run(script, self._context(task, record))
                log(f"Generator resolved: {task.name}", fg="yellow")
                try:
                    self._reconcile(task, response, updated)
                except (TypeError, ValueError, OSError) as exc:
                    raise ConfigurationError(
                        f"{task.name}: could not apply generate response: {exc}"
                    ) from exc
                if task.rendered == 0 and stars == 0 and not hook:
                    if self.verbose:
                        log(
                            f"Rendering template {task.name} with absolute generate path "
                            "after running its generate script.",
                            fg="yellow",
                        )
                    self._render_page(task, record, task.pattern)
                elif task.rendered == 0 and self.verbose:
                    log(f"Generate script {task.name!r} requested no pages.", fg="yellow")
            task.state = TaskState.RESOLVED
        except StokeError as exc:
            task.state = TaskState.FAILED
            self._report(exc, f"Error generating {task.name}")
        finally:
            await self._drain_writes(task)
        return updated

    async def _drain_writes(self, task: GenerateTask) -> None:
        if not task.pending_writes:
            return
        results = await asyncio.gather(*task.pending_writes, return_exceptions=True)
        task.pending_writes.clear()
        for result in results:
            if isinstance(result, Exception):
                self._report(result, f"Error writing output for {task.name}")

    def _context(self, task: GenerateTask, record: TemplateRecord) -> ScriptContext:
        name = task.name
        triggered_by = None
        if task.triggered_by:
            triggered_by = TriggeredBy(task.triggered_by, task.reason.value)
        return ScriptContext(
            name=name,
            inputs=ScriptInputs(
                triggered_by=triggered_by,
                front_matter=dict(record.front_matter),
                global_data=self._accessor(name),
            ),
            generate_pages=partial(self._generate_pages, task, record),
            get_data_file_names=partial(self.data_files.names, name),
            read_data_file=self.data_files.read,
            cache=self.state.cache.namespace(name),
            log=partial(script_log, name),
            front_matter_parse=_front_matter_parse,
            data_dir=str(self.data_dir),
            render_template=partial(self._render_template, name),
            files_written=self.state.files_written.snapshot(),
        )

    def _accessor(self, name: str) -> GlobalDataAccessor:
        return GlobalDataAccessor(self.state.global_data, self.state.graph, name)

    # -- pages ---------------------------------------------------------------

    def _generate_pages(self, task: GenerateTask, record: TemplateRecord, pages: Any) -> None:
        """``ctx.generate_pages``: render one request or a list of them."""
        if isinstance(pages, Mapping):
            pages = [pages]
        stars = task.pattern.count("*")
        if stars > 1:
            raise ConfigurationError(
                f"{task.name}: generate paths can only include a single path replacement *"
            )
        if stars == 0:
            raise ConfigurationError(
                f"{task.name}: generate path {task.pattern!r} must include a path "
                "replacement * when generating pages from data"
            )
        pages = list(pages)
        if not pages:
            if self.verbose:
                log(f"Generate script {task.name} requesting zero pages to render", fg="yellow")
            return
        log(f"Generating batch pages for: {task.name}", fg="yellow")
        for request in pages:
            if not isinstance(request, Mapping) or "path" not in request:
                self._report(
                    ConfigurationError(f"{task.name}: page request {request!r} has no path")
                )
                continue
            task.rendered += 1
            path = task.pattern.replace("*", str(request["path"]), 1)
            data = request.get("data") or {}
            try:
                if not isinstance(data, Mapping):
                    raise ConfigurationError(f"{task.name}: page data for {path} must be a dict")
                self._render_page(task, record, path, data, request.get("ext"))
            except (StokeError, ValueError, OSError) as exc:
                self._report(exc, f"Error rendering page: {task.name}, path: {path}")

    def _render_page(
        self,
        task: GenerateTask,
        record: TemplateRecord,
        path: str,
        data: Mapping[str, Any] | None = None,
        ext: str | None = None,
    ) -> str:
        """Render one page of ``record`` at ``path`` and schedule its writes."""
        path = fix_path(path)
        script_name = entry_script_name(path)
        render_data = {
            "page_path": path,
            "page_name": record.name,
            "last_path": script_name,
            "entry_script": f"{path}/{script_name}.js",
            "global_data": self._accessor(record.name),
            **(data or {}),
            **record.front_matter,
        }
        html = self.renderer.render(record.name, render_data)
        ext = str(ext or "html")
        target = self.writer.resolve(f"{path}/index.{ext}")
        self._schedule_write(task, target, html, ext)
        self._write_entry_scripts(task, record, path)
        return path

    def _write_entry_scripts(self, task: GenerateTask, record: TemplateRecord, path: str) -> None:
        target = self.writer.resolve(f"{path}/{entry_script_name(path)}.js")
        if str(target) in self._entry_scripts_written:
            return
        scripts = []
        if record.entry_script is not None:
            scripts.append(f"// entry script: {record.name}\n{record.entry_script}")
        for wrapper in self.state.templates.wrapper_chain(record.name):
            wrapper_record = self.state.templates.get(wrapper)
            if wrapper_record is not None and wrapper_record.entry_script is not None:
                if self.verbose:
                    log(
                        f"appending wrapper entry script from {wrapper!r} for {record.name!r}",
                        fg="yellow",
                    )
                scripts.append(f"// entry script: {wrapper}\n{wrapper_record.entry_script}")
        if not scripts:
            return
        self._entry_scripts_written.add(str(target))
        self._schedule_write(task, target, "\n".join(scripts), "entry")

    def _render_template(
        self, owner: str, template: str, data: Mapping[str, Any] | None = None
    ) -> str:
        """``ctx.render_template``: render without writing."""
        render_data = {"global_data": self._accessor(owner), **(data or {})}
        return self.renderer.render(owner, render_data, current=template)

    def _schedule_write(self, task: GenerateTask, target: Path, data: str, kind: str) -> None:
        task.pending_writes.append(
            asyncio.ensure_future(self.writer.write_async(target, data, kind, task.name))
        )

    # -- reconciliation ------------------------------------------------------

    def _reconcile(
        self, task: GenerateTask, response: Mapping[str, Any], updated: set[str]
    ) -> None:
        """Merge a script response into global data, cache, output and graph.

        Keys whose global value changed are added to ``updated``.
        """
        name = task.name
        unknown = set(response) - RESPONSE_KEYS
        if unknown:
            warn(f"{name}: ignoring unknown response keys: {', '.join(sorted(map(str, unknown)))}")

        global_values = response.get("global")
        if global_values is not None:
            _expect(global_values, Mapping, name, "global")
            for key, value in global_values.items():
                if self.state.global_data.assign(str(key), value):
                    updated.add(str(key))

        cache = response.get("cache")
        if cache is not None:
            _expect(cache, Mapping, name, "cache")
            self.state.cache.merge(name, cache)

        site_files = response.get("site_files")
        if site_files is not None:
            _expect(site_files, Mapping, name, "site_files")
            _expect_strings(site_files, name, "site_files")
            for relative, content in site_files.items():
                self._write_site_file(task, relative, content)

        watch_files = response.get("watch_files")
        if watch_files is not None:
            _expect(watch_files, (list, tuple), name, "watch_files")
            _expect_strings(watch_files, name, "watch_files")
            self.state.graph.record_watch(
                name, files=[self.data_files.absolute(path) for path in watch_files]
            )

        watch_globs = response.get("watch_globs")
        if watch_globs is not None:
            _expect(watch_globs, (list, tuple), name, "watch_globs")
            _expect_strings(watch_globs, name, "watch_globs")
            self.state.graph.record_watch(name, globs=list(watch_globs))

    def _write_site_file(self, task: GenerateTask, relative: str, content: Any) -> None:
        try:
            if isinstance(content, str):
                text = content
            else:
                try:
                    text = json.dumps(content, default=json_default)
                except (TypeError, ValueError) as exc:
                    raise ConfigurationError(
                        f"{task.name}: site file {relative} is not JSON serializable: {exc}"
                    ) from exc
            target = self.writer.resolve(relative)
        except (StokeError, ValueError, OSError) as exc:
            self._report(exc, f"Error writing site file for {task.name}")
            return
        self._schedule_write(task, target, text, "json")

    # -- changes -------------------------------------------------------------

    async def handle_change(self, notification: ChangeNotification) -> set[str]:
        """Regenerate whatever depends on a changed file.

        Args:
            notification: The change.

        Returns:
            Names of the templates cued for regeneration.
        """
        path = Path(notification.path).resolve()
        reason = notification.reason
        if notification.kind is ChangeKind.TEMPLATE:
            name = template_name(path, self.input_dir)
            if name is None:
                if self.verbose:
                    log(f"Ignoring change to {path}")
                return set()
            if reason is TriggerReason.DELETED:
                log(f"Template removed: {name}", fg="green")
                dependents = self.remove_template(name)
            else:
                if self.ingest(path) is None:
                    return set()
                dependents = self.state.graph.resolve_template_dependents(name)
        else:
            dependents = self.state.graph.resolve_affected(path)
            if dependents:
                log(f"Update triggered by: {path}", fg="green")
        cued = {name for name in dependents if self.cue(name, str(path), reason)}
        if self.cued:
            await self.generate()
            log("Dependency updates complete.", fg="green")
        return cued

    # -- lifecycle -----------------------------------------------------------

    async def build(self) -> int:
        """Ingest every template and run generation.

        Returns:
            Number of errors reported so far.
        """
        self.ingest_all()
        await self.generate()
        return self.errors.count

    def flush_cache(self) -> None:
        try:
            self.state.cache.save()
        except OSError as exc:
            self._report(exc, "Error writing cache")

    def summary(self) -> None:
        count = self.errors.count
        log(f"Finished with {count} errors", fg="red" if count else "green", bold=True)

    def _report(self, exc: BaseException, context: str | None = None) -> None:
        self.errors.increment()
        if context:
            log_error(context, bold=True)
        if isinstance(exc, ScriptRuntimeError):
            log_error(str(exc))
            log_error(exc.diagnostic, fg=None)
        else:
            log_error(str(exc))


def _expect(value: Any, types: type | tuple[type, ...], name: str, key: str) -> None:
    if not isinstance(value, types) or (key.startswith("watch") and isinstance(value, str)):
        raise ConfigurationError(
            f"{name}: response key {key!r} has the wrong shape ({type(value).__name__})"
        )


def _expect_strings(values: Iterable[Any], name: str, key: str) -> None:
    for value in values:
        if not isinstance(value, str):
            raise ConfigurationError(
                f"{name}: response key {key!r} holds {type(value).__name__} "
                f"{value!r}, expected path strings"
            )
