import pytest

from stoke.compiler import TemplateCompiler
from stoke.dependencies import DependencyGraph
from stoke.errors import RenderError, TemplateNotFoundError, UndefinedGlobalError
from stoke.global_data import GlobalDataAccessor, GlobalDataStore
from stoke.output import FilesWritten
from stoke.rendering import Renderer
from stoke.templates import TemplateRecord, TemplateRegistry


def _registry(sources, front_matter=None):
    compiler = TemplateCompiler()
    registry = TemplateRegistry()
    front_matter = front_matter or {}
    for name, body in sources.items():
        registry.add(
            TemplateRecord(
                name=name,
                front_matter=front_matter.get(name, {}),
                render=compiler.compile(body, name),
            )
        )
    return registry


def test_wrapper_renders_body_and_records_edges():
    registry = _registry(
        {
            "layout": "<html>{{ include('_body') }}</html>",
            "page": "<p>{{ message }}</p>",
        },
        {"page": {"wrapper": "layout", "message": "hi"}},
    )
    graph = DependencyGraph()
    html = Renderer(registry, graph).render("page", {})
    assert html == "<html><p>hi</p></html>"
    assert graph.resolve_template_dependents("layout") == {"page", "layout"}
    assert "page" in graph.resolve_template_dependents("page")


def test_nested_wrappers_unwind_innermost_last():
    registry = _registry(
        {
            "base": "<base>{{ include('_body') }}</base>",
            "section": "<section>{{ include('_body') }}</section>",
            "page": "page",
        },
        {"page": {"wrapper": "section"}, "section": {"wrapper": "base"}},
    )
    html = Renderer(registry, DependencyGraph()).render("page", {})
    assert html == "<base><section>page</section></base>"
    assert registry.wrapper_chain("page") == ["section", "base"]


def test_includes_merge_data_and_track_dependencies():
    registry = _registry(
        {
            "page": "{{ include('card', {'title': 'Override'}) }}|{{ title }}",
            "card": "<h2>{{ title }}</h2><i>{{ color }}</i>",
        },
        {"card": {"color": "red"}, "page": {"title": "Page"}},
    )
    graph = DependencyGraph()
    html = Renderer(registry, graph).render("page", {"title": "Passed"})
    assert html == "<h2>Override</h2><i>red</i>|Page"
    assert graph.resolve_template_dependents("card") == {"card", "page"}


def test_body_outside_wrapper_fails():
    registry = _registry({"page": "{{ include('_body') }}"})
    with pytest.raises(RenderError) as excinfo:
        Renderer(registry, DependencyGraph()).render("page", {})
    assert "not wrapping anything" in str(excinfo.value)


def test_missing_and_uncompiled_templates():
    registry = _registry({"page": "{{ include('ghost') }}"})
    registry.add(TemplateRecord(name="broken", render=None))
    renderer = Renderer(registry, DependencyGraph())
    with pytest.raises(TemplateNotFoundError) as excinfo:
        renderer.render("page", {})
    assert excinfo.value.owner == "page"
    assert excinfo.value.template == "ghost"
    with pytest.raises(TemplateNotFoundError):
        renderer.render("broken", {})


def test_wrapper_cycle_is_an_error():
    registry = _registry(
        {"a": "{{ include('_body') }}", "b": "{{ include('_body') }}"},
        {"a": {"wrapper": "b"}, "b": {"wrapper": "a"}},
    )
    with pytest.raises(RenderError):
        Renderer(registry, DependencyGraph()).render("a", {})


def test_template_errors_are_wrapped_at_innermost_template():
    registry = _registry(
        {"page": "{{ include('part') }}", "part": "{{ 1 // zero }}"},
    )
    with pytest.raises(RenderError) as excinfo:
        Renderer(registry, DependencyGraph()).render("page", {"zero": 0})
    assert excinfo.value.owner == "page"
    assert excinfo.value.template == "part"
    assert isinstance(excinfo.value.original_error, ZeroDivisionError)


def test_undefined_global_propagates_through_templates():
    registry = _registry({"page": "{{ global_data.title }}"})
    graph = DependencyGraph()
    store = GlobalDataStore(FilesWritten())
    accessor = GlobalDataAccessor(store, graph, "page")
    renderer = Renderer(registry, graph)
    with pytest.raises(UndefinedGlobalError):
        renderer.render("page", {"global_data": accessor})
    store.assign("title", "Now set")
    assert renderer.render("page", {"global_data": accessor}) == "Now set"
    assert graph.resolve_global_dependents(["title"]) == {"page"}
