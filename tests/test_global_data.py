import pytest

from stoke.dependencies import DependencyGraph
from stoke.errors import ConfigurationError, UndefinedGlobalError
from stoke.global_data import GlobalDataAccessor, GlobalDataStore
from stoke.output import FilesWritten


def _setup():
    ledger = FilesWritten()
    store = GlobalDataStore(ledger)
    graph = DependencyGraph()
    return ledger, store, graph


def test_assign_reports_changes():
    _, store, _ = _setup()
    assert store.assign("date", "2021-11-15") is False
    assert store.assign("date", "2021-11-15") is False
    assert store.assign("date", "2022-01-01") is True
    assert store.value("date") == "2022-01-01"
    with pytest.raises(ConfigurationError):
        store.assign("files_written", {})


def test_first_set_is_a_change_only_after_a_failed_lookup():
    _, store, graph = _setup()
    accessor = GlobalDataAccessor(store, graph, "index")

    with pytest.raises(UndefinedGlobalError):
        accessor["menu"]
    assert accessor.get("footer", "") == ""
    assert "banner" not in accessor

    assert store.assign("menu", ["home"]) is True
    assert store.assign("footer", "f") is True
    assert store.assign("banner", "b") is True
    assert store.assign("unread", 1) is False
    assert store.missed == set()


def test_accessor_records_reads_even_when_missing():
    _, store, graph = _setup()
    store.assign("title", "Site")
    accessor = GlobalDataAccessor(store, graph, "index")

    assert accessor["title"] == "Site"
    assert accessor.title == "Site"
    assert accessor.get("title") == "Site"
    assert accessor.get("subtitle", "none") == "none"
    with pytest.raises(UndefinedGlobalError):
        accessor.missing
    with pytest.raises(UndefinedGlobalError):
        accessor["other"]
    assert "title" in accessor
    assert "nope" not in accessor

    assert graph.resolve_global_dependents(["title"]) == {"index"}
    for key in ("subtitle", "missing", "other", "nope"):
        assert graph.resolve_global_dependents([key]) == {"index"}


def test_undefined_global_is_not_a_lookup_error():
    assert not issubclass(UndefinedGlobalError, LookupError)
    assert not issubclass(UndefinedGlobalError, AttributeError)


def test_private_attributes_are_not_global_keys():
    _, store, graph = _setup()
    accessor = GlobalDataAccessor(store, graph, "index")
    with pytest.raises(AttributeError):
        accessor.__html__
    assert not hasattr(accessor, "_secret")
    assert graph.global_keys == {}


def test_files_written_is_a_reserved_snapshot():
    ledger, store, graph = _setup()
    ledger.record("html", "index", "index.html")
    accessor = GlobalDataAccessor(store, graph, "postGenerate")
    snapshot = accessor["files_written"]
    assert list(snapshot) == ["index.html"]
    assert "files_written" in store.keys()
