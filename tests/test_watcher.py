import asyncio

from stoke.changes import ChangeKind, TriggerReason
from stoke.watcher import ChangeHandler, SiteWatcher


class DummyEvent:
    def __init__(self, event_type, path, is_directory=False, dest_path=""):
        self.event_type = event_type
        self.src_path = path
        self.dest_path = dest_path
        self.is_directory = is_directory


def _handler(tmp_path):
    (tmp_path / "templates").mkdir()
    (tmp_path / "data").mkdir()
    received = []
    handler = ChangeHandler(tmp_path / "templates", tmp_path / "data", received.append)
    return handler, received


def test_events_map_to_notifications(tmp_path):
    handler, received = _handler(tmp_path)
    template = tmp_path / "templates" / "index.jinja"
    data = tmp_path / "data" / "posts" / "a.json"

    handler.on_any_event(DummyEvent("modified", str(template)))
    handler.on_any_event(DummyEvent("created", str(data).encode()))
    handler.on_any_event(DummyEvent("deleted", str(data)))

    assert [(n.kind, n.path, n.reason) for n in received] == [
        (ChangeKind.TEMPLATE, template.resolve(), TriggerReason.MODIFIED),
        (ChangeKind.DATA, data.resolve(), TriggerReason.ADDED),
        (ChangeKind.DATA, data.resolve(), TriggerReason.DELETED),
    ]


def test_directories_and_outside_paths_are_ignored(tmp_path):
    handler, received = _handler(tmp_path)
    handler.on_any_event(DummyEvent("modified", str(tmp_path / "templates"), is_directory=True))
    handler.on_any_event(DummyEvent("modified", str(tmp_path / "output" / "index.html")))
    handler.on_any_event(DummyEvent("opened", str(tmp_path / "data" / "a.json")))
    assert received == []


def test_move_is_a_delete_then_an_add(tmp_path):
    handler, received = _handler(tmp_path)
    source = tmp_path / "templates" / "old.jinja"
    dest = tmp_path / "templates" / "new.jinja"
    handler.on_any_event(DummyEvent("moved", str(source), dest_path=str(dest)))
    assert [(n.path.name, n.reason) for n in received] == [
        ("old.jinja", TriggerReason.DELETED),
        ("new.jinja", TriggerReason.ADDED),
    ]


def test_site_watcher_hands_events_to_the_loop(tmp_path):
    (tmp_path / "templates").mkdir()

    async def main():
        watcher = SiteWatcher(tmp_path / "templates", tmp_path / "data", asyncio.get_running_loop())
        watcher.handler.on_any_event(
            DummyEvent("created", str(tmp_path / "templates" / "page.jinja"))
        )
        return await asyncio.wait_for(watcher.queue.get(), timeout=1)

    notification = asyncio.run(main())
    assert notification.kind is ChangeKind.TEMPLATE
    assert notification.reason is TriggerReason.ADDED


def test_stop_joins_observer(tmp_path):
    class DummyObserver:
        def __init__(self):
            self.calls = []

        def stop(self):
            self.calls.append("stop")

        def join(self):
            self.calls.append("join")

    watcher = SiteWatcher(tmp_path, tmp_path, asyncio.new_event_loop())
    observer = DummyObserver()
    watcher._observer = observer
    watcher.stop()
    assert observer.calls == ["stop", "join"]
    assert watcher._observer is None
    watcher._loop.close()
