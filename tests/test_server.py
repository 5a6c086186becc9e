import asyncio
import io
import logging
from pathlib import Path

import pytest

from folio.build import BuildError
from folio.server import (
    DevServer,
    ReloadHub,
    _ChangeHandler,
    _ReloadHandler,
    inject_snippet,
    publish_staged,
    reload_snippet,
    source_fingerprint,
)


class FakeEvent:
    def __init__(self, path, is_directory=False):
        self.src_path = str(path)
        self.is_directory = is_directory


def make_handler(directory: Path, path: str):
    handler = _ReloadHandler.__new__(_ReloadHandler)
    handler.path = path
    handler.directory = str(directory)
    handler.command = "GET"
    handler.request_version = "HTTP/1.1"
    handler.headers = {}
    handler.rfile = io.BytesIO(b"")
    handler.wfile = io.BytesIO()
    handler.statuses = []
    handler.send_response = lambda code, message=None: handler.statuses.append(code)
    handler.send_header = lambda *args, **kwargs: None
    handler.end_headers = lambda: None
    handler.send_error = lambda code, *args, **kwargs: handler.statuses.append(("error", code))
    return handler


@pytest.fixture
def site(tmp_path):
    output = tmp_path / "output"
    (output / "blog" / "known").mkdir(parents=True)
    (output / "blog" / "known" / "index.html").write_text(
        "<html><body>known post</body></html>", encoding="utf-8"
    )
    (output / "404.html").write_text("<html><body>oops</body></html>", encoding="utf-8")
    (output / "feed.xml").write_text("<rss/>", encoding="utf-8")
    return output


@pytest.fixture
def server(tmp_path):
    dev = DevServer(tmp_path)
    dev.hub.notify = lambda: dev.notices.append("reload")
    dev.notices = []
    return dev


def test_inject_snippet():
    assert inject_snippet("<body>a</body></html>", "<s/>") == "<body>a<s/></body></html>"
    assert inject_snippet("bare", "<s/>") == "bare<s/>"
    assert "':4242'" in reload_snippet(4242)


def test_known_post_is_served_with_reload_snippet(site):
    handler = make_handler(site, "/blog/known/")
    assert _ReloadHandler.send_head(handler) is None
    assert handler.statuses == [200]
    body = handler.wfile.getvalue().decode()
    assert "known post" in body
    assert body.index("WebSocket") < body.index("</body>")


def test_unknown_slug_gets_404_page(site):
    handler = make_handler(site, "/blog/unknown-slug/")
    assert _ReloadHandler.send_head(handler) is None
    assert handler.statuses == [404]
    body = handler.wfile.getvalue().decode()
    assert "oops" in body
    assert "location.reload" in body


def test_directory_without_index_is_not_listed(site):
    (site / "api").mkdir()
    handler = make_handler(site, "/api/")
    _ReloadHandler.send_head(handler)
    assert handler.statuses == [404]


def test_404_without_custom_page(tmp_path):
    handler = make_handler(tmp_path, "/missing")
    _ReloadHandler.send_head(handler)
    assert handler.statuses == [("error", 404)]


def test_non_html_files_use_default_handler(site):
    handler = make_handler(site, "/feed.xml")
    result = _ReloadHandler.send_head(handler)
    assert result is not None
    assert result.read() == b"<rss/>"
    result.close()


def test_ports_and_watched_dirs(tmp_path):
    (tmp_path / "folio.yaml").write_text(
        "port: 4100\nws_port: 4200\ncontent_dir: posts\n", encoding="utf-8"
    )
    dev = DevServer(tmp_path)
    assert dev.http_port == 4100
    assert dev.ws_port == 4200
    assert dev.hub.port == 4200
    assert dev.output_dir == tmp_path / "output"
    assert tmp_path / "posts" in dev.watched_dirs
    assert tmp_path / "layouts" in dev.watched_dirs

    assert DevServer(tmp_path, http_port=5055).ws_port == 5056
    assert DevServer(tmp_path, http_port=5055, ws_port=6000).ws_port == 6000


def test_change_handler_ignores_generated_files(tmp_path, server):
    calls = []
    server.rebuild = lambda include_unpublished: calls.append(include_unpublished)
    handler = _ChangeHandler(server, include_unpublished=True)

    handler.on_any_event(FakeEvent(server.output_dir / "index.html"))
    handler.on_any_event(FakeEvent(server.staging_dir / "index.html"))
    handler.on_any_event(FakeEvent(tmp_path / "node_modules" / "x.js"))
    handler.on_any_event(FakeEvent(tmp_path / "content", is_directory=True))
    assert calls == []

    handler.on_any_event(FakeEvent(tmp_path / "content" / "blog" / "post.md"))
    assert calls == [True]


def test_rebuild_publishes_staged_build(monkeypatch, server):
    server.output_dir.mkdir()
    (server.output_dir / "old.html").write_text("old", encoding="utf-8")
    builds = []

    def fake_build(root, include_unpublished=False, root_url=None, clean_output=True, output_dir_override=None):
        builds.append((include_unpublished, root_url, output_dir_override))
        (output_dir_override / "index.html").write_text("new", encoding="utf-8")

    monkeypatch.setattr("folio.server.build_site", fake_build)
    server.fingerprint = lambda: ("changed",)
    assert server.rebuild(include_unpublished=True) is True
    assert builds == [(True, "http://localhost:4000", server.staging_dir)]
    assert server.notices == ["reload"]
    assert (server.output_dir / "index.html").read_text(encoding="utf-8") == "new"
    assert not (server.output_dir / "old.html").exists()
    assert not server.staging_dir.exists()

    # same sources: nothing to do
    assert server.rebuild(include_unpublished=True) is False
    assert len(builds) == 1


def test_rebuild_skipped_while_building(monkeypatch, server):
    monkeypatch.setattr("folio.server.build_site", lambda *args, **kwargs: None)
    server.fingerprint = lambda: ("x",)
    server._build_lock.acquire()
    try:
        assert server.rebuild(include_unpublished=False) is False
    finally:
        server._build_lock.release()
    assert server.notices == []


def test_failed_rebuild_keeps_current_output(monkeypatch, server, caplog):
    server.output_dir.mkdir()
    (server.output_dir / "index.html").write_text("current", encoding="utf-8")
    server.fingerprint = lambda: ("changed",)

    def failing_build(root, **kwargs):
        raise BuildError(root / "layouts" / "post.html.jinja", "broken")

    monkeypatch.setattr("folio.server.build_site", failing_build)
    with caplog.at_level(logging.ERROR, logger="folio.server"):
        assert server.rebuild(include_unpublished=False) is False
    assert (server.output_dir / "index.html").read_text(encoding="utf-8") == "current"
    assert "Rebuild failed" in caplog.text
    assert server.notices == []
    assert not server._build_lock.locked()


def test_source_fingerprint(tmp_path):
    assert source_fingerprint(tmp_path, [tmp_path / "content"]) is None

    (tmp_path / "content" / "blog").mkdir(parents=True)
    (tmp_path / "content" / "blog" / "post.md").write_text("hi", encoding="utf-8")
    (tmp_path / "static").mkdir()
    (tmp_path / "static" / "dangling.txt").symlink_to(tmp_path / "nope.txt")
    (tmp_path / "folio.yaml").write_text("port: 4000\n", encoding="utf-8")
    fingerprint = source_fingerprint(
        tmp_path, [tmp_path / "content", tmp_path / "static", tmp_path / "folio.yaml"]
    )
    names = [entry[0] for entry in fingerprint]
    assert names == [str(Path("content/blog/post.md")), "folio.yaml"]


def test_publish_staged_replaces_target(tmp_path):
    staging = tmp_path / "staging"
    staging.mkdir()
    (staging / "new.html").write_text("new", encoding="utf-8")
    target = tmp_path / "output"
    target.mkdir()
    (target / "old.html").write_text("old", encoding="utf-8")
    publish_staged(staging, target)
    assert [p.name for p in target.iterdir()] == ["new.html"]
    assert not staging.exists()


def test_watch_schedules_existing_dirs(monkeypatch, tmp_path):
    (tmp_path / "content" / "blog").mkdir(parents=True)
    (tmp_path / "data").mkdir()
    dev = DevServer(tmp_path)
    scheduled = []

    class FakeObserver:
        def schedule(self, handler, path, recursive):
            scheduled.append((path, recursive))

        def start(self):
            scheduled.append("started")

    monkeypatch.setattr("folio.server.Observer", FakeObserver)
    dev.watch(include_unpublished=False)
    assert (str(tmp_path / "content" / "blog"), True) in scheduled
    assert (str(tmp_path / "data"), True) in scheduled
    assert (str(tmp_path / "static"), True) not in scheduled
    assert (str(tmp_path), False) in scheduled
    assert scheduled[-1] == "started"


def test_hub_broadcast_drops_failing_clients():
    hub = ReloadHub(4001)

    class GoodClient:
        def __init__(self):
            self.messages = []

        async def send(self, message):
            self.messages.append(message)

    class BrokenClient:
        async def send(self, message):
            raise ConnectionError("gone")

    good, broken = GoodClient(), BrokenClient()
    hub.clients = {good, broken}
    asyncio.run(hub.broadcast("hello"))
    assert good.messages == ["hello"]
    assert hub.clients == {good}
    hub.loop.close()


def test_hub_notify_targets_its_loop(monkeypatch):
    hub = ReloadHub(4001)
    seen = {}

    def fake_threadsafe(coro, loop):
        seen["loop"] = loop
        runner = asyncio.new_event_loop()
        try:
            return runner.run_until_complete(coro)
        finally:
            runner.close()

    monkeypatch.setattr("folio.server.asyncio.run_coroutine_threadsafe", fake_threadsafe)
    hub.notify()
    assert seen["loop"] is hub.loop
    hub.loop.close()


def test_hub_tracks_connections_and_stop(tmp_path):
    dev = DevServer(tmp_path)

    class Client:
        closed = False

        async def wait_closed(self):
            self.closed = True

    client = Client()
    asyncio.run(dev.hub.connect(client))
    assert client.closed
    assert client not in dev.hub.clients

    class FakeObserver:
        def __init__(self):
            self.calls = []

        def stop(self):
            self.calls.append("stop")

        def join(self):
            self.calls.append("join")

    observer = FakeObserver()
    dev._observer = observer
    dev.stop()
    assert observer.calls == ["stop", "join"]
    assert dev._observer is None


def write_post(tmp_path: Path, text: str) -> Path:
    post = tmp_path / "content" / "blog" / "post.md"
    post.parent.mkdir(parents=True, exist_ok=True)
    post.write_text(text, encoding="utf-8")
    return post


def copying_build(calls, during_first_build=None):
    def fake_build(root, output_dir_override=None, **kwargs):
        calls.append("build")
        if during_first_build is not None and len(calls) == 1:
            during_first_build()
        text = (root / "content" / "blog" / "post.md").read_text(encoding="utf-8")
        (output_dir_override / "index.html").write_text(text, encoding="utf-8")

    return fake_build


def test_edit_during_build_is_rebuilt_on_next_event(monkeypatch, tmp_path, server):
    post = write_post(tmp_path, "first")
    calls = []
    monkeypatch.setattr(
        "folio.server.build_site",
        copying_build(calls, lambda: post.write_text("EDITED later", encoding="utf-8")),
    )
    assert server.rebuild(include_unpublished=False) is True
    assert server.rebuild(include_unpublished=False) is True
    assert calls == ["build", "build"]
    assert (server.output_dir / "index.html").read_text(encoding="utf-8") == "EDITED later"


def test_event_during_build_is_queued(monkeypatch, tmp_path, server):
    post = write_post(tmp_path, "first")
    calls = []

    def edit_and_notify():
        post.write_text("EDITED while building", encoding="utf-8")
        assert server.rebuild(include_unpublished=False) is False

    monkeypatch.setattr("folio.server.build_site", copying_build(calls, edit_and_notify))
    assert server.rebuild(include_unpublished=False) is True
    assert calls == ["build", "build"]
    assert server.notices == ["reload", "reload"]
    assert (server.output_dir / "index.html").read_text(encoding="utf-8") == "EDITED while building"
    assert not server._build_lock.locked()
