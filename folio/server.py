"""Local preview server for Folio.

``folio serve`` builds the site, serves it over HTTP and keeps it fresh:

- HTML responses get a small script that listens on a websocket and reloads
  the page when a rebuild lands.
- Paths that resolve to nothing (unknown post slugs included) answer 404 with
  the site's own 404.html when the build produced one. Directories are never
  listed.
- A watchdog observer watches posts, data, layouts and static files. Each
  change rebuilds into a staging directory; only a successful build replaces
  the served output.

Key classes:
- DevServer: Wires the build, HTTP server, reload hub and watcher together.
- ReloadHub: Websocket clients waiting for reload notices.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import os
import shutil
import threading
import time
from collections.abc import Iterable
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import websockets
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .build import BuildError, build_site
from .config import CONFIG_FILENAME, load_config

logger = logging.getLogger(__name__)

RELOAD_MESSAGE = json.dumps({"type": "reload"})
IGNORED_PARTS = frozenset({"node_modules", ".git", "__pycache__"})


def reload_snippet(ws_port: int) -> str:
    """Return the script tag that reloads the page on a websocket notice."""
    return (
        "<script>\n"
        "(function () {\n"
        f"  var socket = new WebSocket('ws://' + location.hostname + ':{ws_port}');\n"
        "  socket.addEventListener('message', function (event) {\n"
        "    var notice = JSON.parse(event.data || '{}');\n"
        "    if (notice.type === 'reload') { location.reload(); }\n"
        "  });\n"
        "})();\n"
        "</script>\n"
    )


def inject_snippet(page: str, snippet: str) -> str:
    """Insert ``snippet`` before ``</body>``, or append it when there is none."""
    head, marker, tail = page.rpartition("</body>")
    if not marker:
        return page + snippet
    return head + snippet + marker + tail


def source_fingerprint(project_root: Path, sources: Iterable[Path]) -> tuple | None:
    """Describe every file under ``sources`` by relative path, mtime and size.

    Two equal fingerprints mean nothing a build reads has changed. Returns
    None when no source file exists.
    """
    entries: list[tuple[str, int, int]] = []
    for source in sources:
        if source.is_file():
            candidates = [source]
        elif source.is_dir():
            candidates = sorted(source.rglob("*"))
        else:
            continue
        for path in candidates:
            try:
                stat = path.stat()
            except OSError:
                continue
            if path.is_dir():
                continue
            entries.append(
                (str(path.relative_to(project_root)), stat.st_mtime_ns, stat.st_size)
            )
    return tuple(entries) or None


def publish_staged(staging: Path, target: Path) -> None:
    """Replace ``target`` with the finished build in ``staging``."""
    if target.exists():
        shutil.rmtree(target)
    os.replace(staging, target)


class _ReloadHandler(SimpleHTTPRequestHandler):
    """Serves the output directory with the reload snippet in every page."""

    snippet = reload_snippet(4001)

    def end_headers(self):
        self.send_header("Cache-Control", "no-store")
        super().end_headers()

    def log_message(self, format, *args):
        logger.debug("%s %s", self.address_string(), format % args)

    def list_directory(self, path):
        return self._serve_404()

    def _resolve(self) -> Path | None:
        target = Path(self.translate_path(self.path))
        if target.is_dir():
            target = target / "index.html"
        return target if target.is_file() else None

    def _send_page(self, status: int, page: Path) -> None:
        body = inject_snippet(page.read_text(encoding="utf-8"), self.snippet).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _serve_404(self):
        not_found = Path(self.directory) / "404.html"
        if not_found.is_file():
            self._send_page(404, not_found)
        else:
            self.send_error(404, "Not found")
        return None

    def send_head(self):
        target = self._resolve()
        if target is None:
            return self._serve_404()
        if target.suffix == ".html":
            self._send_page(200, target)
            return None
        return super().send_head()


class ReloadHub:
    """Websocket endpoint that fans reload notices out to open pages.

    The hub owns its own event loop, which runs on a background thread once
    :meth:`run` is called.
    """

    def __init__(self, port: int):
        self.port = port
        self.clients: set = set()
        self.loop = asyncio.new_event_loop()

    def run(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_until_complete(self._serve())
        except OSError as exc:
            logger.error("Reload websocket failed to start on port %d: %s", self.port, exc)

    async def _serve(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self.connect, "0.0.0.0", self.port):
            await asyncio.Future()

    async def connect(self, websocket) -> None:
        self.clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self.clients.discard(websocket)

    async def broadcast(self, message: str) -> None:
        for client in list(self.clients):
            try:
                await client.send(message)
            except Exception as exc:
                logger.debug("Dropping reload client: %s", exc)
                self.clients.discard(client)

    def notify(self) -> None:
        """Schedule a reload notice from any thread."""
        asyncio.run_coroutine_threadsafe(self.broadcast(RELOAD_MESSAGE), self.loop)

    def close(self) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)


class DevServer:
    """Builds, serves and rebuilds a Folio project.

    Attributes:
        project_root: Root directory of the project.
        config: Loaded project configuration.
        output_dir: Directory served over HTTP.
        http_port: HTTP port; ``--port`` beats ``port`` in folio.yaml.
        ws_port: Websocket port; explicit, else ``ws_port`` from config when
            the HTTP port was not overridden, else ``http_port + 1``.
        hub: The ReloadHub notified after each successful rebuild.
    """

    def __init__(
        self,
        project_root: Path,
        http_port: int | None = None,
        ws_port: int | None = None,
    ):
        self.project_root = project_root
        self.config = load_config(project_root)
        self.output_dir = project_root / self.config["output_dir"]
        self.staging_dir = project_root / f".{self.config['output_dir']}.staging"
        self.http_port = int(http_port or self.config["port"])
        if ws_port is None:
            configured = self.config.get("ws_port") if http_port is None else None
            ws_port = int(configured or self.http_port + 1)
        self.ws_port = ws_port
        self.root_url = f"http://localhost:{self.http_port}"
        self.hub = ReloadHub(self.ws_port)
        self._observer: Observer | None = None
        self._build_lock = threading.Lock()
        self._pending = False
        self._fingerprint: tuple | None = None

    @property
    def watched_dirs(self) -> list[Path]:
        return [
            self.project_root / self.config[key]
            for key in ("content_dir", "data_dir", "layouts_dir", "static_dir")
        ]

    def fingerprint(self) -> tuple | None:
        return source_fingerprint(
            self.project_root, [*self.watched_dirs, self.project_root / CONFIG_FILENAME]
        )

    def start(self, include_unpublished: bool = False) -> None:  # pragma: no cover - integration path
        self.build(include_unpublished)
        threading.Thread(target=self._serve_http, daemon=True).start()
        threading.Thread(target=self.hub.run, daemon=True).start()
        self.watch(include_unpublished)
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        self.hub.close()

    def _serve_http(self) -> None:  # pragma: no cover - integration path
        handler_cls = type(
            "_ProjectReloadHandler", (_ReloadHandler,), {"snippet": reload_snippet(self.ws_port)}
        )
        handler = functools.partial(handler_cls, directory=str(self.output_dir))
        httpd = ThreadingHTTPServer(("", self.http_port), handler)
        logger.info("Serving %s at %s", self.output_dir, self.root_url)
        httpd.serve_forever()

    def watch(self, include_unpublished: bool) -> None:
        handler = _ChangeHandler(self, include_unpublished)
        observer = Observer()
        for directory in self.watched_dirs:
            if directory.is_dir():
                observer.schedule(handler, str(directory), recursive=True)
        observer.schedule(handler, str(self.project_root), recursive=False)
        observer.start()
        self._observer = observer

    def build(self, include_unpublished: bool) -> None:
        """Build into the staging directory, then swap it into place.

        Raises:
            BuildError: The build failed; the served output is untouched.
        """
        # Taken first so edits made during the build still count as changes.
        fingerprint = self.fingerprint()
        if self.staging_dir.exists():
            shutil.rmtree(self.staging_dir)
        self.staging_dir.mkdir(parents=True)
        build_site(
            self.project_root,
            include_unpublished=include_unpublished,
            root_url=self.root_url,
            clean_output=True,
            output_dir_override=self.staging_dir,
        )
        publish_staged(self.staging_dir, self.output_dir)
        self._fingerprint = fingerprint

    def rebuild(self, include_unpublished: bool) -> bool:
        """Rebuild after a change and notify browsers.

        Changes that leave the sources identical are skipped. A change
        arriving while a build runs is queued and picked up by that build's
        thread once it finishes. Returns True when a new build was published.
        """
        self._pending = True
        published = False
        while self._pending:
            if not self._build_lock.acquire(blocking=False):
                return published
            try:
                while self._pending:
                    self._pending = False
                    if self._rebuild_once(include_unpublished):
                        published = True
            finally:
                self._build_lock.release()
        return published

    def _rebuild_once(self, include_unpublished: bool) -> bool:
        current = self.fingerprint()
        if current is not None and current == self._fingerprint:
            return False
        logger.info("Change detected, rebuilding")
        try:
            self.build(include_unpublished)
        except BuildError as exc:
            logger.error("Rebuild failed: %s", exc)
            return False
        self.hub.notify()
        return True


class _ChangeHandler(FileSystemEventHandler):
    """Triggers rebuilds for file events outside the generated directories."""

    def __init__(self, server: DevServer, include_unpublished: bool):
        super().__init__()
        self.server = server
        self.include_unpublished = include_unpublished
        self.generated = (server.output_dir, server.staging_dir)

    def is_relevant(self, path: Path) -> bool:
        if IGNORED_PARTS.intersection(path.parts):
            return False
        return not any(path.is_relative_to(root) for root in self.generated)

    def on_any_event(self, event):
        if event.is_directory or not self.is_relevant(Path(event.src_path)):
            return
        self.server.rebuild(self.include_unpublished)
