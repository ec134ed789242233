from __future__ import annotations

import asyncio
import itertools
import json
import re
import socket
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

import pytest

# Returned by a responder to leave a Runtime.evaluate unanswered.
NO_REPLY = object()


class FakeJsError(Exception):
    """Raised by a responder to produce `exceptionDetails`."""


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


@dataclass
class FakeTarget:
    id: str
    type: str
    url: str
    title: str = ""
    responder: Callable[[str], Any] | None = None
    chrome_tab_id: int | None = None
    native_group: int = -1


@dataclass
class FakeChrome:
    """Chrome's debugging surface: `/json/*` over HTTP plus per-target CDP websockets."""

    port: int = field(default_factory=_free_port)
    targets: dict[str, FakeTarget] = field(default_factory=dict)
    evaluations: list[tuple[str, str]] = field(default_factory=list)
    browser_commands: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._tab_ids = itertools.count(100)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop: asyncio.Event | None = None
        self._thread: threading.Thread | None = None

    @property
    def endpoint(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    # ── target bookkeeping ────────────────────────────────────────────────

    def add_page(self, url: str = "about:blank", title: str = "", target_id: str | None = None) -> FakeTarget:
        with self._lock:
            tid = target_id or f"PAGE{next(self._ids)}"
            target = FakeTarget(id=tid, type="page", url=url, title=title, chrome_tab_id=next(self._tab_ids))
            self.targets[tid] = target
            return target

    def add_worker(self, extension_id: str, responder: Callable[[str], Any] | None = None) -> FakeTarget:
        with self._lock:
            tid = f"SW{next(self._ids)}"
            target = FakeTarget(
                id=tid,
                type="service_worker",
                url=f"chrome-extension://{extension_id}/background.js",
                responder=responder,
            )
            self.targets[tid] = target
            return target

    def remove(self, target_id: str) -> bool:
        with self._lock:
            return self.targets.pop(target_id, None) is not None

    def pages(self) -> list[FakeTarget]:
        with self._lock:
            return [t for t in self.targets.values() if t.type == "page"]

    def page_by_tab_id(self, chrome_tab_id: int) -> FakeTarget | None:
        return next((t for t in self.pages() if t.chrome_tab_id == chrome_tab_id), None)

    def json_list(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {
                    "id": t.id,
                    "type": t.type,
                    "url": t.url,
                    "title": t.title,
                    "webSocketDebuggerUrl": f"ws://127.0.0.1:{self.port}/devtools/page/{t.id}",
                }
                for t in self.targets.values()
            ]

    # ── CDP ───────────────────────────────────────────────────────────────

    def _evaluate(self, target_id: str, msg_id: Any, expression: str) -> dict[str, Any] | None:
        with self._lock:
            target = self.targets.get(target_id)
            self.evaluations.append((target_id, expression))
        if target is None:
            return {"id": msg_id, "error": {"code": -32000, "message": "No target with given id"}}
        responder = target.responder or (lambda _expr: False)
        try:
            value = responder(expression)
        except FakeJsError as exc:
            return {
                "id": msg_id,
                "result": {
                    "result": {"type": "object", "subtype": "error", "description": f"Error: {exc}"},
                    "exceptionDetails": {"text": "Uncaught", "exception": {"description": f"Error: {exc}"}},
                },
            }
        if value is NO_REPLY:
            return None
        return {"id": msg_id, "result": {"result": {"type": type(value).__name__, "value": value}}}

    def _browser(self, msg_id: Any, method: str, params: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self.browser_commands.append((method, params))
        if method == "Target.createTarget":
            target = self.add_page(url=str(params.get("url") or "about:blank"))
            return {"id": msg_id, "result": {"targetId": target.id}}
        if method == "Target.closeTarget":
            return {"id": msg_id, "result": {"success": self.remove(str(params.get("targetId")))}}
        if method == "Target.activateTarget":
            return {"id": msg_id, "result": {}}
        return {"id": msg_id, "error": {"code": -32601, "message": f"'{method}' wasn't found"}}

    def _respond(self, path: str, msg: dict[str, Any]) -> dict[str, Any] | None:
        msg_id = msg.get("id")
        method = str(msg.get("method") or "")
        params = msg.get("params") if isinstance(msg.get("params"), dict) else {}
        if path.startswith("/devtools/browser/"):
            return self._browser(msg_id, method, params)
        target_id = path.rsplit("/", 1)[-1]
        if method == "Runtime.evaluate":
            return self._evaluate(target_id, msg_id, str(params.get("expression") or ""))
        return {"id": msg_id, "result": {}}

    # ── server ────────────────────────────────────────────────────────────

    async def _main(self, ready: threading.Event) -> None:
        import websockets
        from websockets.datastructures import Headers
        from websockets.http11 import Response

        def _json_response(status: int, reason: str, payload: Any) -> Response:
            body = json.dumps(payload).encode("utf-8")
            headers = Headers()
            headers["Content-Type"] = "application/json"
            headers["Content-Length"] = str(len(body))
            return Response(status, reason, headers, body)

        async def _process_request(_conn, request):  # type: ignore[no-untyped-def]
            if str(request.headers.get("Upgrade") or "").lower() == "websocket":
                return None
            path = request.path.split("?", 1)[0].rstrip("/")
            if path in ("/json", "/json/list"):
                return _json_response(200, "OK", self.json_list())
            if path == "/json/version":
                return _json_response(
                    200,
                    "OK",
                    {
                        "Browser": "FakeChrome/1.0",
                        "Protocol-Version": "1.3",
                        "webSocketDebuggerUrl": f"ws://127.0.0.1:{self.port}/devtools/browser/fake",
                    },
                )
            return _json_response(404, "Not Found", {"error": "not found"})

        async def _handler(ws):  # type: ignore[no-untyped-def]
            path = ws.request.path
            try:
                async for raw in ws:
                    reply = self._respond(path, json.loads(raw))
                    if reply is not None:
                        await ws.send(json.dumps(reply))
            except websockets.ConnectionClosed:
                return

        self._loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        async with websockets.serve(
            _handler, "127.0.0.1", self.port, process_request=_process_request, ping_interval=None
        ):
            ready.set()
            await self._stop.wait()

    def start(self) -> FakeChrome:
        ready = threading.Event()
        self._thread = threading.Thread(target=lambda: asyncio.run(self._main(ready)), daemon=True)
        self._thread.start()
        if not ready.wait(timeout=5.0):
            raise RuntimeError("fake chrome did not start")
        return self

    def stop(self) -> None:
        if self._loop is not None and self._stop is not None:
            self._loop.call_soon_threadsafe(self._stop.set)
        if self._thread is not None:
            self._thread.join(timeout=5.0)


_CALL_RE = re.compile(r"^\s*([A-Za-z_]\w*)\((.*)\)\s*$", re.S)
_WAKE_RE = re.compile(r'chrome\.runtime\.sendMessage\("([a-p]+)"')


class TabGrouperExtension:
    """The companion extension's exported functions, backed by FakeChrome's pages."""

    def __init__(self, chrome: FakeChrome) -> None:
        self.chrome = chrome
        self.groups: dict[int, dict[str, Any]] = {}
        self._group_ids = itertools.count(1)
        self.calls: list[tuple[str, list[Any]]] = []

    def __call__(self, expression: str) -> Any:
        if expression == "typeof groupTabs === 'function'":
            return True
        match = _CALL_RE.match(expression)
        if not match:
            raise FakeJsError(f"unsupported expression: {expression}")
        name, raw_args = match.group(1), match.group(2)
        args = json.loads(f"[{raw_args}]")
        self.calls.append((name, args))
        fn = getattr(self, f"_js_{name}", None)
        if fn is None:
            raise FakeJsError(f"{name} is not defined")
        return fn(*args)

    def _js_groupTabs(self, tab_ids, title, color, existing=None):  # noqa: ANN001, N802
        gid = existing if existing in self.groups else next(self._group_ids)
        self.groups.setdefault(gid, {"title": title, "color": color, "collapsed": False})
        for tab_id in tab_ids:
            page = self.chrome.page_by_tab_id(tab_id)
            if page is None:
                raise FakeJsError(f"No tab with id: {tab_id}")
            page.native_group = gid
        return {"groupId": gid}

    def _js_ungroupTabs(self, tab_ids):  # noqa: ANN001, N802
        for tab_id in tab_ids:
            page = self.chrome.page_by_tab_id(tab_id)
            if page is not None:
                page.native_group = -1
        return True

    def _js_updateTabGroup(self, group_id, updates):  # noqa: ANN001, N802
        if group_id not in self.groups:
            raise FakeJsError(f"No group with id: {group_id}")
        self.groups[group_id].update(updates)
        return True

    def _js_listTabGroups(self):  # noqa: N802
        return [{"id": gid, **info} for gid, info in self.groups.items()]

    def _js_queryTabs(self):  # noqa: N802
        return [
            {"id": p.chrome_tab_id, "url": p.url, "title": p.title, "groupId": p.native_group}
            for p in self.chrome.pages()
        ]

    def _js_createTab(self, url):  # noqa: ANN001, N802
        page = self.chrome.add_page(url=url)
        return {"tabId": page.chrome_tab_id, "url": url, "windowId": 1}

    def _js_closeTab(self, tab_id):  # noqa: ANN001, N802
        page = self.chrome.page_by_tab_id(tab_id)
        if page is None:
            raise FakeJsError(f"No tab with id: {tab_id}")
        self.chrome.remove(page.id)
        return True


def relay_responder(on_wake: Callable[[str], None]) -> Callable[[str], Any]:
    """Another extension's background context: forwards runtime messages, knows nothing else."""

    def _respond(expression: str) -> Any:
        match = _WAKE_RE.search(expression)
        if match:
            on_wake(match.group(1))
            return True
        return False

    return _respond


@pytest.fixture(autouse=True)
def _isolated_paths(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:  # noqa: ANN001
    monkeypatch.setenv("MCP_SHARED_BROWSER_DIR", str(tmp_path / "shared"))
    monkeypatch.setenv("MCP_DAEMON_LOCK", str(tmp_path / "daemon.lock"))
    monkeypatch.setenv("MCP_DAEMON_LOG", str(tmp_path / "daemon.log"))
    for name in ("MCP_CDP_ENDPOINT", "MCP_BROWSER_EXTENSIONS", "MCP_BROWSER_PROFILE", "MCP_BROWSER_BINARY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_chrome() -> Iterator[FakeChrome]:
    try:
        import websockets  # type: ignore[import-not-found]  # noqa: F401
    except Exception:  # noqa: BLE001
        pytest.skip("websockets not installed")
    chrome = FakeChrome().start()
    try:
        yield chrome
    finally:
        chrome.stop()


@pytest.fixture
def store(tmp_path):  # noqa: ANN001, ANN201
    from mcp_servers.shared_browser.tab_groups import TabGroupStore

    return TabGroupStore(tmp_path / "tab-groups.json")
