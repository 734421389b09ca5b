"""Small stand-ins for the Playwright sync objects the scraper touches."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional


@dataclass
class FakeNode:
    text: str = ""
    attrs: dict[str, str] = field(default_factory=dict)
    children: dict[str, list["FakeNode"]] = field(default_factory=dict)
    visible: bool = True
    image: bytes = b""
    on_click: Optional[Callable[[dict[str, Any]], None]] = None
    on_dblclick: Optional[Callable[[], None]] = None
    clicks: list[dict[str, Any]] = field(default_factory=list)
    checked: bool = False
    filled: Optional[str] = None


class FakeLocator:
    def __init__(self, nodes: Optional[list[FakeNode]] = None) -> None:
        self.nodes = list(nodes or [])

    @property
    def first(self) -> "FakeLocator":
        return FakeLocator(self.nodes[:1])

    def nth(self, index: int) -> "FakeLocator":
        return FakeLocator(self.nodes[index : index + 1])

    def count(self) -> int:
        return len(self.nodes)

    def locator(self, selector: str) -> "FakeLocator":
        if not self.nodes:
            return FakeLocator()
        return FakeLocator(self.nodes[0].children.get(selector, []))

    def or_(self, other: "FakeLocator") -> "FakeLocator":
        return self if self.nodes else other

    def _node(self) -> FakeNode:
        if not self.nodes:
            raise AssertionError("locator resolved to no elements")
        return self.nodes[0]

    def inner_text(self) -> str:
        return self._node().text

    def get_attribute(self, name: str) -> Optional[str]:
        return self._node().attrs.get(name)

    def is_visible(self) -> bool:
        return bool(self.nodes) and self.nodes[0].visible

    def click(self, **kwargs: Any) -> None:
        node = self._node()
        node.clicks.append(kwargs)
        if node.on_click is not None:
            node.on_click(kwargs)

    def dblclick(self, **kwargs: Any) -> None:
        node = self._node()
        if node.on_dblclick is not None:
            node.on_dblclick()
        node.clicks.append({"dblclick": True, **kwargs})

    def check(self) -> None:
        if self.nodes:
            self.nodes[0].checked = True

    def fill(self, value: str) -> None:
        self._node().filled = value

    def screenshot(self, **_: Any) -> bytes:
        return self._node().image

    def wait_for(self, **_: Any) -> None:
        return None

    def scroll_into_view_if_needed(self) -> None:
        return None


class _Expectation:
    def __init__(self, value: Any) -> None:
        self.value = value


class FakePage:
    def __init__(
        self,
        *,
        selectors: Optional[dict[str, list[FakeNode]]] = None,
        texts: Optional[dict[str, list[FakeNode]]] = None,
        evaluate_results: Optional[dict[str, Any]] = None,
        content: str = "",
        title: str = "",
        url: str = "https://riss.mcrecorder.org/",
        frames: Optional[list[Any]] = None,
        navigates_to: Optional[str] = None,
    ) -> None:
        self.selectors = selectors or {}
        self.texts = texts or {}
        self.evaluate_results = evaluate_results or {}
        self._content = content
        self._title = title
        self.url = url
        self.start_url = url
        self.navigates_to = navigates_to
        self.frames = frames or []
        self.main_frame = self.frames[0] if self.frames else None
        self.evaluations: list[tuple[str, Any]] = []
        self.waits: list[int] = []
        self.load_states: list[str] = []
        self.waited_selectors: list[str] = []
        self.missing_selectors: set[str] = set()
        self.calls: list[str] = []
        self.closed = False
        self.default_timeout: Optional[int] = None

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self.selectors.get(selector, []))

    def get_by_text(self, text: str, exact: bool = False) -> FakeLocator:
        return FakeLocator(self.texts.get(text, []))

    def get_by_label(self, text: str, **_: Any) -> FakeLocator:
        return FakeLocator(self.texts.get(text, []))

    def get_by_role(self, role: str, name: str = "", **_: Any) -> FakeLocator:
        return FakeLocator(self.texts.get(name, []))

    def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluations.append((script, arg))
        result = self.evaluate_results.get(script)
        return result(arg) if callable(result) else result

    def wait_for_timeout(self, ms: int) -> None:
        self.waits.append(ms)

    def is_closed(self) -> bool:
        return self.closed

    def wait_for_load_state(self, state: str = "load", **_: Any) -> None:
        self.load_states.append(state)

    def wait_for_selector(self, selector: str, **_: Any) -> None:
        self.waited_selectors.append(selector)
        if selector in self.missing_selectors:
            from playwright.sync_api import TimeoutError as PWTimeout

            raise PWTimeout(f"Timeout waiting for {selector}")

    def goto(self, url: str, **_: Any) -> None:
        self.calls.append(f"goto:{url}")
        self.url = url

    def bring_to_front(self) -> None:
        self.calls.append("bring_to_front")

    def set_default_timeout(self, timeout: int) -> None:
        self.default_timeout = timeout

    def title(self) -> str:
        return self._title

    def content(self) -> str:
        return self._content

    def go_back(self, **_: Any) -> None:
        self.calls.append("go_back")
        self.url = self.start_url

    def screenshot(self, **kwargs: Any) -> bytes:
        self.calls.append("screenshot")
        return b"page-shot"

    def close(self) -> None:
        self.closed = True

    @contextmanager
    def expect_navigation(self, **_: Any) -> Iterator[_Expectation]:
        self.calls.append("expect_navigation")
        yield _Expectation(None)
        if self.navigates_to is not None:
            self.url = self.navigates_to


class FakeContext:
    def __init__(self, pages: Optional[list[Any]] = None) -> None:
        self.pending_pages = list(pages or [])
        self.granted: list[tuple[list[str], Optional[str]]] = []
        self.closed = False

    @contextmanager
    def expect_page(self, **_: Any) -> Iterator[_Expectation]:
        expectation = _Expectation(None)
        yield expectation
        expectation.value = self.pending_pages.pop(0)

    def grant_permissions(self, permissions: list[str], origin: Optional[str] = None) -> None:
        self.granted.append((list(permissions), origin))

    def close(self) -> None:
        self.closed = True


class FakeViewerFrame:
    """A viewer frame that pages through ``pages`` with a next button."""

    def __init__(self, pages: list[bytes], *, markers: Optional[set[str]] = None, url: str = "https://onbase.mcohio.org/viewer") -> None:
        self.pages = pages
        self.index = 0
        self.markers = markers if markers is not None else {"#htmlViewer, img.document-image"}
        self.url = url
        self.next_clicks = 0
        self.waited: list[str] = []

    def evaluate(self, script: str, arg: Any = None) -> Any:
        import base64

        from riss.scraper.viewer import CANVAS_CAPTURE_SCRIPT, IMAGE_READY_SCRIPT

        if arg is not None:
            return arg in self.markers
        if script == IMAGE_READY_SCRIPT:
            return True
        if script == CANVAS_CAPTURE_SCRIPT:
            if not self.pages:
                return None
            return base64.b64encode(self.pages[self.index]).decode("ascii")
        return None

    def wait_for_selector(self, selector: str, **_: Any) -> None:
        self.waited.append(selector)

    def locator(self, selector: str) -> Any:
        return _NextButton(self)


class _NextButton:
    def __init__(self, frame: FakeViewerFrame) -> None:
        self.frame = frame

    @property
    def first(self) -> "_NextButton":
        return self

    def get_attribute(self, name: str) -> Optional[str]:
        return "true" if self.frame.index >= len(self.frame.pages) - 1 else "false"

    def click(self, **_: Any) -> None:
        self.frame.index += 1
        self.frame.next_clicks += 1
