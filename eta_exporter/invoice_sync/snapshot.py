"""Read-only snapshots of the rendered view.

The live page is serialised once per read with a few computed facts stamped
onto each element (visibility, emphasis, form values and a handle used to
click the matching live node). Every extraction strategy works on the
parsed copy, so a single call always sees one consistent tree.
"""

from __future__ import annotations

import re
from typing import Iterable, Iterator, List, Optional
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup, Tag

SNAP_ATTR = "data-eta-snap"
VISIBLE_ATTR = "data-eta-visible"
BOLD_ATTR = "data-eta-bold"
BACKGROUND_ATTR = "data-eta-bg"
VALUE_ATTR = "data-eta-value"

CAPTURE_SCRIPT = """
() => {
  const root = document.documentElement;
  const body = document.body;
  const result = { url: location.href, html: "", canGoBack: history.length > 1 };
  if (!root) {
    return result;
  }
  if (body) {
    let idx = 0;
    for (const el of body.querySelectorAll("*")) {
      el.setAttribute("data-eta-snap", String(idx++));
      const style = window.getComputedStyle(el);
      const rect = el.getBoundingClientRect();
      const opacity = parseFloat(style.opacity || "1");
      const visible = rect.width > 0 && rect.height > 0
        && style.display !== "none"
        && style.visibility !== "hidden"
        && !(opacity <= 0);
      el.setAttribute("data-eta-visible", visible ? "1" : "0");
      const weight = parseInt(style.fontWeight, 10);
      const bold = style.fontWeight === "bold" || style.fontWeight === "bolder" || weight >= 600;
      el.setAttribute("data-eta-bold", bold ? "1" : "0");
      const bg = style.backgroundColor || "";
      const filled = bg !== "" && bg !== "transparent" && bg !== "rgba(0, 0, 0, 0)";
      el.setAttribute("data-eta-bg", filled ? "1" : "0");
      if (el.tagName === "INPUT" || el.tagName === "TEXTAREA" || el.tagName === "SELECT") {
        el.setAttribute("data-eta-value", el.value == null ? "" : String(el.value));
      }
    }
  }
  result.html = root.outerHTML;
  return result;
}
"""

_HIDDEN_STYLE_RE = re.compile(
    r"display\s*:\s*none|visibility\s*:\s*hidden|opacity\s*:\s*0(?:\.0+)?\s*(?:;|$)",
    re.I,
)
_BOLD_STYLE_RE = re.compile(r"font-weight\s*:\s*(?:bold|bolder|[6-9]00)", re.I)
_BACKGROUND_STYLE_RE = re.compile(r"background(?:-color)?\s*:\s*([^;]+)", re.I)
_TRANSPARENT_VALUES = {"transparent", "none", "rgba(0, 0, 0, 0)", "rgba(0,0,0,0)", "initial", "inherit"}


class Snapshot:
    def __init__(self, *, url: str, html: str, can_go_back: bool = False) -> None:
        self.url = url
        self.html = html
        self.can_go_back = can_go_back
        self._soup: BeautifulSoup | None = None

    @classmethod
    def from_capture(cls, payload: dict) -> "Snapshot":
        return cls(
            url=str(payload.get("url") or ""),
            html=str(payload.get("html") or ""),
            can_go_back=bool(payload.get("canGoBack")),
        )

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            self._soup = BeautifulSoup(self.html, "html.parser")
        return self._soup

    @property
    def root(self) -> Tag:
        return self.soup.body or self.soup

    def select(self, selector: str) -> List[Tag]:
        try:
            return list(self.root.select(selector))
        except Exception:
            # Malformed or unsupported selector counts as "no match".
            return []

    def select_many(self, selectors: Iterable[str]) -> List[Tag]:
        seen: set[int] = set()
        found: List[Tag] = []
        for selector in selectors:
            for element in self.select(selector):
                if id(element) in seen:
                    continue
                seen.add(id(element))
                found.append(element)
        return found

    def body_text(self) -> str:
        return self.root.get_text("\n", strip=True)

    def query_params(self) -> dict[str, list[str]]:
        parsed = urlparse(self.url)
        params = parse_qs(parsed.query)
        # SPA routers often keep state in the fragment.
        if "?" in parsed.fragment:
            params.update(parse_qs(parsed.fragment.split("?", 1)[1]))
        return params

    @property
    def path(self) -> str:
        parsed = urlparse(self.url)
        path = parsed.path
        if parsed.fragment.startswith("/"):
            path = parsed.fragment.split("?", 1)[0]
        return path


def iter_ancestors(element: Tag, *, include_self: bool = True) -> Iterator[Tag]:
    current: Optional[Tag] = element if include_self else element.parent
    while isinstance(current, Tag):
        yield current
        current = current.parent


def is_visible(element: Tag) -> bool:
    marker = element.get(VISIBLE_ATTR)
    if marker is not None:
        return marker == "1"
    for node in iter_ancestors(element):
        if node.name in {"body", "html"}:
            break
        if node.has_attr("hidden") or node.get("aria-hidden") == "true":
            return False
        style = node.get("style") or ""
        if style and _HIDDEN_STYLE_RE.search(style):
            return False
    return True


def is_emphasized(element: Tag) -> bool:
    """Bold weight or a filled background, as a current-page control is drawn."""

    if element.get(BOLD_ATTR) == "1" or element.get(BACKGROUND_ATTR) == "1":
        return True
    style = element.get("style") or ""
    if _BOLD_STYLE_RE.search(style):
        return True
    match = _BACKGROUND_STYLE_RE.search(style)
    if match and match.group(1).strip().lower() not in _TRANSPARENT_VALUES:
        return True
    return element.name in {"b", "strong"}


def text_of(element: Tag | None) -> str:
    if element is None:
        return ""
    return " ".join(element.get_text(" ", strip=True).split())


def text_parts(element: Tag | None) -> List[str]:
    if element is None:
        return []
    return [" ".join(part.split()) for part in element.stripped_strings if part.strip()]


def value_of(element: Tag | None) -> str:
    if element is None:
        return ""
    for attr in (VALUE_ATTR, "value"):
        raw = element.get(attr)
        if raw is not None and str(raw).strip():
            return str(raw)
    return element.get_text("\n", strip=True)


def label_of(element: Tag) -> str:
    """Accessible label: aria-label, then title, then visible text."""

    for attr in ("aria-label", "title"):
        raw = element.get(attr)
        if raw and str(raw).strip():
            return " ".join(str(raw).split())
    return text_of(element)


def class_list(element: Tag) -> List[str]:
    raw = element.get("class") or []
    if isinstance(raw, str):
        return raw.split()
    return list(raw)


def snap_id(element: Tag) -> str | None:
    raw = element.get(SNAP_ATTR)
    return str(raw) if raw is not None else None
