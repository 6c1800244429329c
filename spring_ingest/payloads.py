"""
Scanners for the undocumented JSON a listing page embeds.

Nothing here raises on malformed input: every helper answers None or an
empty list so the enricher can fall through to its next strategy.
"""
import json, re
from typing import Any, Iterator, List, Optional

from bs4 import BeautifulSoup

FLIGHT_PUSH = re.compile(r'self\.__next_f\.push\(\[1,\s*"((?:[^"\\]|\\.)*)"\]\)', re.S)
BUILD_ID = re.compile(r'"buildId"\s*:\s*"([^"]+)"')
STORE_LISTING_KEY = '"storeListing":'

_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", '"': '"', "\\": "\\", "/": "/", "b": "\b", "f": "\f"}


def unescape_js_string(s: str) -> str:
    """Undo JS string escapes without requiring the body to be valid JSON."""
    out = []
    i, n = 0, len(s)
    while i < n:
        ch = s[i]
        if ch != "\\" or i + 1 >= n:
            out.append(ch)
            i += 1
            continue
        nxt = s[i + 1]
        if nxt == "u" and i + 6 <= n:
            try:
                out.append(chr(int(s[i + 2:i + 6], 16)))
                i += 6
                continue
            except ValueError:
                pass
        out.append(_ESCAPES.get(nxt, nxt))
        i += 2
    return "".join(out)


def match_braces(text: str, start: int) -> Optional[int]:
    """
    Index of the '}' closing the object that opens at text[start].
    Braces inside string literals do not count; backslash escapes are honoured.
    """
    if start >= len(text) or text[start] != "{":
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def extract_object_after_key(text: str, key: str) -> Optional[Any]:
    idx = text.find(key)
    if idx == -1:
        return None
    start = idx + len(key)
    while start < len(text) and text[start].isspace():
        start += 1
    end = match_braces(text, start)
    if end is None:
        return None
    try:
        return json.loads(text[start:end + 1])
    except ValueError:
        return None


def iter_flight_payloads(html: str) -> Iterator[str]:
    soup = BeautifulSoup(html, "lxml")
    for script in soup.find_all("script"):
        body = script.string or script.get_text() or ""
        for m in FLIGHT_PUSH.finditer(body):
            yield unescape_js_string(m.group(1))


def extract_store_listing(html: str) -> Optional[dict]:
    """First `storeListing` object pushed through the streaming hydration calls."""
    for payload in iter_flight_payloads(html):
        obj = extract_object_after_key(payload, STORE_LISTING_KEY)
        if isinstance(obj, dict):
            return obj
    return None


def find_build_id(html: str) -> Optional[str]:
    m = BUILD_ID.search(html)
    return m.group(1) if m else None


def load_next_data(html: str) -> Optional[Any]:
    soup = BeautifulSoup(html, "lxml")
    tag = soup.find("script", id="__NEXT_DATA__")
    raw = tag.string if tag else None
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def _looks_like_product(node: Any) -> bool:
    return isinstance(node, dict) and "id" in node


def find_product_arrays(tree: Any) -> List[dict]:
    """
    Every array anywhere in `tree` whose first element is a product-shaped
    object (has an `id`), flattened in document order. Worklist, no recursion.
    """
    products: List[dict] = []
    stack = [tree]
    while stack:
        node = stack.pop()
        if isinstance(node, list):
            if node and _looks_like_product(node[0]):
                products.extend(p for p in node if isinstance(p, dict))
            else:
                stack.extend(reversed(node))
        elif isinstance(node, dict):
            stack.extend(reversed(list(node.values())))
    return products
