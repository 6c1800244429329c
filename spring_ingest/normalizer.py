import re
from typing import Optional, Tuple
from urllib.parse import parse_qs, urljoin, urlsplit

import webcolors
from slugify import slugify

PRODUCT_PARAM = "product"
STORE_TOKENS = ("sgmsays",)

SMALL_WORDS = {
    "a", "an", "and", "as", "at", "but", "by", "for", "in", "nor",
    "of", "on", "or", "per", "the", "to", "vs", "via",
}
ACRONYMS = {"usa", "us", "usmc", "usaf", "ptsd", "sgt", "nco"}

DRINKWARE_KEYWORDS = ("mug", "bottle", "tumbler", "cup", "flask")
ACCESSORY_KEYWORDS = (
    "hat", "cap", "beanie", "snapback", "trucker",
    "bag", "tote", "backpack", "sticker", "phone case", "keychain",
)

# Merch colour names webcolors' CSS3 table does not know.
EXTRA_COLORS = {
    "heather grey": "#9fa1a4",
    "heather gray": "#9fa1a4",
    "athletic heather": "#b4b4b4",
    "dark heather": "#4c4e53",
    "charcoal": "#36454f",
    "royal": "#4169e1",
    "royal blue": "#4169e1",
    "forest": "#228b22",
    "military green": "#4b5320",
    "army": "#4b5320",
    "sand": "#c2b280",
    "heather navy": "#3a405a",
    "cardinal": "#c41e3a",
    "burgundy": "#800020",
    "oatmeal": "#d8cbb5",
}

_NOISE_PREFIX = re.compile(r"^(?:(?:buy|get|new)[-\s_]+)+", re.I)
_STORE_TOKEN = re.compile(r"\b(?:%s)\b" % "|".join(STORE_TOKENS), re.I)
_TRAILING_NUMBER = re.compile(r"-\d+$")
_PRODUCT_ARTIFACT = re.compile(r"\s*(?:\(product\)|\[product\])\s*", re.I)
_TYPE_COLOR_SEPARATOR = " - "


def sanitize_slug(segment: str) -> str:
    return re.sub(r"[^a-z0-9-]", "-", segment, flags=re.I).lower()


def product_param(href: str, base_url: str) -> Optional[str]:
    query = urlsplit(urljoin(base_url + "/", href)).query
    values = parse_qs(query).get(PRODUCT_PARAM)
    return values[0] if values and values[0] else None


def slug_from_href(href: str, base_url: str) -> str:
    """
    Stable design slug: last non-empty path segment, plus the product
    selector when the listing link carries one (mug vs shirt of one design).
    """
    path = urlsplit(urljoin(base_url + "/", href)).path
    parts = [p for p in path.split("/") if p]
    slug = sanitize_slug(parts[-1]) if parts else sanitize_slug(href)
    param = product_param(href, base_url)
    if param:
        slug = f"{slug}-{sanitize_slug(param)}"
    return slug


def looks_sluggy(text: str) -> bool:
    return bool(
        re.search(r"[-_]", text)
        or re.match(r"^(buy|get|new)[-\s_]", text, re.I)
        or _STORE_TOKEN.search(text)
        or _TRAILING_NUMBER.search(text)
    )


def _title_case(words):
    last = len(words) - 1
    out = []
    for i, word in enumerate(words):
        lw = word.lower()
        if lw in ACRONYMS:
            out.append(lw.upper())
        elif 0 < i < last and lw in SMALL_WORDS:
            out.append(lw)
        else:
            out.append(lw[:1].upper() + lw[1:])
    return " ".join(out)


def normalize_title(raw: Optional[str], fallback_slug: Optional[str] = None) -> str:
    s = (raw or "").strip()
    if not s and fallback_slug:
        s = fallback_slug
    if not s:
        return ""

    if not looks_sluggy(s):
        return re.sub(r"\s{2,}", " ", s).strip()

    s = s.replace("_", "-")
    # Store tokens go first so a buy/get/new word behind one becomes the prefix.
    s = _STORE_TOKEN.sub("", s)
    s = re.sub(r"-{2,}", "-", s).strip("-")
    s = _NOISE_PREFIX.sub("", s)
    s = re.sub(r"\bnew\b", "", s, flags=re.I)
    s = re.sub(r"-?\d+$", "", s)
    s = re.sub(r"-{2,}", "-", s).strip("-")
    if not s and fallback_slug:
        s = fallback_slug
    if not s:
        return ""

    s = s.replace("-", " ")
    s = _PRODUCT_ARTIFACT.sub(" ", s)
    s = re.sub(r"\s{2,}", " ", s).strip()
    return _title_case(s.split(" ")) if s else ""


def clean_label(label: str) -> str:
    return re.sub(r"\s{2,}", " ", _PRODUCT_ARTIFACT.sub(" ", label or "")).strip()


def categorize_product_type(product_type: Optional[str]) -> str:
    kind = (product_type or "").lower()
    if any(k in kind for k in DRINKWARE_KEYWORDS):
        return "drinkware"
    if any(k in kind for k in ACCESSORY_KEYWORDS):
        return "accessories"
    return "apparel"


def product_type_suffix(product_type: str) -> str:
    return slugify(product_type) or "product"


def split_type_and_color(label: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """'Hoodie - Navy' -> ('Hoodie', 'Navy'); no separator -> (None, None)."""
    if not label or _TYPE_COLOR_SEPARATOR not in label:
        return None, None
    kind, color = label.split(_TYPE_COLOR_SEPARATOR, 1)
    return kind.strip() or None, color.strip() or None


def normalize_hex(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    value = value.strip()
    if not value.startswith("#"):
        value = "#" + value
    try:
        return webcolors.normalize_hex(value)
    except ValueError:
        return None


def color_name_to_hex(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    key = re.sub(r"\s+", " ", name.strip().lower())
    if key in EXTRA_COLORS:
        return EXTRA_COLORS[key]
    for candidate in (key, key.replace(" ", "")):
        try:
            return webcolors.name_to_hex(candidate)
        except ValueError:
            continue
    return None


def resolve_color_hex(explicit: Optional[str], name: Optional[str]) -> Optional[str]:
    return normalize_hex(explicit) or color_name_to_hex(name)
