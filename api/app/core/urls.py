from collections.abc import Iterable
from urllib.parse import urlencode, urlparse, urlunparse

POSTBACK_PATH = "/api/postback"
MACRO_SAFE_CHARS = "{}"


def append_query(base_url: str, pairs: Iterable[tuple[str, str]], *, safe: str = "") -> str:
    """Append encoded query pairs to ``base_url``, keeping any query it already carries."""
    query = urlencode(list(pairs), doseq=True, safe=safe)
    if not query:
        return base_url
    parsed = urlparse(base_url.strip())
    merged = f"{parsed.query}&{query}" if parsed.query else query
    return urlunparse((parsed.scheme, parsed.netloc, parsed.path, parsed.params, merged, parsed.fragment))


def postback_base_url(configured: str | None, request_origin: str) -> str:
    if configured:
        return configured.rstrip("/")
    return request_origin.rstrip("/") + POSTBACK_PATH


def postback_template(base_url: str, postback_type: str, *, include_payout: bool = False) -> str:
    pairs = [("click_id", "{click_id}"), ("type", postback_type)]
    if include_payout:
        pairs.append(("payout", "{payout}"))
    return append_query(base_url, pairs, safe=MACRO_SAFE_CHARS)


def example_postbacks(base_url: str) -> dict[str, str]:
    return {
        "lead": append_query(base_url, [("click_id", "abc123"), ("type", "lead"), ("payout", "5")]),
        "leadNumeric": append_query(base_url, [("click_id", "abc123"), ("type", "1"), ("payout", "5")]),
        "sale": append_query(base_url, [("click_id", "abc123"), ("type", "sale"), ("payout", "25")]),
    }
