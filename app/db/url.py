from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def normalize_database_url(url: str) -> str:
    """Coerce hosted-Postgres style URLs into the asyncpg dialect.

    Providers hand out ``postgres://`` URLs with libpq's ``sslmode``; asyncpg
    expects ``postgresql+asyncpg://`` and an ``ssl`` query argument.
    """
    url = (url or "").strip()
    if not url:
        return url

    parts = urlsplit(url)
    scheme = parts.scheme
    if scheme in {"postgres", "postgresql", "postgresql+psycopg"}:
        scheme = "postgresql+asyncpg"

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    if scheme == "postgresql+asyncpg" and "sslmode" in query:
        mode = query.pop("sslmode").lower().strip()
        if "ssl" not in query:
            query["ssl"] = "disable" if mode in {"disable", "allow"} else mode

    new_query = urlencode(query, doseq=True)
    return urlunsplit((scheme, parts.netloc, parts.path, new_query, parts.fragment))
