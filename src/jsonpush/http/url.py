"""
URL parsing for post destinations.

    http://collector.local:8080/ingest?source=game
    └─┬┘   └──────┬──────┘ └┬─┘└──┬─┘ └────┬────┘
    scheme      host      port  path     query

Connections are pooled per destination key ("scheme://host:port"), so two
URLs that differ only in path or query share one keep-alive connection.
"""

from dataclasses import dataclass
from urllib.parse import urlsplit

from ..errors import UsageError


DEFAULT_PORT = 80


class URLParseError(UsageError):
    """The URL could not be split into scheme, host and port."""


@dataclass(frozen=True)
class ParsedURL:
    """A URL split into the parts the client needs."""
    scheme: str
    host: str
    port: int = DEFAULT_PORT
    path: str = ""
    query: str = ""

    @property
    def host_port(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def destination_key(self) -> str:
        """Registry key: connections are shared per scheme, host and port."""
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def target(self) -> str:
        """Origin-form request target, "/" when the path is empty."""
        target = self.path or "/"
        if self.query:
            target += f"?{self.query}"
        return target


def parse_url(url: str) -> ParsedURL:
    """
    Split a URL into scheme, host, port, path and query.

    Scheme and host are lowercased; path and query are kept verbatim.

    Raises:
        URLParseError: No "://", no host, or a bad port.
    """
    if not isinstance(url, str):
        raise URLParseError(f"URL must be a string, got {type(url).__name__}")

    if "://" not in url:
        raise URLParseError(f"Invalid URL (missing '://'): {url!r}")

    # Fragments are not sent to servers; everything after '?' is the query
    parts = urlsplit(url.strip(), allow_fragments=False)

    host = parts.hostname
    if not host:
        raise URLParseError(f"Invalid URL (missing host): {url!r}")

    try:
        port = parts.port
    except ValueError as e:
        raise URLParseError(f"Invalid port in URL {url!r}: {e}") from e

    return ParsedURL(
        scheme=parts.scheme.lower(),
        host=host.lower(),
        port=port if port is not None else DEFAULT_PORT,
        path=parts.path,
        query=parts.query,
    )
