"""Pending cookies and the persistent jar they are flushed into."""

from __future__ import annotations

import copy
import logging
from http.cookiejar import Cookie, CookiePolicy, DefaultCookiePolicy, eff_request_host
from typing import Optional, Union
from urllib.parse import urlsplit

from requests import Request
from requests.cookies import MockRequest, RequestsCookieJar, create_cookie

LOGGER = logging.getLogger(__name__)


def _mock_request(url: str) -> MockRequest:
    return MockRequest(Request("GET", url))


def default_cookie_path(url_path: str) -> str:
    """Directory of the request path, as used for cookies without a Path."""

    if not url_path.startswith("/"):
        return "/"
    directory = url_path.rsplit("/", 1)[0]
    return directory or "/"


class CookieStore:
    """Cookies queued by the caller plus the jar that outlives each call.

    ``set_cookie`` only queues; :meth:`flush` moves the queue into the jar,
    scoped to the URL about to be requested, and empties the queue. Reads
    always go to the jar.
    """

    def __init__(
        self,
        jar: Optional[RequestsCookieJar] = None,
        policy: Optional[CookiePolicy] = None,
    ) -> None:
        self.policy = policy or DefaultCookiePolicy()
        self.jar = jar if jar is not None else RequestsCookieJar(policy=self.policy)
        if jar is not None:
            self.jar.set_policy(self.policy)
        self.pending: list[Cookie] = []

    def set_cookie(self, cookie: Union[Cookie, str], value: Optional[str] = None, **attrs: object) -> Cookie:
        """Queue ``cookie``, or build one from ``name``/``value``/attributes."""

        if isinstance(cookie, str):
            if value is None:
                raise ValueError("A cookie value is required when passing a name")
            attrs.setdefault("domain", "")
            attrs.setdefault("path", "")
            cookie = create_cookie(cookie, value, **attrs)
        self.pending.append(cookie)
        return cookie

    def clear_pending(self) -> None:
        self.pending.clear()

    def flush(self, url: str) -> int:
        """Copy pending cookies into the jar for ``url`` and clear the queue."""

        if not self.pending:
            return 0
        parts = urlsplit(url)
        _, effective_host = eff_request_host(_mock_request(url))
        for pending in self.pending:
            cookie = copy.copy(pending)
            if not cookie.domain:
                cookie.domain = effective_host
                cookie.domain_specified = False
                cookie.domain_initial_dot = False
            if not cookie.path_specified or not cookie.path:
                cookie.path = default_cookie_path(parts.path)
                cookie.path_specified = False
            self.jar.set_cookie(cookie)
        flushed = len(self.pending)
        self.clear_pending()
        LOGGER.debug("Flushed %d pending cookie(s) for %s", flushed, parts.netloc)
        return flushed

    def cookies_for(self, url: str) -> list[Cookie]:
        """Cookies in the jar that would be sent to ``url``."""

        request = _mock_request(url)
        return [cookie for cookie in self.jar if self.policy.return_ok(cookie, request)]


__all__ = ["CookieStore", "default_cookie_path"]
