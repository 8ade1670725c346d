"""Public tracing client: build a request, flush cookies, send it traced."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace
from http.cookiejar import Cookie
from typing import Any, Optional, Union

import requests
from requests import PreparedRequest
from requests.cookies import RequestsCookieJar
from requests.structures import CaseInsensitiveDict
from urllib3.exceptions import LocationParseError
from urllib3.util import parse_url

from .builder import build_get, build_post_form, build_post_json, reset_body
from .config import ClientSettings
from .cookies import CookieStore
from .errors import URLParseError
from .options import BuildPlan, classify
from .response import TracedResponse
from .trace import Clock
from .transport import create_session, traced_send

LOGGER = logging.getLogger(__name__)

Builder = Callable[[str, BuildPlan, CaseInsensitiveDict], PreparedRequest]


def _validate_proxy(proxy_url: str) -> str:
    try:
        parsed = parse_url(proxy_url)
    except LocationParseError as exc:
        raise URLParseError(f"Invalid proxy URL {proxy_url!r}: {exc}") from exc
    if not parsed.scheme or not parsed.host:
        raise URLParseError(f"Proxy URL {proxy_url!r} needs a scheme and a host")
    return proxy_url


class TraceClient:
    """HTTP client that returns a :class:`~tracehttp.trace.TraceStat` with every response.

    Every call builds its own request and timestamp record, so the trace of
    one call never leaks into another. Cookies queued with
    :meth:`set_cookie` move into the persistent jar right before the next
    call is sent.
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        *,
        session: Optional[requests.Session] = None,
        cookie_store: Optional[CookieStore] = None,
        clock: Clock = time.perf_counter,
        **overrides: Any,
    ) -> None:
        base = settings or ClientSettings()
        self.settings = replace(base, **overrides) if overrides else base
        if self.settings.proxy:
            _validate_proxy(self.settings.proxy)
        self.cookie_store = cookie_store or CookieStore()
        self.session = session or create_session()
        self.session.cookies = self.cookie_store.jar
        self.headers: CaseInsensitiveDict = CaseInsensitiveDict({"User-Agent": self.settings.user_agent})
        self._clock = clock

    def __enter__(self) -> "TraceClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    @property
    def jar(self) -> RequestsCookieJar:
        return self.cookie_store.jar

    def set_cookie(self, cookie: Union[Cookie, str], value: Optional[str] = None, **attrs: object) -> Cookie:
        return self.cookie_store.set_cookie(cookie, value, **attrs)

    def clear_cookies(self) -> None:
        self.cookie_store.clear_pending()

    def flush_cookies(self, url: str) -> int:
        return self.cookie_store.flush(url)

    def set_timeout(self, seconds: Optional[float]) -> None:
        self.settings = replace(self.settings, timeout=seconds)

    def set_proxy(self, proxy_url: Optional[str]) -> None:
        if proxy_url:
            _validate_proxy(proxy_url)
        self.settings = replace(self.settings, proxy=proxy_url or None)

    def get(self, url: str, *options: object) -> TracedResponse:
        return self._call(build_get, url, options)

    def post(self, url: str, *options: object) -> TracedResponse:
        """POST a form body, switching to multipart when ``Files`` are given."""

        return self._call(build_post_form, url, options)

    def post_json(self, url: str, *options: object) -> TracedResponse:
        return self._call(build_post_json, url, options)

    def request(self, method: str, url: str, *options: object) -> TracedResponse:
        """Dispatch by name: ``get``, ``post`` or ``post_json``."""

        handlers = {"get": self.get, "post": self.post, "post_json": self.post_json}
        try:
            handler = handlers[method.lower().replace("-", "_")]
        except KeyError:
            raise ValueError(f"Unsupported method {method!r}; expected one of {sorted(handlers)}") from None
        return handler(url, *options)

    def _default_headers(self) -> CaseInsensitiveDict:
        headers = CaseInsensitiveDict(self.headers)
        if not self.settings.keep_alive:
            headers["Connection"] = "close"
        return headers

    def _proxies(self) -> dict[str, str]:
        if not self.settings.proxy:
            return {}
        return {"http": self.settings.proxy, "https": self.settings.proxy}

    def _verify(self) -> Union[bool, str]:
        if self.settings.proxy:
            return False
        return self.settings.ca_bundle or True

    def _call(self, builder: Builder, url: str, options: tuple[object, ...]) -> TracedResponse:
        plan = classify(options)
        prepared = builder(url, plan, self._default_headers())
        try:
            return self._do(prepared)
        finally:
            if prepared.method == "POST":
                reset_body(prepared)

    def _do(self, prepared: PreparedRequest) -> TracedResponse:
        self.flush_cookies(prepared.url)
        exchange = traced_send(
            self.session,
            prepared,
            cookies=self.cookie_store.jar,
            timeout=self.settings.timeout,
            proxies=self._proxies(),
            verify=self._verify(),
            fail_fast=self.settings.fail_fast,
            clock=self._clock,
        )
        return TracedResponse(
            exchange.response,
            exchange.body,
            prepared,
            exchange.stat,
            self.cookie_store,
        )


def trace_requests(settings: Optional[ClientSettings] = None, **overrides: Any) -> TraceClient:
    """Fresh client with its own cookie jar and keep-alive disabled."""

    return TraceClient(settings, **overrides)


__all__ = ["TraceClient", "trace_requests"]
