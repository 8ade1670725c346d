"""Lazily decoded view over a traced HTTP response."""

from __future__ import annotations

import codecs
import gzip
import io
import json
import logging
import os
import zlib
from http.cookiejar import Cookie
from pathlib import Path
from typing import Any, Optional, Union

import requests
from requests import PreparedRequest
from requests.structures import CaseInsensitiveDict

from .cookies import CookieStore
from .errors import DecodeError, FileAccessError
from .trace import TraceStat

LOGGER = logging.getLogger(__name__)


class TracedResponse:
    """Response body, headers and trace stat for one call.

    The undecoded body is read once, on the first :meth:`content` call, and
    cached; every other accessor derives from that cache.
    """

    def __init__(
        self,
        response: requests.Response,
        body: bytes,
        request: PreparedRequest,
        trace: TraceStat,
        cookie_store: CookieStore,
    ) -> None:
        self.raw = response
        self.request = request
        self.trace = trace
        self._url = request.url or response.url
        self._request_headers = CaseInsensitiveDict(request.headers)
        self._body = io.BytesIO(body)
        self._cookie_store = cookie_store
        self._content: Optional[bytes] = None
        self._text: Optional[str] = None

    def __repr__(self) -> str:
        return f"<TracedResponse [{self.status_code}] {self.url}>"

    @property
    def status_code(self) -> int:
        return self.raw.status_code

    @property
    def headers(self) -> CaseInsensitiveDict:
        return self.raw.headers

    @property
    def url(self) -> str:
        return self.raw.url or self._url

    @property
    def encoding(self) -> str:
        """Declared charset when Python knows the codec, otherwise UTF-8."""

        content_type = self.headers.get("Content-Type", "")
        declared = self.raw.encoding if "charset" in content_type.lower() else None
        if declared:
            try:
                return codecs.lookup(declared).name
            except LookupError:
                LOGGER.debug("Unknown charset %r from %s; decoding as utf-8", declared, self.url)
        return "utf-8"

    def _is_gzipped(self) -> bool:
        declared = self.headers.get("Content-Encoding", "").strip().lower()
        return declared == "gzip" and bool(self._request_headers.get("Accept-Encoding"))

    def content(self) -> bytes:
        if self._content is not None:
            return self._content
        data = self._body.read()
        if self._is_gzipped():
            try:
                data = gzip.decompress(data)
            except (OSError, EOFError, zlib.error) as exc:
                raise DecodeError(f"Response from {self.url} is not valid gzip: {exc}") from exc
        self._content = data
        return data

    def text(self) -> str:
        if self._text is None:
            self._text = self.content().decode(self.encoding, errors="replace")
        return self._text

    def json(self, **kwargs: Any) -> Any:
        """Decode the body as JSON; ``kwargs`` go to :func:`json.loads`."""

        try:
            return json.loads(self.content(), **kwargs)
        except ValueError as exc:
            raise DecodeError(f"Response from {self.url} is not valid JSON: {exc}") from exc

    def save_file(self, path: Union[str, os.PathLike[str]]) -> Path:
        content = self.content()
        target = Path(path)
        try:
            with open(target, "wb") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as exc:
            raise FileAccessError(f"Unable to save response to {target}: {exc}") from exc
        LOGGER.debug("Saved %d bytes from %s to %s", len(content), self.url, target)
        return target

    def cookies(self) -> list[Cookie]:
        """Cookies the jar holds for the URL this call was made to."""

        return self._cookie_store.cookies_for(self._url)


__all__ = ["TracedResponse"]
