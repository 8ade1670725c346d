"""Call-site options and the classifier that turns them into a build plan."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from requests.structures import CaseInsensitiveDict

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Header:
    """Request headers; a repeated name replaces the earlier value."""

    values: Mapping[str, str]


@dataclass(frozen=True)
class Params:
    """Query parameters appended to the target URL."""

    values: Mapping[str, str]


@dataclass(frozen=True)
class FormData:
    """Form fields sent in a POST body."""

    values: Mapping[str, str]


@dataclass(frozen=True)
class Files:
    """File attachments keyed by form field name, valued by path."""

    values: Mapping[str, str]


@dataclass(frozen=True)
class BasicAuth:
    username: str
    password: str


@dataclass(frozen=True)
class RawBody:
    """Body sent verbatim."""

    data: Union[str, bytes]


@dataclass(frozen=True)
class JsonBody:
    """Structured value that is JSON-encoded into the body."""

    value: Any


Option = Union[Header, Params, FormData, Files, BasicAuth, RawBody, JsonBody]


@dataclass
class BuildPlan:
    """Normalized, builder-ready view of a call's options."""

    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    params: list[tuple[str, str]] = field(default_factory=list)
    form: list[tuple[str, str]] = field(default_factory=list)
    files: list[tuple[str, str]] = field(default_factory=list)
    auth: Optional[BasicAuth] = None
    body: Optional[Union[RawBody, JsonBody]] = None


def classify(options: Iterable[object]) -> BuildPlan:
    """Fold an ordered list of options into a :class:`BuildPlan`.

    Params, form fields and files accumulate as multi-value pairs, headers
    are last-write-wins per name, and only the last auth pair and the last
    body option are kept. Anything that is not an option is skipped.
    """

    plan = BuildPlan()
    for option in options:
        if isinstance(option, Header):
            for key, value in option.values.items():
                plan.headers[key] = value
        elif isinstance(option, Params):
            plan.params.extend(option.values.items())
        elif isinstance(option, FormData):
            plan.form.extend(option.values.items())
        elif isinstance(option, Files):
            plan.files.extend(option.values.items())
        elif isinstance(option, BasicAuth):
            plan.auth = option
        elif isinstance(option, (RawBody, JsonBody)):
            plan.body = option
        else:
            LOGGER.debug("Ignoring unrecognised option of type %s", type(option).__name__)
    return plan


__all__ = [
    "BasicAuth",
    "BuildPlan",
    "Files",
    "FormData",
    "Header",
    "JsonBody",
    "Option",
    "Params",
    "RawBody",
    "classify",
]
