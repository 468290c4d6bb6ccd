"""Response header decoration wrapped around the static file responder.

A ``Pipeline`` owns an innermost handler and an ordered list of stages,
listed outermost first. ``handle`` runs the handler, then lets each stage
mutate the same response on its way back out, innermost stage first::

    request -> [COOP] -> [COEP] -> [Cache-Control] -> serve_static
    response <- COOP <- COEP <- Cache-Control <- serve_static

Stages never fail a request. A stage that cannot produce a valid header
value leaves the header alone (or uses a fixed fallback) and the rest of
the response is delivered unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from functools import partial
from typing import Protocol

from config import DEFAULT_CACHE_CONTROL, ServerConfig
from handlers.static_files import serve_static
from request import HTTPRequest
from response import HTTPResponse, is_valid_header_value

logger = logging.getLogger(__name__)

Handler = Callable[[HTTPRequest], HTTPResponse]

CROSS_ORIGIN_OPENER_POLICY = "Cross-Origin-Opener-Policy"
CROSS_ORIGIN_EMBEDDER_POLICY = "Cross-Origin-Embedder-Policy"
CACHE_CONTROL = "Cache-Control"


class ResponseStage(Protocol):
    def apply(self, request: HTTPRequest, response: HTTPResponse) -> None: ...


def is_html_like(path: str) -> bool:
    """Return True for paths that name a navigable document.

    ``.html`` files, directory paths and extension-less routes (which a
    client-side router resolves to an index document) count as documents;
    everything else is a static asset.
    """
    return path.endswith(".html") or path.endswith("/") or "." not in path


class SetHeaderIfMissing:
    """Set a fixed header unless the wrapped handler already set one."""

    def __init__(self, name: str, value: str) -> None:
        if not is_valid_header_value(value):
            raise ValueError(f"invalid value for {name}: {value!r}")
        self.name = name
        self.value = value

    def apply(self, request: HTTPRequest, response: HTTPResponse) -> None:
        if not response.has_header(self.name):
            response.headers[self.name] = self.value

    def __repr__(self) -> str:
        return f"SetHeaderIfMissing({self.name!r}, {self.value!r})"


class CacheControlStage:
    """Overwrite Cache-Control with the policy for the request's path class.

    Policies are checked once here rather than per request. An invalid
    asset policy is replaced with ``DEFAULT_CACHE_CONTROL``; an invalid HTML
    policy disables the header for HTML-like paths. Without an HTML policy
    every path gets the asset policy.
    """

    def __init__(self, asset_policy: str, html_policy: str | None = None) -> None:
        if not is_valid_header_value(asset_policy):
            logger.warning(
                "Invalid asset Cache-Control %r, falling back to %r",
                asset_policy,
                DEFAULT_CACHE_CONTROL,
            )
            asset_policy = DEFAULT_CACHE_CONTROL

        if html_policy is None:
            html_policy = asset_policy

        self.asset_policy = asset_policy
        self.html_policy: str | None = html_policy
        if not is_valid_header_value(html_policy):
            logger.warning(
                "Invalid HTML Cache-Control %r, header will be omitted for documents",
                html_policy,
            )
            self.html_policy = None

    def policy_for(self, path: str) -> str | None:
        if is_html_like(path):
            return self.html_policy
        return self.asset_policy

    def apply(self, request: HTTPRequest, response: HTTPResponse) -> None:
        policy = self.policy_for(request.path)
        if policy is not None:
            response.set_header(CACHE_CONTROL, policy)

    def __repr__(self) -> str:
        return f"CacheControlStage(asset={self.asset_policy!r}, html={self.html_policy!r})"


class Pipeline:
    def __init__(self, handler: Handler, stages: Sequence[ResponseStage] = ()) -> None:
        self.handler = handler
        self.stages = tuple(stages)

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        return self.decorate(request, self.handler(request))

    def decorate(self, request: HTTPRequest, response: HTTPResponse) -> HTTPResponse:
        """Apply the stages to a response the handler did not produce."""
        for stage in reversed(self.stages):
            stage.apply(request, response)
        return response

    __call__ = handle


def build_pipeline(config: ServerConfig, handler: Handler | None = None) -> Pipeline:
    """Assemble the COOP, COEP and Cache-Control stages around handler.

    handler defaults to the static file responder rooted at
    ``config.static_dir``.
    """
    if handler is None:
        handler = partial(serve_static, static_dir=config.static_dir)
    return Pipeline(
        handler,
        [
            SetHeaderIfMissing(CROSS_ORIGIN_OPENER_POLICY, "same-origin"),
            SetHeaderIfMissing(CROSS_ORIGIN_EMBEDDER_POLICY, "require-corp"),
            CacheControlStage(
                asset_policy=config.cache_control,
                html_policy=config.html_cache_control,
            ),
        ],
    )
