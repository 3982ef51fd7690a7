# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PageRenderer boundary and the render stage of a page task.

The core only depends on the two protocols below; ``browser_renderer`` holds
the Playwright implementation. ``render_page()`` opens the page, resolves its
context, captures the screenshot and always closes the artifact, so nothing
browser-side outlives the render slot.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from .config import ConfigSnapshot
from .errors import RenderTimeoutError
from .models import PageContext, PageTask, RenderedPage

logger = logging.getLogger(__name__)

_UNDECLARED = (None, "", "undefined", "null")


@dataclass(frozen=True, slots=True)
class RenderOptions:
    timeout: float = 30.0  # seconds
    full_page_screenshot: bool = False


class RenderArtifact(Protocol):
    """A loaded page: screenshot plus read-only evaluation against its runtime."""

    url: str
    screenshot: bytes

    async def evaluate(self, expression: str) -> Any: ...

    async def close(self) -> None: ...


class PageRenderer(Protocol):
    """Opens a URL and waits for a stable state.

    Raises ``RenderTimeoutError`` or ``NavigationError`` (both ``RenderError``).
    """

    async def open(self, url: str, options: RenderOptions) -> RenderArtifact: ...


# ---------------------------------------------------------------------------
# Page context resolution
# ---------------------------------------------------------------------------


async def _evaluate_variable(artifact: RenderArtifact, name: str, expression: str) -> str | None:
    try:
        value = await artifact.evaluate(expression)
    except Exception as exc:  # page scripts may throw; the variable is then undeclared
        logger.debug("Variable %s not resolvable on %s: %s", name, artifact.url, exc)
        return None
    if value in _UNDECLARED:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


async def resolve_page_context(artifact: RenderArtifact, snapshot: ConfigSnapshot, task: PageTask) -> PageContext:
    """Resolve page type and page variables for a rendered page.

    Page type precedence: on-page marker -> URL pattern -> task hint -> default.
    """
    table = snapshot.page_types
    page_type: str | None = None
    source = "default"

    if table.marker_expression:
        marker = await _evaluate_variable(artifact, "page type marker", table.marker_expression)
        if marker:
            page_type, source = table.normalize(marker), "marker"
    if page_type is None:
        matched = table.match_url(artifact.url or task.url)
        if matched:
            page_type, source = matched, "url"
    if page_type is None and task.page_type_hint:
        page_type, source = table.normalize(task.page_type_hint), "hint"
    if page_type is None:
        page_type = table.default_page_type

    variables: dict[str, str] = {}
    for name, expression in table.variable_expressions.items():
        value = await _evaluate_variable(artifact, name, expression)
        if value is not None:
            variables[name] = value

    return PageContext(url=artifact.url or task.url, page_type=page_type, page_type_source=source, variables=variables)


async def render_page(
    renderer: PageRenderer,
    task: PageTask,
    snapshot: ConfigSnapshot,
    options: RenderOptions,
) -> RenderedPage:
    """Run the render stage for *task* within ``options.timeout``.

    Raises ``RenderError`` subclasses; a timeout anywhere in the stage becomes
    ``RenderTimeoutError``.
    """
    try:
        async with asyncio.timeout(options.timeout):
            artifact = await renderer.open(task.url, options)
            try:
                context = await resolve_page_context(artifact, snapshot, task)
                screenshot = artifact.screenshot
            finally:
                await artifact.close()
    except TimeoutError as exc:
        raise RenderTimeoutError(f"render exceeded {options.timeout:g}s", url=task.url) from exc

    logger.info(
        "Rendered %s as %s (source=%s, %d variables)",
        task.url,
        context.page_type,
        context.page_type_source,
        len(context.variables),
    )
    return RenderedPage(page_id=task.id, url=context.url, screenshot=screenshot, context=context)
