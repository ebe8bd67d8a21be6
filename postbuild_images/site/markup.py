"""
Markup Pass — Find media placeholders in built pages and rewrite them.

A placeholder is an element carrying the marker attribute, optionally
with a resize policy, wrapping exactly one <img>:

    <picture optimize-image resize="up">
      <img src="/img/photo.jpg" alt="">
    </picture>

becomes

    <picture>
      <source srcset="/img/photoa.webp 1x, /img/photob.webp 1.5x, ..." type="image/webp"/>
      <img src="/img/photo.jpg" alt="">
    </picture>

A bare <img optimize-image ...> is wrapped in a new <picture> first.
Every placeholder on a page is validated before the page is touched,
so a malformed placeholder leaves the file as it was.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup, Tag

from ..config.settings import MarkupSettings
from ..engine.planner import density_descriptors, derivative_paths
from ..errors import DecodeError, MissingRequiredAttributeError
from ..models.media import MediaReference, ResizePolicy

logger = logging.getLogger(__name__)

DERIVATIVE_MIME = "image/webp"


@dataclass
class Placeholder:
    """A validated placeholder, ready to be rewritten."""

    element: Tag
    image: Tag
    src: str
    policy: ResizePolicy


def _site_path(src: str, page_dir: str) -> str:
    """Resolve an <img src> to a path relative to the site root."""
    if src.startswith("/"):
        return posixpath.normpath(src).lstrip("/")
    return posixpath.normpath(posixpath.join(page_dir, src)).lstrip("/")


def scan_placeholders(
    soup: BeautifulSoup,
    settings: Optional[MarkupSettings] = None,
    page: Optional[str] = None,
) -> List[Placeholder]:
    """
    Collect and validate every placeholder in a parsed page.

    Raises:
        MissingRequiredAttributeError: No <img>, several <img>, or no src
        UnknownResizePolicyError: Policy attribute is not none/up/down
    """
    settings = settings or MarkupSettings()
    found = []

    for element in soup.find_all(attrs={settings.marker_attribute: True}):
        if element.name == "img":
            image = element
        else:
            images = element.find_all("img")
            if len(images) != 1:
                raise MissingRequiredAttributeError(
                    f"<{element.name} {settings.marker_attribute}> must contain exactly one <img>, "
                    f"found {len(images)}",
                    asset=page,
                    stage="markup",
                )
            image = images[0]

        src = (image.get("src") or "").strip()
        if not src:
            raise MissingRequiredAttributeError(
                f"<img> inside <{element.name} {settings.marker_attribute}> has no src",
                asset=page,
                stage="markup",
            )

        policy = ResizePolicy.parse(element.get(settings.policy_attribute), asset=src)
        found.append(Placeholder(element=element, image=image, src=src, policy=policy))

    return found


def _rewrite(soup: BeautifulSoup, placeholder: Placeholder, settings: MarkupSettings) -> None:
    paths = derivative_paths(placeholder.src, placeholder.policy)
    descriptors = density_descriptors(placeholder.policy)
    if descriptors:
        srcset = ", ".join(f"{path} {d}" for path, d in zip(paths, descriptors))
    else:
        srcset = paths[0]

    element = placeholder.element
    del element[settings.marker_attribute]
    if element.has_attr(settings.policy_attribute):
        del element[settings.policy_attribute]

    if element is placeholder.image:
        element.wrap(soup.new_tag("picture"))

    placeholder.image.insert_before(
        soup.new_tag("source", attrs={"srcset": srcset, "type": DERIVATIVE_MIME})
    )


def rewrite_page(
    html: str,
    settings: Optional[MarkupSettings] = None,
    page: Optional[str] = None,
    page_dir: str = "",
) -> Tuple[str, List[MediaReference]]:
    """
    Rewrite one page's placeholders.

    Args:
        html: Page markup
        settings: Marker convention
        page: Page path, for error messages
        page_dir: Page directory relative to the site root, for relative srcs

    Returns:
        (rewritten html, media references in document order). The html is
        returned unchanged when the page has no placeholders.
    """
    settings = settings or MarkupSettings()
    soup = BeautifulSoup(html, "html.parser")
    placeholders = scan_placeholders(soup, settings, page)
    if not placeholders:
        return html, []

    references = []
    for placeholder in placeholders:
        _rewrite(soup, placeholder, settings)
        references.append(
            MediaReference(
                source_path=_site_path(placeholder.src, page_dir),
                resize_policy=placeholder.policy,
                page=page,
            )
        )

    return str(soup), references


def rewrite_page_file(
    path: Path,
    output_root: Path,
    settings: Optional[MarkupSettings] = None,
) -> List[MediaReference]:
    """Rewrite a built page in place and return its media references."""
    path = Path(path)
    relative = path.relative_to(output_root).as_posix()
    try:
        html = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DecodeError(f"cannot read page: {e}", asset=relative, stage="markup") from e

    rewritten, references = rewrite_page(
        html,
        settings,
        page=relative,
        page_dir=posixpath.dirname(relative),
    )
    if references:
        path.write_text(rewritten, encoding="utf-8")
        logger.debug(f"Rewrote {len(references)} placeholder(s) in {relative}")
    return references
