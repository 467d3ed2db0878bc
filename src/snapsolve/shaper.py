"""Fit image attachments to a model's ceiling."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TypeVar

from .models import ModelProfile

ImageT = TypeVar("ImageT")


def shape_images(images: Sequence[ImageT], profile: ModelProfile) -> list[ImageT]:
    """Keep the earliest images that fit ``profile.max_images``.

    Earlier screenshots are assumed to matter more (the problem statement is
    usually captured first). There is no content-aware ranking.
    """

    limit = max(1, int(profile.max_images))
    return list(images[:limit])


def halve_images(images: Sequence[ImageT]) -> list[ImageT]:
    """Drop the trailing half of the attachments, keeping at least one."""

    keep = max(1, len(images) // 2)
    return list(images[:keep])
