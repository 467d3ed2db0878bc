"""First-attempt model selection."""

from __future__ import annotations

import logging

from .models import ModelProfile, ModelRegistry, TaskKind

logger = logging.getLogger(__name__)

DEBUG_UPGRADE_IMAGE_THRESHOLD = 5


def select_profile(
    requested: str | None,
    image_count: int,
    task_kind: TaskKind,
    registry: ModelRegistry,
) -> ModelProfile:
    """Pick the profile for the first attempt; first matching rule wins.

    1. Image-heavy debug sessions on a light model move to the best thorough one.
    2. A request that exceeds the image ceiling moves to a thorough profile
       that can take every image, when one exists.
    3. Otherwise the requested profile (or the default) is used as-is.
    """

    chosen = registry.profile(requested)

    if (
        task_kind is TaskKind.DEBUG
        and image_count > DEBUG_UPGRADE_IMAGE_THRESHOLD
        and chosen.is_light
    ):
        upgraded = registry.best_thorough(chosen.provider)
        if upgraded is not None:
            logger.info(
                "Debug task with %d images: upgrading %s -> %s",
                image_count,
                chosen.name,
                upgraded.name,
            )
            return upgraded

    if image_count > chosen.max_images:
        roomier = registry.thorough_accommodating(image_count, chosen.provider)
        if roomier is not None:
            logger.info(
                "%d images exceed %s ceiling (%d): switching to %s",
                image_count,
                chosen.name,
                chosen.max_images,
                roomier.name,
            )
            return roomier

    return chosen
