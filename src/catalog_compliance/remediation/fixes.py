"""Remediation functions for fixable checklist rules.

A remediation is a pure function from the current snapshot and the tenant's
RemediationConfig to a FixPlan: the patches to send to the catalog and the
message to report. Executing the plan (timeouts, partial failure, audit
refresh) is the dispatcher's job.

A plan with several patches touches several sub-resources (one patch per
image for alt text); the dispatcher reports how many of them succeeded.
"""

from collections.abc import Callable
from dataclasses import dataclass
from functools import partial

from catalog_compliance.core.types import ProductPatch, RemediationConfig, Snapshot

SEO_DESCRIPTION_PADDING = ". Shop now for the best selection and quality products."
SEO_DESCRIPTION_MIN_LENGTH = 80
SEO_DESCRIPTION_MAX_LENGTH = 160


@dataclass(frozen=True)
class FixPlan:
    """Patches proposed by a remediation.

    Attributes:
        patches: Mutations to apply, one per sub-resource.
        message: Success message; may use ``{fixed}`` and ``{attempted}``.
        failure: Set when nothing can be attempted; reported as the message.
    """

    patches: tuple[ProductPatch, ...] = ()
    message: str = ""
    failure: str | None = None


Remediation = Callable[[Snapshot, RemediationConfig], FixPlan]


def build_seo_description(
    snapshot: Snapshot,
    min_length: int = SEO_DESCRIPTION_MIN_LENGTH,
    max_length: int = SEO_DESCRIPTION_MAX_LENGTH,
) -> str:
    """Derive a meta description from title, product type, vendor and tags.

    Short results are padded with a call to action; long results are cut to
    ``max_length`` including a trailing ellipsis.

    Args:
        snapshot: The product to describe.
        min_length: Length below which the padding sentence is appended.
        max_length: Hard maximum length.

    Returns:
        The generated description.
    """
    parts: list[str] = []
    if snapshot.title.strip():
        parts.append(snapshot.title.strip())
    if snapshot.product_type.strip():
        parts.append(f"is a {snapshot.product_type.strip().lower()}")
    if snapshot.vendor.strip():
        parts.append(f"from {snapshot.vendor.strip()}")
    tags = [tag for tag in snapshot.tags if tag.strip()]
    if tags:
        parts.append(f"featuring {', '.join(tags[:3])}")

    description = " ".join(parts)
    if len(description) < min_length:
        description += SEO_DESCRIPTION_PADDING
    if len(description) > max_length:
        description = description[: max_length - 3] + "..."
    return description


def alt_text_for(title: str, position: int) -> str:
    """Alt text for the image at ``position`` (0-based) among those missing one."""
    return title if position == 0 else f"{title} - Image {position + 1}"


def fix_seo_title(snapshot: Snapshot, config: RemediationConfig) -> FixPlan:
    title = snapshot.title.strip()
    if not title:
        return FixPlan(failure="Product has no title to derive an SEO title from")
    return FixPlan(
        patches=(ProductPatch(seo_title=title),),
        message=f'SEO title set to "{title}"',
    )


def fix_seo_description(
    snapshot: Snapshot,
    config: RemediationConfig,
    min_length: int = SEO_DESCRIPTION_MIN_LENGTH,
    max_length: int = SEO_DESCRIPTION_MAX_LENGTH,
) -> FixPlan:
    description = build_seo_description(snapshot, min_length=min_length, max_length=max_length)
    return FixPlan(
        patches=(ProductPatch(seo_description=description),),
        message=f"SEO description generated ({len(description)} chars)",
    )


def fix_image_alt_text(snapshot: Snapshot, config: RemediationConfig) -> FixPlan:
    if not snapshot.images:
        return FixPlan(failure="No images to check. Add images first.")
    missing = [image for image in snapshot.images if not (image.alt_text or "").strip()]
    if not missing:
        return FixPlan(message="All images already have alt text")
    title = snapshot.title.strip()
    if not title:
        return FixPlan(failure="Product has no title to derive alt text from")
    return FixPlan(
        patches=tuple(
            ProductPatch(image_alt_texts={image.id: alt_text_for(title, position)})
            for position, image in enumerate(missing)
        ),
        message="Added alt text to {fixed} of {attempted} images",
    )


def fix_add_to_collection(snapshot: Snapshot, config: RemediationConfig) -> FixPlan:
    if not config.default_collection_id:
        return FixPlan(failure="No default collection configured")
    return FixPlan(
        patches=(ProductPatch(add_collection_ids=(config.default_collection_id,)),),
        message="Added to default collection",
    )


def fix_add_default_tags(snapshot: Snapshot, config: RemediationConfig) -> FixPlan:
    if not config.default_tags:
        return FixPlan(failure="No default tags configured")
    tags = tuple(dict.fromkeys((*snapshot.tags, *config.default_tags)))
    return FixPlan(
        patches=(ProductPatch(tags=tags),),
        message=f"Added default tags: {', '.join(config.default_tags)}",
    )


REMEDIATIONS: dict[str, Remediation] = {
    "seo_title": fix_seo_title,
    "seo_description": fix_seo_description,
    "images_have_alt_text": fix_image_alt_text,
    "has_collections": fix_add_to_collection,
    "has_tags": fix_add_default_tags,
}


def build_remediations(
    seo_description_min_length: int = SEO_DESCRIPTION_MIN_LENGTH,
    seo_description_max_length: int = SEO_DESCRIPTION_MAX_LENGTH,
) -> dict[str, Remediation]:
    """Return the remediation registry with a configured SEO description band."""
    return {
        **REMEDIATIONS,
        "seo_description": partial(
            fix_seo_description,
            min_length=seo_description_min_length,
            max_length=seo_description_max_length,
        ),
    }
