"""Rule set for the product listing checklist.

Each rule is a pure pass/fail check over a Snapshot. Rules are declared
grouped by category (the evaluation order); the order in which results are
presented is fixed separately by RULE_ORDER so it stays stable when rules are
added or regrouped.

Rule catalog (presentation order):
 1. min_title_length        Title is at least 10 characters
 2. has_vendor              Vendor/brand is set
 3. has_product_type        Product type is set
 4. min_description_length  Description (HTML stripped) is at least 50 characters
 5. has_tags                At least one tag                       (fixable)
 6. min_images              At least 3 images
 7. images_have_alt_text    Every image has alt text               (fixable)
 8. seo_title               SEO title is set                       (fixable)
 9. seo_description         SEO description is at least 80 characters (fixable)
10. has_collections         Member of at least one collection      (fixable)
"""

from collections.abc import Callable
from dataclasses import dataclass, replace
from functools import partial

from catalog_compliance.core.types import RuleStatus, Snapshot

MIN_TITLE_LENGTH = 10
MIN_DESCRIPTION_LENGTH = 50
MIN_TAGS = 1
MIN_IMAGES = 3
MIN_SEO_DESCRIPTION_LENGTH = 80
MIN_COLLECTIONS = 1


@dataclass(frozen=True)
class RuleOutcome:
    """Result of evaluating one rule.

    Attributes:
        status: passed or failed.
        details: Human-readable explanation, set for failures.
    """

    status: RuleStatus
    details: str | None = None


PASSED = RuleOutcome(status="passed")


@dataclass(frozen=True)
class Rule:
    """A single named check over a Snapshot.

    Attributes:
        key: Unique rule key.
        label: Short label shown next to the result.
        description: What the rule expects.
        category: Grouping used for evaluation order (content, media, seo, organization).
        fixable: Whether a failure has an automated remediation.
        check: Pure function computing the outcome.
    """

    key: str
    label: str
    description: str
    category: str
    fixable: bool
    check: Callable[[Snapshot], RuleOutcome]


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def _failed(details: str) -> RuleOutcome:
    return RuleOutcome(status="failed", details=details)


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


def check_min_title_length(snapshot: Snapshot) -> RuleOutcome:
    length = len(snapshot.title.strip())
    if length >= MIN_TITLE_LENGTH:
        return PASSED
    return _failed(f"Title is {length} characters, minimum is {MIN_TITLE_LENGTH}.")


def check_min_description_length(snapshot: Snapshot) -> RuleOutcome:
    length = len(snapshot.plain_description())
    if length >= MIN_DESCRIPTION_LENGTH:
        return PASSED
    return _failed(f"Description is {length} characters, minimum is {MIN_DESCRIPTION_LENGTH}.")


def check_has_vendor(snapshot: Snapshot) -> RuleOutcome:
    if snapshot.vendor.strip():
        return PASSED
    return _failed("Vendor/brand is not set.")


def check_has_product_type(snapshot: Snapshot) -> RuleOutcome:
    if snapshot.product_type.strip():
        return PASSED
    return _failed("Product type is not set.")


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------


def check_min_images(snapshot: Snapshot) -> RuleOutcome:
    count = len(snapshot.images)
    if count >= MIN_IMAGES:
        return PASSED
    return _failed(f"Found {_plural(count, 'image')}, minimum is {MIN_IMAGES}.")


def check_images_have_alt_text(snapshot: Snapshot) -> RuleOutcome:
    images = snapshot.images
    if not images:
        return _failed("No images to check. Add images first.")
    missing = [image for image in images if not (image.alt_text or "").strip()]
    if not missing:
        return PASSED
    return _failed(f"{len(missing)} of {_plural(len(images), 'image')} missing alt text.")


# ---------------------------------------------------------------------------
# SEO
# ---------------------------------------------------------------------------


def check_seo_title(snapshot: Snapshot) -> RuleOutcome:
    if (snapshot.seo_title or "").strip():
        return PASSED
    return _failed("SEO title is not set. Using product title as fallback.")


def check_seo_description(snapshot: Snapshot, min_length: int = MIN_SEO_DESCRIPTION_LENGTH) -> RuleOutcome:
    length = len((snapshot.seo_description or "").strip())
    if length >= min_length:
        return PASSED
    if length == 0:
        return _failed("SEO description is not set.")
    return _failed(f"SEO description is {length} characters, need at least {min_length}.")


# ---------------------------------------------------------------------------
# Organization
# ---------------------------------------------------------------------------


def check_has_tags(snapshot: Snapshot) -> RuleOutcome:
    count = len([tag for tag in snapshot.tags if tag.strip()])
    if count >= MIN_TAGS:
        return PASSED
    return _failed(f"Product has {_plural(count, 'tag')}, needs at least {MIN_TAGS}.")


def check_has_collections(snapshot: Snapshot) -> RuleOutcome:
    count = len(snapshot.collections)
    if count >= MIN_COLLECTIONS:
        return PASSED
    return _failed(f"Product is in {_plural(count, 'collection')}, needs at least {MIN_COLLECTIONS}.")


RULES: tuple[Rule, ...] = (
    Rule(
        key="min_title_length",
        label="Product title is descriptive",
        description=f"Title should be at least {MIN_TITLE_LENGTH} characters",
        category="content",
        fixable=False,
        check=check_min_title_length,
    ),
    Rule(
        key="min_description_length",
        label="Product has description",
        description=f"Description should be at least {MIN_DESCRIPTION_LENGTH} characters",
        category="content",
        fixable=False,
        check=check_min_description_length,
    ),
    Rule(
        key="has_vendor",
        label="Vendor/brand is set",
        description="Vendor helps customers find products by brand",
        category="content",
        fixable=False,
        check=check_has_vendor,
    ),
    Rule(
        key="has_product_type",
        label="Product type is set",
        description="Product type helps with filtering and organization",
        category="content",
        fixable=False,
        check=check_has_product_type,
    ),
    Rule(
        key="min_images",
        label="Has enough product images",
        description=f"At least {MIN_IMAGES} images recommended for better conversions",
        category="media",
        fixable=False,
        check=check_min_images,
    ),
    Rule(
        key="images_have_alt_text",
        label="All images have alt text",
        description="Alt text improves SEO and accessibility",
        category="media",
        fixable=True,
        check=check_images_have_alt_text,
    ),
    Rule(
        key="seo_title",
        label="SEO title is set",
        description="Custom SEO title helps search rankings",
        category="seo",
        fixable=True,
        check=check_seo_title,
    ),
    Rule(
        key="seo_description",
        label="SEO description is set",
        description=f"Meta description should be at least {MIN_SEO_DESCRIPTION_LENGTH} characters",
        category="seo",
        fixable=True,
        check=check_seo_description,
    ),
    Rule(
        key="has_tags",
        label="Has at least one tag",
        description="Tags help with filtering and search",
        category="organization",
        fixable=True,
        check=check_has_tags,
    ),
    Rule(
        key="has_collections",
        label="Added to at least one collection",
        description="Products should be organized into collections",
        category="organization",
        fixable=True,
        check=check_has_collections,
    ),
)

# Presentation order, matching the editor layout:
# Title, Vendor, Product Type, Description, Tags, Images, SEO, Collections
RULE_ORDER: dict[str, int] = {
    "min_title_length": 1,
    "has_vendor": 2,
    "has_product_type": 3,
    "min_description_length": 4,
    "has_tags": 5,
    "min_images": 6,
    "images_have_alt_text": 7,
    "seo_title": 8,
    "seo_description": 9,
    "has_collections": 10,
}

RULES_BY_KEY: dict[str, Rule] = {rule.key: rule for rule in RULES}
FIXABLE_RULE_KEYS: frozenset[str] = frozenset(rule.key for rule in RULES if rule.fixable)


def order_index(key: str) -> int:
    """Return the presentation index of a rule key; unknown keys sort last."""
    return RULE_ORDER.get(key, len(RULE_ORDER) + 1)


def build_rules(seo_description_min_length: int = MIN_SEO_DESCRIPTION_LENGTH) -> tuple[Rule, ...]:
    """Return the built-in checklist with a configured SEO description minimum.

    Args:
        seo_description_min_length: Shortest SEO description that passes.

    Returns:
        RULES itself for the default minimum, otherwise a copy whose
        seo_description rule checks the given length.
    """
    if seo_description_min_length == MIN_SEO_DESCRIPTION_LENGTH:
        return RULES
    return tuple(
        replace(
            rule,
            description=f"Meta description should be at least {seo_description_min_length} characters",
            check=partial(check_seo_description, min_length=seo_description_min_length),
        )
        if rule.key == "seo_description"
        else rule
        for rule in RULES
    )
