"""Feed and catalog data models."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class FeedVariant:
    color: str
    size: str
    sku: str
    barcode: str
    quantity: int
    price: float


@dataclass(slots=True)
class FeedItem:
    name: str
    brand: str
    mpn: str
    product_code: str
    main_category: str
    category: str
    description: str
    price: float
    tax: float
    images: list[str] = field(default_factory=list)
    variants: list[FeedVariant] = field(default_factory=list)


@dataclass(slots=True)
class ColorBucket:
    label: str
    images: list[str] = field(default_factory=list)
    variants: list[FeedVariant] = field(default_factory=list)


@dataclass(slots=True)
class LogicalProduct:
    family_key: str
    title: str
    vendor: str
    product_type: str
    description: str
    model_code: str
    series: str
    finish: str | None
    buckets: dict[str, ColorBucket] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)

    def variants(self) -> list[FeedVariant]:
        return [variant for bucket in self.buckets.values() for variant in bucket.variants]

    def images(self) -> list[str]:
        seen: list[str] = []
        for bucket in self.buckets.values():
            seen.extend(url for url in bucket.images if url not in seen)
        return seen

    def total_quantity(self) -> int:
        return sum(max(variant.quantity, 0) for variant in self.variants())

    def has_positive_price(self) -> bool:
        return any(variant.price > 0 for variant in self.variants())

    def is_sellable(self) -> bool:
        return self.has_positive_price() and self.total_quantity() > 0

    def has_sizes(self) -> bool:
        return any(variant.size for variant in self.variants())


@dataclass(slots=True)
class Vocabulary:
    colors: frozenset[str]
    finishes: list[tuple[str, str]]
    categories: list[tuple[str, list[str]]]
    generic_category: str = "Ayakkabı"
    default_series: str = "STD"
    color_option: str = "Renk"
    size_option: str = "Beden"
    finish_option: str = "Doku"
    fallback_option_value: str = "Standart"
    open_tag: str = "satis:acik"
    closed_tag: str = "satis:kapali"
