from datetime import datetime, timezone
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class CatalogModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class VariantRecord(CatalogModel):
    product_id: str = Field(default="unknown", alias="productId")
    label: str
    image: str
    price: Optional[str] = None
    # Wire name predates the storefront rename; both are accepted on read.
    checkout_url: str = Field(
        alias="springUrl",
        validation_alias=AliasChoices("springUrl", "checkoutUrl", "checkout_url"),
    )
    product_type: Optional[str] = Field(default=None, alias="productType")
    color_name: Optional[str] = Field(default=None, alias="colorName")
    color_hex: Optional[str] = Field(default=None, alias="colorHex")


class DesignRecord(CatalogModel):
    slug: str                    # stable key derived from the listing path
    title: str
    category: str = "all"        # discovery-time category tag
    hero_image: str = Field(alias="heroImage")
    variants: List[VariantRecord] = Field(default_factory=list)
    last_indexed: str = Field(default_factory=now_iso, alias="lastIndexed")
    # Absolute listing href the stub was discovered from; never persisted.
    listing_url: Optional[str] = Field(default=None, exclude=True)


class ExpandedProductEntry(DesignRecord):
    """One catalog card: a design restricted to a single product type."""
    design_slug: Optional[str] = Field(default=None, alias="designSlug")
    design_title: Optional[str] = Field(default=None, alias="designTitle")
    product_type: Optional[str] = Field(default=None, alias="productType")

    def source_slug(self) -> str:
        return self.design_slug or self.slug


class CatalogSnapshot(CatalogModel):
    generated_at: str = Field(default_factory=now_iso, alias="generatedAt")
    store: str
    designs: List[ExpandedProductEntry] = Field(default_factory=list)
