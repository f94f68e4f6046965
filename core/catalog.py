# WORKFLOW: Product catalog loading and validation.
# Used by: Pipeline orchestrator, product code epoch mapper, indicator builders, CLI, API
# Functions:
# 1. load_product_catalog() - Parse products.toml and validate it into a ProductCatalog
# 2. ProductCatalog.active_epoch() - Epoch lookup for a product and a year
# 3. ProductCatalog.rate_parameters() - Configured circularity rates as a DataFrame
#
# Catalog flow: products.toml -> toml.load -> pydantic models -> cross-field checks -> ProductCatalog
# Any inconsistency raises CatalogConfigurationError before a single year is processed.

"""
Product catalog loading and validation.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
import toml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from core.exceptions import CatalogConfigurationError

logger = logging.getLogger(__name__)


class Epoch(BaseModel):
    """A nomenclature epoch: the years during which one PRODCOM code list is authoritative."""
    name: str
    start_year: int = Field(..., ge=1900, le=2100)
    end_year: Optional[int] = Field(None, ge=1900, le=2100)

    @model_validator(mode="after")
    def check_range(self):
        if self.end_year is not None and self.end_year < self.start_year:
            raise ValueError(f"Epoch '{self.name}' ends ({self.end_year}) before it starts ({self.start_year})")
        return self

    def contains(self, year: int) -> bool:
        return self.start_year <= year and (self.end_year is None or year <= self.end_year)

    def overlaps(self, other: "Epoch") -> bool:
        self_end = self.end_year if self.end_year is not None else 10_000
        other_end = other.end_year if other.end_year is not None else 10_000
        return self.start_year <= other_end and other.start_year <= self_end


class ProductParameters(BaseModel):
    weight_kg: Optional[float] = Field(None, gt=0)
    unit: str = "piece"
    current_circularity_rate: float = Field(..., ge=0.0, le=100.0)
    potential_circularity_rate: float = Field(..., ge=0.0, le=100.0)
    refurbishment_rate: Optional[float] = Field(None, ge=0.0, le=100.0)

    @model_validator(mode="after")
    def check_rates(self):
        if self.potential_circularity_rate < self.current_circularity_rate:
            raise ValueError(
                f"potential_circularity_rate ({self.potential_circularity_rate}) is lower than "
                f"current_circularity_rate ({self.current_circularity_rate})"
            )
        return self

    @property
    def effective_refurbishment_rate(self) -> float:
        if self.refurbishment_rate is not None:
            return self.refurbishment_rate
        return self.current_circularity_rate


class Product(BaseModel):
    key: str
    id: int
    name: str = Field(..., min_length=1)
    prodcom_codes: Dict[str, List[str]]
    hs_codes: List[str] = Field(default_factory=list)
    waste_codes: List[str] = Field(default_factory=list)
    parameters: ProductParameters

    @field_validator("prodcom_codes")
    @classmethod
    def check_prodcom_codes(cls, v):
        if not v:
            raise ValueError("at least one epoch with PRODCOM codes is required")
        for epoch_name, codes in v.items():
            if not codes:
                raise ValueError(f"epoch '{epoch_name}' has an empty PRODCOM code list")
        return v

    @field_validator("hs_codes", "waste_codes")
    @classmethod
    def strip_codes(cls, v):
        return [code.strip() for code in v if code.strip()]


class ProductCatalog(BaseModel):
    epochs: Dict[str, Epoch]
    products: Dict[str, Product]
    waste_category_map: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_consistency(self):
        ids = [product.id for product in self.products.values()]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate product ids: {duplicates}")

        for product in self.products.values():
            unknown = [name for name in product.prodcom_codes if name not in self.epochs]
            if unknown:
                raise ValueError(f"product '{product.key}' references unknown epochs: {unknown}")

            # At most one epoch may be active for a product in any year
            used = [self.epochs[name] for name in product.prodcom_codes]
            for i, first in enumerate(used):
                for second in used[i + 1:]:
                    if first.overlaps(second):
                        raise ValueError(
                            f"product '{product.key}' uses overlapping epochs "
                            f"'{first.name}' and '{second.name}'"
                        )
        return self

    def active_epoch(self, product: Product, year: int) -> Optional[Epoch]:
        """Return the epoch whose range contains ``year`` for this product, if any."""
        for epoch_name in product.prodcom_codes:
            epoch = self.epochs[epoch_name]
            if epoch.contains(year):
                return epoch
        return None

    def sorted_products(self) -> List[Product]:
        return sorted(self.products.values(), key=lambda p: p.id)

    def piece_weights_kg(self) -> Dict[str, float]:
        """Average unit weights used to turn counted pieces into mass."""
        return {
            product.key: product.parameters.weight_kg
            for product in self.sorted_products()
            if product.parameters.weight_kg is not None
        }

    def mass_balance_categories(self, product: Product) -> List[str]:
        """Mass-balance categories for a product, translated through the waste category map."""
        categories = []
        for code in product.waste_codes:
            category = self.waste_category_map.get(code)
            if category and category not in categories:
                categories.append(category)
        return categories

    def rate_parameters(self) -> pd.DataFrame:
        rows = []
        for product in self.sorted_products():
            rows.append({
                "product_key": product.key,
                "product_name": product.name,
                "current_circularity_rate_pct": product.parameters.current_circularity_rate,
                "potential_circularity_rate_pct": product.parameters.potential_circularity_rate,
                "refurbishment_rate_pct": product.parameters.effective_refurbishment_rate,
                "weight_kg": product.parameters.weight_kg,
            })
        return pd.DataFrame(rows, columns=[
            "product_key", "product_name", "current_circularity_rate_pct",
            "potential_circularity_rate_pct", "refurbishment_rate_pct", "weight_kg",
        ])


def parse_product_catalog(config: dict) -> ProductCatalog:
    """
    Build a validated catalog from an already parsed TOML document.

    Args:
        config: Parsed products.toml content

    Returns:
        Validated ProductCatalog
    """
    try:
        epochs = {
            name: {"name": name, **values}
            for name, values in config.get("epochs", {}).items()
        }
        products = {
            key: {"key": key, **values}
            for key, values in config.get("products", {}).items()
        }
        if not products:
            raise CatalogConfigurationError("Product catalog defines no products")

        return ProductCatalog(
            epochs=epochs,
            products=products,
            waste_category_map=config.get("waste_category_map", {}),
        )

    except ValidationError as e:
        logger.error(f"Product catalog validation failed: {e}")
        raise CatalogConfigurationError(
            "Product catalog validation failed",
            context={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def load_product_catalog(config_path: str) -> ProductCatalog:
    """
    Load and validate the product catalog.

    Args:
        config_path: Path to products.toml

    Returns:
        Validated ProductCatalog
    """
    path = Path(config_path)
    if not path.exists():
        raise CatalogConfigurationError(
            f"Product catalog not found: {config_path}",
            context={"path": str(path)},
        )

    try:
        config = toml.load(path)
    except toml.TomlDecodeError as e:
        logger.error(f"Failed to parse product catalog {config_path}: {e}")
        raise CatalogConfigurationError(
            f"Product catalog is not valid TOML: {e}",
            context={"path": str(path)},
        ) from e

    catalog = parse_product_catalog(config)
    logger.info(f"Loaded {len(catalog.products)} products and {len(catalog.epochs)} epochs from {config_path}")
    return catalog
