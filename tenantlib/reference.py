"""
Reference data for license reporting.

Two operator-supplied CSV files describe the products the report can name
and price:

SKU file (one row per product)::

    SkuId,SkuPartNumber,DisplayName,Price,Currency
    06ebc4ee-1bb5-47dd-8120-11324bc54e06,SPE_E5,Microsoft 365 E5,57.00,USD

Service plan file (one row per plan)::

    ServicePlanId,ServicePlanDisplayName
    efb87545-963c-4e0d-99df-69c6916d9eb0,Exchange Online (Plan 2)

Price and Currency are optional per row. Both files are mandatory for a run.
"""
import csv
import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional, Set

from .constants import (
    DEFAULT_CURRENCY,
    PLAN_CSV_DISPLAY_NAME,
    PLAN_CSV_ID,
    SKU_CSV_CURRENCY,
    SKU_CSV_DISPLAY_NAME,
    SKU_CSV_ID,
    SKU_CSV_PART_NUMBER,
    SKU_CSV_PRICE,
)
from .models import Product, ServicePlan

logger = logging.getLogger(__name__)


class ReferenceDataError(Exception):
    """Raised when mandatory reference data is missing or unusable."""


def normalize_id(value) -> str:
    """Canonical form for GUID identifiers (msgraph-sdk hands back UUID objects)."""
    if value is None:
        return ""
    return str(value).strip().lower()


class LookupTable(Mapping[str, str]):
    """
    Identifier -> display name mapping that never fails a lookup.

    ``get_or_default(key)`` falls back to the raw key so incomplete reference
    data degrades to identifiers in the report instead of blanks or errors.
    Misses are logged once per key when a ``misses`` set is shared in.
    """

    def __init__(self, names: Mapping[str, str], kind: str = "identifier",
                 misses: Optional[Set[str]] = None):
        self._names = {normalize_id(k): v for k, v in names.items()}
        self.kind = kind
        self.misses: Set[str] = misses if misses is not None else set()

    def __getitem__(self, key: str) -> str:
        return self._names[normalize_id(key)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def get_or_default(self, key: str, default: Optional[str] = None) -> str:
        name = self._names.get(normalize_id(key))
        if name:
            return name
        if key not in self.misses:
            self.misses.add(key)
            logger.warning(f"Unknown {self.kind} {key} - reporting raw identifier")
        return default if default is not None else key

    def with_misses(self, misses: Set[str]) -> "LookupTable":
        """Copy of this table that records misses into ``misses``."""
        return LookupTable(self._names, self.kind, misses)


@dataclass
class ReferenceData:
    """Products and service plans loaded from the reference CSVs."""
    products: Dict[str, Product] = field(default_factory=dict)
    service_plans: Dict[str, ServicePlan] = field(default_factory=dict)

    @property
    def product_names(self) -> LookupTable:
        return LookupTable(
            {k: p.display_name or p.part_number for k, p in self.products.items()},
            kind="product",
        )

    @property
    def plan_names(self) -> LookupTable:
        return LookupTable(
            {k: p.display_name for k, p in self.service_plans.items()},
            kind="service plan",
        )

    @property
    def price_table(self) -> Dict[str, str]:
        """Identifier -> monthly price for products that carry a price."""
        return {
            k: p.monthly_price for k, p in self.products.items()
            if p.monthly_price not in (None, "")
        }

    def currency(self, configured: Optional[str] = None) -> str:
        """
        Currency for the report.

        An explicitly configured currency wins; otherwise the most common
        currency in the SKU file, falling back to USD.
        """
        seen = Counter(p.currency.upper() for p in self.products.values() if p.currency)
        if len(seen) > 1:
            logger.warning(f"SKU file mixes currencies ({', '.join(sorted(seen))}); "
                           f"costs are summed without conversion")
        if configured:
            return configured.upper()
        if seen:
            return seen.most_common(1)[0][0]
        return DEFAULT_CURRENCY


def _read_rows(path: Path, required: tuple):
    if not path.exists():
        raise ReferenceDataError(f"Reference file not found: {path}")

    with open(path, newline='', encoding='utf-8-sig') as f:
        reader = csv.DictReader(f)
        columns = set(reader.fieldnames or [])
        missing = [c for c in required if c not in columns]
        if missing:
            raise ReferenceDataError(f"{path} is missing column(s): {', '.join(missing)}")
        rows = list(reader)

    if not rows:
        raise ReferenceDataError(f"Reference file is empty: {path}")
    return rows


def load_sku_csv(path) -> Dict[str, Product]:
    """Load the SKU reference file keyed by normalized SKU id."""
    path = Path(path).expanduser()
    rows = _read_rows(path, (SKU_CSV_ID, SKU_CSV_DISPLAY_NAME))

    products: Dict[str, Product] = {}
    for row in rows:
        sku_id = normalize_id(row.get(SKU_CSV_ID))
        if not sku_id:
            continue
        products[sku_id] = Product(
            sku_id=sku_id,
            display_name=(row.get(SKU_CSV_DISPLAY_NAME) or "").strip(),
            part_number=(row.get(SKU_CSV_PART_NUMBER) or "").strip(),
            monthly_price=(row.get(SKU_CSV_PRICE) or "").strip() or None,
            currency=(row.get(SKU_CSV_CURRENCY) or "").strip() or None,
        )

    logger.info(f"Loaded {len(products)} products from {path}")
    return products


def load_service_plan_csv(path) -> Dict[str, ServicePlan]:
    """Load the service plan reference file keyed by normalized plan id."""
    path = Path(path).expanduser()
    rows = _read_rows(path, (PLAN_CSV_ID, PLAN_CSV_DISPLAY_NAME))

    plans: Dict[str, ServicePlan] = {}
    for row in rows:
        plan_id = normalize_id(row.get(PLAN_CSV_ID))
        if not plan_id:
            continue
        plans[plan_id] = ServicePlan(
            plan_id=plan_id,
            display_name=(row.get(PLAN_CSV_DISPLAY_NAME) or "").strip(),
        )

    logger.info(f"Loaded {len(plans)} service plans from {path}")
    return plans


def load_reference_data(sku_csv: Optional[str], service_plan_csv: Optional[str]) -> ReferenceData:
    """
    Load both reference files.

    Raises:
        ReferenceDataError: If either path is unset, missing, empty or malformed
    """
    if not sku_csv:
        raise ReferenceDataError("No SKU reference file configured (--sku-csv)")
    if not service_plan_csv:
        raise ReferenceDataError("No service plan reference file configured (--service-plan-csv)")

    return ReferenceData(
        products=load_sku_csv(sku_csv),
        service_plans=load_service_plan_csv(service_plan_csv),
    )
