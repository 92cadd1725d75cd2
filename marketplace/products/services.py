import csv
import io
from collections import OrderedDict
from typing import List, Optional, Tuple
from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from marketplace.common.custom_exceptions import MarketplaceError
from marketplace.common.utils import clean_str, now
from marketplace.inventory.services import adjust_stock, set_stock
from marketplace.products.constants import CSV_HEADER, CSV_REQUIRED_COLUMNS, logger
from marketplace.products.models import PricingUnitIn, ProductCreateIn, ProductUpdateIn
from marketplace.products.repository import product_by_name, product_units
from marketplace.products.utils import parse_bool, parse_category, split_images
from marketplace.schema.full_schema import PricingUnit, Product, ProductCategory, Shop, StockChangeType


async def _add_unit(session, product: Product, unit_name: str, price: float, stock: Optional[int],
                    threshold: Optional[int], reason: str) -> PricingUnit:
    unit = PricingUnit(
        product_id=product.id,
        unit=unit_name.strip(),
        price=price,
        stock=None if stock is None else 0,
        low_stock_threshold=threshold,
        is_active=True,
    )
    session.add(unit)
    await session.flush()
    if stock:
        await adjust_stock(session, unit.id, stock, StockChangeType.RESTOCKED, reason=reason)
    return unit


async def _update_unit(session, unit: PricingUnit, *, unit_name: Optional[str], price: Optional[float],
                       stock: Optional[int], threshold: Optional[int], is_active: Optional[bool], reason: str) -> None:
    if unit_name:
        unit.unit = unit_name.strip()
    if price is not None:
        unit.price = price
    unit.low_stock_threshold = threshold
    if is_active is not None:
        unit.is_active = is_active
    session.add(unit)
    await session.flush()
    if stock is not None:
        await set_stock(session, unit.id, stock, reason=reason)


async def create_product(session, shop: Shop, payload: ProductCreateIn) -> Product:
    if await product_by_name(session, shop.id, payload.name):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="A product with this name already exists in your shop")

    product = Product(
        shop_id=shop.id,
        name=payload.name.strip(),
        description=clean_str(payload.description),
        category=payload.category,
        images=[img.strip() for img in payload.images if img and img.strip()],
        is_available=payload.isAvailable,
    )
    session.add(product)
    await session.flush()

    for pu in payload.pricingUnits:
        await _add_unit(session, product, pu.unit, pu.price, pu.stock, pu.lowStockThreshold, reason="Initial stock")

    logger.info("product.create.success", extra={"product_id": product.id, "shop_id": shop.id,
                                                 "units": len(payload.pricingUnits)})
    return product


async def update_product(session, product: Product, payload: ProductUpdateIn) -> Product:
    updates = payload.model_dump(exclude_unset=True)

    if "name" in updates and updates["name"].strip().lower() != product.name.lower():
        clash = await product_by_name(session, product.shop_id, updates["name"])
        if clash is not None and clash.id != product.id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                                detail="A product with this name already exists in your shop")
        product.name = updates["name"].strip()
    if "description" in updates:
        product.description = clean_str(updates["description"])
    if updates.get("category") is not None:
        product.category = payload.category
    if updates.get("images") is not None:
        product.images = [img.strip() for img in payload.images if img and img.strip()]
    if updates.get("isAvailable") is not None:
        product.is_available = payload.isAvailable
    product.updated_at = now()
    session.add(product)
    await session.flush()

    if payload.pricingUnits is not None:
        await _apply_unit_changes(session, product, payload.pricingUnits)

    logger.info("product.update.success", extra={"product_id": product.id})
    return product


async def _apply_unit_changes(session, product: Product, incoming: List[PricingUnitIn]) -> None:
    existing = await product_units(session, product.id)
    by_pid = {str(u.public_id): u for u in existing}
    by_name = {u.unit.lower(): u for u in existing}

    for pu in incoming:
        target = None
        if pu.id:
            target = by_pid.get(pu.id)
            if target is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pricing unit not found")
        else:
            target = by_name.get(pu.unit.strip().lower())

        if target is None:
            unit = await _add_unit(session, product, pu.unit, pu.price, pu.stock, pu.lowStockThreshold,
                                   reason="Initial stock")
            by_name[unit.unit.lower()] = unit
            continue

        await _update_unit(session, target, unit_name=pu.unit, price=pu.price, stock=pu.stock,
                           threshold=pu.lowStockThreshold if "lowStockThreshold" in pu.model_fields_set else target.low_stock_threshold,
                           is_active=pu.isActive, reason="Product update")


async def retire_product(session, product: Product) -> None:
    # orders keep pointing at the product, so it is hidden instead of deleted
    product.is_available = False
    product.updated_at = now()
    session.add(product)
    for unit in await product_units(session, product.id):
        unit.is_active = False
        session.add(unit)
    await session.flush()
    logger.info("product.delete.success", extra={"product_id": product.id})


# CSV

class CSVRow:
    __slots__ = ("line", "name", "description", "category", "images", "unit", "price", "stock", "threshold", "available")

    def __init__(self, line, name, description, category, images, unit, price, stock, threshold, available):
        self.line = line
        self.name = name
        self.description = description
        self.category = category
        self.images = images
        self.unit = unit
        self.price = price
        self.stock = stock
        self.threshold = threshold
        self.available = available


def _optional_count(raw: Optional[str], label: str) -> Optional[int]:
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        value = int(float(raw))
    except ValueError:
        raise ValueError(f"{label} must be a whole number")
    if value < 0:
        raise ValueError(f"{label} cannot be negative")
    return value


def parse_products_csv(text: str) -> Tuple[List[CSVRow], List[dict]]:
    reader = csv.DictReader(io.StringIO(text))
    header = [h.strip() for h in (reader.fieldnames or [])]
    missing = [col for col in CSV_REQUIRED_COLUMNS if col not in header]
    if missing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail=f"CSV header is missing required columns: {', '.join(missing)}")
    reader.fieldnames = header

    rows: List[CSVRow] = []
    errors: List[dict] = []
    for line_no, raw in enumerate(reader, start=2):
        if not any((v or "").strip() for v in raw.values() if isinstance(v, str)):
            continue
        try:
            name = (raw.get("Name") or "").strip()
            unit = (raw.get("Unit") or "").strip()
            if not name:
                raise ValueError("Name is required")
            if not unit:
                raise ValueError("Unit is required")
            try:
                price = float((raw.get("Price") or "").strip())
            except ValueError:
                raise ValueError("Price must be a number")
            if price < 0:
                raise ValueError("Price cannot be negative")
            raw_category = (raw.get("Category") or "").strip()
            try:
                category = parse_category(raw_category) if raw_category else ProductCategory.FOODSTUFFS
            except ValueError:
                raise ValueError(f"Unknown category '{raw_category}'")
            rows.append(CSVRow(
                line=line_no,
                name=name,
                description=clean_str(raw.get("Description")),
                category=category,
                images=split_images(raw.get("Images")),
                unit=unit,
                price=price,
                stock=_optional_count(raw.get("Stock"), "Stock"),
                threshold=_optional_count(raw.get("LowStockThreshold"), "LowStockThreshold"),
                available=parse_bool(raw.get("IsAvailable"), default=True),
            ))
        except ValueError as exc:
            errors.append({"line": line_no, "error": str(exc)})
    return rows, errors


async def import_products_csv(session, shop: Shop, text: str) -> dict:
    rows, errors = parse_products_csv(text)
    if not rows:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No valid products found in CSV file")

    groups: "OrderedDict[str, List[CSVRow]]" = OrderedDict()
    for row in rows:
        groups.setdefault(row.name.lower(), []).append(row)

    created = updated = 0
    for group in groups.values():
        try:
            async with session.begin_nested():
                was_created = await _upsert_csv_group(session, shop, group)
        except (MarketplaceError, HTTPException, IntegrityError) as exc:
            reason = getattr(exc, "detail", None) or str(exc)
            errors.append({"line": group[0].line, "error": f"Failed to process {group[0].name}: {reason}"})
            continue
        if was_created:
            created += 1
        else:
            updated += 1

    errors.sort(key=lambda e: e["line"])
    logger.info("product.import.done", extra={"shop_id": shop.id, "created": created, "updated": updated,
                                             "errors": len(errors)})
    return {"message": "Products imported successfully", "created": created, "updated": updated, "errors": errors}


async def _upsert_csv_group(session, shop: Shop, group: List[CSVRow]) -> bool:
    first = group[0]
    product = await product_by_name(session, shop.id, first.name)
    created = product is None
    if created:
        product = Product(shop_id=shop.id, name=first.name, description=first.description, category=first.category,
                          images=first.images, is_available=first.available)
        session.add(product)
        await session.flush()
    else:
        product.description = first.description or product.description
        product.category = first.category
        if first.images:
            product.images = first.images
        product.is_available = first.available
        product.updated_at = now()
        session.add(product)
        await session.flush()

    existing = {u.unit.lower(): u for u in await product_units(session, product.id)}
    for row in group:
        unit = existing.get(row.unit.lower())
        if unit is None:
            unit = await _add_unit(session, product, row.unit, row.price, row.stock, row.threshold,
                                   reason="CSV import")
            existing[unit.unit.lower()] = unit
        else:
            await _update_unit(session, unit, unit_name=None, price=row.price, stock=row.stock,
                               threshold=row.threshold, is_active=True, reason="CSV import")
    return created


def export_products_csv(rows) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_HEADER)
    for product, unit in rows:
        writer.writerow([
            product.name,
            product.description or "",
            product.category.value,
            ";".join(product.images or []),
            unit.unit,
            f"{unit.price:.2f}",
            "" if unit.stock is None else unit.stock,
            "" if unit.low_stock_threshold is None else unit.low_stock_threshold,
            "true" if product.is_available else "false",
        ])
    return buf.getvalue()
