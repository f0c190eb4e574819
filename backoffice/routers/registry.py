import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backoffice.core.api_docs import error_responses
from backoffice.core.deps import get_db
from backoffice.core.errors import NotFoundError
from backoffice.core.money import money_out, to_money
from backoffice.core.permissions import ADMIN_ONLY, ANY_STAFF, require_roles
from backoffice.core.security import CallerIdentity
from backoffice.models.company import Company, Warehouse
from backoffice.models.product import Product
from backoffice.schemas.common import PaginationMeta
from backoffice.schemas.registry import (
    CompanyCreate,
    CompanyListOut,
    CompanyOut,
    ProductCreate,
    ProductListOut,
    ProductOut,
    WarehouseCreate,
    WarehouseListOut,
    WarehouseOut,
)
from backoffice.services.audit_service import log_audit_event

router = APIRouter(tags=["registry"])


def _pagination(total: int, limit: int, offset: int, count: int) -> PaginationMeta:
    return PaginationMeta(
        total=total,
        limit=limit,
        offset=offset,
        count=count,
        has_next=(offset + count) < total,
    )


def _company_out(company: Company) -> CompanyOut:
    return CompanyOut(
        id=company.id,
        name=company.name,
        registration_number=company.registration_number,
        contact_phone=company.contact_phone,
        contact_email=company.contact_email,
        created_at=company.created_at,
    )


def _product_out(product: Product) -> ProductOut:
    return ProductOut(
        id=product.id,
        name=product.name,
        warehouse_id=product.warehouse_id,
        sku=product.sku,
        unit_price=money_out(product.unit_price),
        current_stock=product.current_stock,
        created_at=product.created_at,
    )


@router.post(
    "/companies",
    response_model=CompanyOut,
    status_code=201,
    summary="Register company",
    responses=error_responses(400, 401, 403, 422, 500),
)
def create_company(
    payload: CompanyCreate,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ADMIN_ONLY)),
):
    company = Company(
        id=str(uuid.uuid4()),
        name=payload.name.strip(),
        registration_number=payload.registration_number,
        contact_phone=payload.contact_phone,
        contact_email=payload.contact_email,
    )
    db.add(company)
    log_audit_event(
        db,
        actor_id=actor.user_id,
        action="company.create",
        target_type="company",
        target_id=company.id,
        metadata_json={"name": company.name},
    )
    db.commit()
    db.refresh(company)
    return _company_out(company)


@router.get(
    "/companies",
    response_model=CompanyListOut,
    summary="List companies",
    responses=error_responses(401, 403, 422, 500),
)
def list_companies(
    search: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    filters = []
    if search and search.strip():
        filters.append(func.lower(Company.name).like(f"%{search.strip().lower()}%"))
    total = int(db.execute(select(func.count(Company.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Company).where(*filters).order_by(Company.name).offset(offset).limit(limit)
    ).scalars().all()
    items = [_company_out(row) for row in rows]
    return CompanyListOut(items=items, pagination=_pagination(total, limit, offset, len(items)))


@router.post(
    "/warehouses",
    response_model=WarehouseOut,
    status_code=201,
    summary="Register warehouse",
    responses=error_responses(400, 401, 403, 422, 500),
)
def create_warehouse(
    payload: WarehouseCreate,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ADMIN_ONLY)),
):
    warehouse = Warehouse(id=str(uuid.uuid4()), name=payload.name.strip())
    db.add(warehouse)
    log_audit_event(
        db,
        actor_id=actor.user_id,
        action="warehouse.create",
        target_type="warehouse",
        target_id=warehouse.id,
        metadata_json={"name": warehouse.name},
    )
    db.commit()
    db.refresh(warehouse)
    return WarehouseOut(id=warehouse.id, name=warehouse.name, created_at=warehouse.created_at)


@router.get(
    "/warehouses",
    response_model=WarehouseListOut,
    summary="List warehouses",
    responses=error_responses(401, 403, 422, 500),
)
def list_warehouses(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    total = int(db.execute(select(func.count(Warehouse.id))).scalar_one())
    rows = db.execute(select(Warehouse).order_by(Warehouse.name).offset(offset).limit(limit)).scalars().all()
    items = [WarehouseOut(id=row.id, name=row.name, created_at=row.created_at) for row in rows]
    return WarehouseListOut(items=items, pagination=_pagination(total, limit, offset, len(items)))


@router.post(
    "/products",
    response_model=ProductOut,
    status_code=201,
    summary="Register product (stock starts at zero)",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    if payload.warehouse_id and not db.get(Warehouse, payload.warehouse_id):
        raise NotFoundError(f"Warehouse not found: {payload.warehouse_id}")
    product = Product(
        id=str(uuid.uuid4()),
        name=payload.name.strip(),
        warehouse_id=payload.warehouse_id,
        sku=payload.sku,
        unit_price=to_money(payload.unit_price),
        current_stock=0,
    )
    db.add(product)
    log_audit_event(
        db,
        actor_id=actor.user_id,
        action="product.create",
        target_type="product",
        target_id=product.id,
        metadata_json={"name": product.name, "unit_price": money_out(payload.unit_price)},
    )
    db.commit()
    db.refresh(product)
    return _product_out(product)


@router.get(
    "/products",
    response_model=ProductListOut,
    summary="List products",
    responses=error_responses(401, 403, 422, 500),
)
def list_products(
    warehouse_id: str | None = Query(default=None),
    search: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: CallerIdentity = Depends(require_roles(*ANY_STAFF)),
):
    filters = []
    if warehouse_id:
        filters.append(Product.warehouse_id == warehouse_id)
    if search and search.strip():
        filters.append(func.lower(Product.name).like(f"%{search.strip().lower()}%"))
    total = int(db.execute(select(func.count(Product.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Product).where(*filters).order_by(Product.name).offset(offset).limit(limit)
    ).scalars().all()
    items = [_product_out(row) for row in rows]
    return ProductListOut(items=items, pagination=_pagination(total, limit, offset, len(items)))
