"""
dependencies.py - Shared FastAPI Dependencies

Business Rules:
- The X-User-Id header names the tenant; authentication happens upstream
- A missing or blank header is a 401
- Company lookups are scoped to the tenant; another tenant's id is a 404

Called by: all routers
Depends on: models, database
"""

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .database import get_db
from .models import Company


def get_owner_id(x_user_id: str | None = Header(default=None)) -> str:
    """Dependency: the calling tenant's id, or 401."""
    owner = (x_user_id or "").strip()
    if not owner:
        raise HTTPException(401, "Missing X-User-Id header")
    return owner[:64]


def get_owned_company(company_id: int, owner_id: str, db: Session) -> Company:
    company = db.query(Company).filter_by(id=company_id, owner_id=owner_id).first()
    if not company:
        raise HTTPException(404, "Company not found")
    return company


def owned_company(
    company_id: int,
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
) -> Company:
    """Dependency form of get_owned_company for /api/companies/{company_id}/... routes."""
    return get_owned_company(company_id, owner_id, db)
