import logging
from dataclasses import asdict
from typing import NoReturn, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from sqlalchemy.orm import Session

from auth import Identity, InvalidSessionError, load_identity
from database import SessionLocal
from installments import local_today
from models import TransactionType
from periods import PeriodMode, PeriodRange, PeriodSelector, selector_from_params
from schemas import (
    CategoryIn,
    CategoryOut,
    ProjectIn,
    ProjectOut,
    TransactionIn,
    TransactionOut,
    TransactionUpdateIn,
)
from services import (
    CategoryService,
    DashboardService,
    NotFoundError,
    ProjectService,
    ReferenceConflictError,
    TenantService,
    TransactionService,
    paginate,
)

logging.basicConfig(level=logging.INFO)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="BuildLedger", version=APP_VERSION)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_identity(authorization: Optional[str] = Header(default=None)) -> Identity:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        return load_identity(authorization.split(" ", 1)[1].strip())
    except InvalidSessionError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def get_company_id(
    identity: Identity = Depends(get_identity), db: Session = Depends(get_db)
) -> int:
    return TenantService(db).resolve_company_id(identity)


def raise_http(exc: ValueError) -> NoReturn:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, ReferenceConflictError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc


def selector_from_request(request: Request) -> PeriodSelector:
    params = request.query_params
    step = params.get("step")
    if step not in (None, "", "back", "forward", "today"):
        raise HTTPException(status_code=400, detail=f"Unknown step: {step}")
    try:
        selector = selector_from_params(
            params.get("mode"),
            params.get("month"),
            params.get("anchor"),
            today=local_today(),
        )
        if step == "back":
            selector.go_back()
        elif step == "forward":
            selector.go_forward()
        elif step == "today":
            selector.go_today(local_today())
        # Navigation can leave the supported date range.
        selector.period_range()
    except (ValueError, OverflowError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return selector


def period_from_request(request: Request) -> PeriodRange:
    return selector_from_request(request).period_range()


def type_from_request(request: Request) -> Optional[TransactionType]:
    type_param = request.query_params.get("type")
    if not type_param or type_param.upper() == "ALL":
        return None
    try:
        return TransactionType(type_param.upper())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Unknown transaction type") from exc


def page_from_request(request: Request) -> int:
    try:
        return max(int(request.query_params.get("page", "1")), 1)
    except ValueError:
        return 1


def period_payload(period: PeriodRange) -> dict[str, object]:
    return {
        "mode": period.mode.value,
        "start": period.start.isoformat(),
        "end": period.end.isoformat(),
        "label": period.label,
    }


def transaction_payload(txn) -> dict[str, object]:
    return TransactionOut.model_validate(txn).model_dump(mode="json")


@app.get("/health")
def health():
    return {"status": "ok", "version": APP_VERSION}


@app.get("/api/me")
def me(identity: Identity = Depends(get_identity), db: Session = Depends(get_db)):
    user = TenantService(db).resolve_user(identity)
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "company": {"id": user.company.id, "name": user.company.name},
    }


@app.get("/api/period")
def api_period(request: Request):
    selector = selector_from_request(request)
    return {
        "state": selector.to_params(),
        "range": period_payload(selector.period_range()),
        "modes": [mode.value for mode in PeriodMode],
    }


# Projects


@app.get("/api/projects")
def list_projects(
    request: Request,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    projects = ProjectService(db, company_id).list_all()
    page = paginate(projects, page_from_request(request))
    return {
        "items": [
            ProjectOut.model_validate(p).model_dump(mode="json") for p in page.items
        ],
        "page": page.page,
        "per_page": page.per_page,
        "total_items": page.total_items,
        "total_pages": page.total_pages,
    }


@app.get("/api/projects/{project_id}")
def get_project(
    project_id: int,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    try:
        project = ProjectService(db, company_id).get(project_id)
    except ValueError as exc:
        raise_http(exc)
    return ProjectOut.model_validate(project).model_dump(mode="json")


@app.post("/api/projects", status_code=201)
def create_project(
    data: ProjectIn,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    project = ProjectService(db, company_id).create(data)
    return ProjectOut.model_validate(project).model_dump(mode="json")


@app.put("/api/projects/{project_id}")
def update_project(
    project_id: int,
    data: ProjectIn,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    try:
        project = ProjectService(db, company_id).update(project_id, data)
    except ValueError as exc:
        raise_http(exc)
    return ProjectOut.model_validate(project).model_dump(mode="json")


@app.delete("/api/projects/{project_id}", status_code=204)
def delete_project(
    project_id: int,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    try:
        ProjectService(db, company_id).delete(project_id)
    except ValueError as exc:
        raise_http(exc)
    return Response(status_code=204)


# Categories


@app.get("/api/categories")
def list_categories(
    request: Request,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    categories = CategoryService(db, company_id).list_all(type_from_request(request))
    return [CategoryOut.model_validate(c).model_dump(mode="json") for c in categories]


@app.post("/api/categories", status_code=201)
def create_category(
    data: CategoryIn,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    try:
        category = CategoryService(db, company_id).create(data)
    except ValueError as exc:
        raise_http(exc)
    return CategoryOut.model_validate(category).model_dump(mode="json")


@app.put("/api/categories/{category_id}")
def update_category(
    category_id: int,
    data: CategoryIn,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    try:
        category = CategoryService(db, company_id).update(category_id, data)
    except ValueError as exc:
        raise_http(exc)
    return CategoryOut.model_validate(category).model_dump(mode="json")


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    try:
        CategoryService(db, company_id).delete(category_id)
    except ValueError as exc:
        raise_http(exc)
    return Response(status_code=204)


# Transactions


@app.get("/api/transactions")
def list_transactions(
    request: Request,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    period = period_from_request(request)
    listing = DashboardService(db, company_id).transaction_listing(
        period,
        txn_type=type_from_request(request),
        page=page_from_request(request),
    )
    return {
        "period": period_payload(listing.period),
        "items": [transaction_payload(txn) for txn in listing.page.items],
        "page": listing.page.page,
        "per_page": listing.page.per_page,
        "total_items": listing.page.total_items,
        "total_pages": listing.page.total_pages,
        "totals": asdict(listing.totals),
        "empty_state": listing.empty_state,
    }


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    try:
        txn = TransactionService(db, company_id).get(transaction_id)
    except ValueError as exc:
        raise_http(exc)
    return transaction_payload(txn)


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    try:
        rows = TransactionService(db, company_id).create(data)
    except ValueError as exc:
        raise_http(exc)
    return {"items": [transaction_payload(txn) for txn in rows]}


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionUpdateIn,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    try:
        txn = TransactionService(db, company_id).update(transaction_id, data)
    except ValueError as exc:
        raise_http(exc)
    return transaction_payload(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    try:
        TransactionService(db, company_id).delete(transaction_id)
    except ValueError as exc:
        raise_http(exc)
    return Response(status_code=204)


# Dashboard


@app.get("/api/dashboard")
def dashboard(
    request: Request,
    db: Session = Depends(get_db),
    company_id: int = Depends(get_company_id),
):
    period = period_from_request(request)
    include_unassigned = request.query_params.get("include_unassigned") in {
        "1",
        "true",
        "yes",
        "on",
    }
    data = DashboardService(db, company_id).build(
        period,
        today=local_today(),
        include_unassigned=include_unassigned,
        txn_type=type_from_request(request),
    )
    return {
        "period": period_payload(data.period),
        "totals": asdict(data.totals),
        "profit_by_project": [asdict(p) for p in data.profit_by_project],
        "monthly_data": [asdict(m) for m in data.monthly_data],
        "expense_by_category": [asdict(c) for c in data.expense_by_category],
        "forecast": [asdict(f) for f in data.forecast],
        "empty_state": data.empty_state,
    }


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
