import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from access import TEAM_MANAGERS, paginate, require_role, require_workspace, workspace_policy
from auth import Principal, get_principal
from database import (
    get_db,
    utcnow,
    Asset,
    Bill,
    Category,
    ScheduledPayment,
    Transaction,
)
from schemas import (
    ApprovalUpdate,
    AssetCreate,
    AssetOut,
    AssetUpdate,
    CategoryCreate,
    CategoryOut,
    CategoryUpdate,
    ScheduledPaymentCreate,
    ScheduledPaymentList,
    ScheduledPaymentOut,
    ScheduledPaymentUpdate,
    SuccessOut,
    TransactionCreate,
    TransactionList,
    TransactionOut,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter()

SCHEDULED_PAYMENTS_PAGE_SIZE = 10


def check_category(db: Session, workspace_id: str, category_id: Optional[str]):
    if not category_id:
        return
    exists = (
        db.query(Category.id)
        .filter(Category.id == category_id, Category.workspace_id == workspace_id)
        .first()
    )
    if exists is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown category")


def check_duplicate_category(db: Session, workspace_id: str, name: str, exclude_id=None):
    query = db.query(Category).filter(Category.name == name, Category.workspace_id == workspace_id)
    if exclude_id:
        query = query.filter(Category.id != exclude_id)
    if query.first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A category with this name already exists",
        )


# Categories


@router.get("/categories", response_model=list[CategoryOut])
async def list_categories(
    db: Session = Depends(get_db), principal: Principal = Depends(get_principal)
):
    return (
        db.query(Category)
        .filter(workspace_policy.readable(Category, principal))
        .order_by(Category.name.asc())
        .all()
    )


@router.post("/categories", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
async def create_category(
    data: CategoryCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    workspace_id = require_workspace(principal)
    check_duplicate_category(db, workspace_id, data.name)

    category = Category(name=data.name, color=data.color, workspace_id=workspace_id)
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


@router.put("/categories/{category_id}", response_model=CategoryOut)
async def update_category(
    category_id: str,
    data: CategoryUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    workspace_id = require_workspace(principal)
    values = data.changes()
    if "name" in values:
        check_duplicate_category(db, workspace_id, values["name"], exclude_id=category_id)

    detail = "Category not found or you do not have access"
    workspace_policy.update(db, Category, category_id, principal, values, detail=detail)
    db.commit()
    return workspace_policy.get(db, Category, category_id, principal, detail=detail)


@router.delete("/categories/{category_id}", response_model=SuccessOut)
async def delete_category(
    category_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    workspace_id = require_workspace(principal)
    detail = "Category not found or you do not have access"
    workspace_policy.get(db, Category, category_id, principal, detail=detail)

    # Referencing rows keep existing, uncategorised.
    db.query(Bill).filter(Bill.category_id == category_id).update(
        {Bill.category_id: None}, synchronize_session=False
    )
    for model in (Transaction, ScheduledPayment):
        db.query(model).filter(
            model.category_id == category_id, model.workspace_id == workspace_id
        ).update({model.category_id: None}, synchronize_session=False)
    workspace_policy.delete(db, Category, category_id, principal, detail=detail)
    db.commit()
    return SuccessOut()


# Transactions


@router.get("/transactions", response_model=TransactionList)
async def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    query = (
        db.query(Transaction)
        .filter(workspace_policy.readable(Transaction, principal))
        .order_by(Transaction.date.desc())
    )
    transactions, pagination = paginate(query, page, limit)
    return {"transactions": transactions, "pagination": pagination}


@router.post("/transactions", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    data: TransactionCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    workspace_id = require_workspace(principal)
    check_category(db, workspace_id, data.category_id)

    transaction = Transaction(
        description=data.description,
        amount=data.amount,
        date=data.date,
        type=data.type,
        currency=data.currency,
        workspace_id=workspace_id,
        category_id=data.category_id or None,
    )
    db.add(transaction)
    db.commit()
    db.refresh(transaction)
    return transaction


@router.get("/transactions/{transaction_id}", response_model=TransactionOut)
async def get_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return workspace_policy.get(
        db, Transaction, transaction_id, principal, detail="Transaction not found"
    )


@router.put("/transactions/{transaction_id}", response_model=TransactionOut)
async def update_transaction(
    transaction_id: str,
    data: TransactionUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    workspace_id = require_workspace(principal)
    values = data.changes(nullable=("category_id",))
    check_category(db, workspace_id, values.get("category_id"))

    workspace_policy.update(
        db, Transaction, transaction_id, principal, values, detail="Transaction not found"
    )
    db.commit()
    return workspace_policy.get(
        db, Transaction, transaction_id, principal, detail="Transaction not found"
    )


@router.patch("/transactions/{transaction_id}", response_model=TransactionOut)
async def review_transaction(
    transaction_id: str,
    data: ApprovalUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    require_workspace(principal)
    require_role(principal, TEAM_MANAGERS)

    detail = "Transaction not found or not in your workspace"
    workspace_policy.update(
        db,
        Transaction,
        transaction_id,
        principal,
        {
            Transaction.approval_status: data.approval_status,
            Transaction.approved_by_id: principal.user_id,
            Transaction.approved_at: utcnow(),
        },
        detail=detail,
    )
    db.commit()
    logger.info(
        "User %s marked transaction %s %s",
        principal.user_id, transaction_id, data.approval_status,
    )
    return workspace_policy.get(db, Transaction, transaction_id, principal, detail=detail)


@router.delete("/transactions/{transaction_id}", response_model=SuccessOut)
async def delete_transaction(
    transaction_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    workspace_policy.delete(
        db,
        Transaction,
        transaction_id,
        principal,
        detail="Transaction not found or you do not have access",
    )
    db.commit()
    return SuccessOut()


# Assets


@router.get("/assets", response_model=list[AssetOut])
async def list_assets(
    db: Session = Depends(get_db), principal: Principal = Depends(get_principal)
):
    return (
        db.query(Asset)
        .filter(workspace_policy.readable(Asset, principal))
        .order_by(Asset.purchase_date.desc())
        .all()
    )


@router.post("/assets", response_model=AssetOut, status_code=status.HTTP_201_CREATED)
async def create_asset(
    data: AssetCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    asset = Asset(**data.model_dump(), workspace_id=require_workspace(principal))
    db.add(asset)
    db.commit()
    db.refresh(asset)
    return asset


@router.get("/assets/{asset_id}", response_model=AssetOut)
async def get_asset(
    asset_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return workspace_policy.get(
        db, Asset, asset_id, principal, detail="Asset not found or access denied"
    )


@router.put("/assets/{asset_id}", response_model=AssetOut)
async def update_asset(
    asset_id: str,
    data: AssetUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    detail = "Asset not found or access denied"
    workspace_policy.update(
        db, Asset, asset_id, principal, data.changes(),
        detail=detail,
    )
    db.commit()
    return workspace_policy.get(db, Asset, asset_id, principal, detail=detail)


@router.delete("/assets/{asset_id}", response_model=SuccessOut)
async def delete_asset(
    asset_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    workspace_policy.delete(
        db, Asset, asset_id, principal, detail="Asset not found or access denied"
    )
    db.commit()
    return SuccessOut()


# Scheduled payments


@router.get("/scheduled-payments", response_model=ScheduledPaymentList)
async def list_scheduled_payments(
    page: int = Query(1, ge=1),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    query = (
        db.query(ScheduledPayment)
        .filter(workspace_policy.readable(ScheduledPayment, principal))
        .order_by(ScheduledPayment.due_date.asc())
    )
    payments, pagination = paginate(query, page, SCHEDULED_PAYMENTS_PAGE_SIZE)
    return {"scheduled_payments": payments, "pagination": pagination}


@router.post(
    "/scheduled-payments",
    response_model=ScheduledPaymentOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_scheduled_payment(
    data: ScheduledPaymentCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    workspace_id = require_workspace(principal)
    check_category(db, workspace_id, data.category_id)

    payment = ScheduledPayment(**data.model_dump(), workspace_id=workspace_id)
    db.add(payment)
    db.commit()
    db.refresh(payment)
    return payment


@router.get("/scheduled-payments/{payment_id}", response_model=ScheduledPaymentOut)
async def get_scheduled_payment(
    payment_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    return workspace_policy.get(
        db, ScheduledPayment, payment_id, principal, detail="Scheduled payment not found"
    )


@router.put("/scheduled-payments/{payment_id}", response_model=ScheduledPaymentOut)
async def update_scheduled_payment(
    payment_id: str,
    data: ScheduledPaymentUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    workspace_id = require_workspace(principal)
    values = data.changes(nullable=("category_id", "frequency"))
    check_category(db, workspace_id, values.get("category_id"))

    detail = "Scheduled payment not found or you do not have access"
    workspace_policy.update(db, ScheduledPayment, payment_id, principal, values, detail=detail)
    db.commit()
    return workspace_policy.get(db, ScheduledPayment, payment_id, principal, detail=detail)


@router.delete("/scheduled-payments/{payment_id}", response_model=SuccessOut)
async def delete_scheduled_payment(
    payment_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    workspace_policy.delete(
        db,
        ScheduledPayment,
        payment_id,
        principal,
        detail="Scheduled payment not found or you do not have access",
    )
    db.commit()
    return SuccessOut()
