from datetime import MAXYEAR, datetime
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .database import store_errors
from .errors import ConflictError, NotFoundError
from .log import get_logger

logger = get_logger(__name__)

TRANSACTION_DATE_LAYOUT = "%Y-%m-%d %H:%M:%S"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def month_bounds(month: int, year: int) -> Tuple[datetime, datetime]:
    """Half-open range [first instant of the month, first instant of the next)."""
    start = datetime(year, month, 1)
    if month == 12:
        if year == MAXYEAR:
            return start, datetime.max
        return start, datetime(year + 1, 1, 1)
    return start, datetime(year, month + 1, 1)


def parse_transaction_date(value: Optional[str], lenient: bool = False) -> Optional[datetime]:
    """Parse ``YYYY-MM-DD HH:MM:SS``; ``lenient`` also accepts ISO 8601."""
    if not value:
        return None
    try:
        return datetime.strptime(value, TRANSACTION_DATE_LAYOUT)
    except ValueError:
        if not lenient:
            return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


# Users
def get_user(db: Session, user_id: int):
    with store_errors(db, "Failed to fetch user data"):
        return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str):
    with store_errors(db, "Failed to fetch user data"):
        return db.query(models.User).filter(models.User.email == normalize_email(email)).first()


def create_user(db: Session, user: schemas.UserCreate, hashed_password: str):
    db_user = models.User(
        name=user.name.strip(),
        email=normalize_email(user.email),
        hashed_password=hashed_password,
    )
    with store_errors(db, "Failed to create user account"):
        db.add(db_user)
        try:
            db.commit()
        except IntegrityError:
            # lost a race against a concurrent registration
            db.rollback()
            raise ConflictError(
                "An account with this email already exists", error="Email already registered"
            )
        db.refresh(db_user)
    return db_user


# Categories
def get_categories(db: Session, user_id: int) -> List[models.Category]:
    with store_errors(db, "Failed to fetch categories"):
        return (
            db.query(models.Category)
            .filter(models.Category.user_id == user_id)
            .order_by(models.Category.name.asc())
            .all()
        )


def get_category(db: Session, category_id: int, user_id: int):
    with store_errors(db, "Failed to fetch category"):
        return (
            db.query(models.Category)
            .filter(models.Category.id == category_id, models.Category.user_id == user_id)
            .first()
        )


def get_category_by_name(db: Session, user_id: int, name: str):
    with store_errors(db, "Failed to fetch category"):
        return (
            db.query(models.Category)
            .filter(models.Category.user_id == user_id, models.Category.name == name)
            .first()
        )


def find_or_create_category(db: Session, user_id: int, name: str) -> models.Category:
    category = get_category_by_name(db, user_id, name)
    if category is not None:
        return category

    category = models.Category(user_id=user_id, name=name)
    with store_errors(db, "Category creation failed"):
        db.add(category)
        try:
            db.commit()
        except IntegrityError:
            # another request created it first; use that row
            db.rollback()
            existing = get_category_by_name(db, user_id, name)
            if existing is None:
                raise
            return existing
        db.refresh(category)
    return category


def add_budget(db: Session, user_id: int, category_id: int, month: int, year: int, amount: int):
    budget = models.Budget(
        user_id=user_id,
        category_id=category_id,
        month=month,
        year=year,
        amount=amount,
    )
    with store_errors(db, "Budget creation failed"):
        db.add(budget)
        db.commit()
        db.refresh(budget)
    return budget


def set_budget(db: Session, user_id: int, request: schemas.CategoryRequest):
    """Find or create the named category and append a budget row for the period."""
    category = find_or_create_category(db, user_id, request.name)
    budget = add_budget(db, user_id, category.id, request.month, request.year, request.amount)
    logger.info(
        "budget_set",
        user_id=user_id,
        category_id=category.id,
        month=request.month,
        year=request.year,
    )
    return category, budget


def update_category(db: Session, user_id: int, category_id: int, request: schemas.CategoryRequest):
    """Rename the caller's category if needed and append a budget row for it."""
    category = get_category(db, category_id, user_id)
    if category is None:
        raise NotFoundError("Category no longer exists", error="Category not found")

    if category.name != request.name:
        conflict = ConflictError(
            "A category with this name already exists", error="Category already exists"
        )
        if get_category_by_name(db, user_id, request.name) is not None:
            raise conflict
        with store_errors(db, "Category update failed"):
            category.name = request.name
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise conflict
            db.refresh(category)

    budget = add_budget(db, user_id, category.id, request.month, request.year, request.amount)
    return category, budget


def resolve_budget(db: Session, user_id: int, category_id: int, month: int, year: int):
    """Latest budget for the period, else the latest budget ever set, else None."""
    with store_errors(db, "Failed to fetch budget"):
        query = db.query(models.Budget).filter(
            models.Budget.category_id == category_id,
            models.Budget.user_id == user_id,
        )
        budget = (
            query.filter(models.Budget.year == year, models.Budget.month == month)
            .order_by(models.Budget.id.desc())
            .first()
        )
        if budget is None:
            budget = query.order_by(models.Budget.id.desc()).first()
    return budget


def get_category_with_budget(db: Session, user_id: int, category_id: int, month: int, year: int):
    category = get_category(db, category_id, user_id)
    if category is None:
        raise NotFoundError("Category no longer exists", error="Category not found")

    budget = resolve_budget(db, user_id, category_id, month, year)
    if budget is None:
        # id 0 marks "no budget configured"
        budget = models.Budget(
            id=0, user_id=user_id, category_id=category_id, month=0, year=0, amount=0
        )
    return category, budget


def delete_category(db: Session, category_id: int, user_id: int) -> int:
    with store_errors(db, "Unable to delete category"):
        deleted = (
            db.query(models.Category)
            .filter(models.Category.id == category_id, models.Category.user_id == user_id)
            .delete(synchronize_session=False)
        )
        db.commit()
    return deleted


# Transactions
def get_transaction(db: Session, transaction_id: int, user_id: int):
    with store_errors(db, "Failed to fetch transaction"):
        db_transaction = (
            db.query(models.Transaction)
            .filter(models.Transaction.id == transaction_id, models.Transaction.user_id == user_id)
            .first()
        )
    if db_transaction is None:
        raise NotFoundError("Transaction no longer exists", error="Transaction not found")
    return db_transaction


def _require_category(db: Session, category_id: int, user_id: int):
    if get_category(db, category_id, user_id) is None:
        raise NotFoundError("Category no longer exists", error="Category not found")


def create_transaction(db: Session, transaction: schemas.TransactionCreate, user_id: int):
    _require_category(db, transaction.category_id, user_id)

    transaction_date = parse_transaction_date(transaction.transaction_date, lenient=True)
    db_transaction = models.Transaction(
        user_id=user_id,
        category_id=transaction.category_id,
        amount=transaction.amount,
        type=transaction.type,
        remarks=transaction.remarks,
        transaction_date=transaction_date or datetime.now(),
    )
    with store_errors(db, "Transaction creation failed"):
        db.add(db_transaction)
        db.commit()
        db.refresh(db_transaction)
    return db_transaction


def update_transaction(db: Session, transaction_id: int, patch: schemas.TransactionUpdate, user_id: int):
    db_transaction = get_transaction(db, transaction_id, user_id)

    # amount and category_id are never legitimately 0, so 0 also means "unchanged"
    if patch.category_id:
        _require_category(db, patch.category_id, user_id)
        db_transaction.category_id = patch.category_id
    if patch.amount:
        db_transaction.amount = patch.amount
    if patch.remarks is not None:
        db_transaction.remarks = patch.remarks
    transaction_date = parse_transaction_date(patch.transaction_date)
    if transaction_date is not None:
        db_transaction.transaction_date = transaction_date
    db_transaction.updated_at = datetime.now()

    with store_errors(db, "Error in updating transaction"):
        db.commit()
        db.refresh(db_transaction)
    return db_transaction


def delete_transaction(db: Session, transaction_id: int, user_id: int) -> int:
    with store_errors(db, "Unable to delete transaction"):
        deleted = (
            db.query(models.Transaction)
            .filter(models.Transaction.id == transaction_id, models.Transaction.user_id == user_id)
            .delete(synchronize_session=False)
        )
        db.commit()
    return deleted


def get_transactions_for_month(db: Session, user_id: int, month: int, year: int):
    """Transactions dated in the month, newest id first, each paired with its category name."""
    start, end = month_bounds(month, year)
    with store_errors(db, "Failed to fetch transactions"):
        return (
            db.query(models.Transaction, models.Category.name.label("category_name"))
            .outerjoin(models.Category, models.Category.id == models.Transaction.category_id)
            .filter(
                models.Transaction.user_id == user_id,
                models.Transaction.transaction_date >= start,
                models.Transaction.transaction_date < end,
            )
            .order_by(models.Transaction.id.desc())
            .all()
        )
