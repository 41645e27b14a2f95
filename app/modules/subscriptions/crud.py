"""
CRUD operations for subscription management.
"""
from typing import Optional
from sqlalchemy.orm import Session

from .models import UserAccount


def get_account(db: Session, uid: str) -> Optional[UserAccount]:
    """Obtener la cuenta de un usuario."""
    return db.get(UserAccount, uid)


def get_account_by_subscription(db: Session, subscription_id: str) -> Optional[UserAccount]:
    """Buscar la cuenta que tiene registrada una suscripción de PayPal."""
    return db.query(UserAccount).filter(
        UserAccount.paypal_subscription_id == subscription_id
    ).first()


def get_or_create_account(db: Session, uid: str) -> UserAccount:
    """Obtener la cuenta o crearla vacía (sin commit)."""
    account = get_account(db, uid)
    if account is None:
        account = UserAccount(uid=uid)
        db.add(account)
    return account


def merge_account(db: Session, account: UserAccount, **fields) -> UserAccount:
    """Actualizar sólo los campos indicados y confirmar."""
    for key, value in fields.items():
        setattr(account, key, value)
    db.commit()
    db.refresh(account)
    return account
