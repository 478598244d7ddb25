from typing import Optional

import structlog
from fastapi import HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.models.wallet import Wallet, WalletTransaction, TransactionType

logger = structlog.get_logger()


class WalletService:

    @staticmethod
    def get_or_create_wallet(db: Session, user_id: int, lock: bool = False) -> Wallet:
        query = db.query(Wallet).filter(Wallet.user_id == user_id)
        if lock:
            query = query.with_for_update()
        wallet = query.first()
        if wallet is None:
            wallet = Wallet(user_id=user_id, balance=0.0)
            db.add(wallet)
            db.flush()
        return wallet

    @staticmethod
    def credit(
        db: Session,
        user_id: int,
        amount: float,
        description: str,
        order_id: Optional[int] = None,
    ) -> WalletTransaction:
        """Add funds to a wallet. The caller owns the transaction (no commit here)."""
        if amount <= 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Credit amount must be positive",
            )

        wallet = WalletService.get_or_create_wallet(db, user_id, lock=True)
        wallet.balance = round(wallet.balance + amount, 2)
        txn = WalletTransaction(
            wallet_id=wallet.id,
            order_id=order_id,
            amount=round(amount, 2),
            type=TransactionType.CREDIT,
            description=description,
        )
        db.add(txn)
        db.flush()

        logger.info(
            "wallet_credited",
            user_id=user_id,
            amount=amount,
            order_id=order_id,
            balance=wallet.balance,
        )
        return txn

    @staticmethod
    def debit(
        db: Session,
        user_id: int,
        amount: float,
        description: str,
        order_id: Optional[int] = None,
    ) -> WalletTransaction:
        """Take funds from a wallet; 400 when the balance does not cover it."""
        wallet = WalletService.get_or_create_wallet(db, user_id, lock=True)
        if wallet.balance < amount:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Insufficient wallet balance",
            )

        wallet.balance = round(wallet.balance - amount, 2)
        txn = WalletTransaction(
            wallet_id=wallet.id,
            order_id=order_id,
            amount=round(amount, 2),
            type=TransactionType.DEBIT,
            description=description,
        )
        db.add(txn)
        db.flush()

        logger.info(
            "wallet_debited",
            user_id=user_id,
            amount=amount,
            order_id=order_id,
            balance=wallet.balance,
        )
        return txn

    @staticmethod
    def referral_earnings(db: Session, user_id: int) -> float:
        total = (
            db.query(func.coalesce(func.sum(WalletTransaction.amount), 0.0))
            .join(Wallet, Wallet.id == WalletTransaction.wallet_id)
            .filter(
                Wallet.user_id == user_id,
                WalletTransaction.type == TransactionType.CREDIT,
                WalletTransaction.description.ilike("%referral%"),
            )
            .scalar()
        )
        return float(total or 0.0)

    @staticmethod
    def get_wallet_summary(db: Session, user_id: int) -> dict:
        wallet = WalletService.get_or_create_wallet(db, user_id)
        transactions = (
            db.query(WalletTransaction)
            .filter(WalletTransaction.wallet_id == wallet.id)
            .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
            .all()
        )
        db.commit()
        return {
            "balance": wallet.balance,
            "transactions": [
                {
                    "id": txn.id,
                    "amount": txn.amount,
                    "type": txn.type.value,
                    "description": txn.description,
                    "order_id": txn.order_id,
                    "created_at": txn.created_at,
                }
                for txn in transactions
            ],
        }
