from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user
from storefront.db.session import get_db
from storefront.models.user import User
from storefront.services.wallet_service import WalletService
from storefront.utils.response import success

router = APIRouter()


@router.get("", response_model=dict)
def get_wallet(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Wallet balance with its transactions, newest first."""
    return success(
        data=WalletService.get_wallet_summary(db, current_user.id),
        message="Wallet retrieved",
    )
