"""Load and store the loyalty asset identity (mint, decimals, issuer)."""

import time

from solders.pubkey import Pubkey
from sqlalchemy.orm import Session

from app.core.errors import AssetNotConfigured
from app.models.asset import LoyaltyAssetRecord
from app.services.settlement import LoyaltyAsset


def _to_asset(record: LoyaltyAssetRecord) -> LoyaltyAsset:
    return LoyaltyAsset(
        mint=Pubkey.from_string(record.mint),
        issuer=Pubkey.from_string(record.issuer),
        decimals=int(record.decimals),
        program_id=Pubkey.from_string(record.program_id),
        name=record.name,
        symbol=record.symbol,
    )


def find_loyalty_asset(db: Session) -> LoyaltyAsset | None:
    record = db.query(LoyaltyAssetRecord).order_by(LoyaltyAssetRecord.created_at).first()
    return _to_asset(record) if record else None


def get_loyalty_asset(db: Session) -> LoyaltyAsset:
    """
    Return the configured loyalty asset.

    Raises:
        AssetNotConfigured: no asset has been created yet
    """
    asset = find_loyalty_asset(db)
    if asset is None:
        raise AssetNotConfigured("Token not found")
    return asset


def save_loyalty_asset(db: Session, asset: LoyaltyAsset) -> None:
    db.merge(
        LoyaltyAssetRecord(
            mint=str(asset.mint),
            program_id=str(asset.program_id),
            name=asset.name,
            symbol=asset.symbol,
            decimals=asset.decimals,
            issuer=str(asset.issuer),
            created_at=int(time.time()),
        )
    )
    db.commit()
