from sqlalchemy import BigInteger, Column, Integer, String

from app.db.base import Base


class LoyaltyAssetRecord(Base):
    """The loyalty asset created by the issuer (one row).
    Example:
    {
        "mint": "7xKX...q9Pz",
        "program_id": "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb",
        "name": "Loyalty Points",
        "symbol": "LOYAL",
        "decimals": 0,
        "issuer": "9WzD...AWWM",
        "created_at": 1726000000
    }
    """

    __tablename__ = "loyalty_asset"

    mint = Column(String(64), primary_key=True)
    program_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)
    symbol = Column(String(32), nullable=False)
    decimals = Column(Integer, nullable=False, default=0)
    issuer = Column(String(64), nullable=False)
    created_at = Column(BigInteger, nullable=False)
