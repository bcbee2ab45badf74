from sqlalchemy import BigInteger, Column, String

from app.db.base import Base

STATUS_PENDING = "pending"
STATUS_SETTLED = "settled"
STATUS_AMBIGUOUS = "ambiguous"


class ReplayNonce(Base):
    """Consumed QR replay nonces.

    A row's existence means the nonce (and the proof it wrapped) was used.
    Uniqueness of both columns is what makes consumption exactly-once.
    Example:
    {
        "nonce": "Xq3v9LkA0bT2mQw7Z",
        "proof_digest": "5e1f...c09a",
        "status": "settled",
        "consumed_at": 1726000000,
        "signature": "4sGj...9wKx"
    }
    """

    __tablename__ = "replay_nonce"

    nonce = Column(String(128), primary_key=True)
    proof_digest = Column(String(64), nullable=False, unique=True)
    status = Column(String(16), nullable=False, default=STATUS_PENDING)
    consumed_at = Column(BigInteger, nullable=False)
    signature = Column(String(128), nullable=True)
