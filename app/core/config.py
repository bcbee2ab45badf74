import logging

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv(override=True)

logger = logging.getLogger(__name__)

DEVNET = "devnet"
MAINNET = "mainnet"
NETWORKS = (DEVNET, MAINNET)

TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

SIGN_IN_STATEMENT = (
    "Clicking Sign or Approve only means you have proved this wallet is owned by you. "
    "This request will not trigger any blockchain transaction or cost any gas fee."
)


class Settings(BaseSettings):
    PROJECT_NAME: str = "Loyalty Pass"
    # Application settings
    PORT: int = 8000
    HOST: str = "http://127.0.0.1:8000"
    VERSION: str = "0.1.0"
    DOC_PASSWORD: str = ""
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # SQLAlchemy database URL
    DATABASE_URL: str = "sqlite:///./loyalty.db"

    # Solana RPC
    SOLANA_NETWORK: str = DEVNET
    SOLANA_RPC_URL: str | None = None
    HELIUS_API_KEY: str | None = None
    RPC_TIMEOUT_SECONDS: float = 30.0
    CONFIRM_POLL_SECONDS: float = 1.0
    TOKEN_PROGRAM_ID: str = TOKEN_2022_PROGRAM_ID
    HISTORY_LIMIT: int = 50

    # Issuer keyfile (yaml, keyed by network)
    ISSUER_WALLET_PATH: str = "secret/issuer.yaml"

    # Sign-in challenge
    SIGN_IN_DOMAIN: str = "localhost:3000"
    SIGN_IN_CHAIN_ID: str = DEVNET
    SIGN_IN_STATEMENT: str = SIGN_IN_STATEMENT
    REPLAY_NONCE_ENTROPY_BITS: int = 96

    # Loyalty asset
    ASSET_NAME: str = "Loyalty Points"
    ASSET_SYMBOL: str = "LOYAL"

    class Config:
        env_file = ".env"

    @property
    def network(self) -> str:
        if self.SOLANA_NETWORK not in NETWORKS:
            logger.warning(
                "Invalid network value provided: %s. Defaulting to %s.",
                self.SOLANA_NETWORK,
                DEVNET,
            )
            return DEVNET
        return self.SOLANA_NETWORK

    @property
    def rpc_url(self) -> str:
        if self.SOLANA_RPC_URL:
            return self.SOLANA_RPC_URL
        # any RPC provider works; helius is the default
        return f"https://{self.network}.helius-rpc.com?api-key={self.HELIUS_API_KEY or ''}"


# Instantiate the settings
settings = Settings()
