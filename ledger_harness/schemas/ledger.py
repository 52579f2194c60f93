from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ledger_harness.core.keys.crypto import Key
from ledger_harness.utils.validation import tinybars_to_hbar


class AccountCredentials(BaseModel):
    """One entry of the externally managed account pool."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=5, description="shard.realm.num")
    private_key: str = Field(
        ...,
        min_length=64,
        validation_alias=AliasChoices("private_key", "privateKey"),
        repr=False,
    )


class ReceiptStatus(str, Enum):
    SUCCESS = "SUCCESS"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    INSUFFICIENT_PAYER_BALANCE = "INSUFFICIENT_PAYER_BALANCE"
    INSUFFICIENT_TOKEN_BALANCE = "INSUFFICIENT_TOKEN_BALANCE"
    INVALID_ACCOUNT_ID = "INVALID_ACCOUNT_ID"
    INVALID_TOKEN_ID = "INVALID_TOKEN_ID"
    INVALID_TOPIC_ID = "INVALID_TOPIC_ID"
    INVALID_TOKEN_INITIAL_SUPPLY = "INVALID_TOKEN_INITIAL_SUPPLY"
    INVALID_TOKEN_MINT_AMOUNT = "INVALID_TOKEN_MINT_AMOUNT"
    TOKEN_HAS_NO_SUPPLY_KEY = "TOKEN_HAS_NO_SUPPLY_KEY"
    TOKEN_MAX_SUPPLY_REACHED = "TOKEN_MAX_SUPPLY_REACHED"
    TOKEN_ALREADY_ASSOCIATED_TO_ACCOUNT = "TOKEN_ALREADY_ASSOCIATED_TO_ACCOUNT"
    TOKEN_NOT_ASSOCIATED_TO_ACCOUNT = "TOKEN_NOT_ASSOCIATED_TO_ACCOUNT"
    TRANSFERS_NOT_ZERO_SUM_FOR_TOKEN = "TRANSFERS_NOT_ZERO_SUM_FOR_TOKEN"
    EMPTY_TOKEN_TRANSFER_BODY = "EMPTY_TOKEN_TRANSFER_BODY"
    DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"


class TokenSupplyType(str, Enum):
    INFINITE = "INFINITE"
    FINITE = "FINITE"


class AccountBalance(BaseModel):
    account_id: str
    tinybars: int = Field(..., ge=0)
    tokens: Dict[str, int] = Field(default_factory=dict)

    @property
    def hbars(self) -> Decimal:
        return tinybars_to_hbar(self.tinybars)

    def token_balance(self, token_id: str) -> Optional[int]:
        """None when the account is not associated with the token."""
        return self.tokens.get(token_id)


class TokenConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    symbol: str = Field(..., min_length=1, max_length=100)
    decimals: int = Field(0, ge=0, le=18)
    initial_supply: int = Field(0, ge=0)
    # 0 means INFINITE supply.
    max_supply: int = Field(0, ge=0)
    treasury_account_id: str
    admin_key: Optional[Key] = None
    supply_key: Optional[Key] = None
    memo: str = ""

    @property
    def supply_type(self) -> TokenSupplyType:
        return TokenSupplyType.FINITE if self.max_supply > 0 else TokenSupplyType.INFINITE


class TokenInfo(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    token_id: str
    name: str
    symbol: str
    decimals: int
    total_supply: int
    max_supply: int
    supply_type: TokenSupplyType
    treasury_account_id: str
    admin_key: Optional[Key] = None
    supply_key: Optional[Key] = None
    memo: str = ""


class TopicConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    memo: str = Field("", max_length=100)
    submit_key: Optional[Key] = None
    admin_key: Optional[Key] = None


class TopicInfo(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    topic_id: str
    memo: str
    submit_key: Optional[Key] = None
    admin_key: Optional[Key] = None
    sequence_number: int = 0


class TopicMessage(BaseModel):
    topic_id: str
    sequence_number: int
    contents: bytes
    consensus_timestamp: datetime
    payer_account_id: Optional[str] = None

    @property
    def text(self) -> str:
        return self.contents.decode("utf-8", errors="replace")


class TokenTransferLeg(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_id: str
    account_id: str
    # Negative debits, positive credits.
    amount: int


class TransactionReceipt(BaseModel):
    transaction_id: str
    status: ReceiptStatus
    token_id: Optional[str] = None
    topic_id: Optional[str] = None
    total_supply: Optional[int] = None
    topic_sequence_number: Optional[int] = None
    charged_fee_tinybars: int = 0
