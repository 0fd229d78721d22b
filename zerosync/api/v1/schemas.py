"""
Pydantic schemas for API v1 requests and responses

Request fields are optional here. Required fields and amount rules are checked
by Sequencer.add_transaction, which answers with a 400 validation error.
"""

from typing import Any
from pydantic import BaseModel, Field, ConfigDict


class TransactionRequest(BaseModel):
    """Request schema for submitting a transaction"""
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "from": "0x1111111111111111111111111111111111111111",
                "to": "0x2222222222222222222222222222222222222222",
                "value": "1000",
                "data": "",
                "nonce": 0
            }
        }
    )

    from_address: str | None = Field(None, alias="from", description="Sender address")
    to_address: str | None = Field(None, alias="to", description="Recipient address")
    value: int | str | None = Field(None, description="Non-negative integer amount (number or decimal string)")
    data: str | None = Field(None, description="Opaque payload")
    nonce: int | None = Field(None, description="Sender nonce")

    def to_transaction(self) -> dict[str, Any]:
        """Transaction dict accepted by Sequencer.add_transaction"""
        return {
            "from": self.from_address,
            "to": self.to_address,
            "value": self.value,
            "data": self.data,
            "nonce": self.nonce,
        }


class TransactionSubmitResponse(BaseModel):
    """Response schema for transaction submission"""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "hash": "0x3f5a...",
                "status": "pending",
                "duplicate": False
            }
        }
    )

    hash: str = Field(..., description="Transaction hash")
    status: str = Field(..., description="Transaction status")
    duplicate: bool = Field(False, description="True when the transaction was already known")


class StateResponse(BaseModel):
    """Response schema for the current state root"""
    state_root: str = Field(..., description="Latest committed state root")
    height: int = Field(..., description="Number of committed batches")


class TriggerResponse(BaseModel):
    """Response schema for a manual batch trigger"""
    success: bool = Field(..., description="Whether a batch was created")
    message: str | None = Field(None, description="Reason when no batch was created")
    batch: dict[str, Any] | None = Field(None, description="Created batch")


class HealthResponse(BaseModel):
    """Response schema for the health check"""
    status: str = Field(..., description="Service health")
    sequencer: str = Field(..., description="Sequencer lifecycle status")
    timestamp: float = Field(..., description="Server time")
