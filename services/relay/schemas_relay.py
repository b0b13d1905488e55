from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, conint


class _Wire(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, str_strip_whitespace=True)


class RelayEnvelope(_Wire):
    success: bool = Field(..., description="False when the relay refused the request.")
    error: Optional[str] = Field(None, description="Human-readable failure reason.")


class RootRes(RelayEnvelope):
    root: Optional[str] = Field(None, description="Current Merkle root (hex); null on an empty tree.")
    leaf_count: conint(ge=0) = Field(0, alias="leafCount")


class PathBody(_Wire):
    siblings: List[str] = Field(..., description="Sibling hashes, leaf to root.")
    path_indices: List[conint(ge=0, le=1)] = Field(..., alias="pathIndices")
    root: str
    leaf_index: conint(ge=0) = Field(..., alias="leafIndex")


class PathRes(RelayEnvelope):
    path: Optional[PathBody] = None


class SubmitRes(RelayEnvelope):
    tx_hash: Optional[str] = Field(None, alias="txHash")
    status: Optional[str] = None


class StatusRes(RelayEnvelope):
    status: Optional[str] = None
