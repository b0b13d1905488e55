# services/wallet_core/config.py
from __future__ import annotations

import os
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, confloat, conint

from services.wallet_core.errors import ConfigurationError

# ===== Defaults =====
DEFAULT_RPC_URL = "http://127.0.0.1:8899"
DEFAULT_RELAYER_URL = "http://localhost:3000"
ENV_PREFIX = "CIPHERPAY_"


class _Opaque(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, frozen=True)


class CircuitArtifacts(_Opaque):
    """Locations of one circuit's artifacts. Loaded by the prover, never parsed here."""
    wasm_url: str
    zkey_url: str
    verification_key_url: str


def _circuit(name: str) -> CircuitArtifacts:
    return CircuitArtifacts(
        wasm_url=f"/circuits/{name}.wasm",
        zkey_url=f"/circuits/{name}.zkey",
        verification_key_url=f"/circuits/{name}.vkey.json",
    )


class CircuitConfig(_Opaque):
    transfer: CircuitArtifacts = Field(default_factory=lambda: _circuit("transfer"))
    merkle: CircuitArtifacts = Field(default_factory=lambda: _circuit("merkle"))


class CacheConfig(_Opaque):
    max_size: conint(ge=0) = Field(1000, description="Max cached Merkle entries.")
    default_ttl: conint(ge=0) = Field(300_000, description="Entry lifetime (milliseconds).")


class CipherPayConfig(_Opaque):
    """
    Opaque configuration object accepted by the wallet core.

    Unrecognized keys are dropped silently. Values are validated so that a
    typo in a recognized key fails at startup rather than mid-transfer.
    """
    backend: Literal["simulated", "real"] = Field("simulated", description="Backend implementation.")
    production: bool = Field(False, description="Production build; refuses the simulated backend.")
    chain_type: Literal["solana", "ethereum"] = Field("solana", description="Target network family.")

    rpc_url: str = DEFAULT_RPC_URL
    relayer_url: str = DEFAULT_RELAYER_URL
    relayer_api_key: Optional[str] = None
    program_id: Optional[str] = None
    contract_address: Optional[str] = None
    sdk_factory: Optional[str] = Field(None, description="'module:callable' building the external SDK.")

    circuits: CircuitConfig = Field(default_factory=CircuitConfig)
    cache_config: CacheConfig = Field(default_factory=CacheConfig)

    enable_compliance: bool = True
    enable_caching: bool = True
    enable_stealth_addresses: bool = True

    request_timeout: confloat(gt=0) = 10.0
    max_retries: conint(ge=1) = 3
    retry_backoff: confloat(ge=0) = 0.5
    proof_timeout: confloat(gt=0) = 60.0
    verify_before_submit: bool = True
    note_selection: Literal["insertion_order", "smallest_first"] = "insertion_order"
    notes_state_path: Optional[str] = None

    # simulated backend only
    seed_demo_notes: bool = False
    mock_verify_failure_rate: confloat(ge=0, le=1) = 0.0
    simulated_confirmations: conint(ge=0) = 1

    # ---------- constructors ----------
    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]] = None) -> "CipherPayConfig":
        try:
            return cls.model_validate(dict(data or {}))
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CipherPayConfig":
        """
        Build a config from CIPHERPAY_* environment variables.

        CIPHERPAY_BACKEND=real|simulated wins; otherwise the legacy switches
        USE_FALLBACK_SERVICE=true / USE_REAL_SDK=true are honoured, in that order.
        """
        env = os.environ if environ is None else environ
        data: Dict[str, Any] = {}
        for key in cls.model_fields:
            raw = env.get(ENV_PREFIX + key.upper())
            if raw is not None and raw != "":
                data[key] = raw

        if "backend" not in data:
            if env.get("USE_FALLBACK_SERVICE", "").lower() == "true":
                data["backend"] = "simulated"
            elif env.get("USE_REAL_SDK", "").lower() == "true":
                data["backend"] = "real"

        cache: Dict[str, Any] = {}
        if env.get(ENV_PREFIX + "CACHE_MAX_SIZE"):
            cache["max_size"] = env[ENV_PREFIX + "CACHE_MAX_SIZE"]
        if env.get(ENV_PREFIX + "CACHE_DEFAULT_TTL"):
            cache["default_ttl"] = env[ENV_PREFIX + "CACHE_DEFAULT_TTL"]
        if cache:
            data["cache_config"] = cache

        circuits: Dict[str, Any] = {}
        for name in ("transfer", "merkle"):
            urls = {
                "wasm_url": env.get(f"{ENV_PREFIX}{name.upper()}_WASM_URL"),
                "zkey_url": env.get(f"{ENV_PREFIX}{name.upper()}_ZKEY_URL"),
                "verification_key_url": env.get(f"{ENV_PREFIX}{name.upper()}_VKEY_URL"),
            }
            if any(urls.values()):
                default = _circuit(name).model_dump()
                circuits[name] = {k: v or default[k] for k, v in urls.items()}
        if circuits:
            data["circuits"] = circuits

        return cls.from_mapping(data)

    def updated(self, **changes: Any) -> "CipherPayConfig":
        """Return a new config with `changes` applied (unknown keys ignored)."""
        merged = self.model_dump()
        merged.update(changes)
        return type(self).from_mapping(merged)

    def sdk_options(self) -> Dict[str, Any]:
        """Options handed to the external SDK constructor (camelCase, as the SDK expects)."""
        return {
            "chainType": self.chain_type,
            "rpcUrl": self.rpc_url,
            "relayerUrl": self.relayer_url,
            "relayerApiKey": self.relayer_api_key,
            "programId": self.program_id,
            "contractAddress": self.contract_address,
            "enableCompliance": self.enable_compliance,
            "enableCaching": self.enable_caching,
            "enableStealthAddresses": self.enable_stealth_addresses,
            "cacheConfig": {
                "maxSize": self.cache_config.max_size,
                "defaultTTL": self.cache_config.default_ttl,
            },
            "circuitConfig": {
                name: {
                    "wasmUrl": art.wasm_url,
                    "zkeyUrl": art.zkey_url,
                    "verificationKeyUrl": art.verification_key_url,
                }
                for name, art in (("transfer", self.circuits.transfer), ("merkle", self.circuits.merkle))
            },
        }
