# services/wallet_core/selector.py
"""
Backend Selector: the one place that knows which implementation is active.

Decided once per session at initialization and logged. Nothing downstream
branches on the backend again.
"""
from __future__ import annotations

from typing import Any, Optional

from services.logging_config import get_logger
from services.wallet_core.backends import SimulatedBackend
from services.wallet_core.config import CipherPayConfig
from services.wallet_core.contracts import Backend
from services.wallet_core.errors import ConfigurationError
from services.wallet_core.sdk_backend import SdkBackend, load_sdk_factory

logger = get_logger("selector")


def select_backend(config: CipherPayConfig, sdk: Optional[Any] = None) -> Backend:
    """
    Build the backend named by `config.backend`.

    - "simulated": refused when `config.production` is set.
    - "real": uses `sdk` when given, else builds one via `config.sdk_factory`.
      A missing or broken SDK is a ConfigurationError; there is no silent
      fallback to the simulated backend.
    """
    if config.backend == "simulated":
        if config.production:
            raise ConfigurationError("Simulated backend cannot be used in a production build")
        logger.warning("Backend selected: simulated (NOT FOR PRODUCTION; values carry no cryptographic meaning)")
        return SimulatedBackend(config)

    if config.backend == "real":
        if sdk is None:
            if not config.sdk_factory:
                raise ConfigurationError("backend=real requires sdk_factory or an explicit SDK instance")
            factory = load_sdk_factory(config.sdk_factory)
            try:
                sdk = factory(config.sdk_options())
            except Exception as e:
                raise ConfigurationError(f"SDK factory {config.sdk_factory!r} failed: {e}") from e
        logger.info(f"Backend selected: real SDK ({type(sdk).__name__}), chain={config.chain_type}, relay={config.relayer_url}")
        return SdkBackend(sdk, config)

    raise ConfigurationError(f"Unknown backend: {config.backend!r}")
