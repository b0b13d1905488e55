# services/wallet_core/errors.py
"""
Typed failures surfaced by the wallet core.

Every error is recoverable: callers catch the specific type they care
about, or `CipherPayError` for all of them.
"""


class CipherPayError(RuntimeError):
    """Base error for the wallet core."""


# ===== Caller input =====
class ValidationError(CipherPayError):
    """Bad caller input (non-positive amount, malformed identifiers, ...)."""


class InvalidRecipient(ValidationError):
    """Recipient does not match the configured chain's address grammar."""


class InsufficientBalance(CipherPayError):
    """Spendable notes cannot cover the requested amount."""


class ConfigurationError(CipherPayError):
    """Configuration is invalid or names a backend that cannot be built."""


# ===== Session =====
class NotConnected(CipherPayError):
    """A spend-affecting call was made without a connected wallet."""


class WalletConnectionError(CipherPayError):
    """The external signer refused or failed the connection."""


class SessionNotInitialized(CipherPayError):
    """The session was used before `initialize()` completed."""


# ===== Proofs =====
class ProofGenerationError(CipherPayError):
    """Proof could not be produced (malformed input, backend failure, timeout)."""


class VerificationError(CipherPayError):
    """Proof is structurally malformed; never raised for a merely invalid proof."""


# ===== Relay =====
class UnavailableError(CipherPayError):
    """Relay could not be reached or timed out."""


class CommitmentNotFound(CipherPayError):
    """The commitment is not a leaf of the note-commitment tree."""


class SubmissionRejected(CipherPayError):
    """Relay refused the transaction."""


class UnknownTransaction(CipherPayError):
    """Relay has no record of the transaction reference."""


# ===== Note store =====
class DuplicateCommitment(CipherPayError):
    """A note with this commitment is already held."""


class NoteNotFound(CipherPayError):
    """No note with this commitment is held."""


class AlreadySpent(CipherPayError):
    """The note has already been marked spent."""


# ===== Orchestration =====
class TransferInProgress(CipherPayError):
    """Another transfer holds the note-selection guard."""


class BackendError(CipherPayError):
    """External SDK failure with no more specific mapping."""
