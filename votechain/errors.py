"""
Error types raised by the deployment, descriptor and binding layers.
"""

from typing import Optional


class VotechainError(Exception):
    """Base class for every error this package raises."""


# =============================================================================
# Deployment
# =============================================================================

class DeploymentError(VotechainError):
    """A construction transaction was rejected; no descriptor exists."""

    def __init__(self, message: str, tx_id: Optional[str] = None, receipt=None):
        self.tx_id = tx_id
        self.receipt = receipt
        super().__init__(message)


class ResourceLimitExceeded(DeploymentError):
    """The gas ceiling was too low for the deployment."""


class SubmissionRejected(DeploymentError):
    """The ledger rejected the deployment for any other reason."""


# =============================================================================
# Descriptor persistence
# =============================================================================

class DescriptorError(VotechainError):
    """Base class for descriptor store failures."""


class DescriptorNotFound(DescriptorError, FileNotFoundError):
    """No descriptor file at the store's path."""


class DescriptorParseError(DescriptorError, ValueError):
    """The descriptor file does not have the exact required shape."""


# =============================================================================
# Binding and invocation
# =============================================================================

class UnknownOperation(VotechainError, LookupError):
    """The descriptor has no operation with that name."""


class InvocationError(VotechainError):
    """A remote call or transaction failed."""

    def __init__(self, message: str, reason: Optional[str] = None, error: Optional[str] = None):
        self.reason = reason
        self.error = error
        super().__init__(message)


class UnknownCandidate(InvocationError):
    """The named candidate is not in the registry."""

    def __init__(self, candidate=None, message: Optional[str] = None):
        self.candidate = candidate
        super().__init__(
            message or f"Unknown candidate: {candidate!r}",
            reason="reverted",
            error="UnknownCandidate",
        )


class NotYetAvailable(VotechainError):
    """Nothing is deployed at the address yet (deployment still pending)."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Contract at {address} is not yet available")


class OutcomeUnknown(VotechainError, TimeoutError):
    """Stopped waiting before the transaction reached a terminal state.

    The transaction may still be confirmed later.
    """


class ClientClosed(VotechainError):
    """The ledger client handle has been closed."""


class ConfigError(VotechainError, ValueError):
    """Invalid configuration file."""
