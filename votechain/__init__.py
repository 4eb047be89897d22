"""
votechain - deploy the vote tally contract and bind to it.

This package provides:
- chain: the in-process execution ledger the contract runs on
- deploy: submit one construction transaction and wait for its outcome
- descriptor: the durable (address, ABI) binding and its file store
- client: the explicit ledger client handle
- proxy: typed dispatch table over a descriptor
- view: tally board kept in step with confirmed state
- config: YAML configuration
"""

from .client import LedgerClient
from .config import Config, load_config
from .deploy import deploy
from .descriptor import Descriptor, DescriptorStore
from .errors import (
    VotechainError,
    DeploymentError,
    ResourceLimitExceeded,
    SubmissionRejected,
    DescriptorError,
    DescriptorNotFound,
    DescriptorParseError,
    UnknownOperation,
    InvocationError,
    UnknownCandidate,
    NotYetAvailable,
    OutcomeUnknown,
    ClientClosed,
    ConfigError,
)
from .handle import TransactionHandle
from .proxy import Operation, OperationKind, Proxy, bind
from .view import ConsoleBoard, TallyBoard, ViewReconciler

__all__ = [
    # Client and deployment
    "LedgerClient",
    "deploy",
    "Descriptor",
    "DescriptorStore",
    # Binding
    "bind",
    "Proxy",
    "Operation",
    "OperationKind",
    "TransactionHandle",
    # View
    "ViewReconciler",
    "TallyBoard",
    "ConsoleBoard",
    # Config
    "Config",
    "load_config",
    # Errors
    "VotechainError",
    "DeploymentError",
    "ResourceLimitExceeded",
    "SubmissionRejected",
    "DescriptorError",
    "DescriptorNotFound",
    "DescriptorParseError",
    "UnknownOperation",
    "InvocationError",
    "UnknownCandidate",
    "NotYetAvailable",
    "OutcomeUnknown",
    "ClientClosed",
    "ConfigError",
]
