#!/usr/bin/env python3
"""
Deploy the vote tally contract and work with its descriptor.

Usage:
    votechain deploy [-c config.yaml]           # Deploy, vote once, save descriptor
    votechain inspect contract.json             # List the bound operations
    votechain tally [-c config.yaml] [--vote NAME ...]
"""

import argparse
import logging
import sys
from typing import Optional

from tallyc import CompilationError, produce_file

from .chain.ledger import Ledger
from .client import LedgerClient
from .config import Config, load_config
from .deploy import deploy
from .descriptor import DescriptorStore
from .errors import VotechainError
from .proxy import bind
from .view import ConsoleBoard, ViewReconciler


def load(path: Optional[str]) -> Config:
    return load_config(path) if path else Config()


def start_ledger(config: Config) -> Ledger:
    """Fresh in-process ledger producing blocks in the background."""
    ledger = Ledger(
        accounts=config.ledger.accounts,
        block_gas_limit=config.ledger.block_gas_limit,
    )
    ledger.start(config.ledger.block_time)
    return ledger


def deploy_contract(client: LedgerClient, config: Config):
    accounts = client.accounts()
    artifact = produce_file(config.deploy.contract)
    descriptor = deploy(
        client,
        artifact,
        [config.deploy.candidates],
        submitter=accounts[0],
        resource_limit=config.deploy.gas,
        poll_interval=config.client.poll_interval,
    )
    return accounts, descriptor


# =============================================================================
# Commands
# =============================================================================

def cmd_deploy(args) -> int:
    config = load(args.config)
    ledger = start_ledger(config)
    try:
        with LedgerClient(ledger) as client:
            accounts, descriptor = deploy_contract(client, config)
            print("Accounts:")
            for account in accounts:
                print(f"  {account}")
            print(f"Contract address: {descriptor.address}")

            proxy = bind(descriptor, client, default_gas=config.client.call_gas)
            if config.deploy.candidates:
                candidate = config.deploy.candidates[0]
                print(f"Votes for {candidate} before: {proxy.call('totalVotesFor', candidate)}")
                handle = proxy.invoke("vote", candidate, sender=accounts[0])
                handle.result()
                print(f"Votes for {candidate} after: {proxy.call('totalVotesFor', candidate)}")

            DescriptorStore(config.deploy.descriptor).save(descriptor)
            print(f"Descriptor saved to {config.deploy.descriptor}")
    finally:
        ledger.stop()
    return 0


def cmd_inspect(args) -> int:
    descriptor = DescriptorStore(args.descriptor).load()
    # Binding never touches the ledger, so a detached client is enough
    proxy = bind(descriptor, LedgerClient(Ledger(accounts=0)))
    print(f"Contract at {proxy.address}")
    for op in proxy.operations.values():
        print(f"  {op.entry.signature:<40} {op.kind.name.lower()}")
    return 0


def cmd_tally(args) -> int:
    config = load(args.config)
    ledger = start_ledger(config)
    try:
        with LedgerClient(ledger) as client:
            accounts, descriptor = deploy_contract(client, config)
            proxy = bind(descriptor, client, default_gas=config.client.call_gas)
            slots = {name: f"candidate-{i}" for i, name in enumerate(config.deploy.candidates, 1)}
            board = ConsoleBoard(labels={slot: name for name, slot in slots.items()})
            view = ViewReconciler(proxy, board, slots=slots, sender=accounts[0])
            view.load()

            handles = []
            for i, name in enumerate(args.vote or []):
                sender = accounts[i % len(accounts)]
                try:
                    handles.append(view.cast_vote(name, sender=sender))
                except VotechainError as e:
                    print(f"Vote for {name} failed: {e}", file=sys.stderr)
            for handle in handles:
                handle.wait()
    finally:
        ledger.stop()
    return 1 if view.failures else 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Deploy and use the vote tally contract."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser("deploy", help="Deploy the contract and save its descriptor")
    p.add_argument("-c", "--config", help="YAML config file")
    p.set_defaults(func=cmd_deploy)

    p = subparsers.add_parser("inspect", help="List the operations of a saved descriptor")
    p.add_argument("descriptor", help="Descriptor JSON file")
    p.set_defaults(func=cmd_inspect)

    p = subparsers.add_parser("tally", help="Deploy, render the tally board and cast votes")
    p.add_argument("-c", "--config", help="YAML config file")
    p.add_argument("--vote", action="append", metavar="NAME", help="Cast a vote (repeatable)")
    p.set_defaults(func=cmd_tally)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        code = args.func(args)
    except CompilationError as e:
        for diag in e.diagnostics:
            print(e.format_diagnostic(diag), file=sys.stderr)
        sys.exit(1)
    except (VotechainError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
