"""
Contract sources shipped with the package.
"""

from pathlib import Path

CONTRACTS_DIR = Path(__file__).parent

VOTING_CONTRACT = CONTRACTS_DIR / "voting.tally"
