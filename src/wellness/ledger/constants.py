# src/wellness/ledger/constants.py
from __future__ import annotations

"""Token constants.

- Hard supply cap: 10^18 minimal units
- One reserved zero address that can never hold balances or be admin
"""

# Supply cap in minimal units.
MAX_SUPPLY: int = 1_000_000_000_000_000_000

# Reserved burn/null principal.
ZERO_ADDRESS: str = "SP000000000000000000002Q6VF78"

# Deployer used by dev/testnet genesis when no admin is configured.
DEV_ADMIN: str = "ST1PQHQKV0RJXZFY1DGX8MNSNYVE3VGZJSRTPGZGM"

# Observable event kinds, one per successful mutating operation.
EVENT_MINT: str = "mint"
EVENT_BURN: str = "burn"
EVENT_TRANSFER: str = "transfer"
EVENT_APPROVAL: str = "approval"
EVENT_STAKE: str = "stake"
EVENT_UNSTAKE: str = "unstake"

EVENT_KINDS = (EVENT_MINT, EVENT_BURN, EVENT_TRANSFER, EVENT_APPROVAL, EVENT_STAKE, EVENT_UNSTAKE)
