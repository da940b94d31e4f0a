"""
solxen-bridge: burn-to-mint settlement pipeline for solXEN on X1.

Reads recorded solXEN burns, derives one mint obligation per valid burn,
submits Token-2022 mint transactions on X1 and tracks every obligation in a
local ledger so each burn is minted exactly once across retries and restarts.
"""

__version__ = "0.1.0"
