"""
Main entrypoint: solXEN burn-to-mint settlement.

  python main.py run          migrate burns from the burn store, mint on X1, write report
  python main.py migrate      burns -> ledger only (add --burner ADDR for one wallet)
  python main.py mint         mint what the ledger says is owed
  python main.py generate     report from the ledger

Env: BURN_STORE_PATH, LEDGER_DB_PATH, X1_RPC_URL, MINT_AUTHORITY_KEYPAIR, etc. (see .env.example)
"""

import sys

# Configure structured JSON logging before other imports that may log
import solxen_bridge.logging  # noqa: F401
from solxen_bridge.cli import main

if __name__ == "__main__":
    sys.exit(main())
