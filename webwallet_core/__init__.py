"""
Webwallet Core - per-user walletd orchestration.

Provides:
- Container lifecycle for one walletd satellite per wallet (Docker)
- JSON-RPC client for walletd, including the connection readiness probe
- Background status reconciliation of running wallets
- Create/Import/Start/Stop/Get/List wallet sagas
"""

__version__ = "0.1.0"
