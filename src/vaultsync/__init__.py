"""
VaultSync: client-side encrypted credential store.

Your secrets stay sealed on your machine. The cloud only ever sees
ciphertext, and when two copies drift apart you decide who wins.
"""

import os

__version__ = "0.1.0"

VAULT_HOME = os.environ.get("VAULTSYNC_HOME", "~/.vaultsync")
