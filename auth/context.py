"""
auth/context.py -- The application context handed to every session handler.

AppContext is built once at startup (api/main.py lifespan) and owns the
long-lived references a handler may need: the token store, the settings
snapshot, and the server signing key. Handlers receive it explicitly; there
is no module-level store or key anywhere in the codebase.

Layer rule: may import from core/ (the kernel); no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import cached_property

from cryptography.hazmat.primitives.asymmetric import rsa

from auth.store import TokenStore
from core.config import Settings
from core.keys import load_signing_key, public_key_base64

logger = logging.getLogger("lodestone.auth")


@dataclass
class AppContext:
    settings: Settings
    store: TokenStore
    signing_key: rsa.RSAPrivateKey

    @classmethod
    def from_settings(cls, settings: Settings) -> AppContext:
        """Open the store and load the signing key described by settings."""
        store = TokenStore(settings.database_url, timeout_seconds=settings.store_timeout_seconds)
        try:
            signing_key = load_signing_key(settings.signing_key_path)
        except Exception:
            store.close()
            raise
        logger.info("Context ready (invalidate_scope=%s)", settings.invalidate_scope)
        return cls(settings=settings, store=store, signing_key=signing_key)

    @cached_property
    def public_key(self) -> str:
        """Base64 DER public key advertised in the server info document."""
        return public_key_base64(self.signing_key)

    def close(self) -> None:
        self.store.close()
