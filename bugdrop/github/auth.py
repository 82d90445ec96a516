"""GitHub App authentication.

Builds the short-lived JWT that identifies the App to GitHub.

GitHub App auth flow:
1. Sign a JWT with the App's private key (this module)
2. Look up the installation for the target repo with that JWT
3. Exchange the JWT for an installation access token (see client.py)

Signing happens inside `SigningKey`, so the RSA key object never leaves
github/keys.py.
"""

import time
from typing import Optional

from bugdrop.github.keys import import_private_key

# Backdate to absorb clock drift between us and GitHub.
CLOCK_SKEW_SECONDS = 60
# GitHub rejects App JWTs that live longer than 10 minutes.
JWT_TTL_SECONDS = 600


def create_app_jwt(app_id: str, private_key_pem: str, now: Optional[int] = None) -> str:
    """Create a JWT for authenticating as the GitHub App.

    Every call imports the key and stamps iat/exp afresh; nothing is cached.

    Raises KeyImportError if the PEM cannot be imported and SigningError if
    the signature cannot be produced.
    """
    if now is None:
        now = int(time.time())

    payload = {
        "iat": now - CLOCK_SKEW_SECONDS,
        "exp": now + JWT_TTL_SECONDS,
        "iss": app_id,
    }
    return import_private_key(private_key_pem).encode_jwt(payload)
