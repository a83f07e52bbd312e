# auth_config.py
"""
JWT settings and signing-secret storage.

The signing secret lives in the operating system's credential store (keyring)
and is generated on first use. Deployments without a keyring backend, and test
runs, provide it through the CHAT_JWT_SECRET environment variable instead.

To rotate the stored key manually, run this file from your terminal:
  python -m src.users.auth_config
"""

import os
import secrets
import sys
from functools import lru_cache

import keyring
import logging
from keyring.errors import KeyringError
from ConfigChat import get_config

SERVICE_NAME = "ThreadChat"
JWT_SECRET_USERNAME = "jwt_secret_key"
SECRET_ENV = "CHAT_JWT_SECRET"

logger = logging.getLogger(__name__)
config = get_config()


def get_algorithm() -> str:
    return config.get("JWT_ALGORITHM", "HS256")


def get_access_token_expire_minutes() -> int:
    return config.get("ACCESS_TOKEN_EXPIRE_MINUTES", 30)


def store_jwt_secret(secret_key: str):
    """Stores the secret in the keyring. Exits if no backend is usable."""
    try:
        keyring.set_password(SERVICE_NAME, JWT_SECRET_USERNAME, secret_key)
        logger.info(f"Secret key stored in system keyring for service '{SERVICE_NAME}'.")
    except KeyringError as e:
        logger.critical(
            f"Could not store secret in keyring. Set {SECRET_ENV} instead. Original error: {e}",
            exc_info=True
        )
        sys.exit(1)


def retrieve_jwt_secret() -> str | None:
    try:
        return keyring.get_password(SERVICE_NAME, JWT_SECRET_USERNAME)
    except KeyringError as e:
        logger.critical(
            f"Could not retrieve secret from keyring. Set {SECRET_ENV} instead. Original error: {e}",
            exc_info=True
        )
        sys.exit(1)


@lru_cache(maxsize=1)
def get_secret_key() -> str:
    """Returns the signing secret, creating and storing one in the keyring if needed."""
    from_env = os.environ.get(SECRET_ENV)
    if from_env:
        return from_env

    secret = retrieve_jwt_secret()
    if secret:
        logger.info(f"JWT secret key loaded from system keyring for '{SERVICE_NAME}'.")
        return secret

    logger.warning(f"No secret key found for '{SERVICE_NAME}'. Generating a new one...")
    new_secret = secrets.token_hex(32)
    store_jwt_secret(new_secret)
    return new_secret


def _main_cli():
    print("--- JWT Secret Key Management Utility ---")
    if retrieve_jwt_secret():
        overwrite = input("A key already exists. Overwrite it? (yes/no): ").lower().strip()
        if overwrite not in ('yes', 'y'):
            print("Operation cancelled. The existing key was not changed.")
            sys.exit(0)
    store_jwt_secret(secrets.token_hex(32))
    print("A new key has been stored.")


if __name__ == '__main__':
    _main_cli()
