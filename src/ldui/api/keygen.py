# =============================================================================
# User API Key Generator
# =============================================================================
# One-shot interactive flow that obtains a Discourse "User API Key":
#
#   1. Generate an RSA key pair (2048 bits)
#   2. Open {site}/user-api-key/new with our public key and a random nonce
#   3. The user approves the request in the browser; Discourse shows an
#      encrypted payload, which the user pastes back into the terminal
#   4. Decrypt with our private key (PKCS#1 v1.5), check the nonce
#   5. Store the key in the system keyring, the site URL in config.toml
#
# This runs before (and instead of) the TUI session: `ldui -g`.
# =============================================================================

import base64
import binascii
import json
import logging
import secrets
import uuid
import webbrowser
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlencode

import keyring
from keyring.errors import KeyringError
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ldui.config import Config, ConfigError

logger = logging.getLogger(__name__)

DEFAULT_SITE_URL = "https://linux.do"
DEFAULT_APPLICATION_NAME = "LDUI terminal client"


@dataclass
class UserApiKeyPayload:
    """Decrypted response from /user-api-key/new."""
    key: str
    nonce: str
    push: bool = False
    api: int = 0


@dataclass
class KeyRequest:
    """
    A pending key request: the URL to open plus what we need to decrypt
    the answer.
    """
    url: str
    nonce: str
    client_id: str
    private_key: rsa.RSAPrivateKey


def build_key_request(site_url: str, application_name: str) -> KeyRequest:
    """
    Generate a key pair and the authorization URL for a site.

    Args:
        site_url: Forum URL without trailing slash.
        application_name: Name shown to the user on the approval page.
    """
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")

    nonce = base64.b64encode(secrets.token_bytes(32)).decode("ascii")
    client_id = str(uuid.uuid4())

    params = urlencode({
        "application_name": application_name,
        "client_id": client_id,
        "scopes": "read",
        "public_key": public_pem,
        "nonce": nonce,
    })
    url = f"{site_url.rstrip('/')}/user-api-key/new?{params}"
    return KeyRequest(url=url, nonce=nonce, client_id=client_id, private_key=private_key)


def decrypt_payload(request: KeyRequest, encrypted: str) -> UserApiKeyPayload:
    """
    Decrypt and validate the payload pasted back by the user.

    Raises:
        KeyGeneratorError: If the payload is malformed or the nonce differs.
    """
    # Browsers wrap long strings when copying; drop all whitespace
    cleaned = "".join(encrypted.split())
    try:
        ciphertext = base64.b64decode(cleaned, validate=True)
        plaintext = request.private_key.decrypt(ciphertext, padding.PKCS1v15())
        data = json.loads(plaintext.decode("utf-8"))
    except (binascii.Error, ValueError) as e:
        raise KeyGeneratorError(f"Could not decrypt payload: {e}") from e

    try:
        payload = UserApiKeyPayload(
            key=data["key"],
            nonce=data["nonce"],
            push=bool(data.get("push", False)),
            api=int(data.get("api", 0)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise KeyGeneratorError(f"Unexpected payload: {e}") from e

    if payload.nonce != request.nonce:
        raise KeyGeneratorError("Nonce mismatch, refusing the key")
    return payload


def save_api_key(config: Config, site_url: str, api_key: str) -> None:
    """Store the key in the keyring and point the config at the site."""
    config.forum.url = site_url
    keyring.set_password(config.forum.keyring_service, config.forum.username, api_key)
    config.save()
    logger.info(f"Saved API key for {site_url}")


def run_key_generator(
    config: Config | None = None,
    prompt: Callable[[str], str] = input,
    echo: Callable[[str], None] = print,
    open_browser: Callable[[str], bool] = webbrowser.open,
) -> int:
    """
    Interactive key generation flow.

    Returns:
        Process exit code (0 on success).
    """
    echo("=== LDUI API key generator ===")
    echo("This tool requests a read-only User API Key from a Discourse forum.")
    echo("")

    try:
        config = config or Config.load()
    except ConfigError as e:
        echo(f"Config error: {e}")
        return 1

    site_url = prompt(f"Forum URL (default: {config.forum.url or DEFAULT_SITE_URL}): ").strip()
    site_url = (site_url or config.forum.url or DEFAULT_SITE_URL).rstrip("/")

    app_name = prompt(f"Application name (default: {DEFAULT_APPLICATION_NAME}): ").strip()
    app_name = app_name or DEFAULT_APPLICATION_NAME

    request = build_key_request(site_url, app_name)

    echo("Opening the browser to authorize LDUI...")
    if not open_browser(request.url):
        echo("Could not open a browser, please visit this URL manually:")
        echo(request.url)

    echo("")
    encrypted = prompt("Paste the payload shown after approving: ")

    try:
        payload = decrypt_payload(request, encrypted)
    except KeyGeneratorError as e:
        echo(f"Failed to generate API key: {e}")
        return 1

    echo("API key generated.")
    answer = prompt("Save this API key? (y/n): ").strip().lower()
    if answer == "y":
        try:
            save_api_key(config, site_url, payload.key)
        except KeyringError as e:
            echo(f"Could not store the key in the keyring: {e}")
            return 1
        echo("Configuration updated.")
    else:
        echo(f"API key: {payload.key}")

    return 0


# =============================================================================
# Exceptions
# =============================================================================

class KeyGeneratorError(Exception):
    """Raised when the key exchange cannot be completed."""
    pass
