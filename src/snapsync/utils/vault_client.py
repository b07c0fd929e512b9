"""
Vault Client Utility for snapsync

Provides access to HashiCorp Vault for retrieving the database credentials
used by the sync pipeline.
"""

import os
from typing import Dict, Any, Optional
import hvac
from hvac.exceptions import VaultError, InvalidPath
import logging

logger = logging.getLogger(__name__)


class VaultClient:
    """
    Client for interacting with HashiCorp Vault.

    Reads KV v2 secrets holding database credentials.
    """

    def __init__(
        self,
        vault_url: Optional[str] = None,
        vault_token: Optional[str] = None,
        verify_ssl: bool = True,
        mount_point: str = "secret"
    ):
        """
        Initialize Vault client.

        Args:
            vault_url: Vault server URL (defaults to VAULT_ADDR env var)
            vault_token: Vault authentication token (defaults to VAULT_TOKEN env var)
            verify_ssl: Whether to verify SSL certificates
            mount_point: KV secrets engine mount point

        Raises:
            ValueError: If required parameters are missing
            VaultError: If connection to Vault fails
        """
        self.vault_url = vault_url or os.getenv("VAULT_ADDR")
        self.vault_token = vault_token or os.getenv("VAULT_TOKEN")
        self.mount_point = mount_point

        if not self.vault_url:
            raise ValueError("Vault URL must be provided via parameter or VAULT_ADDR environment variable")

        if not self.vault_token:
            raise ValueError("Vault token must be provided via parameter or VAULT_TOKEN environment variable")

        try:
            self.client = hvac.Client(
                url=self.vault_url,
                token=self.vault_token,
                verify=verify_ssl
            )

            if not self.client.is_authenticated():
                raise VaultError("Failed to authenticate with Vault")

            logger.info(f"Successfully connected to Vault at {self.vault_url}")

        except Exception as e:
            logger.error(f"Failed to initialize Vault client: {e}")
            raise VaultError(f"Vault initialization failed: {e}") from e

    def get_secret(self, path: str) -> Dict[str, Any]:
        """
        Retrieve a secret from Vault.

        Args:
            path: Secret path (e.g., "snapsync/postgres")

        Returns:
            Dictionary containing secret data

        Raises:
            InvalidPath: If secret path does not exist
            VaultError: If retrieval fails
        """
        try:
            logger.debug(f"Retrieving secret from path: {self.mount_point}/data/{path}")
            response = self.client.secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=self.mount_point
            )

            if not response or "data" not in response:
                raise InvalidPath(f"No data found at path: {path}")

            secret_data = response["data"].get("data", {})
            logger.info(f"Successfully retrieved secret from {path}")

            return secret_data

        except InvalidPath:
            logger.error(f"Secret not found at path: {path}")
            raise
        except Exception as e:
            logger.error(f"Failed to retrieve secret from {path}: {e}")
            raise VaultError(f"Secret retrieval failed: {e}") from e

    def get_database_credentials(self, path: str) -> Dict[str, str]:
        """
        Retrieve database credentials from Vault.

        Only connection keys are returned: username, password, host, port, dbname.

        Args:
            path: Secret path holding the credentials

        Returns:
            Dictionary with the credential keys present in the secret

        Raises:
            ValueError: If the secret has neither username nor password
            VaultError: If retrieval fails
        """
        secret = self.get_secret(path)
        allowed = ("username", "password", "host", "port", "dbname")
        credentials = {key: str(secret[key]) for key in allowed if secret.get(key) not in (None, "")}

        if "username" not in credentials and "password" not in credentials:
            raise ValueError(f"Secret at {path} contains no database credentials")

        logger.info(f"Retrieved database credentials from {path}")
        return credentials
