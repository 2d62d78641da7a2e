"""Secure persistence for the single credential record.

The record lives in the OS keyring (macOS Keychain, Windows Credential
Locker, or Linux Secret Service) under a fixed service/account pair, as one
JSON payload.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from pydantic import ValidationError

from quickcal.auth.client.models.errors import StoreUnavailableError
from quickcal.auth.client.models.tokens import CredentialRecord
from quickcal.auth.config import KEYCHAIN_ACCOUNT, KEYCHAIN_SERVICE

logger = logging.getLogger(__name__)


class CredentialStore:
    """Get, put and delete exactly one CredentialRecord.

    Writes replace the whole record; there are no partial updates. Each
    operation runs under a lock so readers never observe a half-applied
    replace-or-clear.
    """

    def __init__(
        self,
        service: str = KEYCHAIN_SERVICE,
        account: str = KEYCHAIN_ACCOUNT,
        backend: Any | None = None,
    ):
        """Initialize the store.

        Args:
            service: Keyring service name
            account: Keyring account name
            backend: Keyring backend; defaults to the active system keyring
        """
        self.service = service
        self.account = account
        self._backend = backend
        self._lock = threading.Lock()

    @property
    def backend(self) -> Any:
        if self._backend is None:
            self._backend = keyring.get_keyring()
        return self._backend

    def put(self, record: CredentialRecord) -> None:
        """Persist the record, replacing any existing one.

        Raises:
            StoreUnavailableError: If the keyring cannot be written
        """
        payload = record.model_dump_json()
        with self._lock:
            try:
                self.backend.set_password(self.service, self.account, payload)
            except KeyringError as e:
                raise StoreUnavailableError(
                    f"Failed to save credentials to keyring: {e}"
                ) from e
        logger.debug("Saved credentials to keyring")

    def get(self) -> CredentialRecord | None:
        """Load the record.

        Returns:
            The stored record, or None when nothing is stored or the stored
            payload cannot be parsed

        Raises:
            StoreUnavailableError: If the keyring cannot be read
        """
        with self._lock:
            try:
                payload = self.backend.get_password(self.service, self.account)
            except KeyringError as e:
                logger.error(f"Failed to read credentials from keyring: {e}")
                raise StoreUnavailableError(
                    f"Failed to read credentials from keyring: {e}"
                ) from e

        if payload is None:
            logger.debug("No stored credentials found")
            return None

        try:
            record = CredentialRecord.model_validate_json(payload)
        except ValidationError as e:
            logger.warning(
                f"Stored credentials are unreadable, ignoring them "
                f"({e.error_count()} validation errors)"
            )
            return None

        logger.debug("Loaded stored credentials")
        return record

    def delete(self) -> None:
        """Delete the record. Deleting a missing record succeeds.

        Raises:
            StoreUnavailableError: If the keyring cannot be reached
        """
        with self._lock:
            try:
                self.backend.delete_password(self.service, self.account)
            except PasswordDeleteError:
                logger.debug("No stored credentials to delete")
                return
            except KeyringError as e:
                raise StoreUnavailableError(
                    f"Failed to delete credentials from keyring: {e}"
                ) from e
        logger.debug("Deleted stored credentials")
