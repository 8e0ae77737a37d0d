# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Access credentials and the providers that supply them.

``CredentialsProvider`` is the extension point: the built-in providers
cover static keys, environment variables and chaining, and any object
with a ``credentials()`` method returning ``Credentials`` can be passed
wherever a provider is expected.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from r2lift.dotenv_loader import load_dotenv_once
from r2lift.errors import MissingCredentialsError
from r2lift.logging import SecretFilter


logger = logging.getLogger(__name__)

ACCESS_KEY_ID_VARIABLE = "R2_ACCESS_KEY_ID"
SECRET_ACCESS_KEY_VARIABLE = "R2_SECRET_ACCESS_KEY"


@dataclass(frozen=True)
class Credentials:
    """An access key pair.

    The secret is registered with ``SecretFilter`` on construction and is
    masked in ``repr``, so it never reaches log output.

    Attributes:
        access_key_id: Access key ID (public half, appears in signatures).
        secret_access_key: Secret access key (never logged).
    """

    access_key_id: str
    secret_access_key: str = field(repr=False)

    def __post_init__(self) -> None:
        SecretFilter.register_secret(self.secret_access_key)


class CredentialsProvider(Protocol):
    """Source of ``Credentials``."""

    def credentials(self) -> Credentials:
        """Return credentials.

        Raises:
            MissingCredentialsError: If no credentials are available.
        """
        ...


class StaticCredentialsProvider:
    """Provider returning a fixed key pair."""

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials

    @classmethod
    def from_keys(
        cls, access_key_id: str, secret_access_key: str
    ) -> StaticCredentialsProvider:
        return cls(Credentials(access_key_id, secret_access_key))

    def credentials(self) -> Credentials:
        return self._credentials


class EnvironmentCredentialsProvider:
    """Provider reading ``R2_ACCESS_KEY_ID`` / ``R2_SECRET_ACCESS_KEY``.

    ``.env`` files are loaded first (see ``r2lift.dotenv_loader``).
    """

    def __init__(
        self,
        access_key_id_variable: str = ACCESS_KEY_ID_VARIABLE,
        secret_access_key_variable: str = SECRET_ACCESS_KEY_VARIABLE,
    ) -> None:
        self.access_key_id_variable = access_key_id_variable
        self.secret_access_key_variable = secret_access_key_variable

    def credentials(self) -> Credentials:
        load_dotenv_once()
        access_key_id = os.environ.get(self.access_key_id_variable)
        if not access_key_id:
            raise MissingCredentialsError(
                f"Environment variable {self.access_key_id_variable} not set"
            )
        secret_access_key = os.environ.get(self.secret_access_key_variable)
        if not secret_access_key:
            raise MissingCredentialsError(
                f"Environment variable {self.secret_access_key_variable} "
                "not set"
            )
        return Credentials(access_key_id, secret_access_key)


class ChainedCredentialsProvider:
    """Provider that tries each of ``providers`` in order.

    The first provider to return credentials wins.  If all of them fail,
    the last provider's error is re-raised.
    """

    def __init__(self, providers: Sequence[CredentialsProvider]) -> None:
        self.providers = list(providers)

    def credentials(self) -> Credentials:
        last_error: MissingCredentialsError | None = None
        for provider in self.providers:
            try:
                return provider.credentials()
            except MissingCredentialsError as exc:
                logger.debug(
                    "%s had no credentials: %s", type(provider).__name__, exc
                )
                last_error = exc
        if last_error is not None:
            raise last_error
        raise MissingCredentialsError("No credentials providers configured")
