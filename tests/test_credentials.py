# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for r2lift/credentials.py."""

import logging
from unittest.mock import patch

import pytest

from r2lift.credentials import (
    ACCESS_KEY_ID_VARIABLE,
    SECRET_ACCESS_KEY_VARIABLE,
    ChainedCredentialsProvider,
    Credentials,
    EnvironmentCredentialsProvider,
    StaticCredentialsProvider,
)
from r2lift.errors import MissingCredentialsError
from r2lift.logging import SecretFilter


class TestCredentials:
    """Tests for Credentials."""

    def test_secret_not_in_repr(self) -> None:
        creds = Credentials("AKID", "super-secret-value")
        assert "AKID" in repr(creds)
        assert "super-secret-value" not in repr(creds)

    def test_secret_registered_with_filter(self) -> None:
        """Constructing credentials masks the secret in log records."""
        Credentials("AKID", "super-secret-value")
        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname="",
            lineno=0,
            msg="key is super-secret-value",
            args=None,
            exc_info=None,
        )
        SecretFilter().filter(record)
        assert record.msg == "key is [REDACTED]"


class TestStaticCredentialsProvider:
    """Tests for StaticCredentialsProvider."""

    def test_from_keys(self) -> None:
        provider = StaticCredentialsProvider.from_keys("AKID", "secret")
        assert provider.credentials() == Credentials("AKID", "secret")


@patch("r2lift.credentials.load_dotenv_once")
class TestEnvironmentCredentialsProvider:
    """Tests for EnvironmentCredentialsProvider."""

    def test_reads_environment(
        self, _load, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(ACCESS_KEY_ID_VARIABLE, "AKID")
        monkeypatch.setenv(SECRET_ACCESS_KEY_VARIABLE, "secret")
        creds = EnvironmentCredentialsProvider().credentials()
        assert creds == Credentials("AKID", "secret")
        _load.assert_called_once()

    def test_custom_variables(
        self, _load, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("MY_ID", "AKID2")
        monkeypatch.setenv("MY_SECRET", "secret2")
        provider = EnvironmentCredentialsProvider("MY_ID", "MY_SECRET")
        assert provider.credentials().access_key_id == "AKID2"

    def test_missing_access_key(
        self, _load, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv(ACCESS_KEY_ID_VARIABLE, raising=False)
        monkeypatch.setenv(SECRET_ACCESS_KEY_VARIABLE, "secret")
        with pytest.raises(MissingCredentialsError, match="R2_ACCESS_KEY_ID"):
            EnvironmentCredentialsProvider().credentials()

    def test_empty_secret(
        self, _load, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(ACCESS_KEY_ID_VARIABLE, "AKID")
        monkeypatch.setenv(SECRET_ACCESS_KEY_VARIABLE, "")
        with pytest.raises(
            MissingCredentialsError, match="R2_SECRET_ACCESS_KEY"
        ):
            EnvironmentCredentialsProvider().credentials()


class _Failing:
    def __init__(self, message: str) -> None:
        self.message = message
        self.calls = 0

    def credentials(self) -> Credentials:
        self.calls += 1
        raise MissingCredentialsError(self.message)


class TestChainedCredentialsProvider:
    """Tests for ChainedCredentialsProvider."""

    def test_first_success_wins(self) -> None:
        failing = _Failing("first")
        second = StaticCredentialsProvider.from_keys("A2", "s2")
        third = StaticCredentialsProvider.from_keys("A3", "s3")
        chain = ChainedCredentialsProvider([failing, second, third])
        assert chain.credentials().access_key_id == "A2"
        assert failing.calls == 1

    def test_last_error_raised(self) -> None:
        chain = ChainedCredentialsProvider([_Failing("a"), _Failing("b")])
        with pytest.raises(MissingCredentialsError, match="b"):
            chain.credentials()

    def test_empty_chain(self) -> None:
        with pytest.raises(MissingCredentialsError):
            ChainedCredentialsProvider([]).credentials()

    def test_other_errors_propagate(self) -> None:
        """Only missing credentials fall through to the next provider."""

        class _Broken:
            def credentials(self) -> Credentials:
                raise RuntimeError("boom")

        chain = ChainedCredentialsProvider(
            [_Broken(), StaticCredentialsProvider.from_keys("A", "s")]
        )
        with pytest.raises(RuntimeError):
            chain.credentials()
