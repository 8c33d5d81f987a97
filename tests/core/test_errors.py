"""Tests for the shared error taxonomy."""

from __future__ import annotations

import pytest

from swaphub.core.errors import (
    ERRORS_BY_CODE,
    ERRORS_BY_STATUS,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    StateError,
    SwapHubError,
    ValidationError,
    error_from_code,
)


class TestTaxonomy:
    """Tests for error codes and HTTP statuses."""

    @pytest.mark.parametrize(
        ("error_cls", "status_code"),
        [
            (ValidationError, 400),
            (AuthenticationError, 401),
            (AuthorizationError, 403),
            (NotFoundError, 404),
            (StateError, 409),
        ],
    )
    def test_status_codes(self, error_cls: type[SwapHubError], status_code: int) -> None:
        """Each error maps to one HTTP status and back."""
        assert error_cls.status_code == status_code
        assert ERRORS_BY_STATUS[status_code] is error_cls
        assert ERRORS_BY_CODE[error_cls.code] is error_cls

    def test_message(self) -> None:
        """The message is kept as attribute and str()."""
        error = StateError("Request is already accepted")
        assert error.message == "Request is already accepted"
        assert str(error) == "Request is already accepted"
        assert isinstance(error, SwapHubError)

    def test_error_from_code(self) -> None:
        """Wire codes rebuild the same class; unknown codes the base class."""
        assert isinstance(error_from_code("NotFoundError", "gone"), NotFoundError)
        unknown = error_from_code("Mystery", "what")
        assert type(unknown) is SwapHubError
        assert unknown.message == "what"
