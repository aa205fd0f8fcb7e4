"""Tests for caller identity and the ownership guard."""

import logging

import pytest
from advisorbot.auth import Auth, SingleUser, require_ownership, verify_ownership
from advisorbot.errors import AuthorizationError


class TestSingleUser:
    def test_default_user(self):
        assert SingleUser().get_current_user_id() == "advisor"

    def test_custom_user_is_stringified(self):
        assert SingleUser(user_id=7).get_current_user_id() == "7"

    def test_auth_is_abstract(self):
        with pytest.raises(TypeError):
            Auth()


class TestVerifyOwnership:
    @pytest.mark.parametrize(
        "owner, caller, expected",
        [
            ("7", "7", True),
            (7, "7", True),
            (" 7 ", 7, True),
            ("7", "8", False),
            (None, "7", False),
            ("7", None, False),
            ("", "", False),
        ],
    )
    def test_comparison(self, owner, caller, expected):
        assert verify_ownership(owner, caller) is expected


class TestRequireOwnership:
    def test_owner_passes(self):
        require_ownership("7", 7, "client 1")

    def test_mismatch_raises_and_audits(self, caplog):
        with caplog.at_level(logging.WARNING, logger="advisorbot.audit"):
            with pytest.raises(AuthorizationError, match="client 3"):
                require_ownership("8", "7", "client 3")
        [record] = [r for r in caplog.records if r.name == "advisorbot.audit"]
        assert "caller=7" in record.getMessage()
        assert "owned by 8" in record.getMessage()

    def test_missing_caller_is_denied(self):
        with pytest.raises(AuthorizationError):
            require_ownership("7", None)
