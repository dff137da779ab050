"""Tests for remote error classification."""

import pytest

from macrosync.errors import (
    NetworkError,
    PostgrestErrorClassifier,
    RemoteError,
    TablePullError,
)


@pytest.fixture
def classifier():
    return PostgrestErrorClassifier()


class TestMissingColumn:
    def test_extracts_column_name(self, classifier):
        error = RemoteError(
            "Could not find the 'fiber_target' column of 'goals' in the schema cache",
            code="PGRST204",
        )
        assert classifier.missing_column(error) == "fiber_target"

    def test_other_code_is_not_schema_mismatch(self, classifier):
        error = RemoteError("Could not find the 'x' column", code="42703")
        assert classifier.missing_column(error) is None

    def test_unparseable_message(self, classifier):
        assert classifier.missing_column(RemoteError("schema cache stale", code="PGRST204")) is None

    def test_plain_exception(self, classifier):
        assert classifier.missing_column(ValueError("Could not find the 'x' column")) is None


class TestTransient:
    @pytest.mark.parametrize("code", ["PGRST301", "500", "502", "503", "504"])
    def test_transient_codes(self, classifier, code):
        assert classifier.is_transient(RemoteError("boom", code=code))

    @pytest.mark.parametrize("code", ["23505", "42501", "401"])
    def test_permanent_codes(self, classifier, code):
        assert not classifier.is_transient(RemoteError("boom", code=code))

    def test_missing_code_is_transient(self, classifier):
        assert classifier.is_transient(RemoteError("no code"))

    def test_unstructured_exception_is_transient(self, classifier):
        assert classifier.is_transient(RuntimeError("client blew up"))

    def test_network_failure_is_transient(self, classifier):
        assert classifier.is_transient(RemoteError("TypeError: Failed to fetch", code="23505"))


class TestNetworkFailure:
    def test_network_error_type(self, classifier):
        assert classifier.is_network_failure(NetworkError("down"))

    @pytest.mark.parametrize(
        "message", ["Failed to fetch", "Load failed", "Network request failed for foods"]
    )
    def test_signatures(self, classifier, message):
        assert classifier.is_network_failure(RemoteError(message))
        assert classifier.is_network_failure(RuntimeError(message))

    def test_regular_error(self, classifier):
        assert not classifier.is_network_failure(RemoteError("permission denied", code="42501"))


class TestErrorFormatting:
    def test_remote_error_str_includes_code(self):
        assert str(RemoteError("bad", code="23505")) == "[23505] bad"
        assert str(RemoteError("bad")) == "bad"

    def test_table_pull_error(self):
        cause = RemoteError("denied", code="42501")
        error = TablePullError("foods", cause)
        assert error.table == "foods"
        assert error.cause is cause
        assert "foods" in str(error)
