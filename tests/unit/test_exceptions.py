"""
Tests for storesync.exceptions module.
"""
import pytest

from storesync.exceptions import (
    StoreSyncError,
    ChannelError,
    APIError,
    PayloadError,
    ValidationError,
)


class TestStoreSyncError:
    """Tests for base StoreSyncError exception."""

    def test_message_only(self):
        """Error with message only."""
        error = StoreSyncError("Something went wrong")
        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"
        assert error.details is None

    def test_message_with_details(self):
        """Error with message and details."""
        error = StoreSyncError("Failed to open", "Connection refused")
        assert str(error) == "Failed to open: Connection refused"
        assert error.details == "Connection refused"


class TestChannelError:
    """Tests for ChannelError exception."""

    def test_inheritance(self):
        """Should inherit from StoreSyncError."""
        assert isinstance(ChannelError("Failed"), StoreSyncError)

    def test_url(self):
        """Should carry the channel URL."""
        error = ChannelError("Failed to open channel", "timeout", url="http://sync.test")
        assert error.url == "http://sync.test"
        assert str(error) == "Failed to open channel: timeout"


class TestAPIError:
    """Tests for APIError exception."""

    def test_status_code(self):
        """Should support status_code attribute."""
        error = APIError("Not found", status_code=404)
        assert error.status_code == 404
        assert isinstance(error, StoreSyncError)

    def test_no_status_code(self):
        """status_code should be None by default."""
        assert APIError("Failed").status_code is None


class TestPayloadError:
    """Tests for PayloadError exception."""

    def test_stage(self):
        """Should record the stage the bad payload came with."""
        error = PayloadError("Payload is not valid JSON", stage="get_customer_ltv_cohorts")
        assert error.stage == "get_customer_ltv_cohorts"
        assert isinstance(error, StoreSyncError)


class TestValidationError:
    """Tests for ValidationError exception."""

    def test_not_store_sync_error(self):
        """Should NOT inherit from StoreSyncError."""
        assert not isinstance(ValidationError("page", "Must be at least 1"), StoreSyncError)

    def test_str_with_value(self):
        """String includes the rejected value."""
        error = ValidationError("page", "Must be at least 1", 0)
        assert str(error) == "page: Must be at least 1 (got: 0)"

    def test_str_without_value(self):
        """String omits value when None."""
        error = ValidationError("store_id", "Store identifier is required")
        assert str(error) == "store_id: Store identifier is required"

    def test_can_be_raised(self):
        """Can be raised and caught."""
        with pytest.raises(ValidationError) as exc_info:
            raise ValidationError("n", "Bucket count must be a positive integer", 0)
        assert exc_info.value.field == "n"
