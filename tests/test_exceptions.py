"""Tests for exception hierarchy."""

from bluebubbles_client.exceptions import (
    ApiError,
    AttachmentError,
    BlueBubblesError,
    ConfigurationError,
    ConnectionFailedError,
    ConversationResolutionError,
    MessageSendError,
)
from bluebubbles_client.models import MessageError, MessageErrorCode


def test_all_inherit_from_base():
    for exc_class in [
        ConfigurationError,
        ApiError,
        ConnectionFailedError,
        ConversationResolutionError,
        MessageSendError,
        AttachmentError,
    ]:
        assert issubclass(exc_class, BlueBubblesError)


def test_api_error_defaults():
    e = ApiError("boom")
    assert str(e) == "boom"
    assert e.status == 0
    assert e.details is None


def test_api_error_carries_status_and_details():
    e = ApiError("Not found", status=404, details={"message": "Not found"})
    assert e.status == 404
    assert e.details == {"message": "Not found"}


def test_message_send_error_carries_domain_error():
    error = MessageError(MessageErrorCode.SERVER_EXTERNAL, "rejected")
    e = MessageSendError("send failed", error)
    assert str(e) == "send failed"
    assert e.error is error
