from unittest.mock import patch

from shopauth.service.notifications import OutboxNotifier
from shopauth.storage.models import User


def _user(email="shopper@example.com"):
    return User(id="u1", email=email, first_name="Sam", last_name="Shopper")


def test_latest_returns_newest_matching_message():
    notifier = OutboxNotifier()
    notifier.send_email_verification(_user(), "first", 3600)
    notifier.send_password_reset(_user(), "123456", 300)
    notifier.send_email_verification(_user(), "second", 3600)

    assert notifier.latest("email_verification", "shopper@example.com").secret == "second"
    assert notifier.latest("password_reset", "shopper@example.com").expires_in == 300
    assert notifier.latest("password_reset", "other@example.com") is None


def test_outbox_is_bounded_and_drainable():
    notifier = OutboxNotifier(max_messages=2)
    for code in ("1111", "2222", "3333"):
        notifier.send_password_reset(_user(), code, 300)

    assert [m.secret for m in notifier.outbox] == ["2222", "3333"]
    assert len(notifier.drain()) == 2
    assert notifier.outbox == []


def test_secret_is_not_logged():
    notifier = OutboxNotifier()
    with patch("shopauth.service.notifications.logger") as mock_logger:
        notifier.send_password_reset(_user(), "987654", 300)

    _, kwargs = mock_logger.info.call_args
    assert "987654" not in kwargs.values()
    assert kwargs["kind"] == "password_reset"
