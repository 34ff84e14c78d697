"""Unit tests for tenantauth/notify/notifier.py."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from tenantauth.config.settings import Settings
from tenantauth.notify.notifier import LogNotifier, SmtpConfig, SmtpNotifier
from tenantauth.web.dependencies import _create_notifier


@pytest.mark.unit
class TestLogNotifier:
    async def test_records_codes(self) -> None:
        notifier = LogNotifier()
        await notifier.send_otp_email("ada@example.com", "123456")
        await notifier.send_otp_email("ada@example.com", "654321")
        assert notifier.last_code_for("ada@example.com") == "654321"
        assert notifier.last_code_for("bob@example.com") is None

    async def test_invitation_not_mistaken_for_code(self) -> None:
        notifier = LogNotifier()
        await notifier.send_invitation_email("ada@example.com", "Bob", "Acme", "https://x")
        assert notifier.last_code_for("ada@example.com") is None
        assert notifier.outbox[0].body == "https://x"

    async def test_outbox_is_bounded(self) -> None:
        notifier = LogNotifier(max_messages=3)
        for n in range(10):
            await notifier.send_otp_email(f"user{n}@example.com", str(n))
        assert len(notifier.outbox) == 3
        assert notifier.last_code_for("user9@example.com") == "9"
        assert notifier.last_code_for("user0@example.com") is None

    async def test_outbox_can_be_disabled(self) -> None:
        notifier = LogNotifier(max_messages=0)
        await notifier.send_otp_email("ada@example.com", "123456")
        assert notifier.last_code_for("ada@example.com") is None


@pytest.mark.unit
class TestNotifierSelection:
    def test_smtp_when_configured(self) -> None:
        settings = Settings(secret_key="s", smtp_host="smtp.example.com")
        assert isinstance(_create_notifier(settings), SmtpNotifier)

    def test_log_notifier_keeps_nothing_outside_debug(self) -> None:
        notifier = _create_notifier(Settings(secret_key="s", debug=False))
        assert isinstance(notifier, LogNotifier)
        assert notifier.outbox.maxlen == 0

    def test_log_notifier_keeps_messages_in_debug(self) -> None:
        notifier = _create_notifier(Settings(secret_key="s", debug=True))
        assert notifier.outbox.maxlen == 100


@pytest.mark.unit
class TestSmtpNotifier:
    async def test_sends_otp_over_smtp(self) -> None:
        config = SmtpConfig(
            host="smtp.example.com",
            username="user",
            password="pass",
            from_email="auth@example.com",
            timeout_seconds=5.0,
        )
        server = MagicMock()
        with patch("tenantauth.notify.notifier.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.__enter__.return_value = server
            await SmtpNotifier(config).send_otp_email("ada@example.com", "123456")

        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=5.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("user", "pass")
        from_addr, to_addrs, body = server.sendmail.call_args.args
        assert from_addr == "auth@example.com"
        assert to_addrs == ["ada@example.com"]
        assert "123456" in body

    async def test_no_tls_no_login(self) -> None:
        config = SmtpConfig(host="localhost", port=25, use_tls=False)
        server = MagicMock()
        with patch("tenantauth.notify.notifier.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.__enter__.return_value = server
            await SmtpNotifier(config).send_invitation_email(
                "bob@example.com", "Ada", "Acme", "https://acme.example.com/invite/1"
            )
        server.starttls.assert_not_called()
        server.login.assert_not_called()
        assert "invite/1" in server.sendmail.call_args.args[2]

    async def test_invitation_fields_are_escaped(self) -> None:
        with patch.object(SmtpNotifier, "_send") as send:
            await SmtpNotifier(SmtpConfig(host="localhost")).send_invitation_email(
                "bob@example.com",
                "<script>alert(1)</script>",
                "Acme & Co\r\nBcc: all@example.com",
                'https://acme.example.com/invite?x="><img src=x>',
            )
        _to, subject, body_html, body_text = send.call_args.args
        assert "<script>" not in body_html
        assert "&lt;script&gt;" in body_html
        assert "Acme &amp; Co" in body_html
        assert '"><img' not in body_html
        assert "&quot;&gt;&lt;img" in body_html
        assert "\n" not in subject
        assert "\r" not in subject
        assert "<script>" in body_text

    async def test_errors_propagate(self) -> None:
        with patch("tenantauth.notify.notifier.smtplib.SMTP", side_effect=OSError("refused")):
            with pytest.raises(OSError):
                await SmtpNotifier(SmtpConfig(host="localhost")).send_otp_email("a@b.co", "1")
