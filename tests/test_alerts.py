from unittest.mock import MagicMock, patch

from nodekeeper import alerts
from nodekeeper.settings import Settings

EMAIL_CFG = Settings(
    enable_email=True,
    smtp_host="smtp.example.org",
    smtp_port=587,
    smtp_user="u",
    smtp_password="p",
    email_from="node@example.org",
    email_to="ops@example.org",
)


def test_disabled_by_default(monkeypatch):
    monkeypatch.setattr(alerts, "settings", Settings(enable_email=False))
    assert alerts.send_email("s", "b") is False


def test_recovery_alert_skips_empty_passes(monkeypatch):
    monkeypatch.setattr(alerts, "settings", EMAIL_CFG)
    with patch.object(alerts.smtplib, "SMTP") as smtp:
        assert alerts.recovery_alert("mount recovery", [], []) is False
    smtp.assert_not_called()


def test_recovery_alert_sends_summary(monkeypatch):
    monkeypatch.setattr(alerts, "settings", EMAIL_CFG)
    server = MagicMock()
    with patch.object(alerts.smtplib, "SMTP") as smtp:
        smtp.return_value.__enter__.return_value = server
        ok = alerts.recovery_alert("post-restart recovery", ["fluxweb_app1"], [{"name": "fluxdb_app1", "error": "boom"}])
    assert ok is True
    smtp.assert_called_once_with("smtp.example.org", 587)
    sent = server.sendmail.call_args.args[2]
    assert "[FAILURES] post-restart recovery: restarted 1, failed 1" in sent
    assert "FAILED: fluxdb_app1 (boom)" in sent


def test_smtp_failure_returns_false(monkeypatch):
    monkeypatch.setattr(alerts, "settings", EMAIL_CFG)
    with patch.object(alerts.smtplib, "SMTP", side_effect=OSError("unreachable")):
        assert alerts.send_email("s", "b") is False
