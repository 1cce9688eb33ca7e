from core.logging_config import redact_secrets


def test_credentials_are_redacted():
    event = {
        "event": "phonepe_callback_rejected",
        "Authorization": "SHA256 abc",
        "token": "eyJhbGciOi",
        "client_secret": "s3cr3t",
        "order_ref": "ORD20261018ABC123",
        "access_token": None,
    }

    out = redact_secrets(None, "info", event)

    assert out["Authorization"] == "***"
    assert out["token"] == "***"
    assert out["client_secret"] == "***"
    assert out["order_ref"] == "ORD20261018ABC123"
    assert out["access_token"] is None
