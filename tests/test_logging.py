import logging

import structlog

from voxrelay.logging import redact_text, redact_token_processor, setup_logging


def test_redacts_bot_token_in_url() -> None:
    text = redact_text("https://api.telegram.org/bot123456789:ABCdefGHI_jkl/sendMessage")

    assert "123456789" not in text
    assert "bot[REDACTED]" in text


def test_redacts_bare_token() -> None:
    text = redact_text("Token is 123456789:ABCDEFGHIJ_klmnop")

    assert "123456789" not in text
    assert "[REDACTED_TOKEN]" in text


def test_redacts_openai_key() -> None:
    assert redact_text("key sk-abcdefghijklmnop used") == "key [REDACTED_KEY] used"


def test_processor_redacts_every_string_value() -> None:
    event = {
        "event": "telegram.request",
        "url": "https://api.telegram.org/bot1:secret/getMe",
        "error": "bad key sk-0123456789abcdef",
        "status": 401,
    }

    result = redact_token_processor(None, "info", event)

    assert result["url"] == "https://api.telegram.org/bot[REDACTED]/getMe"
    assert result["error"] == "bad key [REDACTED_KEY]"
    assert result["status"] == 401
    assert result["event"] == "telegram.request"


def test_setup_logging_levels() -> None:
    try:
        setup_logging(debug=True)
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING

        setup_logging(debug=False)
        assert logging.getLogger().level == logging.INFO
    finally:
        structlog.reset_defaults()
