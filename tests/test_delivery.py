import logging

import pytest

from gatekeeper.adapters.delivery.logging_sender import LoggingCodeSender


@pytest.mark.asyncio
async def test_logging_sender_never_logs_code_or_recipient(caplog):
    sender = LoggingCodeSender()

    with caplog.at_level(logging.INFO, logger="gatekeeper.adapters.delivery.logging_sender"):
        await sender.send("a@b.com", "signup-email", "482913", expiry_seconds=600)

    record = next(r for r in caplog.records if r.message == "delivery.requested")
    assert record.code_length == 6
    assert record.purpose == "signup-email"
    assert "482913" not in str(record.__dict__)
    assert "a@b.com" not in str(record.__dict__)
    assert sender.sent_count == 1
