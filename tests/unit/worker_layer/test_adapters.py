"""
Unit Tests for the delivery adapters
"""

from email.message import EmailMessage
from unittest.mock import patch

import orjson
import pytest

from bookhive.core.exceptions import JobHandlerError
from bookhive.workers.adapters import (
    LocalMediaUploader,
    LoggingPushGateway,
    RedisSocketEmitter,
    SmtpMailTransport,
)


@pytest.mark.unit
class TestSmtpMailTransport:
    @pytest.mark.asyncio
    async def test_send_uses_starttls_and_login(self, test_settings):
        settings = test_settings.model_copy(update={"EMAIL_USER": "mailer", "EMAIL_PASS": "secret"})
        message = EmailMessage()
        message["To"] = "ada@example.com"
        message["Subject"] = "Hi"
        message.set_content("Hi")

        with patch("bookhive.workers.adapters.smtplib.SMTP") as smtp_cls:
            message_id = await SmtpMailTransport(settings).send(message)

        server = smtp_cls.return_value.__enter__.return_value
        smtp_cls.assert_called_once_with(settings.EMAIL_HOST, settings.EMAIL_PORT, timeout=30.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "secret")
        server.send_message.assert_called_once_with(message)
        assert message_id == message["Message-ID"]
        assert message_id.endswith("@bookhive.app>")

    @pytest.mark.asyncio
    async def test_smtp_error_propagates(self, test_settings):
        message = EmailMessage()
        message["To"] = "ada@example.com"

        with patch("bookhive.workers.adapters.smtplib.SMTP", side_effect=ConnectionRefusedError()):
            with pytest.raises(ConnectionRefusedError):
                await SmtpMailTransport(test_settings).send(message)


@pytest.mark.unit
class TestRedisSocketEmitter:
    @pytest.mark.asyncio
    async def test_publishes_on_user_channel(self, connection, fake_redis):
        pubsub = fake_redis.pubsub()
        await pubsub.subscribe("socket:user:u1")
        await pubsub.get_message(timeout=1.0)

        receivers = await RedisSocketEmitter(connection).emit_to_user("u1", "notification", {"title": "Hi"})
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)

        assert receivers == 1
        assert orjson.loads(message["data"]) == {"event": "notification", "data": {"title": "Hi"}}
        await pubsub.aclose()

    @pytest.mark.asyncio
    async def test_disconnected_raises(self, disconnected_connection):
        with pytest.raises(JobHandlerError):
            await RedisSocketEmitter(disconnected_connection).emit_to_user("u1", "notification", {})


@pytest.mark.unit
class TestLocalAdapters:
    @pytest.mark.asyncio
    async def test_media_uploader_copies_under_media_root(self, test_settings, tmp_path):
        source = tmp_path / "cover_optimized.jpeg"
        source.write_bytes(b"jpeg-bytes")

        result = await LocalMediaUploader(test_settings).upload(str(source), "books", "dune")

        assert result == {
            "secure_url": "http://testserver/media/books/dune.jpeg",
            "public_id": "books/dune",
            "bytes": 10,
        }
        assert (tmp_path / "media" / "books" / "dune.jpeg").read_bytes() == b"jpeg-bytes"
        assert source.exists()

    @pytest.mark.asyncio
    async def test_push_gateway_reports_not_delivered(self):
        result = await LoggingPushGateway().push("u1", "Title", "Body", {})
        assert result["delivered"] is False
