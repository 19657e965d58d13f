"""Tests for NotificationRegistry: configuration, send pipeline and inbox."""

from __future__ import annotations

import pytest
from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import create_async_engine

from notification_service.features.notifications import (
    ChannelKind,
    ConfigurationError,
    DefaultPreferences,
    DeliveryError,
    DeliveryStatus,
    EmailContent,
    InAppChannel,
    InAppContent,
    NotificationRegistry,
    NotificationSendError,
    define_notification,
)
from notification_service.features.notifications.models import (
    DELIVERY_TABLE,
    IN_APP_TABLE,
    define_notification_tables,
)
from tests.utils import FakeChannel, FakeHandler, fetch_rows


def _email(data):
    return EmailContent(subject="Digest", html="<p>Digest</p>")


def _in_app(data):
    return InAppContent(title=data.get("title", "Digest"))


DIGEST = define_notification(
    "digest",
    channels={ChannelKind.IN_APP: _in_app, ChannelKind.EMAIL: _email},
)


@pytest.fixture
async def file_engine(tmp_path):
    """File-backed SQLite engine with a real pool, for concurrent dispatch."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'notifications.db'}")
    yield engine
    await engine.dispose()


@pytest.mark.unit
class TestRegistryConfiguration:
    """Startup validation of plugins, definitions and tables."""

    @pytest.mark.asyncio
    async def test_duplicate_channel_is_rejected(self, make_registry):
        with pytest.raises(ConfigurationError, match="more than once"):
            make_registry(channels=[InAppChannel(), InAppChannel()], notifications={})

    @pytest.mark.asyncio
    async def test_definition_with_unregistered_channel_is_rejected(self, make_registry):
        with pytest.raises(ConfigurationError, match='uses channel "email" which is not registered'):
            make_registry(channels=[InAppChannel()], notifications={"digest": DIGEST})

    @pytest.mark.asyncio
    async def test_definition_under_wrong_key_is_rejected(self, make_registry):
        with pytest.raises(ConfigurationError, match="different key"):
            make_registry(notifications={"other": DIGEST})

    @pytest.mark.asyncio
    async def test_negative_retries_are_rejected(self, make_registry):
        channel = FakeChannel("in-app", FakeHandler(), retries=-1)
        with pytest.raises(ConfigurationError, match="negative retry budget"):
            make_registry(channels=[channel], notifications={})

    @pytest.mark.asyncio
    async def test_missing_table_is_rejected(self, make_registry):
        with pytest.raises(ConfigurationError, match="not in the configured schema"):
            make_registry(schema={})

    @pytest.mark.asyncio
    async def test_unknown_table_key_is_rejected(self, make_registry):
        with pytest.raises(ConfigurationError, match="Unknown table key"):
            make_registry(table_names={"notifications": "x"})

    @pytest.mark.asyncio
    async def test_invalid_backoff_is_rejected(self, make_registry):
        with pytest.raises(ConfigurationError):
            make_registry(backoff_delays=[-5])

    @pytest.mark.asyncio
    async def test_custom_table_names(self, db_engine):
        """Renamed tables are created and used for in-app rows."""
        names = {
            "notification_delivery": "app_deliveries",
            "in_app_notification": "app_inbox",
            "notification_preference": "app_prefs",
        }
        metadata = MetaData()
        tables = define_notification_tables(metadata, names)
        registry = NotificationRegistry(
            db_engine,
            channels=[InAppChannel()],
            notifications={"digest": define_notification("digest", channels={"in-app": _in_app})},
            schema=metadata.tables,
            table_names=names,
            backoff_delays=[0],
        )
        await registry.create_tables()

        await registry.send("digest", user_id="user-1")

        assert registry.table_names == names
        assert len(await fetch_rows(db_engine, tables[IN_APP_TABLE])) == 1
        assert len(await fetch_rows(db_engine, tables[DELIVERY_TABLE])) == 1

    @pytest.mark.asyncio
    async def test_builds_own_metadata_without_schema(self, db_engine):
        registry = NotificationRegistry(
            db_engine,
            channels=[InAppChannel()],
            notifications={},
        )
        await registry.create_tables()
        # checkfirst makes a second call a no-op
        await registry.create_tables()

        assert await registry.list("user-1") == []

    @pytest.mark.asyncio
    async def test_definitions_property(self, registry):
        assert set(registry.definitions) == {"magic-link", "welcome"}


@pytest.mark.unit
class TestGetHandler:
    """Lazy, once-only handler initialisation."""

    @pytest.mark.asyncio
    async def test_init_runs_once_across_sends(self, make_registry):
        channel = FakeChannel("in-app", FakeHandler())
        registry = make_registry(
            channels=[channel],
            notifications={"welcome": define_notification("welcome", channels={"in-app": _in_app})},
        )

        assert channel.init_calls == 0
        await registry.send("welcome", user_id="user-1")
        await registry.send("welcome", user_id="user-1")

        assert channel.init_calls == 1
        assert registry.get_handler("in-app") is channel.handler

    @pytest.mark.asyncio
    async def test_unregistered_channel_lists_available(self, make_registry):
        registry = make_registry(channels=[InAppChannel()], notifications={})

        with pytest.raises(ConfigurationError) as exc_info:
            registry.get_handler(ChannelKind.EMAIL)

        assert str(exc_info.value) == 'Channel "email" is not registered. Available channels: in-app'

    @pytest.mark.asyncio
    async def test_unknown_channel_name(self, registry):
        with pytest.raises(ConfigurationError, match="Unknown channel"):
            registry.get_handler("sms")


@pytest.mark.unit
class TestSend:
    """Tests for the send pipeline."""

    @pytest.mark.asyncio
    async def test_welcome_creates_inbox_row_and_sent_delivery(self, registry, db_engine, tables):
        result = await registry.send("welcome", user_id="user-1", data={"name": "Ada"})

        inbox = await registry.list("user-1")
        assert len(inbox) == 1
        assert inbox[0].title == "Welcome, Ada!"
        assert inbox[0].body == "Your account is ready."
        assert inbox[0].read is False
        assert inbox[0].type == "welcome"

        deliveries = await fetch_rows(db_engine, tables[DELIVERY_TABLE])
        assert len(deliveries) == 1
        assert deliveries[0]["channel"] == "in-app"
        assert deliveries[0]["status"] == DeliveryStatus.SENT
        assert deliveries[0]["external_id"] == inbox[0].id

        assert list(result.delivered) == ["in-app"]
        assert result.delivered["in-app"].external_id == inbox[0].id
        assert result.skipped == []

    @pytest.mark.asyncio
    async def test_critical_bypasses_disabled_preferences(self, registry, console_sender):
        """Sign-in emails go out even when the user disabled email everywhere."""
        await registry.update_preferences(
            "user-1",
            [
                {"notificationType": "*", "channel": "email", "enabled": False},
                {"notificationType": "magic-link", "channel": "email", "enabled": False},
            ],
        )

        result = await registry.send(
            "magic-link",
            user_id="user-1",
            data={"url": "https://app.example.com/login?token=abc"},
            recipient_email="ada@example.com",
        )

        assert list(result.delivered) == ["email"]
        assert len(console_sender.outbox) == 1
        message = console_sender.outbox[0]
        assert message.to == "ada@example.com"
        assert message.subject == "Your sign-in link"
        assert "https://app.example.com/login?token=abc" in message.text
        assert result.delivered["email"].external_id.startswith("console-")

    @pytest.mark.asyncio
    async def test_disabled_channel_is_skipped_without_rows(self, registry, db_engine, tables):
        await registry.update_preferences(
            "user-1",
            [{"notificationType": "welcome", "channel": "in-app", "enabled": False}],
        )

        result = await registry.send("welcome", user_id="user-1", data={"name": "Ada"})

        assert result.delivered == {}
        assert result.skipped == ["in-app"]
        assert await fetch_rows(db_engine, tables[DELIVERY_TABLE]) == []
        assert await registry.list("user-1") == []

    @pytest.mark.asyncio
    async def test_preferences_of_other_users_do_not_apply(self, registry):
        await registry.update_preferences(
            "user-2",
            [{"notificationType": "*", "channel": "*", "enabled": False}],
        )

        result = await registry.send("welcome", user_id="user-1")

        assert list(result.delivered) == ["in-app"]

    @pytest.mark.asyncio
    async def test_defaults_gate_channels_without_rows(self, make_registry):
        registry = make_registry(default_preferences=DefaultPreferences(enabled_channels=("email",)))

        result = await registry.send("welcome", user_id="user-1")

        assert result.skipped == ["in-app"]

    @pytest.mark.asyncio
    async def test_anonymous_in_app_send_writes_no_inbox_row(self, registry, db_engine, tables):
        """Without a user the in-app handler has nowhere to write, but delivery succeeds."""
        result = await registry.send("welcome")

        assert result.delivered["in-app"].external_id is None
        assert await fetch_rows(db_engine, tables[IN_APP_TABLE]) == []
        deliveries = await fetch_rows(db_engine, tables[DELIVERY_TABLE])
        assert len(deliveries) == 1
        assert deliveries[0]["user_id"] is None
        assert deliveries[0]["status"] == DeliveryStatus.SENT

    @pytest.mark.asyncio
    async def test_unknown_type_raises_before_any_write(self, registry, db_engine, tables):
        with pytest.raises(ConfigurationError, match='Notification type "nope" is not defined.'):
            await registry.send("nope", user_id="user-1")

        assert await fetch_rows(db_engine, tables[DELIVERY_TABLE]) == []

    @pytest.mark.asyncio
    async def test_missing_recipient_exhausts_email_retries(
        self, registry, db_engine, tables, recording_sleep
    ):
        """The email handler rejects sends without an address; every retry fails."""
        with pytest.raises(NotificationSendError) as exc_info:
            await registry.send("magic-link", user_id="user-1", data={"url": "https://x"})

        error = exc_info.value
        assert list(error.failures) == ["email"]
        assert isinstance(error.failures["email"], DeliveryError)
        assert "recipient_email is required for email channel" in str(error.failures["email"])

        rows = await fetch_rows(db_engine, tables[DELIVERY_TABLE])
        assert len(rows) == 4
        assert all(row["status"] == DeliveryStatus.FAILED for row in rows)
        assert recording_sleep.calls == [0.0, 0.0, 0.0]

    @pytest.mark.asyncio
    async def test_failure_on_one_channel_still_attempts_the_rest(self, make_registry):
        """The failing channel is listed first; the in-app row is still written."""
        email = FakeChannel("email", FakeHandler(failures=None), retries=1)
        definition = define_notification(
            "digest",
            channels={ChannelKind.EMAIL: _email, ChannelKind.IN_APP: _in_app},
        )
        registry = make_registry(channels=[email, InAppChannel()], notifications={"digest": definition})

        with pytest.raises(NotificationSendError) as exc_info:
            await registry.send("digest", user_id="user-1", recipient_email="ada@example.com")

        error = exc_info.value
        assert str(error) == 'Failed to deliver notification "digest" on 1 channel(s): email'
        assert error.delivered == ["in-app"]
        assert len(email.handler.calls) == 2
        assert len(await registry.list("user-1")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_dispatch_aggregates_failures(self, file_engine, recording_sleep):
        email = FakeChannel("email", FakeHandler(failures=None))
        registry = NotificationRegistry(
            file_engine,
            channels=[email, InAppChannel()],
            notifications={"digest": DIGEST},
            backoff_delays=[0],
            sleep=recording_sleep,
            dispatch_concurrently=True,
        )
        await registry.create_tables()

        with pytest.raises(NotificationSendError) as exc_info:
            await registry.send("digest", user_id="user-1", recipient_email="ada@example.com")

        assert list(exc_info.value.failures) == ["email"]
        assert exc_info.value.delivered == ["in-app"]
        assert len(await registry.list("user-1")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_dispatch_success(self, file_engine):
        email = FakeChannel("email", FakeHandler(external_id="msg-1"))
        registry = NotificationRegistry(
            file_engine,
            channels=[email, InAppChannel()],
            notifications={"digest": DIGEST},
            backoff_delays=[0],
            dispatch_concurrently=True,
        )
        await registry.create_tables()

        result = await registry.send("digest", user_id="user-1", recipient_email="ada@example.com")

        assert set(result.delivered) == {"in-app", "email"}
        assert result.delivered["email"].external_id == "msg-1"

    @pytest.mark.asyncio
    async def test_invalid_content_raises_before_any_channel(self, make_registry, db_engine, tables):
        """Content for every channel is validated before the first delivery."""
        definition = define_notification(
            "broken",
            channels={
                ChannelKind.IN_APP: _in_app,
                ChannelKind.EMAIL: lambda data: {"subject": "", "html": "<p>x</p>"},
            },
        )
        registry = make_registry(notifications={"broken": definition})

        with pytest.raises(ConfigurationError, match="Invalid email content"):
            await registry.send("broken", user_id="user-1", recipient_email="ada@example.com")

        assert await fetch_rows(db_engine, tables[DELIVERY_TABLE]) == []
        assert await registry.list("user-1") == []

    @pytest.mark.asyncio
    async def test_from_settings_uses_notification_settings(self, db_engine, notification_metadata, tables):
        from notification_service.core.settings import NotificationSettings

        settings = NotificationSettings(
            default_enabled_channels=["email"],
            backoff_delays_ms=[0],
        )
        registry = NotificationRegistry.from_settings(
            db_engine,
            channels=[InAppChannel()],
            notifications={"digest": define_notification("digest", channels={"in-app": _in_app})},
            settings=settings,
            schema=notification_metadata.tables,
        )

        result = await registry.send("digest", user_id="user-1")

        assert result.skipped == ["in-app"]


@pytest.mark.unit
class TestInbox:
    """Tests for list and mark_read."""

    @pytest.fixture
    def inbox_registry(self, make_registry):
        definition = define_notification("digest", channels={"in-app": _in_app})
        return make_registry(channels=[InAppChannel()], notifications={"digest": definition})

    async def _seed(self, registry, user_id: str, titles: list[str]) -> None:
        for title in titles:
            await registry.send("digest", user_id=user_id, data={"title": title})

    @pytest.mark.asyncio
    async def test_list_is_newest_first(self, inbox_registry):
        await self._seed(inbox_registry, "user-1", ["first", "second", "third"])

        inbox = await inbox_registry.list("user-1")

        assert [n.title for n in inbox] == ["third", "second", "first"]

    @pytest.mark.asyncio
    async def test_list_respects_limit(self, inbox_registry):
        await self._seed(inbox_registry, "user-1", ["a", "b", "c"])

        inbox = await inbox_registry.list("user-1", limit=2)

        assert [n.title for n in inbox] == ["c", "b"]

    @pytest.mark.asyncio
    async def test_list_only_returns_own_rows(self, inbox_registry):
        await self._seed(inbox_registry, "user-1", ["mine"])
        await self._seed(inbox_registry, "user-2", ["theirs"])

        assert [n.title for n in await inbox_registry.list("user-1")] == ["mine"]

    @pytest.mark.asyncio
    async def test_mark_read_by_ids(self, inbox_registry):
        await self._seed(inbox_registry, "user-1", ["a", "b"])
        newest = (await inbox_registry.list("user-1"))[0]

        count = await inbox_registry.mark_read("user-1", [newest.id])

        assert count == 1
        unread = await inbox_registry.list("user-1", unread_only=True)
        assert [n.title for n in unread] == ["a"]

    @pytest.mark.asyncio
    async def test_mark_all_read(self, inbox_registry):
        await self._seed(inbox_registry, "user-1", ["a", "b"])
        await self._seed(inbox_registry, "user-2", ["c"])

        count = await inbox_registry.mark_read("user-1")

        assert count == 2
        assert await inbox_registry.list("user-1", unread_only=True) == []
        assert len(await inbox_registry.list("user-2", unread_only=True)) == 1

    @pytest.mark.asyncio
    async def test_mark_read_ignores_other_users_ids(self, inbox_registry):
        await self._seed(inbox_registry, "user-2", ["theirs"])
        theirs = (await inbox_registry.list("user-2"))[0]

        count = await inbox_registry.mark_read("user-1", [theirs.id])

        assert count == 0
        assert (await inbox_registry.list("user-2"))[0].read is False

    @pytest.mark.asyncio
    async def test_mark_read_with_empty_ids_is_a_no_op(self, inbox_registry):
        await self._seed(inbox_registry, "user-1", ["a"])

        assert await inbox_registry.mark_read("user-1", []) == 0
        assert len(await inbox_registry.list("user-1", unread_only=True)) == 1

    @pytest.mark.asyncio
    async def test_mark_read_twice_counts_only_unread(self, inbox_registry):
        await self._seed(inbox_registry, "user-1", ["a"])

        assert await inbox_registry.mark_read("user-1") == 1
        assert await inbox_registry.mark_read("user-1") == 0
