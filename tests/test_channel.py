"""StateChannel tests."""

from __future__ import annotations

import logging

from runpad.channel import StateChannel


class TestStateChannel:
    def test_latest_starts_with_initial(self):
        channel = StateChannel("test", 0)
        assert channel.latest == 0

    def test_publish_replaces_latest_and_notifies(self):
        channel = StateChannel("test", 0)
        received = []
        channel.subscribe(received.append)

        channel.publish(1)
        channel.publish(2)

        assert channel.latest == 2
        assert received == [1, 2]

    def test_replay_delivers_current_value(self):
        channel = StateChannel("test", "now")
        received = []

        channel.subscribe(received.append, replay=True)

        assert received == ["now"]

    def test_unsubscribe(self):
        channel = StateChannel("test", 0)
        received = []
        channel.subscribe(received.append)
        channel.unsubscribe(received.append)

        channel.publish(1)

        assert received == []

    def test_failing_subscriber_does_not_block_others(self, caplog):
        channel = StateChannel("test", 0)
        received = []

        def broken(value):
            raise RuntimeError("observer bug")

        channel.subscribe(broken)
        channel.subscribe(received.append)

        with caplog.at_level(logging.ERROR, logger="runpad.channel"):
            channel.publish(5)

        assert received == [5]
        assert channel.latest == 5
        assert "observer bug" in caplog.text
