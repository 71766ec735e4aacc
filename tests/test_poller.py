"""OutputPoller tests."""

from __future__ import annotations

import time

from apscheduler.schedulers.background import BackgroundScheduler

from runpad.poller import OutputPoller
from runpad.status import OutputSnapshot, RunStatus


def make_poller(tmp_path, interval_ms=20):
    return OutputPoller(str(tmp_path / "out.txt"), str(tmp_path / "err.txt"), interval_ms)


class TestTick:
    def test_reads_full_contents(self, tmp_path):
        (tmp_path / "out.txt").write_text("line1\nline2\n", encoding="utf-8")
        (tmp_path / "err.txt").write_text("oops", encoding="utf-8")
        poller = make_poller(tmp_path)

        snapshot = poller.tick()

        assert snapshot.stdout == "line1\nline2\n"
        assert snapshot.stderr == "oops"
        assert poller.snapshot is snapshot

    def test_missing_files_read_as_empty(self, tmp_path):
        poller = make_poller(tmp_path)

        snapshot = poller.tick()

        assert snapshot.stdout == ""
        assert snapshot.stderr == ""

    def test_contents_replaced_not_appended(self, tmp_path):
        out = tmp_path / "out.txt"
        out.write_text("first", encoding="utf-8")
        poller = make_poller(tmp_path)
        poller.tick()

        out.write_text("second", encoding="utf-8")

        assert poller.tick().stdout == "second"

    def test_publishes_even_when_unchanged(self, tmp_path):
        (tmp_path / "out.txt").write_text("same", encoding="utf-8")
        poller = make_poller(tmp_path)
        received = []
        poller.subscribe(received.append)

        poller.tick()
        poller.tick()

        assert len(received) == 2
        assert all(isinstance(s, OutputSnapshot) and s.stdout == "same" for s in received)

    def test_partial_utf8_write_tolerated(self, tmp_path):
        # First two bytes of a three-byte character, as if the writer was interrupted
        (tmp_path / "out.txt").write_bytes(b"ok \xe2\x82")
        poller = make_poller(tmp_path)

        assert poller.tick().stdout.startswith("ok ")

    def test_read_error_keeps_previous_content(self, tmp_path):
        (tmp_path / "out.txt").write_text("hello", encoding="utf-8")
        poller = make_poller(tmp_path)
        poller.tick()

        # A directory cannot be opened as a file
        unreadable = tmp_path / "a_directory"
        unreadable.mkdir()
        poller.configure(stdout_path=str(unreadable))

        assert poller.tick().stdout == "hello"


class TestSchedule:
    def test_start_polls_periodically(self, tmp_path, wait_for):
        out = tmp_path / "out.txt"
        poller = make_poller(tmp_path)
        poller.start()
        try:
            assert poller.running
            out.write_text("x", encoding="utf-8")
            assert wait_for(lambda: poller.snapshot.stdout == "x", timeout=5)
            out.write_text("xy", encoding="utf-8")
            assert wait_for(lambda: poller.snapshot.stdout == "xy", timeout=5)
        finally:
            poller.stop()

    def test_stop_ends_polling(self, tmp_path, wait_for):
        out = tmp_path / "out.txt"
        out.write_text("before", encoding="utf-8")
        poller = make_poller(tmp_path)
        poller.start()
        assert wait_for(lambda: poller.snapshot.stdout == "before", timeout=5)

        poller.stop()
        out.write_text("after", encoding="utf-8")
        time.sleep(0.2)

        assert not poller.running
        assert poller.snapshot.stdout == "before"

    def test_restart_after_stop(self, tmp_path, wait_for):
        out = tmp_path / "out.txt"
        poller = make_poller(tmp_path)
        poller.start()
        poller.stop()

        out.write_text("restarted", encoding="utf-8")
        poller.start()
        try:
            assert wait_for(lambda: poller.snapshot.stdout == "restarted", timeout=5)
        finally:
            poller.stop()

    def test_start_twice_is_harmless(self, tmp_path):
        poller = make_poller(tmp_path)
        poller.start()
        try:
            poller.start()
            assert poller.running
        finally:
            poller.stop()

    def test_configure_while_running(self, tmp_path, wait_for):
        other = tmp_path / "other.txt"
        other.write_text("elsewhere", encoding="utf-8")
        poller = make_poller(tmp_path)
        poller.start()
        try:
            poller.configure(stdout_path=str(other), interval_ms=30)
            assert poller.interval_ms == 30
            assert wait_for(lambda: poller.snapshot.stdout == "elsewhere", timeout=5)
        finally:
            poller.stop()

    def test_pollers_share_a_scheduler(self, tmp_path, wait_for):
        scheduler = BackgroundScheduler(daemon=True)
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        (tmp_path / "a" / "out.txt").write_text("from a", encoding="utf-8")
        (tmp_path / "b" / "out.txt").write_text("from b", encoding="utf-8")
        first = OutputPoller(str(tmp_path / "a" / "out.txt"), str(tmp_path / "a" / "err.txt"), 20,
                             scheduler=scheduler)
        second = OutputPoller(str(tmp_path / "b" / "out.txt"), str(tmp_path / "b" / "err.txt"), 20,
                              scheduler=scheduler)
        first.start()
        second.start()
        try:
            assert first.job_id != second.job_id
            assert len(scheduler.get_jobs()) == 2
            assert wait_for(lambda: first.snapshot.stdout == "from a", timeout=5)
            assert wait_for(lambda: second.snapshot.stdout == "from b", timeout=5)

            first.stop()
            assert [job.id for job in scheduler.get_jobs()] == [second.job_id]
        finally:
            second.stop()
            scheduler.shutdown(wait=True)

    def test_change_visible_within_a_few_intervals(self, tmp_path, wait_for):
        out = tmp_path / "out.txt"
        out.write_text("before", encoding="utf-8")
        poller = make_poller(tmp_path, interval_ms=100)
        poller.start()
        try:
            assert wait_for(lambda: poller.snapshot.stdout == "before", timeout=5)

            out.write_text("after", encoding="utf-8")
            written = time.monotonic()
            assert wait_for(lambda: poller.snapshot.stdout == "after", timeout=5, interval=0.005)
            delay = time.monotonic() - written

            assert delay < 4 * poller.interval_ms / 1000.0
        finally:
            poller.stop()


class TestWithManager:
    def test_print_one_shows_in_output(self, manager, settings, wait_for):
        poller = OutputPoller(settings.stdout_file, settings.stderr_file, 20)
        poller.start()
        try:
            manager.start("print(1)")
            assert wait_for(lambda: manager.state.status is RunStatus.FINISHED)
            assert wait_for(lambda: poller.snapshot.stdout.strip() == "1", timeout=5)
        finally:
            poller.stop()

    def test_stale_output_visible_until_next_run(self, manager, settings, wait_for):
        poller = OutputPoller(settings.stdout_file, settings.stderr_file, 20)
        manager.start("print('old')")
        assert wait_for(lambda: manager.state.status is RunStatus.FINISHED)

        assert poller.tick().stdout.strip() == "old"
        assert poller.tick().stdout.strip() == "old"

        manager.start("print('new')")
        assert wait_for(lambda: manager.state.status is RunStatus.FINISHED)
        assert poller.tick().stdout.strip() == "new"
