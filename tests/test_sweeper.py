import threading

import pytest

from messenger_hub.sweeper import Sweeper


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        Sweeper(lambda: None, 0)


def test_run_once_returns_task_result():
    sweeper = Sweeper(lambda: {"conversations": 2}, 60)
    assert sweeper.run_once() == {"conversations": 2}
    assert sweeper.runs == 1


def test_failing_task_is_logged(caplog):
    def boom():
        raise RuntimeError("store unavailable")

    sweeper = Sweeper(boom, 60)
    assert sweeper.run_once() is None
    assert sweeper.runs == 1
    assert "Sweep failed" in caplog.text


def test_background_thread_runs_until_stopped():
    ran = threading.Event()
    sweeper = Sweeper(ran.set, 0.01)

    sweeper.start()
    assert sweeper.running
    assert ran.wait(2)
    sweeper.stop()

    assert not sweeper.running
    assert sweeper.runs >= 1
