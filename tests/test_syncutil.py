import threading

import pytest

from exodus_rsync.syncutil import CancelToken, Cancelled, run_with_group


def test_run_with_group_runs_all_before_close():
    lock = threading.Lock()
    calls = []
    seen_at_close = []

    def fn():
        with lock:
            calls.append(threading.get_ident())

    run_with_group(5, fn, lambda: seen_at_close.append(len(calls)))

    assert len(calls) == 5
    assert seen_at_close == [5]


def test_run_with_group_zero_still_closes():
    closed = []
    run_with_group(0, lambda: None, lambda: closed.append(True))
    assert closed == [True]


def test_run_with_group_reraises_after_close():
    closed = []

    def fn():
        raise ValueError("bad worker")

    with pytest.raises(ValueError, match="bad worker"):
        run_with_group(3, fn, lambda: closed.append(True))
    assert closed == [True]


def test_cancel_token_raises_after_cancel():
    token = CancelToken()
    token.raise_if_cancelled()
    assert token.cancelled is False
    token.cancel()
    assert token.cancelled is True
    with pytest.raises(Cancelled, match="canceled"):
        token.raise_if_cancelled()


def test_cancel_token_wait():
    token = CancelToken()
    assert token.wait(0.01) is False
    threading.Timer(0.01, token.cancel).start()
    assert token.wait(5) is True


def test_child_follows_parent():
    parent = CancelToken()
    child = CancelToken(parent)
    child.cancel()
    assert parent.cancelled is False
    other = CancelToken(parent)
    parent.cancel()
    assert other.cancelled is True


def test_child_of_cancelled_parent():
    parent = CancelToken()
    parent.cancel()
    assert CancelToken(parent).cancelled is True