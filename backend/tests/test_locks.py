import threading
import time

from quizroom.locks import KeyedLocks


def test_same_key_is_serialized():
    locks = KeyedLocks()
    inside = []
    overlaps = []

    def worker():
        with locks.hold('room-1'):
            inside.append(1)
            if len(inside) > 1:
                overlaps.append(True)
            time.sleep(0.01)
            inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert overlaps == []
    assert len(locks) == 0


def test_different_keys_do_not_block():
    locks = KeyedLocks()
    with locks.hold('a'):
        done = threading.Event()

        def other():
            with locks.hold('b'):
                done.set()

        t = threading.Thread(target=other)
        t.start()
        assert done.wait(1.0)
        t.join()
        assert len(locks) == 1
    assert len(locks) == 0


def test_lock_released_on_error():
    locks = KeyedLocks()
    try:
        with locks.hold(('room', 'guest:Pat')):
            raise RuntimeError('boom')
    except RuntimeError:
        pass
    assert len(locks) == 0
    with locks.hold(('room', 'guest:Pat')):
        assert len(locks) == 1
