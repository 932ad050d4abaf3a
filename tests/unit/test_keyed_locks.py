import threading
import time
from concurrent.futures import ThreadPoolExecutor

from crewboard.core.locks import KeyedLocks


def test_same_key_is_serialized() -> None:
    locks = KeyedLocks()
    inside = 0
    peak = 0
    guard = threading.Lock()

    def work() -> None:
        nonlocal inside, peak
        with locks.hold(42):
            with guard:
                inside += 1
                peak = max(peak, inside)
            time.sleep(0.01)
            with guard:
                inside -= 1

    with ThreadPoolExecutor(max_workers=6) as pool:
        for future in [pool.submit(work) for _ in range(12)]:
            future.result()

    assert peak == 1
    assert len(locks) == 0


def test_different_keys_do_not_block_each_other() -> None:
    locks = KeyedLocks()
    entered = threading.Event()

    def other() -> None:
        with locks.hold("b"):
            entered.set()

    with locks.hold("a"):
        thread = threading.Thread(target=other)
        thread.start()
        thread.join(timeout=1)
        assert entered.is_set()
    assert len(locks) == 0
