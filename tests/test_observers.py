from courtkinematics.observers import Observable


class _Counter(Observable[int]):
    def __init__(self):
        super().__init__()
        self.value = 0

    def bump(self):
        self.value += 1
        self._notify(self.value)


def test_subscribe_and_unsubscribe():
    counter = _Counter()
    seen = []
    unsubscribe = counter.subscribe(seen.append)
    counter.bump()
    counter.bump()
    assert seen == [1, 2]
    assert counter.listener_count == 1

    unsubscribe()
    unsubscribe()
    counter.bump()
    assert seen == [1, 2]
    assert counter.listener_count == 0


def test_listener_may_unsubscribe_while_notified():
    counter = _Counter()
    seen = []
    unsubscribe = None

    def once(value):
        seen.append(value)
        unsubscribe()

    unsubscribe = counter.subscribe(once)
    other = []
    counter.subscribe(other.append)
    counter.bump()
    counter.bump()
    assert seen == [1]
    assert other == [1, 2]
