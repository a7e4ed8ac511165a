import threading
from contextlib import contextmanager


class ReadWriteLock:
    """Много читателей или один писатель.

    Ожидающий писатель не пускает новых читателей, иначе поток чтений может
    бесконечно откладывать запись.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._readers_done = threading.Condition(self._lock)
        self._writer_done = threading.Condition(self._lock)
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self):
        with self._lock:
            while self._writer or self._writers_waiting:
                self._writer_done.wait()
            self._readers += 1

    def release_read(self):
        with self._lock:
            self._readers -= 1
            if self._readers == 0:
                self._readers_done.notify_all()

    def acquire_write(self):
        with self._lock:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._readers_done.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self):
        with self._lock:
            self._writer = False
            self._readers_done.notify_all()
            self._writer_done.notify_all()

    @contextmanager
    def reading(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def writing(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
