"""Line-at-a-time console input with erase, kill-line and end-of-file handling."""

from __future__ import annotations

import threading
from typing import Callable, Optional, Union

INPUT_BUF_SIZE = 128
BACKSPACE_ECHO = b"\b \b"


def _ctrl(letter: str) -> int:
    return ord(letter) - ord("@")


_CTRL_D = _ctrl("D")
_CTRL_H = _ctrl("H")
_CTRL_P = _ctrl("P")
_CTRL_U = _ctrl("U")
_DELETE = 0x7F
_NEWLINE = ord("\n")
_RETURN = ord("\r")


class Console:
    """A console: input arrives through interrupt(), readers get whole lines."""

    def __init__(self, output: Optional[Callable[[bytes], object]] = None,
                 procdump: Optional[Callable[[], object]] = None):
        self._output = output if output is not None else (lambda data: None)
        self._procdump = procdump if procdump is not None else (lambda: None)
        self._cond = threading.Condition()
        self._buf = bytearray(INPUT_BUF_SIZE)
        self._r = 0  # read index
        self._w = 0  # write index
        self._e = 0  # edit index
        self._killed = False

    def _erase(self) -> None:
        self._e -= 1
        self._output(BACKSPACE_ECHO)

    def interrupt(self, c: Union[int, str]) -> None:
        """Handle one input character typed at the console."""
        if isinstance(c, str):
            c = ord(c)
        if not 0 <= c <= 0xFF:
            raise ValueError(f"input character out of range: {c}")
        with self._cond:
            if c == _CTRL_P:
                self._procdump()
            elif c == _CTRL_U:
                while (self._e != self._w
                       and self._buf[(self._e - 1) % INPUT_BUF_SIZE] != _NEWLINE):
                    self._erase()
            elif c in (_CTRL_H, _DELETE):
                if self._e != self._w:
                    self._erase()
            elif c != 0 and self._e - self._r < INPUT_BUF_SIZE:
                if c == _RETURN:
                    c = _NEWLINE
                self._output(bytes([c]))
                self._buf[self._e % INPUT_BUF_SIZE] = c
                self._e += 1
                if (c in (_NEWLINE, _CTRL_D)
                        or self._e - self._r == INPUT_BUF_SIZE):
                    self._w = self._e
                    self._cond.notify_all()

    def read(self, n: int) -> bytes:
        """Read up to n bytes, stopping after a newline; blocks for input.

        Raises InterruptedError if the reader was killed while waiting.
        """
        target = n
        out = bytearray()
        with self._cond:
            while n > 0:
                while self._r == self._w:
                    if self._killed:
                        raise InterruptedError("console reader killed")
                    self._cond.wait()
                c = self._buf[self._r % INPUT_BUF_SIZE]
                self._r += 1
                if c == _CTRL_D:
                    if n < target:
                        # Keep ^D so the next read returns nothing.
                        self._r -= 1
                    break
                out.append(c)
                n -= 1
                if c == _NEWLINE:
                    break
        return bytes(out)

    def write(self, data: Union[bytes, bytearray, str]) -> int:
        """Send data to the output; returns the number of bytes written."""
        if isinstance(data, str):
            data = data.encode("latin-1")
        for c in data:
            self._output(bytes([c]))
        return len(data)

    def kill(self) -> None:
        """Mark the reader killed and wake it if it is waiting."""
        with self._cond:
            self._killed = True
            self._cond.notify_all()