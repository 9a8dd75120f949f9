from __future__ import annotations

import threading
from typing import Any, Callable, TypeVar

from .errors import ExternalCallTimeout

T = TypeVar("T")


def call_with_timeout(what: str, timeout_s: float, fn: Callable[..., T], *args, **kwargs) -> T:
    """Run ``fn`` on a daemon thread and give up waiting after ``timeout_s``.

    The thread cannot be killed; on timeout it is abandoned and its result
    discarded. Being a daemon it never keeps the process alive at exit.
    Exceptions raised by ``fn`` propagate unchanged.
    """
    if timeout_s <= 0:
        raise ExternalCallTimeout(what, timeout_s)

    done = threading.Event()
    outcome: dict[str, Any] = {}

    def _target() -> None:
        try:
            outcome["value"] = fn(*args, **kwargs)
        except BaseException as e:  # handed to the caller below
            outcome["error"] = e
        finally:
            done.set()

    threading.Thread(target=_target, name=f"sdo-call {what}", daemon=True).start()
    if not done.wait(timeout_s):
        raise ExternalCallTimeout(what, timeout_s)
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]
