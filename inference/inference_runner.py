#!/usr/bin/env python3
"""
Inference Runner
Triggers one synchronous forward pass and measures its wall-clock time
"""
import logging
import threading
import time
from typing import Optional

from common.errors import InferenceError
from device.session import DeviceSession

STATUS_TIMEOUT = -3


class InferenceRunner:
    """Runs whatever buffers are currently bound to the session"""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    def run(self, session: DeviceSession) -> float:
        """Execute once, returning the elapsed time in milliseconds"""
        self.logger.info("Running inference...")
        start = time.perf_counter()
        if self.timeout is None:
            session.run()
        else:
            self._run_with_timeout(session)
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        self.logger.debug(f"Inference finished in {elapsed_ms:.2f} ms")
        return elapsed_ms

    def _run_with_timeout(self, session: DeviceSession):
        # The device call cannot be interrupted. A daemon worker lets the
        # process exit without waiting on it; the session defers its runtime
        # release until the call returns.
        errors = []

        def target():
            try:
                session.run()
            except BaseException as e:
                errors.append(e)

        worker = threading.Thread(target=target, name="npu-inference", daemon=True)
        worker.start()
        worker.join(self.timeout)
        if worker.is_alive():
            session.abandon()
            raise InferenceError(
                f"Inference did not complete within {self.timeout:.2f} s", STATUS_TIMEOUT)
        if errors:
            raise errors[0]
