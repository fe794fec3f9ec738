"""
IP Capture Exceptions

Error types raised by the address resolution and storage pipeline.
"""


class IPCaptureError(Exception):
    """Base class for all ipcapture errors"""


class InvalidRecordError(IPCaptureError, ValueError):
    """Raised when a record is missing or carries a blank IP address"""


class AddressResolutionError(IPCaptureError):
    """Raised when no client address can be determined for a request that requires one"""

    def __init__(self, message: str = "Could not extract IP address from request"):
        super().__init__(message)


class ExecutorSaturatedError(IPCaptureError):
    """Raised when the storage worker pool and its queue are both full"""

    def __init__(self, queue_capacity: int, max_pool_size: int):
        self.queue_capacity = queue_capacity
        self.max_pool_size = max_pool_size
        super().__init__(
            f"IP storage executor saturated (max_pool_size={max_pool_size}, "
            f"queue_capacity={queue_capacity})"
        )


class ExecutorShutdownError(IPCaptureError):
    """Raised when work is submitted to an executor that has been shut down"""

    def __init__(self, message: str = "IP storage executor has been shut down"):
        super().__init__(message)
