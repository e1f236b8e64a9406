"""
COM message filter for long-running automation calls.

Visual Studio runs its automation model in a single-threaded apartment.
While the DTE is busy (loading a solution, building) it rejects incoming
calls with ``RPC_E_CALL_REJECTED``.  Registering an ``IOleMessageFilter``
on the calling thread lets COM retry those calls instead of failing them.

Usage::

    with MessageFilter():
        dte.Solution.SolutionBuild.Build(True)

The filter is registered through ``ole32.CoRegisterMessageFilter`` with a
comtypes COM object.  comtypes is imported lazily so the decision logic
stays importable on any platform.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

IID_IMESSAGEFILTER = "{00000016-0000-0000-C000-000000000046}"

# HandleInComingCall results.
SERVERCALL_ISHANDLED = 0

# RetryRejectedCall reject types.
SERVERCALL_REJECTED = 1
SERVERCALL_RETRYLATER = 2

# RetryRejectedCall results.  0 <= n < 100 means "retry immediately".
RETRY_IMMEDIATELY = 99
CANCEL_CALL = -1

# MessagePending results.
PENDINGMSG_WAITDEFPROCESS = 2


class MessageFilter:
    """Process-wide ``IOleMessageFilter`` with an explicit install/revoke pair.

    The three ``*_call`` / ``message_pending`` methods hold the filter's
    answers; the COM object registered by :meth:`install` forwards to them.
    """

    def __init__(self):
        self._com_pointer: Optional[Any] = None

    @property
    def installed(self) -> bool:
        return self._com_pointer is not None

    # ------------------------------------------------------------------
    # IOleMessageFilter answers
    # ------------------------------------------------------------------

    def handle_incoming_call(self, call_type: int, tick_count: int = 0) -> int:
        logger.debug("Incoming COM call (type %d): SERVERCALL_ISHANDLED", call_type)
        return SERVERCALL_ISHANDLED

    def retry_rejected_call(self, tick_count: int, reject_type: int) -> int:
        if reject_type == SERVERCALL_RETRYLATER:
            return RETRY_IMMEDIATELY
        logger.warning("COM server too busy, cancelling call (reject type %d)",
                       reject_type)
        return CANCEL_CALL

    def message_pending(self, tick_count: int, pending_type: int) -> int:
        logger.debug("COM message pending: PENDINGMSG_WAITDEFPROCESS")
        return PENDINGMSG_WAITDEFPROCESS

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def install(self) -> None:
        """Register this filter for the current thread.  No-op if installed."""
        if self._com_pointer is not None:
            return
        pointer = _create_com_filter(self)
        _co_register_message_filter(pointer)
        self._com_pointer = pointer
        logger.debug("COM message filter installed")

    def revoke(self) -> None:
        """Unregister the filter.  Safe to call more than once."""
        if self._com_pointer is None:
            return
        try:
            _co_register_message_filter(None)
        finally:
            self._com_pointer = None
        logger.debug("COM message filter revoked")

    def __enter__(self) -> 'MessageFilter':
        self.install()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.revoke()


# ---------------------------------------------------------------------------
# comtypes glue
# ---------------------------------------------------------------------------

@functools.lru_cache(maxsize=None)
def _com_types():
    """Build the comtypes interface and COM object classes (Windows only)."""
    import ctypes

    from comtypes import COMMETHOD, COMObject, GUID, IUnknown

    class IMessageFilter(IUnknown):
        _iid_ = GUID(IID_IMESSAGEFILTER)
        _methods_ = [
            COMMETHOD([], ctypes.c_long, "HandleInComingCall",
                      (["in"], ctypes.c_ulong, "dwCallType"),
                      (["in"], ctypes.c_void_p, "htaskCaller"),
                      (["in"], ctypes.c_ulong, "dwTickCount"),
                      (["in"], ctypes.c_void_p, "lpInterfaceInfo")),
            COMMETHOD([], ctypes.c_long, "RetryRejectedCall",
                      (["in"], ctypes.c_void_p, "htaskCallee"),
                      (["in"], ctypes.c_ulong, "dwTickCount"),
                      (["in"], ctypes.c_ulong, "dwRejectType")),
            COMMETHOD([], ctypes.c_long, "MessagePending",
                      (["in"], ctypes.c_void_p, "htaskCallee"),
                      (["in"], ctypes.c_ulong, "dwTickCount"),
                      (["in"], ctypes.c_ulong, "dwPendingType")),
        ]

    class ComMessageFilter(COMObject):
        _com_interfaces_ = [IMessageFilter]

        def __init__(self, owner: MessageFilter):
            super().__init__()
            self._owner = owner

        def IMessageFilter_HandleInComingCall(self, this, call_type, caller,
                                              tick_count, interface_info):
            return self._owner.handle_incoming_call(call_type, tick_count)

        def IMessageFilter_RetryRejectedCall(self, this, callee, tick_count,
                                             reject_type):
            return self._owner.retry_rejected_call(tick_count, reject_type)

        def IMessageFilter_MessagePending(self, this, callee, tick_count,
                                          pending_type):
            return self._owner.message_pending(tick_count, pending_type)

    return IMessageFilter, ComMessageFilter


def _create_com_filter(owner: MessageFilter):
    interface, com_class = _com_types()
    return com_class(owner).QueryInterface(interface)


def _co_register_message_filter(pointer) -> None:
    import ctypes

    interface, _ = _com_types()
    previous = ctypes.POINTER(interface)()
    ctypes.oledll.ole32.CoRegisterMessageFilter(pointer, ctypes.byref(previous))
