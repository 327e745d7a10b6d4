"""sysctl reads for the macOS collector.

Calls sysctlbyname() through ctypes rather than spawning the sysctl binary.
Linux libc has no sysctlbyname, so every read there returns None.
"""

import ctypes
from ctypes import byref, c_int, c_int64, c_size_t

libc = ctypes.CDLL(None)
_sysctlbyname = getattr(libc, "sysctlbyname", None)
if _sysctlbyname is not None:
    _sysctlbyname.argtypes = [
        ctypes.c_char_p,
        ctypes.c_void_p,
        ctypes.POINTER(c_size_t),
        ctypes.c_void_p,
        c_size_t,
    ]
    _sysctlbyname.restype = c_int


def available() -> bool:
    """Whether this libc exposes sysctlbyname()."""
    return _sysctlbyname is not None


def sysctl_int(name: str) -> int | None:
    """Read an integer sysctl value by MIB name.

    Args:
        name: sysctl MIB name (e.g., "hw.cpufrequency_max")

    Returns:
        Integer value on success, None if the sysctl doesn't exist or fails.

    Note:
        A c_int64 buffer holds both 32-bit and 64-bit values; sysctl writes
        only as many bytes as the value needs.
    """
    if _sysctlbyname is None:
        return None
    value = c_int64()
    size = c_size_t(ctypes.sizeof(value))
    result = _sysctlbyname(name.encode(), byref(value), byref(size), None, 0)
    return value.value if result == 0 else None
