"""Device classification from raw platform codes.

Two code tables are known and they disagree (code 7 is "Windows x64" in
one and plain "Windows" in the other), so both are kept as data and the
config picks one by name.
"""

from enum import Enum

from .interfaces import ConfigError


class Device(Enum):
    """Client platform of a participant."""

    UNKNOWN = "Unknown"
    ANDROID = "Android"
    IOS = "iOS"
    OSX = "OSX (macOS)"
    FIREOS = "FireOS"
    GEARVR = "GearVR"
    HOLOLENS = "Hololens"
    WINDOWS_X64 = "Windows x64"
    WINDOWS_X86 = "Windows x86"
    DEDICATED = "Dedicated Server"
    TVOS = "TvOS (Apple TV)"
    PLAYSTATION = "PlayStation"
    SWITCH = "Nintendo Switch"
    XBOX = "Xbox"
    WINDOWS_PHONE = "Windows Phone"
    LINUX = "Linux"
    WINDOWS = "Windows"
    OTHER = "Other"

    def __str__(self) -> str:
        return self.value


# Bedrock protocol build_platform codes
PROTOCOL_TABLE: dict[int, Device] = {
    0: Device.UNKNOWN,
    1: Device.ANDROID,
    2: Device.IOS,
    3: Device.OSX,
    4: Device.FIREOS,
    5: Device.GEARVR,
    6: Device.HOLOLENS,
    7: Device.WINDOWS_X64,
    8: Device.WINDOWS_X86,
    9: Device.DEDICATED,
    10: Device.TVOS,
    11: Device.PLAYSTATION,
    12: Device.SWITCH,
    13: Device.XBOX,
    14: Device.WINDOWS_PHONE,
    15: Device.LINUX,
}

LEGACY_TABLE: dict[int, Device] = {
    1: Device.IOS,
    2: Device.ANDROID,
    3: Device.PLAYSTATION,
    4: Device.SWITCH,
    5: Device.XBOX,
    6: Device.LINUX,
    7: Device.WINDOWS,
}

TABLES = {
    "protocol": (PROTOCOL_TABLE, Device.OTHER),
    "legacy": (LEGACY_TABLE, Device.UNKNOWN),
}


class DeviceTable:
    """Total mapping from platform code to Device."""

    def __init__(self, name: str = "protocol"):
        if name not in TABLES:
            raise ConfigError(
                f"Unknown device table '{name}' (expected one of: {', '.join(TABLES)})"
            )
        self.name = name
        self._codes, self.default = TABLES[name]

    def classify(self, code) -> Device:
        try:
            return self._codes.get(int(code), self.default)
        except (TypeError, ValueError):
            return self.default

    def items(self) -> list[tuple[int, Device]]:
        return sorted(self._codes.items())
