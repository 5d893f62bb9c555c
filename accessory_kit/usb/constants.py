"""USB identifiers and Android Open Accessory request codes."""

# AOA vendor requests (bmRequestType: vendor, device recipient)
AOA_GET_PROTOCOL = 51
AOA_SEND_STRING = 52
AOA_START_ACCESSORY = 53

# Once switched, the phone re-enumerates under Google's VID
ACCESSORY_VID = 0x18D1
ACCESSORY_PIDS = (
    0x2D00,  # accessory
    0x2D01,  # accessory + adb
    0x2D04,  # accessory + audio
    0x2D05,  # accessory + audio + adb
)

# Vendors whose phones are tried for the mode switch
ANDROID_VENDOR_IDS = frozenset((
    0x18D1,  # Google
    0x04E8,  # Samsung
    0x0FCE,  # Sony
    0x0E0F,  # VMware (virtualised phones)
    0x22B8,  # Motorola
    0x2717,  # Xiaomi
    0x12D1,  # Huawei
    0x1004,  # LG
    0x0BB4,  # HTC
    0x2A70,  # OnePlus
    0x05C6,  # Qualcomm
    0x19D2,  # ZTE
    0x0B05,  # Asus
    0x17EF,  # Lenovo
))

CONTROL_TIMEOUT_MS = 1000
