"""Reversible obfuscation for values kept at rest. Not encryption."""
import base64
import binascii

OBFUSCATION_KEY = b'family-calendar-sync'


def _xor(data: bytes, key: bytes = OBFUSCATION_KEY) -> bytes:
    return bytes(byte ^ key[index % len(key)] for index, byte in enumerate(data))


def obfuscate(value: str, key: bytes = OBFUSCATION_KEY) -> str:
    return base64.b64encode(_xor(value.encode('utf-8'), key)).decode('ascii')


def deobfuscate(value: str, key: bytes = OBFUSCATION_KEY) -> str:
    """
    Reverse obfuscate().

    Raises:
        ValueError: If the value is not valid obfuscated text
    """
    try:
        raw = base64.b64decode(value.encode('ascii'), validate=True)
        return _xor(raw, key).decode('utf-8')
    except (UnicodeError, binascii.Error) as e:
        raise ValueError(f"Value is not obfuscated text: {e}") from e
