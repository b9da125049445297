import struct

import pytest

from px4_ulog import MAGIC, SYNC_MAGIC


class UlogBuilder:
    """Assemble a synthetic .ulg byte stream one message at a time."""

    def __init__(self, version=1, time_ref_utc=0):
        self.chunks = [MAGIC + bytes([version]) + struct.pack('<Q', time_ref_utc)]

    def message(self, tag, payload):
        self.chunks.append(struct.pack('<HB', len(payload), ord(tag)) + payload)
        return self

    def raw(self, data):
        self.chunks.append(data)
        return self

    def flag_bits(self, compat=bytes(8), incompat=bytes(8), offsets=(0, 0, 0)):
        return self.message('B', compat + incompat + struct.pack('<3Q', *offsets))

    def _key_value(self, tag, key, value):
        key = key.encode()
        return self.message(tag, bytes([len(key)]) + key + value)

    def info(self, key, value):
        return self._key_value('I', key, value)

    def param(self, key, value):
        return self._key_value('P', key, value)

    def format(self, text):
        return self.message('F', text.encode())

    def info_multiple(self, name, text, continued=False):
        value = text.encode()
        key = f'char[{len(value)}] {name}'.encode()
        return self.message('M', bytes([int(continued), len(key)]) + key + value)

    def add_logged(self, msg_id, multi_id, format_name):
        return self.message('A', struct.pack('<BH', multi_id, msg_id) + format_name.encode())

    def data(self, msg_id, payload):
        return self.message('D', struct.pack('<H', msg_id) + payload)

    def logging(self, level, timestamp, text):
        return self.message('L', struct.pack('<BQ', level, timestamp) + text.encode())

    def sync(self):
        return self.message('S', SYNC_MAGIC)

    def build(self):
        return b''.join(self.chunks)


@pytest.fixture
def builder():
    return UlogBuilder()


@pytest.fixture
def make_builder():
    return UlogBuilder
