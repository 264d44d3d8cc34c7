import unittest
from unittest.mock import MagicMock

from tinyg_sender.device.ports import PortResolver, PROBE_COMMAND
from tinyg_sender.errors import NoPortFound, TransportError
from tinyg_sender.streams.dummy import DummyStream

def port(path, serial_number=""):
    return {'port': path, 'description': 'TinyG', 'hwid': '', 'serial_number': serial_number, 'manufacturer': ''}

def answering(stream, data):
    """Reply hook: answer the probe like a TinyG would."""
    if data.strip() == PROBE_COMMAND.encode():
        stream.feed('{"r":{"fb":100.26},"f":[1,0,11]}')

class FakeFactory:
    """Stream factory that records every stream it opens."""

    def __init__(self, live=(), broken=()):
        self.live = set(live)
        self.broken = set(broken)
        self.opened = {}

    def __call__(self, path):
        if path in self.broken:
            raise TransportError(f"cannot open {path}")
        stream = DummyStream(path, on_send=answering if path in self.live else None)
        self.opened[path] = stream
        return stream


class TestCandidates(unittest.TestCase):

    def test_pairs_by_serial_number_in_path_order(self):
        ports = [port('/dev/ttyACM1', 'SN1'), port('/dev/ttyS0'), port('/dev/ttyACM0', 'SN1')]
        resolver = PortResolver(list_ports=lambda: ports)
        self.assertEqual(resolver.candidates(),
                         [('/dev/ttyACM0', '/dev/ttyACM1'), ('/dev/ttyS0', None)])

    def test_unpaired_serial_number_is_single_port(self):
        resolver = PortResolver(list_ports=lambda: [port('/dev/ttyUSB0', 'FTDI1')])
        self.assertEqual(resolver.candidates(), [('/dev/ttyUSB0', None)])

    def test_explicit_ports(self):
        resolver = PortResolver(list_ports=MagicMock())
        self.assertEqual(resolver.candidates(['/dev/a', '/dev/b']), [('/dev/a', '/dev/b')])
        self.assertEqual(resolver.candidates(['/dev/a']), [('/dev/a', None)])
        resolver.list_ports.assert_not_called()


class TestResolveFirst(unittest.TestCase):

    def test_no_ports(self):
        resolver = PortResolver(stream_factory=FakeFactory(), list_ports=lambda: [])
        with self.assertRaises(NoPortFound):
            resolver.resolve_first()

    def test_dual_port_device(self):
        factory = FakeFactory(live={'/dev/ttyACM0'})
        resolver = PortResolver(stream_factory=factory,
                                list_ports=lambda: [port('/dev/ttyACM0', 'X'), port('/dev/ttyACM1', 'X')],
                                probe_timeout=0.5)
        control, data = resolver.resolve_first()
        self.assertEqual(control.address, '/dev/ttyACM0')
        self.assertEqual(data.address, '/dev/ttyACM1')
        self.assertTrue(control.is_open and data.is_open)
        self.assertEqual(control.get_sent_lines(), [PROBE_COMMAND])

    def test_single_port_device_shares_stream(self):
        factory = FakeFactory(live={'/dev/ttyUSB0'})
        resolver = PortResolver(stream_factory=factory, list_ports=lambda: [port('/dev/ttyUSB0')],
                                probe_timeout=0.5)
        control, data = resolver.resolve_first()
        self.assertIs(control, data)

    def test_silent_candidate_is_closed_before_next(self):
        factory = FakeFactory(live={'/dev/ttyS1'})
        resolver = PortResolver(stream_factory=factory,
                                list_ports=lambda: [port('/dev/ttyS1'), port('/dev/ttyS0')],
                                probe_timeout=0.1)
        control, data = resolver.resolve_first()
        self.assertEqual(control.address, '/dev/ttyS1')
        silent = factory.opened['/dev/ttyS0']
        self.assertFalse(silent.is_open)

    def test_partial_pair_is_closed(self):
        factory = FakeFactory(live={'/dev/ttyS9'}, broken={'/dev/ttyACM1'})
        resolver = PortResolver(stream_factory=factory,
                                list_ports=lambda: [port('/dev/ttyACM0', 'A'), port('/dev/ttyACM1', 'A'),
                                                    port('/dev/ttyS9')],
                                probe_timeout=0.1)
        control, data = resolver.resolve_first()
        self.assertEqual(control.address, '/dev/ttyS9')
        self.assertFalse(factory.opened['/dev/ttyACM0'].is_open)

    def test_every_candidate_fails(self):
        factory = FakeFactory(broken={'/dev/ttyACM0'})
        resolver = PortResolver(stream_factory=factory,
                                list_ports=lambda: [port('/dev/ttyACM0'), port('/dev/ttyACM1')],
                                probe_timeout=0.05)
        with self.assertRaises(NoPortFound):
            resolver.resolve_first()
        self.assertTrue(all(not s.is_open for s in factory.opened.values()))

    def test_probe_disabled(self):
        factory = FakeFactory()
        resolver = PortResolver(stream_factory=factory, list_ports=lambda: [port('/dev/ttyS0')],
                                probe_timeout=0)
        control, _ = resolver.resolve_first()
        self.assertEqual(control.get_sent_lines(), [])

if __name__ == '__main__':
    unittest.main()
