import unittest

from tinyg_sender.errors import TransportError
from tinyg_sender.streams.dummy import DummyStream
from tinyg_sender.streams.streams import Stream

class TestDummyStream(unittest.TestCase):

    def test_constructs_open_and_satisfies_protocol(self):
        stream = DummyStream("ctl")
        self.assertTrue(stream.is_open)
        self.assertIsInstance(stream, Stream)

    def test_close_is_idempotent(self):
        stream = DummyStream("ctl")
        self.assertTrue(stream.close())
        self.assertTrue(stream.close())
        self.assertFalse(stream.is_open)
        self.assertEqual(stream.close_calls, 2)

    def test_closed_stream_rejects_io(self):
        stream = DummyStream("ctl")
        stream.close()
        with self.assertRaises(TransportError):
            stream.write_line("G0 X1")
        with self.assertRaises(TransportError):
            stream.readline()

    def test_records_and_replays(self):
        stream = DummyStream("dat")
        stream.write_line("G21")
        stream.feed('{"qr":32}')
        self.assertEqual(stream.get_sent_lines(), ["G21"])
        self.assertEqual(stream.readline(), b'{"qr":32}\n')
        self.assertEqual(stream.readline(), b'')

if __name__ == '__main__':
    unittest.main()
