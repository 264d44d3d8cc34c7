import unittest

from tinyg_sender.device.flow import FlowControlTracker, extract_credit, parse_control_line

class TestParseControlLine(unittest.TestCase):

    def test_json_queue_report(self):
        self.assertEqual(parse_control_line(b'{"qr":28}\n'), {"qr": 28})

    def test_response_envelope(self):
        message = parse_control_line('{"r":{"qr":12},"f":[1,0,255,1234]}')
        self.assertEqual(extract_credit(message), 12)

    def test_status_report_carrying_qr(self):
        message = parse_control_line('{"sr":{"stat":5,"qr":3}}')
        self.assertEqual(extract_credit(message), 3)

    def test_text_mode_queue_report(self):
        self.assertEqual(parse_control_line("qr:17"), {"qr": 17})
        self.assertEqual(parse_control_line("qr = 4"), {"qr": 4})

    def test_non_reports_are_ignored(self):
        self.assertIsNone(parse_control_line(""))
        self.assertIsNone(parse_control_line("tinyg [mm] ok>"))
        self.assertIsNone(parse_control_line("{not json"))
        self.assertIsNone(parse_control_line("[1, 2]"))

    def test_message_without_credit(self):
        self.assertIsNone(extract_credit({"r": {"fb": 440.2}, "f": [1, 0, 255]}))
        self.assertIsNone(extract_credit({"qr": True}))


class TestFlowControlTracker(unittest.TestCase):

    def setUp(self):
        self.tracker = FlowControlTracker()

    def test_starts_without_credit(self):
        self.assertEqual(self.tracker.available_credit(), 0)
        self.assertFalse(self.tracker.reserve(1))

    def test_reports_replace_rather_than_accumulate(self):
        for value in (10, 25, 3, 3, 40, 0, 7):
            self.tracker.on_status_report(value)
        self.assertEqual(self.tracker.available_credit(), 7)

    def test_report_after_reservations_is_absolute(self):
        self.tracker.on_status_report(5)
        self.assertTrue(self.tracker.reserve(4))
        self.tracker.on_status_report(6)
        self.assertEqual(self.tracker.available_credit(), 6)

    def test_downward_correction_accepted(self):
        self.tracker.on_status_report(30)
        self.tracker.on_status_report(2)
        self.assertEqual(self.tracker.available_credit(), 2)

    def test_dict_reports(self):
        self.assertTrue(self.tracker.on_status_report({"r": {"qr": 9}}))
        self.assertFalse(self.tracker.on_status_report({"r": {"fv": 0.97}}))
        self.assertEqual(self.tracker.available_credit(), 9)
        self.assertEqual(self.tracker.reports_seen, 1)

    def test_negative_report_clamps_to_zero(self):
        self.tracker.on_status_report(-3)
        self.assertEqual(self.tracker.available_credit(), 0)

    def test_reserve_is_all_or_nothing(self):
        self.tracker.on_status_report(3)
        self.assertFalse(self.tracker.reserve(4))
        self.assertEqual(self.tracker.available_credit(), 3)
        self.assertTrue(self.tracker.reserve(3))
        self.assertEqual(self.tracker.available_credit(), 0)
        self.assertFalse(self.tracker.reserve(1))
        self.assertEqual(self.tracker.available_credit(), 0)

    def test_reserve_rejects_negative(self):
        with self.assertRaises(ValueError):
            self.tracker.reserve(-1)

    def test_reset(self):
        self.tracker.on_status_report(12)
        self.tracker.reset()
        self.assertEqual(self.tracker.available_credit(), 0)
        self.assertEqual(self.tracker.reports_seen, 0)

if __name__ == '__main__':
    unittest.main()
