import unittest

from panellink.w12 import (
    FRAME_LENGTH,
    BargraphDirection,
    DisplayMessage,
    Language,
    Semaphore,
    SemaphoreColor,
    W12Frame,
    build_frame,
    format_hex,
)


class BuildFrameTests(unittest.TestCase):
    def test_fixed_bytes_and_selectors(self) -> None:
        for language in Language:
            for message in DisplayMessage:
                for direction in BargraphDirection:
                    frame = build_frame(
                        language=language,
                        message=message,
                        bargraph_direction=direction,
                    )
                    self.assertEqual(len(frame), FRAME_LENGTH)
                    self.assertEqual(frame[0:1], b"0")
                    self.assertEqual(frame[20:22], b"\r\n")
                    self.assertEqual(int(chr(frame[1])), language)
                    self.assertEqual(int(chr(frame[2])), message)
                    self.assertEqual(int(chr(frame[16])), direction)
                    self.assertEqual(frame[5:6] + frame[15:16] + frame[19:20], b"   ")

    def test_full_layout(self) -> None:
        frame = build_frame(
            language=Language.EN,
            message=DisplayMessage.WAIT,
            left=Semaphore(SemaphoreColor.GREEN, False),
            right=Semaphore(SemaphoreColor.YELLOW, True),
            sign="-",
            weight="1250",
            unit="kg",
            bargraph_direction=BargraphDirection.RIGHT_TO_LEFT,
            bargraph_value=42,
        )
        expected = b"012" + bytes([0x01, 0x83]) + b" -  1250kg 142 \r\n"
        self.assertEqual(frame, expected)

    def test_weight_is_right_justified_and_truncated(self) -> None:
        self.assertEqual(build_frame(weight="123.45")[7:13], b"123.45")
        self.assertEqual(build_frame(weight="12")[7:13], b"    12")
        self.assertEqual(build_frame(weight="1234567")[7:13], b"123456")

    def test_unit_is_left_justified_and_truncated(self) -> None:
        self.assertEqual(build_frame(unit="t")[13:15], b"t ")
        self.assertEqual(build_frame(unit="lbs")[13:15], b"lb")

    def test_bargraph_value_is_zero_padded(self) -> None:
        self.assertEqual(build_frame(bargraph_value=5)[17:19], b"05")
        self.assertEqual(build_frame(bargraph_value=96)[17:19], b"96")
        self.assertEqual(build_frame(bargraph_value=0)[17:19], b"00")

    def test_semaphore_encoding(self) -> None:
        frame = build_frame(left=Semaphore(SemaphoreColor.RED, True))
        self.assertEqual(frame[3], 0b10000010)
        self.assertEqual(frame[4], 0)

    def test_semaphore_color_is_masked_to_two_bits(self) -> None:
        self.assertEqual(Semaphore(7, False).to_byte(), 0b11)
        self.assertEqual(Semaphore(6, True).to_byte(), 0b10000010)

    def test_out_of_range_selector_is_sent_as_nul(self) -> None:
        self.assertEqual(build_frame(language=12)[1], 0)

    def test_non_ascii_text_is_replaced(self) -> None:
        self.assertEqual(build_frame(unit="µg")[13:15], b"?g")

    def test_dataclass_matches_function(self) -> None:
        frame = W12Frame(weight="80.5", bargraph_value=12, left=Semaphore(1, True))
        self.assertEqual(
            frame.to_bytes(),
            build_frame(weight="80.5", bargraph_value=12, left=Semaphore(1, True)),
        )

    def test_format_hex(self) -> None:
        self.assertEqual(format_hex(b"0\r\n"), "30 0D 0A")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
