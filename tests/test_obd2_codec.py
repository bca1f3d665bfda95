"""
Tests for the OBD-II codec: DTC decoding, response cleaning and Mode 01 PIDs.
"""

import pytest

from elmdiag.core.errors import DecodeError
from elmdiag.core.obd2 import (
    build_clear_faults,
    build_read_pid,
    build_read_stored_faults,
    decode_clear_ack,
    decode_dtc_hex,
    decode_pid_response,
    decode_stored_faults,
    spec_for_pid,
)
from elmdiag.core.obd2.codec import ResponseMessage, response_messages


class TestCommands:
    def test_request_text(self):
        assert build_read_stored_faults() == "03"
        assert build_clear_faults() == "04"
        assert build_read_pid(0x0C) == "010C"
        assert build_read_pid(0xA6) == "01A6"


class TestDtcDecoding:
    """2-byte DTC pairs: letter from the top two bits, 4 hex digits body."""

    def test_p0106(self):
        assert decode_dtc_hex("01 06") == ["P0106"]

    def test_zero_pairs_are_skipped(self):
        assert decode_dtc_hex("0000") == []
        assert decode_dtc_hex("0106 0000 0420") == ["P0106", "P0420"]

    def test_system_letters(self):
        assert decode_dtc_hex("4123") == ["C0123"]
        assert decode_dtc_hex("9234") == ["B1234"]
        assert decode_dtc_hex("C100") == ["U0100"]

    def test_body_is_uppercase_hex(self):
        assert decode_dtc_hex("2a0b") == ["P2A0B"]


class TestStoredFaults:
    def test_non_can_reply(self):
        faults = decode_stored_faults("43 01 06 04 20 00 00")
        assert [f.code for f in faults] == ["P0106", "P0420"]
        assert [f.raw for f in faults] == ["0106", "0420"]

    def test_can_reply_with_header_and_count_byte(self):
        # ATH1 ATS0: 7E8 + PCI length + 43 + count + pairs
        faults = decode_stored_faults("7E806430201060420")
        assert [f.code for f in faults] == ["P0106", "P0420"]

    def test_searching_noise_and_no_codes(self):
        assert decode_stored_faults("SEARCHING...\n43 00") == []

    def test_duplicate_codes_from_two_ecus(self):
        faults = decode_stored_faults("7E80443010106\n7E90443010106")
        assert [f.code for f in faults] == ["P0106"]

    def test_fault_record_shape(self):
        fault = decode_stored_faults("43 01 06 00 00 00 00")[0]
        assert fault.protocol == "obd2"
        assert fault.occurrence_count == 1
        assert fault.system == "P"
        assert fault.to_dict()["code"] == "P0106"

    def test_severity(self):
        faults = {f.code: f.severity for f in decode_stored_faults("43 01 06 92 34 C1 00")}
        assert faults == {"P0106": "warning", "B1234": "info", "U0100": "warning"}

    def test_negative_response_is_not_a_fault(self):
        assert decode_stored_faults("7F 03 12") == []
        assert decode_stored_faults("7E8037F0311") == []

    def test_no_hex_payload_raises(self):
        with pytest.raises(DecodeError) as excinfo:
            decode_stored_faults("UNABLE TO CONNECT")
        assert excinfo.value.raw == "UNABLE TO CONNECT"


class TestClearAck:
    def test_positive_ack(self):
        decode_clear_ack("44")
        decode_clear_ack("7E80144")

    def test_negative_response(self):
        with pytest.raises(DecodeError):
            decode_clear_ack("7F 04 22")


class TestPidDecoding:
    def test_rpm(self):
        assert decode_pid_response(spec_for_pid(0x0C), "410C1F40") == 2000.0

    def test_rpm_with_can_header(self):
        assert decode_pid_response(spec_for_pid(0x0C), "7E804410C1F40") == 2000.0

    def test_coolant(self):
        assert decode_pid_response(spec_for_pid(0x05), "41 05 5A") == 50.0

    def test_percent_fields(self):
        assert decode_pid_response(spec_for_pid(0x04), "4104FF") == 100.0
        assert decode_pid_response(spec_for_pid(0x11), "411133") == 20.0

    def test_maf_and_fuel_pressure(self):
        assert decode_pid_response(spec_for_pid(0x10), "411001F4") == 5.0
        assert decode_pid_response(spec_for_pid(0x0A), "410A1E") == 90.0

    def test_odometer(self):
        assert decode_pid_response(spec_for_pid(0xA6), "41A600002710") == 1000.0

    def test_short_response_is_absent(self):
        assert decode_pid_response(spec_for_pid(0x0C), "410C1F") is None

    def test_other_pid_is_absent(self):
        assert decode_pid_response(spec_for_pid(0x0C), "410D3C") is None

    def test_error_text_raises(self):
        with pytest.raises(DecodeError):
            decode_pid_response(spec_for_pid(0x0C), "CAN ERROR")

    def test_unknown_pid_has_no_spec(self):
        assert spec_for_pid(0x99) is None


class TestResponseMessages:
    def test_drops_status_text(self):
        assert response_messages("SEARCHING...\n41 0C 1F 40", 0x41) == [
            ResponseMessage(source="", data=bytes.fromhex("410C1F40"), can=None)
        ]
        assert response_messages("STOPPED\n41 0C 1F 40", 0x41)[0].data == bytes.fromhex("410C1F40")

    def test_can_single_frame_source(self):
        message = response_messages("7E804410C1F40", 0x41)[0]
        assert message.source == "7E8"
        assert message.can is True
        assert message.data == bytes.fromhex("410C1F40")

    def test_headerless_multi_frame_is_joined(self):
        messages = response_messages("00A\n0: 43 04 01 06 04 20\n1: 01 33 00 00 00 00", 0x43)
        assert messages == [ResponseMessage(source="", data=bytes.fromhex("43040106042001330000"), can=True)]

    def test_non_can_header_and_checksum_are_removed(self):
        message = response_messages("48 6B 10 41 0C 1F 40 6F", 0x41)[0]
        assert message.source == "10"
        assert message.can is False
        assert message.data == bytes.fromhex("410C1F40")


class TestMultiFrameFaults:
    def test_can_first_and_consecutive_frame(self):
        faults = decode_stored_faults("7E8100A430401060107\n7E82101080109000000")
        assert [f.code for f in faults] == ["P0106", "P0107", "P0108", "P0109"]

    def test_consecutive_frame_padding_is_not_a_code(self):
        # Count says 4; the frame padding after it is not a code.
        faults = decode_stored_faults("7E8 10 0A 43 04 01 06 01 07\n7E8 21 01 08 01 09 AA AA AA")
        assert [f.code for f in faults] == ["P0106", "P0107", "P0108", "P0109"]

    def test_frames_from_two_ecus_interleaved(self):
        response = "7E8100A430401060107\n7E9044301C100\n7E82101080109000000"
        faults = decode_stored_faults(response)
        assert [f.code for f in faults] == ["P0106", "P0107", "P0108", "P0109", "U0100"]

    def test_out_of_sequence_frame_is_not_appended(self):
        faults = decode_stored_faults("7E8100A430401060107\n7E82201080109000000")
        assert [f.code for f in faults] == ["P0106", "P0107"]

    def test_headerless_multi_frame(self):
        faults = decode_stored_faults("00A\n0: 43 04 01 06 04 20\n1: 01 33 00 00 00 00")
        assert [f.code for f in faults] == ["P0106", "P0420", "P0133"]

    def test_can_29bit_header(self):
        faults = decode_stored_faults("18DAF11006430201060420")
        assert [f.code for f in faults] == ["P0106", "P0420"]


class TestNonCanHeaders:
    def test_iso9141_fault_reply(self):
        assert [f.code for f in decode_stored_faults("486B104301060000000057")] == ["P0106"]

    def test_iso9141_one_message_per_three_codes(self):
        response = "48 6B 10 43 01 06 01 07 01 08 5F\n48 6B 10 43 01 09 00 00 00 00 EE"
        faults = decode_stored_faults(response)
        assert [f.code for f in faults] == ["P0106", "P0107", "P0108", "P0109"]

    def test_iso9141_pid(self):
        assert decode_pid_response(spec_for_pid(0x0C), "486B10410C1F406F") == 2000.0

    def test_iso9141_clear_ack(self):
        decode_clear_ack("486B104407")
