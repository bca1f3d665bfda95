"""
Tests for the J1939 codec: DM1/DM2 records, PGN payloads and SPN lookups.
"""

import pytest

from elmdiag.core.errors import DecodeError
from elmdiag.core.j1939 import (
    FMI_DESCRIPTIONS,
    LIVE_FIELDS,
    SPN_DATABASE,
    build_clear_faults,
    build_request,
    decode_clear_response,
    decode_dm_hex,
    decode_dm_response,
    decode_live_field,
    describe_fmi,
    describe_spn,
    lookup_fmi,
    lookup_spn,
    severity_for_fmi,
)
from elmdiag.emulator.elm_sim import pack_j1939_dtc


LAMPS = "44FF"


def _field(name):
    return next(f for f in LIVE_FIELDS if f.field == name)


class TestRequests:
    def test_pgn_request(self):
        assert build_request("FECA") == "00 FECA"
        assert build_request("f004") == "00 F004"

    def test_dm11(self):
        assert build_clear_faults() == "18 FED3 FF"


class TestDmDecoding:
    def test_spn_fmi_bit_packing(self):
        record = pack_j1939_dtc(190, 1, 3)
        faults = decode_dm_hex(LAMPS + record.hex())
        assert len(faults) == 1
        fault = faults[0]
        assert (fault.spn, fault.fmi, fault.occurrence_count) == (190, 1, 3)
        assert fault.code == "SPN 190 / FMI 1"
        assert fault.severity == "critical"
        assert fault.source == "Engine"
        assert fault.description == "Engine Speed (RPM)"

    def test_high_spn_bits(self):
        record = pack_j1939_dtc(0x7FEE0, 4, 127)
        fault = decode_dm_hex(LAMPS + record.hex())[0]
        assert fault.spn == 0x7FEE0
        assert fault.fmi == 4
        assert fault.occurrence_count == 127

    def test_not_available_and_empty_slots_are_skipped(self):
        payload = LAMPS + pack_j1939_dtc(0x7FFFF, 31, 127).hex() + "00000000" + pack_j1939_dtc(110, 0, 3).hex()
        faults = decode_dm_hex(payload)
        assert [(f.spn, f.fmi) for f in faults] == [(110, 0)]

    def test_non_hex_characters_are_ignored(self):
        payload = "44 FF " + " ".join(f"{b:02X}" for b in pack_j1939_dtc(3363, 18, 1)) + " >"
        fault = decode_dm_hex(payload)[0]
        assert (fault.spn, fault.fmi) == (3363, 18)
        assert fault.severity == "info"
        assert fault.source == "Aftertreatment"

    def test_unknown_spn_and_fmi_fall_back(self):
        fault = decode_dm_hex(LAMPS + pack_j1939_dtc(9999, 25, 1).hex())[0]
        assert fault.description == "SPN 9999"
        assert fault.source == "Unknown"
        assert fault.fmi_description == "FMI 25"

    def test_lamp_bytes_only(self):
        assert decode_dm_hex(LAMPS) == []

    def test_response_with_29bit_header(self):
        response = "18FECA00" + LAMPS + pack_j1939_dtc(100, 1, 2).hex().upper()
        faults = decode_dm_response(response, "FECA")
        assert [(f.spn, f.fmi, f.occurrence_count) for f in faults] == [(100, 1, 2)]

    def test_response_ignores_frames_for_other_pgns(self):
        response = "\n".join(
            [
                "18FECA00" + LAMPS + pack_j1939_dtc(110, 0, 3).hex().upper(),
                "18FECB00" + LAMPS + pack_j1939_dtc(100, 1, 2).hex().upper(),
            ]
        )
        faults = decode_dm_response(response, "FECA")
        assert [f.spn for f in faults] == [110]

    def test_response_without_hex_raises(self):
        with pytest.raises(DecodeError):
            decode_dm_response("CAN ERROR", "FECA")


# DM1 with two records (10 bytes) sent as a BAM: announce, then two packets.
BAM_DM1 = "\n".join(
    [
        "1CECFF00 20 0A 00 02 FF CA FE 00",
        "1CEBFF00 01 44 FF 6E 00 00 03 23",
        "1CEBFF00 02 0D 12 01 FF FF FF FF",
    ]
)


class TestTransportProtocol:
    def test_bam_transfer_is_reassembled(self):
        faults = decode_dm_response(BAM_DM1, "FECA")
        assert [(f.spn, f.fmi, f.occurrence_count) for f in faults] == [(110, 0, 3), (3363, 18, 1)]

    def test_transfer_for_another_pgn_is_ignored(self):
        response = BAM_DM1.replace("FF CA FE 00", "FF E5 FE 00")
        assert decode_dm_response(response, "FECA") == []

    def test_packets_without_announce_are_ignored(self):
        response = "\n".join(BAM_DM1.splitlines()[1:])
        assert decode_dm_response(response, "FECA") == []

    def test_other_pgn_with_header_is_not_decoded(self):
        assert decode_dm_response("18FEEE005AFFFFFFFFFFFFFF", "FECA") == []
        assert decode_live_field(_field("coolant_temp"), "18F00400FFFFE02EFFFFFFFF") is None

    def test_live_field_next_to_transfer(self):
        response = "\n".join(["18FEEE005AFFFFFFFFFFFFFF", BAM_DM1])
        assert decode_live_field(_field("coolant_temp"), response) == 50.0


class TestSeverity:
    @pytest.mark.parametrize("fmi", [0, 1, 2, 7, 12])
    def test_critical(self, fmi):
        assert severity_for_fmi(fmi) == "critical"

    @pytest.mark.parametrize("fmi", [15, 16, 17, 18])
    def test_info(self, fmi):
        assert severity_for_fmi(fmi) == "info"

    @pytest.mark.parametrize("fmi", [3, 4, 11, 14, 19, 31])
    def test_warning(self, fmi):
        assert severity_for_fmi(fmi) == "warning"


class TestLiveFields:
    def test_engine_speed(self):
        assert decode_live_field(_field("rpm"), "0CF00400FFFFE02EFFFFFFFF") == 1500.0

    def test_coolant(self):
        assert decode_live_field(_field("coolant_temp"), "18FEEE005AFFFFFFFFFFFFFF") == 50.0

    def test_headerless_payload(self):
        assert decode_live_field(_field("coolant_temp"), "5A FF FF FF FF FF FF FF") == 50.0

    def test_vehicle_speed(self):
        assert decode_live_field(_field("vehicle_speed"), "18FEF1000058FFFFFFFFFFFF") == 88.0

    def test_trans_temp(self):
        assert decode_live_field(_field("trans_temp"), "18FE6C00202CFFFFFFFFFFFF") == 80.0

    def test_engine_hours(self):
        assert decode_live_field(_field("total_engine_hours"), "18FEE50080C40300FFFFFFFF") == 12345.6

    def test_gear(self):
        assert decode_live_field(_field("trans_gear"), "18F0050087FFFFFFFFFFFFFF") == 10.0

    def test_not_available_marker(self):
        assert decode_live_field(_field("coolant_temp"), "18FEEE00FFFFFFFFFFFFFFFF") is None

    def test_short_payload(self):
        assert decode_live_field(_field("rpm"), "18F00400FFFF") is None

    def test_error_text_raises(self):
        with pytest.raises(DecodeError):
            decode_live_field(_field("rpm"), "BUS ERROR")

    def test_every_live_field_has_a_decode_rule(self):
        for live in LIVE_FIELDS:
            assert live.descriptor.decode is not None
            assert live.pgn


class TestLookups:
    def test_spn(self):
        assert lookup_spn(110).name == "Engine Coolant Temperature"
        assert lookup_spn(1) is None
        assert describe_spn(3363) == "Aftertreatment DEF Tank Level"
        assert describe_spn(1) == "SPN 1"

    def test_fmi(self):
        assert lookup_fmi(31) == "Condition exists"
        assert lookup_fmi(22) is None
        assert describe_fmi(22) == "FMI 22"

    def test_tables_are_read_only(self):
        with pytest.raises(TypeError):
            SPN_DATABASE[1] = None
        with pytest.raises(TypeError):
            FMI_DESCRIPTIONS[99] = "x"


class TestClearResponse:
    def test_ack_frame(self):
        decode_clear_response("18E8FF0000FFFFFFF9D3FE00")

    def test_garbage(self):
        with pytest.raises(DecodeError):
            decode_clear_response("BUS BUSY")
