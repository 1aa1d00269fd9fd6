import io
import unittest

from src.connectors import RegistryRecord
from src.movements import build_directory_lookup, detect_movements, normalize_agency_name
from src.salesperson_info import SalespersonInfo, load_salesperson_info


def _stored(reg_num, agent, license_no="L-OLD", name="TAN WEI MING"):
    return SalespersonInfo(
        reg_num=reg_num,
        name=name,
        estate_agent_name=agent,
        estate_agent_license_no=license_no,
    )


def _remote(reg_num, agent, license_no="L-NEW", name="TAN WEI MING"):
    return RegistryRecord(
        registration_no=reg_num,
        salesperson_name=name,
        estate_agent_name=agent,
        estate_agent_license_no=license_no,
    )


class TestSalespersonInfoLoader(unittest.TestCase):
    def test_last_row_wins_and_blank_reg_num_skipped(self):
        csv_text = (
            "salesperson_name,registration_no,start,end,estate_agent_name,estate_agent_license_no\n"
            "TAN WEI MING,R001A,2019-01-01,2025-12-31,ABC REALTY,L3000001A\n"
            "NO REG,,2019-01-01,2025-12-31,ABC REALTY,L3000001A\n"
            "TAN WEI MING,R001A,2019-01-01,2026-12-31,\"XYZ, PTE LTD\",L3000002B\n"
            "LIM,R002B,,,,\n"
            "broken,row\n"
        )

        directory = load_salesperson_info(io.StringIO(csv_text))

        self.assertEqual(set(directory), {"R001A", "R002B"})
        self.assertEqual(directory["R001A"].estate_agent_name, "XYZ, PTE LTD")
        self.assertEqual(directory["R001A"].registration_end_date, "2026-12-31")
        self.assertEqual(directory["R002B"].estate_agent_name, "-")
        self.assertEqual(directory["R002B"].registration_start_date, "-")

    def test_to_row_maps_dash_to_null(self):
        info = SalespersonInfo(reg_num="R1", name="A")
        row = info.to_row()
        self.assertIsNone(row["estate_agent_name"])
        self.assertEqual(row["reg_num"], "R1")

    def test_dash_name_defaults_and_dash_reg_num_is_skipped(self):
        csv_text = (
            "salesperson_name,registration_no,start,end,estate_agent_name,estate_agent_license_no\n"
            "-,R1,2020-01-01,-,ABC,L1\n"
            "NO REG,-,2020-01-01,-,ABC,L1\n"
        )

        directory = load_salesperson_info(io.StringIO(csv_text))

        self.assertEqual(set(directory), {"R1"})
        self.assertEqual(directory["R1"].name, "Unknown")
        row = directory["R1"].to_row()
        self.assertEqual(row["name"], "Unknown")
        self.assertIsNone(row["registration_end_date"])

    def test_to_row_keeps_key_columns(self):
        row = SalespersonInfo(reg_num="R1", name="-").to_row()
        self.assertEqual(row["name"], "-")
        self.assertEqual(row["reg_num"], "R1")


class TestDetectMovements(unittest.TestCase):
    def test_whitespace_only_difference_is_not_a_movement(self):
        directory = {"R1": _stored("R1", "ABC Realty")}
        movements = detect_movements([_remote("R1", " ABC Realty ")], directory)
        self.assertEqual(movements, [])

    def test_null_to_agency_is_one_movement(self):
        for old in (None, "", "   "):
            with self.subTest(old=old):
                directory = {"R1": _stored("R1", old, license_no=None)}
                movements = detect_movements([_remote("R1", "XYZ Realty")], directory)

                self.assertEqual(len(movements), 1)
                self.assertIsNone(movements[0].old_estate_agent_name)
                self.assertEqual(movements[0].new_estate_agent_name, "XYZ Realty")
                self.assertIsNone(movements[0].old_estate_agent_license_no)
                self.assertEqual(movements[0].new_estate_agent_license_no, "L-NEW")

    def test_new_registrant_is_not_a_movement(self):
        directory = {"R1": _stored("R1", "ABC Realty")}
        movements = detect_movements([_remote("R9", "XYZ Realty")], directory)
        self.assertEqual(movements, [])

    def test_movements_follow_remote_order(self):
        directory = build_directory_lookup(
            [
                {"reg_num": "R1", "name": "A", "estate_agent_name": "ABC", "estate_agent_license_no": "L1"},
                {"reg_num": "R2", "name": "B", "estate_agent_name": "ABC", "estate_agent_license_no": "L1"},
                {"reg_num": "R3", "name": "C", "estate_agent_name": "ABC", "estate_agent_license_no": "L1"},
            ]
        )
        remote = [_remote("R3", "DEF"), _remote("R2", "ABC"), _remote("R1", None)]

        movements = detect_movements(remote, directory)

        self.assertEqual([m.reg_num for m in movements], ["R3", "R1"])
        self.assertIsNone(movements[1].new_estate_agent_name)
        self.assertEqual(movements[0].old_estate_agent_license_no, "L1")

    def test_blank_registration_number_is_malformed(self):
        with self.assertRaises(ValueError):
            detect_movements([_remote("", "ABC")], {})

    def test_normalize_agency_name(self):
        self.assertIsNone(normalize_agency_name(None))
        self.assertIsNone(normalize_agency_name("  "))
        self.assertEqual(normalize_agency_name(" ERA "), "ERA")


if __name__ == "__main__":
    unittest.main()
