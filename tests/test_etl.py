import io
import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine

from src.aggregation import AggregationResult, Metadata, SalespersonMonthly, aggregate_transactions_csv
from src.database import (
    PropertyTypeByYear,
    SalespersonInfoRow,
    SalespersonMonthlyRow,
    SalespersonRecordRow,
    SalespersonsByYear,
    SyncMetadata,
    TransactionTypeByYear,
    TransactionsByYear,
    create_tables,
)
from src.etl import breakdown_rows, load_to_store, record_rows, run_etl
from src.exports import get_metadata
from src.salesperson_info import SalespersonInfo
from src.store import RowStore
from src.validation.data_contracts import DataContractError, validate_aggregates, validate_directory

TRANSACTIONS_HEADER = (
    "salesperson_name,transaction_date,salesperson_reg_num,property_type,"
    "transaction_type,represented,town,district,general_location\n"
)
INFO_HEADER = (
    "salesperson_name,registration_no,registration_start_date,registration_end_date,"
    "estate_agent_name,estate_agent_license_no\n"
)


def make_store() -> RowStore:
    engine = create_engine("sqlite://", future=True)
    create_tables(engine)
    return RowStore(engine)


class TestEtlPipeline(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        root = Path(self.tmp.name)
        self.transactions_path = root / "transactions.csv"
        self.info_path = root / "info.csv"
        self.data_dir = root / "processed"

        self.transactions_path.write_text(
            TRANSACTIONS_HEADER
            + "ALICE TAN,JAN-2024,R001A,HDB,RESALE,BUYER,TAMPINES,-,-\n"
            + "BOB LIM,FEB-2023,R002B,CONDOMINIUM_APARTMENTS,NEW SALE,SELLER,-,D15,-\n"
            + "ALICE TAN,MAR-2024,R001A,HDB,WHOLE RENTAL,LANDLORD,TAMPINES,-,-\n"
            + "short,row\n"
            + "CAROL ONG,,R003C,HDB,RESALE,BUYER,-,-,-\n",
            encoding="utf-8",
        )
        self.info_path.write_text(
            INFO_HEADER
            + "ALICE TAN,R001A,2019-01-01,2026-12-31,ERA REALTY NETWORK PTE LTD,L3002382K\n"
            + "BOB LIM,R002B,2020-05-01,,,\n",
            encoding="utf-8",
        )

    def tearDown(self):
        self.tmp.cleanup()

    def test_files_output(self):
        result = run_etl(self.transactions_path, self.info_path, output="files", data_dir=self.data_dir)

        self.assertEqual(result.metadata.total_records, 3)
        self.assertEqual(result.skipped_rows, 1)
        self.assertEqual(result.undated_records, 1)
        self.assertEqual(get_metadata(self.data_dir)["unique_salespersons"], 2)

    def test_store_output(self):
        store = make_store()

        run_etl(self.transactions_path, self.info_path, output="store", store=store)

        self.assertEqual(store.select_all(SyncMetadata)[0]["total_records"], 3)
        years = {row["year"]: row["count"] for row in store.select_all(TransactionsByYear)}
        self.assertEqual(years, {"2024": 2, "2023": 1})
        self.assertEqual(store.count(SalespersonMonthlyRow), 3)
        self.assertEqual(store.count(SalespersonRecordRow), 4)

        info = {row["reg_num"]: row for row in store.select_all(SalespersonInfoRow)}
        self.assertIsNone(info["R002B"]["estate_agent_name"])
        self.assertEqual(info["R001A"]["estate_agent_license_no"], "L3002382K")

    def test_dry_run_writes_nothing(self):
        store = make_store()

        run_etl(self.transactions_path, self.info_path, output="store", store=store, dry_run=True)
        run_etl(self.transactions_path, self.info_path, output="files", data_dir=self.data_dir, dry_run=True)

        self.assertEqual(store.count(SyncMetadata), 0)
        self.assertFalse(self.data_dir.exists())

    def test_limit_applies_while_streaming(self):
        result = run_etl(
            self.transactions_path, self.info_path, output="files", data_dir=self.data_dir, limit=2
        )
        self.assertEqual(result.metadata.total_records, 2)

    def test_unknown_output_rejected(self):
        with self.assertRaises(ValueError):
            run_etl(self.transactions_path, self.info_path, output="parquet")

    def test_missing_input_raises(self):
        with self.assertRaises(FileNotFoundError):
            run_etl(Path(self.tmp.name) / "missing.csv", self.info_path, output="files", data_dir=self.data_dir)

    def test_dash_name_and_reg_num_in_info_do_not_fail_contracts(self):
        self.info_path.write_text(
            INFO_HEADER
            + "-,R001A,2020-01-01,-,ABC REALTY,L1\n"
            + "NO REG,-,2020-01-01,-,ABC REALTY,L1\n"
            + "BOB LIM,R002B,2020-05-01,,,\n",
            encoding="utf-8",
        )
        store = make_store()

        run_etl(self.transactions_path, self.info_path, output="store", store=store)

        info = {row["reg_num"]: row for row in store.select_all(SalespersonInfoRow)}
        self.assertEqual(set(info), {"R001A", "R002B"})
        self.assertEqual(info["R001A"]["name"], "Unknown")
        self.assertIsNone(info["R001A"]["registration_end_date"])

    def test_report_lists_input_quality(self):
        report_dir = Path(self.tmp.name) / "reports"

        run_etl(
            self.transactions_path,
            self.info_path,
            output="files",
            data_dir=self.data_dir,
            write_report=True,
            report_dir=report_dir,
        )

        markdown = next(report_dir.glob("etl_run_*.md")).read_text(encoding="utf-8")
        self.assertIn("- Dated records: 3", markdown)
        self.assertIn("- Undated records (lookup only): 1", markdown)
        self.assertIn("- Skipped short rows: 1", markdown)
        self.assertIn("- Years covered: 2023, 2024", markdown)
        self.assertIn("aggregates PASS, directory PASS", markdown)
        self.assertEqual(len(list(report_dir.glob("etl_run_*.csv"))), 1)

    def test_partial_report_on_failure(self):
        report_dir = Path(self.tmp.name) / "reports"

        with self.assertRaises(FileNotFoundError):
            run_etl(
                self.transactions_path,
                Path(self.tmp.name) / "missing_info.csv",
                output="files",
                data_dir=self.data_dir,
                write_report=True,
                report_dir=report_dir,
            )

        markdown = next(report_dir.glob("etl_run_*.md")).read_text(encoding="utf-8")
        self.assertIn("- Dated records: 3", markdown)
        self.assertIn("- Status: not reached", markdown)
        self.assertNotIn("Directory entries", markdown)


class TestLoadToStore(unittest.TestCase):
    def test_second_run_replaces_monthly_series_and_records(self):
        store = make_store()
        directory = {"R1": SalespersonInfo(reg_num="R1", name="A")}

        first = aggregate_transactions_csv(io.StringIO(
            TRANSACTIONS_HEADER
            + "A,JAN-2024,R1,HDB,RESALE,BUYER,-,-,-\n"
            + "B,FEB-2024,R2,HDB,RESALE,BUYER,-,-,-\n"
        ))
        second = aggregate_transactions_csv(io.StringIO(
            TRANSACTIONS_HEADER + "A,JAN-2024,R1,HDB,RESALE,BUYER,-,-,-\n"
        ))

        load_to_store(store, first, directory)
        loaded = load_to_store(store, second, directory)

        self.assertEqual(loaded["salesperson_monthly"], 1)
        reg_nums = {row["reg_num"] for row in store.select_all(SalespersonMonthlyRow)}
        self.assertEqual(reg_nums, {"R1"})
        self.assertEqual(store.count(SalespersonRecordRow), 1)
        self.assertEqual(store.count(SyncMetadata), 1)
        self.assertEqual(store.select_all(SyncMetadata)[0]["total_records"], 1)

    def test_row_shapes(self):
        result = aggregate_transactions_csv(io.StringIO(
            TRANSACTIONS_HEADER + "A,JAN-2024,R1,,RESALE,BUYER,-,-,-\n"
        ))

        rows = record_rows(result)
        self.assertIsNone(rows[0]["property_type"])
        self.assertIsNone(rows[0]["town"])
        self.assertEqual(rows[0]["transaction_type"], "RESALE")

        self.assertEqual(
            breakdown_rows({"2024": {"RESALE": 3}}, "transaction_type"),
            [{"year": "2024", "transaction_type": "RESALE", "count": 3}],
        )

    def test_second_run_drops_stale_years_and_labels(self):
        store = make_store()
        first = aggregate_transactions_csv(io.StringIO(
            TRANSACTIONS_HEADER
            + "A,JAN-2023,R1,HDB,RESALE,BUYER,-,-,-\n"
            + "A,JAN-2024,R1,HDB,RESALE,BUYER,-,-,-\n"
            + "A,FEB-2024,R1,HDB,RESALE,BUYER,-,-,-\n"
        ))
        second = aggregate_transactions_csv(io.StringIO(
            TRANSACTIONS_HEADER
            + "A,JAN-2024,R1,LANDED,NEW SALE,BUYER,-,-,-\n"
            + "A,FEB-2024,R1,LANDED,NEW SALE,BUYER,-,-,-\n"
        ))

        load_to_store(store, first, {})
        load_to_store(store, second, {})

        self.assertEqual(
            store.select_all(TransactionTypeByYear),
            [{"year": "2024", "transaction_type": "NEW SALE", "count": 2}],
        )
        self.assertEqual(
            store.select_all(PropertyTypeByYear),
            [{"year": "2024", "property_type": "LANDED", "count": 2}],
        )
        self.assertEqual(store.select_all(TransactionsByYear), [{"year": "2024", "count": 2}])
        self.assertEqual(store.select_all(SalespersonsByYear), [{"year": "2024", "count": 1}])

        for year, count in [(r["year"], r["count"]) for r in store.select_all(TransactionsByYear)]:
            breakdown = store.select_all(TransactionTypeByYear, where=[TransactionTypeByYear.year == year])
            self.assertEqual(sum(r["count"] for r in breakdown), count)


class TestDataContracts(unittest.TestCase):
    def _result(self, **overrides):
        values = dict(
            transactions_by_year={"2024": 3},
            salespersons_by_year={"2024": 2},
            salesperson_monthly=[
                SalespersonMonthly(reg_num="R1", name="A", monthly={"2024-01": 2}),
                SalespersonMonthly(reg_num="R2", name="B", monthly={"2024-02": 1}),
            ],
            transaction_type_by_year={"2024": {"RESALE": 3}},
            property_type_by_year={"2024": {"HDB": 2, "Unknown": 1}},
            salesperson_records={},
            metadata=Metadata(last_sync=datetime(2024, 3, 1), total_records=3, unique_salespersons=2),
        )
        values.update(overrides)
        return AggregationResult(**values)

    def test_consistent_result_passes(self):
        self.assertTrue(validate_aggregates(self._result()).passed)

    def test_violations_are_reported(self):
        bad = self._result(
            transaction_type_by_year={"2024": {"RESALE": 2}},
            salespersons_by_year={"2024": 5},
            salesperson_monthly=[
                SalespersonMonthly(reg_num="R2", name="B", monthly={"2024-02": 1}),
                SalespersonMonthly(reg_num="R1", name="A", monthly={"2024-01": 2}),
            ],
        )

        report = validate_aggregates(bad, raise_on_error=False)

        checks = {v.check for v in report.violations}
        self.assertFalse(report.passed)
        self.assertIn("transaction_type_by_year_sum", checks)
        self.assertIn("salespersons_by_year_bound", checks)
        self.assertIn("leaderboard_order", checks)
        with self.assertRaises(DataContractError):
            validate_aggregates(bad)

    def test_directory_key_mismatch(self):
        directory = {"R1": SalespersonInfo(reg_num="R9", name="A")}
        report = validate_directory(directory, raise_on_error=False)
        self.assertEqual([v.check for v in report.violations], ["directory_key"])


if __name__ == "__main__":
    unittest.main()
