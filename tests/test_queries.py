import unittest
from datetime import datetime, timedelta
from unittest.mock import patch

from sqlalchemy import create_engine

from src.database import MovementRow, SalespersonInfoRow, SalespersonMonthlyRow, SalespersonRecordRow, create_tables
from src.queries import (
    fetch_movements,
    fetch_salesperson,
    get_leaderboard_by_date_range,
    get_movements_count,
    rank_by_date_range,
)
from src.store import RowStore, StoreError


def make_store() -> RowStore:
    engine = create_engine("sqlite://", future=True)
    create_tables(engine)
    return RowStore(engine)


MONTHLY = [
    {"reg_num": "R1", "name": "ALICE", "month_year": "2023-12", "count": 9},
    {"reg_num": "R1", "name": "ALICE", "month_year": "2024-01", "count": 2},
    {"reg_num": "R1", "name": "ALICE", "month_year": "2024-02", "count": 1},
    {"reg_num": "R2", "name": "BOB", "month_year": "2024-02", "count": 5},
    {"reg_num": "R3", "name": "CHEN", "month_year": "2024-03", "count": 3},
    {"reg_num": "R4", "name": "DEV", "month_year": "2024-07", "count": 4},
]


class TestLeaderboard(unittest.TestCase):
    def test_rank_by_date_range(self):
        ranked = rank_by_date_range(MONTHLY, "2024-01", "2024-06")
        self.assertEqual(
            ranked,
            [
                {"name": "BOB", "reg_num": "R2", "transactions": 5},
                {"name": "ALICE", "reg_num": "R1", "transactions": 3},
                {"name": "CHEN", "reg_num": "R3", "transactions": 3},
            ],
        )
        self.assertEqual(len(rank_by_date_range(MONTHLY, "2024-01", "2024-06", limit=1)), 1)
        self.assertEqual(rank_by_date_range(MONTHLY, "2030-01", "2030-12"), [])
        self.assertEqual(rank_by_date_range([], "2024-01", "2024-12"), [])

    def test_falls_back_to_client_side_when_procedure_missing(self):
        store = make_store()
        store.insert(SalespersonMonthlyRow, MONTHLY)

        board = get_leaderboard_by_date_range(store, "2024-01", "2024-06", page_size=2)

        self.assertEqual([row["reg_num"] for row in board], ["R2", "R1", "R3"])
        self.assertEqual(board[1]["transactions"], 3)

    def test_other_store_errors_do_not_fall_back(self):
        store = make_store()
        with patch.object(store, "call_procedure", side_effect=StoreError("connection reset")):
            with self.assertRaises(StoreError):
                get_leaderboard_by_date_range(store, "2024-01", "2024-06")

    def test_uses_procedure_when_available(self):
        store = make_store()
        rows = [{"name": "BOB", "reg_num": "R2", "transactions": 5}]
        with patch.object(store, "call_procedure", return_value=rows) as call:
            board = get_leaderboard_by_date_range(store, "2024-01", "2024-06", limit=10)

        self.assertEqual(board, rows)
        self.assertEqual(call.call_args[0][1], {"start_date": "2024-01", "end_date": "2024-06", "row_limit": 10})


class TestLookupAndMovements(unittest.TestCase):
    def setUp(self):
        self.store = make_store()

    def test_fetch_salesperson(self):
        self.store.insert(
            SalespersonRecordRow,
            [
                {"reg_num": "R1", "name": "ALICE", "transaction_date": "JAN-2024", "property_type": "HDB"},
                {"reg_num": "R1", "name": "ALICE", "transaction_date": "FEB-2024", "property_type": None},
            ],
        )
        self.store.insert(SalespersonInfoRow, [{"reg_num": "R1", "name": "ALICE", "estate_agent_name": "ERA"}])

        lookup = fetch_salesperson(self.store, "R1")

        self.assertEqual(len(lookup.records), 2)
        self.assertNotIn("id", lookup.records[0])
        self.assertEqual(lookup.info.estate_agent_name, "ERA")
        self.assertIsNone(fetch_salesperson(self.store, "R404"))

    def test_fetch_movements_newest_first_with_search(self):
        base = datetime(2024, 1, 1)
        self.store.insert(
            MovementRow,
            [
                {"reg_num": f"R{i}", "salesperson_name": "TAN" if i % 2 else "LIM", "detected_at": base + timedelta(days=i)}
                for i in range(5)
            ],
        )

        page = fetch_movements(self.store, page=1, page_size=2)
        self.assertEqual([m["reg_num"] for m in page.movements], ["R4", "R3"])
        self.assertEqual(page.total_count, 5)
        self.assertTrue(page.has_more)

        last = fetch_movements(self.store, page=3, page_size=2)
        self.assertEqual([m["reg_num"] for m in last.movements], ["R0"])
        self.assertFalse(last.has_more)

        searched = fetch_movements(self.store, search=" tan ")
        self.assertEqual(searched.total_count, 2)
        self.assertEqual({m["reg_num"] for m in searched.movements}, {"R1", "R3"})

        self.assertEqual(get_movements_count(self.store), 5)


if __name__ == "__main__":
    unittest.main()
