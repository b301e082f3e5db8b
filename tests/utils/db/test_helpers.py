"""
Unit tests for database helper functions.
"""

import unittest
from datetime import date, datetime, timezone, timedelta
from unittest.mock import MagicMock

from utils.db.helpers import (
    paginated_query,
    paginated_scan,
    timestamp_from_datetime,
    to_db_date,
    build_version_condition,
)


class TestPagination(unittest.TestCase):
    """Test pagination helpers."""

    def test_paginated_query_single_page(self):
        mock_table = MagicMock()
        mock_table.query.return_value = {
            'Items': [{'id': 'item-1'}, {'id': 'item-2'}]
        }

        items = paginated_query(mock_table, {'KeyConditionExpression': 'userId = :userId'})

        self.assertEqual(len(items), 2)
        mock_table.query.assert_called_once()

    def test_paginated_query_follows_last_evaluated_key(self):
        mock_table = MagicMock()
        mock_table.query.side_effect = [
            {
                'Items': [{'id': 'item-1'}, {'id': 'item-2'}],
                'LastEvaluatedKey': {'id': 'item-2'}
            },
            {
                'Items': [{'id': 'item-3'}]
            }
        ]

        items = paginated_query(mock_table, {'KeyConditionExpression': 'userId = :userId'})

        self.assertEqual([i['id'] for i in items], ['item-1', 'item-2', 'item-3'])
        self.assertEqual(mock_table.query.call_count, 2)
        second_call = mock_table.query.call_args_list[1]
        self.assertEqual(second_call.kwargs['ExclusiveStartKey'], {'id': 'item-2'})

    def test_paginated_query_with_transform(self):
        mock_table = MagicMock()
        mock_table.query.return_value = {
            'Items': [{'id': 'item-1', 'value': 1}, {'id': 'item-2', 'value': 2}]
        }

        items = paginated_query(
            mock_table,
            {'KeyConditionExpression': 'userId = :userId'},
            transform=lambda item: item['value'] * 2
        )

        self.assertEqual(items, [2, 4])

    def test_paginated_scan(self):
        mock_table = MagicMock()
        mock_table.scan.return_value = {
            'Items': [{'id': 'item-1'}, {'id': 'item-2'}]
        }

        items = paginated_scan(mock_table, {'FilterExpression': 'status = :status'})

        self.assertEqual(len(items), 2)
        mock_table.scan.assert_called_once()


class TestVersionCondition(unittest.TestCase):

    def test_new_item_must_not_exist(self):
        condition, names, values = build_version_condition(None)
        self.assertEqual(condition, "attribute_not_exists(#pid)")
        self.assertEqual(names, {"#pid": "patternId"})
        self.assertEqual(values, {})

    def test_existing_item_must_match_version(self):
        condition, names, values = build_version_condition(3)
        self.assertEqual(condition, "#ver = :expected_version")
        self.assertEqual(names, {"#ver": "version"})
        self.assertEqual(values, {":expected_version": 3})


class TestTimestamps(unittest.TestCase):

    def test_timestamp_from_datetime_with_tz(self):
        dt = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.assertEqual(timestamp_from_datetime(dt), 1704110400000)

    def test_timestamp_from_datetime_naive_is_utc(self):
        naive = datetime(2024, 1, 1, 12, 0, 0)
        aware = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.assertEqual(timestamp_from_datetime(naive), timestamp_from_datetime(aware))

    def test_to_db_date(self):
        self.assertEqual(to_db_date(date(2025, 3, 7)), "2025-03-07")
        self.assertIsNone(to_db_date(None))

    def test_db_dates_sort_chronologically(self):
        days = [date(2024, 12, 31) + timedelta(days=n) for n in (0, 1, 40, 400)]
        self.assertEqual(sorted(to_db_date(d) for d in days), [to_db_date(d) for d in days])
