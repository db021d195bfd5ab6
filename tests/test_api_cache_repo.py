import datetime as dt
import json
import unittest
from unittest.mock import MagicMock, patch

from boto3.dynamodb.types import Binary
from botocore.exceptions import ClientError

from citeresolve.dynamo.api_cache_repo import ApiCacheRepo, _payload_bytes


def _make_repo() -> tuple:
    """Create an ApiCacheRepo with a mocked DynamoDB table."""
    with patch("citeresolve.dynamo.api_cache_repo.get_dynamo_resource") as mock_ddb:
        table = MagicMock()
        mock_ddb.return_value.Table.return_value = table
        repo = ApiCacheRepo()
    return repo, table


def _epoch(offset_seconds: int) -> int:
    return int(dt.datetime.now(dt.timezone.utc).timestamp()) + offset_seconds


class ApiCacheRepoTests(unittest.TestCase):
    def test_put_stores_binary_payload_with_expiry(self) -> None:
        repo, table = _make_repo()
        before = _epoch(0)

        repo.put("citation:abc", b'{"a": 1}', 3600)

        item = table.put_item.call_args.kwargs["Item"]
        self.assertEqual(item["cache_key"], "citation:abc")
        self.assertEqual(item["payload"], Binary(b'{"a": 1}'))
        self.assertEqual(item["source"], "citation")
        self.assertGreaterEqual(item["expires_at"], before + 3600)
        self.assertIn("cached_at", item)

    def test_get_returns_bytes_for_fresh_item(self) -> None:
        repo, table = _make_repo()
        table.get_item.return_value = {
            "Item": {"cache_key": "k", "payload": Binary(b"hello"), "expires_at": _epoch(600)}
        }
        self.assertEqual(repo.get("k"), b"hello")
        table.get_item.assert_called_once_with(Key={"cache_key": "k"})
        table.delete_item.assert_not_called()

    def test_get_evicts_expired_item(self) -> None:
        repo, table = _make_repo()
        table.get_item.return_value = {
            "Item": {"cache_key": "k", "payload": Binary(b"old"), "expires_at": _epoch(-10)}
        }
        self.assertIsNone(repo.get("k"))
        table.delete_item.assert_called_once_with(Key={"cache_key": "k"})

    def test_failed_eviction_is_not_raised(self) -> None:
        repo, table = _make_repo()
        table.get_item.return_value = {"Item": {"cache_key": "k", "expires_at": _epoch(-10)}}
        table.delete_item.side_effect = ClientError(
            {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}}, "DeleteItem"
        )
        self.assertIsNone(repo.get("k"))

    def test_failed_eviction_logs_structured_extras(self) -> None:
        repo, table = _make_repo()
        table.get_item.return_value = {"Item": {"cache_key": "k", "expires_at": _epoch(-10)}}
        table.delete_item.side_effect = ClientError(
            {"Error": {"Code": "InternalServerError", "Message": "boom"}}, "DeleteItem"
        )
        with self.assertLogs("citeresolve.dynamo.api_cache_repo", level="WARNING") as cm:
            repo.get("k")
        self.assertEqual(cm.records[0].getMessage(), "api_cache eviction failed")
        self.assertEqual(json.loads(cm.records[0].extras)["cache_key"], "k")

    def test_get_miss(self) -> None:
        repo, table = _make_repo()
        table.get_item.return_value = {}
        self.assertIsNone(repo.get("missing"))

    def test_item_without_expiry_is_stale(self) -> None:
        repo, _ = _make_repo()
        self.assertFalse(repo.is_fresh({"cache_key": "k"}))
        self.assertFalse(repo.is_fresh(None))
        self.assertTrue(repo.is_fresh({"expires_at": _epoch(60)}))

    def test_payload_bytes_accepts_dynamo_shapes(self) -> None:
        self.assertEqual(_payload_bytes(Binary(b"x")), b"x")
        self.assertEqual(_payload_bytes(bytearray(b"x")), b"x")
        self.assertEqual(_payload_bytes("x"), b"x")
        self.assertIsNone(_payload_bytes(None))


if __name__ == "__main__":
    unittest.main()
