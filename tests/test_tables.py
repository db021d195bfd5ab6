import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from citeresolve.dynamo import tables


def _fake_ddb(existing_names, describe_table):
    ddb = MagicMock()
    ddb.tables.all.return_value = [SimpleNamespace(name=n) for n in existing_names]
    ddb.meta.client.describe_table.side_effect = describe_table
    ddb.meta.client.describe_time_to_live.return_value = {"TimeToLiveDescription": {"TimeToLiveStatus": "DISABLED"}}
    return ddb


def _full_description(TableName):
    spec = tables.TABLES[TableName]
    return {"Table": {
        "GlobalSecondaryIndexes": [{"IndexName": g["IndexName"]} for g in spec.get("GlobalSecondaryIndexes", [])],
        "AttributeDefinitions": spec["AttributeDefinitions"],
    }}


class EnsureTablesTests(unittest.TestCase):
    def test_creates_missing_tables_and_enables_ttl(self) -> None:
        ddb = _fake_ddb([], _full_description)
        with patch("citeresolve.dynamo.tables.get_dynamo_resource", return_value=ddb):
            created = tables.ensure_tables()

        self.assertEqual(created, [tables.API_CACHE_TABLE, tables.CITATIONS_TABLE])
        self.assertEqual(ddb.create_table.call_count, 2)
        ddb.meta.client.update_time_to_live.assert_called_once_with(
            TableName=tables.API_CACHE_TABLE,
            TimeToLiveSpecification={"Enabled": True, "AttributeName": "expires_at"},
        )
        ddb.meta.client.update_table.assert_not_called()

    def test_adds_missing_gsi_with_its_attribute(self) -> None:
        def describe(TableName):
            if TableName != tables.CITATIONS_TABLE:
                return _full_description(TableName)
            return {"Table": {
                "GlobalSecondaryIndexes": [{"IndexName": "by_doi"}, {"IndexName": "by_pubmed_id"}],
                "AttributeDefinitions": [
                    {"AttributeName": "citation_key", "AttributeType": "S"},
                    {"AttributeName": "doi", "AttributeType": "S"},
                    {"AttributeName": "pubmed_id", "AttributeType": "S"},
                ],
            }}

        ddb = _fake_ddb([tables.API_CACHE_TABLE, tables.CITATIONS_TABLE], describe)
        with patch("citeresolve.dynamo.tables.get_dynamo_resource", return_value=ddb), \
                patch("citeresolve.dynamo.tables.time.sleep"):
            created = tables.ensure_tables()

        self.assertEqual(created, [])
        ddb.create_table.assert_not_called()
        kwargs = ddb.meta.client.update_table.call_args.kwargs
        self.assertEqual(kwargs["TableName"], tables.CITATIONS_TABLE)
        self.assertEqual(kwargs["GlobalSecondaryIndexUpdates"][0]["Create"]["IndexName"], "by_arxiv_id")
        self.assertEqual(kwargs["AttributeDefinitions"], [{"AttributeName": "arxiv_id", "AttributeType": "S"}])


if __name__ == "__main__":
    unittest.main()
