import os
import time

from botocore.exceptions import ClientError

from .client import get_dynamo_resource

API_CACHE_TABLE = os.environ.get("DDB_TABLE_API_CACHE", "api_cache")
CITATIONS_TABLE = os.environ.get("DDB_TABLE_CITATIONS", "citations")

_THROUGHPUT = {"ReadCapacityUnits": 5, "WriteCapacityUnits": 5}


def _gsi(name: str, attr: str) -> dict:
    return {
        "IndexName": name,
        "KeySchema": [{"AttributeName": attr, "KeyType": "HASH"}],
        "Projection": {"ProjectionType": "ALL"},
        "ProvisionedThroughput": dict(_THROUGHPUT),
    }


TABLES = {
    API_CACHE_TABLE: {
        "KeySchema": [{"AttributeName": "cache_key", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": "cache_key", "AttributeType": "S"}],
        "ProvisionedThroughput": dict(_THROUGHPUT),
    },
    CITATIONS_TABLE: {
        "KeySchema": [{"AttributeName": "citation_key", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "citation_key", "AttributeType": "S"},
            {"AttributeName": "doi", "AttributeType": "S"},
            {"AttributeName": "pubmed_id", "AttributeType": "S"},
            {"AttributeName": "arxiv_id", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            _gsi("by_doi", "doi"),
            _gsi("by_pubmed_id", "pubmed_id"),
            _gsi("by_arxiv_id", "arxiv_id"),
        ],
        "ProvisionedThroughput": dict(_THROUGHPUT),
    },
}

# tables whose items expire through DynamoDB TTL
TTL_ATTRIBUTES = {API_CACHE_TABLE: "expires_at"}


def ensure_tables():
    ddb = get_dynamo_resource()
    existing = {t.name for t in ddb.tables.all()}
    created = []
    for name, spec in TABLES.items():
        if name not in existing:
            try:
                ddb.create_table(TableName=name, **spec).wait_until_exists()
                created.append(name)
            except ClientError as e:
                if e.response["Error"]["Code"] != "ResourceInUseException":
                    raise
        _ensure_gsis(ddb, name, spec)
        _ensure_ttl(ddb, name)
    return created


def _ensure_ttl(ddb, table_name: str) -> None:
    attr = TTL_ATTRIBUTES.get(table_name)
    if not attr:
        return
    client = ddb.meta.client
    try:
        desc = client.describe_time_to_live(TableName=table_name).get("TimeToLiveDescription") or {}
        if desc.get("TimeToLiveStatus") in {"ENABLED", "ENABLING"}:
            return
        client.update_time_to_live(
            TableName=table_name,
            TimeToLiveSpecification={"Enabled": True, "AttributeName": attr},
        )
    except ClientError as e:
        # dynamodb-local accepts the call but some versions reject re-enabling
        if e.response.get("Error", {}).get("Code") != "ValidationException":
            raise


def _ensure_gsis(ddb, table_name: str, spec: dict) -> None:
    """Create any GSI from TABLES[table_name] missing on an existing table."""
    want = spec.get("GlobalSecondaryIndexes", [])
    if not want:
        return
    client = ddb.meta.client
    try:
        desc = client.describe_table(TableName=table_name)["Table"]
    except ClientError:
        return

    existing = {g["IndexName"] for g in (desc.get("GlobalSecondaryIndexes") or [])}
    missing = [g for g in want if g["IndexName"] not in existing]
    if not missing:
        return

    have_attrs = {a["AttributeName"] for a in (desc.get("AttributeDefinitions") or [])}
    spec_attrs = {a["AttributeName"]: a["AttributeType"] for a in spec.get("AttributeDefinitions", [])}

    for gsi in missing:
        new_defs = [
            {"AttributeName": k["AttributeName"], "AttributeType": spec_attrs[k["AttributeName"]]}
            for k in gsi.get("KeySchema", [])
            if k["AttributeName"] not in have_attrs and k["AttributeName"] in spec_attrs
        ]
        params = {"TableName": table_name, "GlobalSecondaryIndexUpdates": [{"Create": gsi}]}
        if new_defs:
            params["AttributeDefinitions"] = new_defs
        try:
            client.update_table(**params)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in {"ResourceInUseException", "ValidationException"}:
                continue
            raise
        time.sleep(0.2)
