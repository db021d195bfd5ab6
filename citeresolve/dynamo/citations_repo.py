from __future__ import annotations

import datetime as dt
import math
from decimal import Decimal
from typing import Any, Dict, Optional

from boto3.dynamodb.conditions import Key

from ..logging_setup import get_logger, with_extras
from ..models import CitationRecord
from ..normalizer import normalize_arxiv_id, normalize_doi
from ..store import citation_id_for
from .client import get_dynamo_resource
from .tables import CITATIONS_TABLE

log = get_logger(__name__)

# attributes written by upsert besides the key and timestamps
_DATA_FIELDS = (
    "citation_id", "title", "authors", "year", "journal", "volume", "issue", "pages",
    "doi", "pubmed_id", "arxiv_id", "abstract", "url", "source_api",
    "confidence_score", "verification_status", "last_verified_at",
)


def _to_dynamo_value(value: Any) -> Any:
    """Floats -> Decimal (non-finite -> None), recursively; tuples become lists."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_dynamo_value(v) for v in value]
    return value


def _from_dynamo_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo_value(v) for v in value]
    return value


class CitationsRepo:
    """DynamoDB-backed record store for verified citations, keyed by citation_key."""

    def __init__(self, table_name: Optional[str] = None) -> None:
        ddb = get_dynamo_resource()
        self.t_citations = ddb.Table(table_name or CITATIONS_TABLE)

    def get(self, citation_key: str) -> Optional[CitationRecord]:
        item = self.t_citations.get_item(Key={"citation_key": citation_key}).get("Item")
        return CitationRecord.from_dict(_from_dynamo_value(item)) if item else None

    def _query_index(self, index: str, attr: str, value: str) -> Optional[CitationRecord]:
        resp = self.t_citations.query(
            IndexName=index,
            KeyConditionExpression=Key(attr).eq(value),
            Limit=1,
        )
        items = resp.get("Items") or []
        return CitationRecord.from_dict(_from_dynamo_value(items[0])) if items else None

    def find_by_identifier(self, *, doi=None, pubmed_id=None, arxiv_id=None) -> Optional[CitationRecord]:
        probes = (
            ("by_doi", "doi", normalize_doi(doi)),
            ("by_pubmed_id", "pubmed_id", str(pubmed_id).strip() if pubmed_id else None),
            ("by_arxiv_id", "arxiv_id", normalize_arxiv_id(arxiv_id)),
        )
        for index, attr, value in probes:
            if not value:
                continue
            hit = self._query_index(index, attr, value)
            if hit:
                return hit
        return None

    def upsert(self, data: CitationRecord) -> CitationRecord:
        """
        Single update_item keyed by citation_key: concurrent upserts of the same
        identity converge on one item and created_at is written only once.
        """
        now = dt.datetime.now(dt.timezone.utc).isoformat()
        values = data.to_dict()
        values["citation_id"] = values.get("citation_id") or citation_id_for(data.citation_key)
        values["doi"] = normalize_doi(values.get("doi"))
        values["arxiv_id"] = normalize_arxiv_id(values.get("arxiv_id"))
        values["last_verified_at"] = values.get("last_verified_at") or now

        sets = ["updated_at = :now", "created_at = if_not_exists(created_at, :created)"]
        removes = []
        names: Dict[str, str] = {}
        attr_values: Dict[str, Any] = {":now": now, ":created": data.created_at or now}
        for idx, field in enumerate(_DATA_FIELDS):
            val = _to_dynamo_value(values.get(field))
            names[f"#f{idx}"] = field
            if val is None or val == "" or val == []:
                # GSI key attributes must not be stored empty
                removes.append(f"#f{idx}")
            else:
                sets.append(f"#f{idx} = :v{idx}")
                attr_values[f":v{idx}"] = val

        expr = "SET " + ", ".join(sets)
        if removes:
            expr += " REMOVE " + ", ".join(removes)
        resp = self.t_citations.update_item(
            Key={"citation_key": data.citation_key},
            UpdateExpression=expr,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=attr_values,
            ReturnValues="ALL_NEW",
        )
        with_extras(log, citation_key=data.citation_key, source=data.source_api).info("citation upserted")
        attrs = resp.get("Attributes")
        return CitationRecord.from_dict(_from_dynamo_value(attrs)) if attrs else data
