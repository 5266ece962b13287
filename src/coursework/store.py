"""
Store adapters for coursework records.

`CourseworkStore` is the narrow interface the service layer depends on:
one page of a planned read, a point read by key, and a version-checked
update. `DynamoStore` talks to DynamoDB through a boto3 resource;
`InMemoryStore` keeps tables in process (local runs and tests) with the
same conditional-write semantics.
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from . import config
from ..aws_clients import REGION, dynamodb_resource
from .errors import (
    ConditionFailed,
    ResourceNotFound,
    StoreAccessDenied,
    StoreError,
    ThrottleExceeded,
)
from .planner import AccessPath, Condition, QueryPlan, evaluate

logger = logging.getLogger(__name__)

THROTTLE_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
}
ACCESS_DENIED_CODES = {"AccessDeniedException", "UnrecognizedClientException"}


@dataclass
class StorePage:
    items: List[Dict[str, Any]] = field(default_factory=list)
    continuation: Optional[Dict[str, Any]] = None


class CourseworkStore(Protocol):
    def query(self, plan: QueryPlan, start_key: Optional[Dict[str, Any]] = None) -> StorePage:
        ...

    def get_by_key(self, table: str, key: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    def conditional_update(
        self,
        table: str,
        key: Mapping[str, Any],
        expected_version: Optional[int],
        fields: Mapping[str, Any],
        absent: Sequence[str] = (),
    ) -> Dict[str, Any]:
        """
        Apply `fields` iff the record exists, every attribute in `absent` is
        missing, and its version is `expected_version` (or it has none).
        The stored version becomes `expected_version + 1`. Raises
        ConditionFailed otherwise.
        """
        ...


def _translate_client_error(e: ClientError, table: str) -> StoreError:
    code = e.response.get("Error", {}).get("Code", "")
    message = e.response.get("Error", {}).get("Message", str(e))
    if code == "ConditionalCheckFailedException":
        return ConditionFailed(message, code=code)
    if code in THROTTLE_CODES:
        return ThrottleExceeded(message, code=code)
    if code == "ResourceNotFoundException":
        logger.error(f"DynamoDB table not found: {table}")
        return ResourceNotFound(message, code=code)
    if code in ACCESS_DENIED_CODES:
        logger.error(f"Access denied to DynamoDB table: {table}")
        return StoreAccessDenied(message, code=code)
    logger.error(f"DynamoDB error on {table}: {code} {message}")
    return StoreError(message, code=code)


def _to_dynamo(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_dynamo(v) for v in value]
    return value


def _render(
    conditions: Sequence[Condition],
    prefix: str,
    names: Dict[str, str],
    values: Dict[str, Any],
) -> str:
    clauses = []
    for i, cond in enumerate(conditions):
        name = f"#{prefix}{i}"
        names[name] = cond.attr
        placeholder = f":{prefix}{i}"
        if cond.op == "exists":
            clauses.append(f"attribute_exists({name})")
        elif cond.op == "not_exists":
            clauses.append(f"attribute_not_exists({name})")
        elif cond.op == "in":
            members = []
            for j, member in enumerate(cond.value):
                values[f"{placeholder}_{j}"] = _to_dynamo(member)
                members.append(f"{placeholder}_{j}")
            clauses.append(f"{name} IN ({', '.join(members)})")
        else:
            operator = {"eq": "=", "gte": ">=", "lte": "<="}[cond.op]
            values[placeholder] = _to_dynamo(cond.value)
            clauses.append(f"{name} {operator} {placeholder}")
    return " AND ".join(clauses)


class DynamoStore:
    """CourseworkStore backed by DynamoDB tables."""

    def __init__(self, resource=None) -> None:
        self._dynamodb = resource if resource is not None else dynamodb_resource()

    def _table(self, name: str):
        return self._dynamodb.Table(name)

    def query(self, plan: QueryPlan, start_key: Optional[Dict[str, Any]] = None) -> StorePage:
        table = self._table(plan.table)
        try:
            if plan.access_path is AccessPath.PRIMARY_KEY:
                item = table.get_item(Key=plan.key).get("Item")
                if item and all(evaluate(c, item) for c in plan.filter_conditions):
                    return StorePage(items=[item])
                return StorePage()

            names: Dict[str, str] = {}
            values: Dict[str, Any] = {}
            kwargs: Dict[str, Any] = {}
            if start_key:
                kwargs["ExclusiveStartKey"] = start_key
            if plan.filter_conditions:
                kwargs["FilterExpression"] = _render(plan.filter_conditions, "f", names, values)

            if plan.access_path is AccessPath.INDEX_QUERY:
                key_conditions = [Condition(attr, "eq", value) for attr, value in plan.key_conditions]
                kwargs["KeyConditionExpression"] = _render(key_conditions, "k", names, values)
                if plan.index_name:
                    kwargs["IndexName"] = plan.index_name
                kwargs["ExpressionAttributeNames"] = names
                kwargs["ExpressionAttributeValues"] = values
                response = table.query(**kwargs)
            else:
                if names:
                    kwargs["ExpressionAttributeNames"] = names
                if values:
                    kwargs["ExpressionAttributeValues"] = values
                response = table.scan(**kwargs)
        except ClientError as e:
            raise _translate_client_error(e, plan.table) from e
        except BotoCoreError as e:
            raise StoreError(str(e)) from e

        return StorePage(
            items=response.get("Items", []),
            continuation=response.get("LastEvaluatedKey"),
        )

    def get_by_key(self, table: str, key: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            return self._table(table).get_item(Key=dict(key)).get("Item")
        except ClientError as e:
            raise _translate_client_error(e, table) from e
        except BotoCoreError as e:
            raise StoreError(str(e)) from e

    def conditional_update(
        self,
        table: str,
        key: Mapping[str, Any],
        expected_version: Optional[int],
        fields: Mapping[str, Any],
        absent: Sequence[str] = (),
    ) -> Dict[str, Any]:
        current = expected_version or 0
        names = {"#version": "version", "#pk": next(iter(key))}
        values: Dict[str, Any] = {":expected": current, ":next": current + 1}
        updates = ["#version = :next"]
        for i, (attr, value) in enumerate(fields.items()):
            names[f"#u{i}"] = attr
            values[f":u{i}"] = _to_dynamo(value)
            updates.append(f"#u{i} = :u{i}")

        guards = ["attribute_exists(#pk)"]
        for i, attr in enumerate(absent):
            names[f"#a{i}"] = attr
            guards.append(f"attribute_not_exists(#a{i})")
        guards.append("(attribute_not_exists(#version) OR #version = :expected)")

        try:
            response = self._table(table).update_item(
                Key=dict(key),
                UpdateExpression="SET " + ", ".join(updates),
                ConditionExpression=" AND ".join(guards),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            raise _translate_client_error(e, table) from e
        except BotoCoreError as e:
            raise StoreError(str(e)) from e
        return response.get("Attributes", {})


class InMemoryStore:
    """
    Process-local CourseworkStore.

    Reads are paged `page_size` candidates at a time, with filter conditions
    applied after paging, so a page may come back short (or empty) while a
    continuation token is still returned.
    """

    def __init__(
        self,
        key_schema: Optional[Mapping[str, Tuple[str, ...]]] = None,
        page_size: int = 100,
    ) -> None:
        self._lock = threading.Lock()
        self._keys: Dict[str, Tuple[str, ...]] = dict(key_schema or config.TABLE_KEYS)
        self._tables: Dict[str, Dict[Tuple[Any, ...], Dict[str, Any]]] = {
            name: {} for name in self._keys
        }
        self.page_size = page_size

    def _rows(self, table: str) -> Dict[Tuple[Any, ...], Dict[str, Any]]:
        if table not in self._tables:
            raise ResourceNotFound(f"Requested resource not found: {table}", code="ResourceNotFoundException")
        return self._tables[table]

    def _key_of(self, table: str, key: Mapping[str, Any]) -> Tuple[Any, ...]:
        try:
            return tuple(key[attr] for attr in self._keys[table])
        except KeyError as e:
            raise StoreError(f"Incomplete key for {table}: missing {e}") from e

    def put(self, table: str, item: Mapping[str, Any]) -> None:
        with self._lock:
            rows = self._rows(table)
            rows[self._key_of(table, item)] = copy.deepcopy(dict(item))

    def put_many(self, table: str, items: Sequence[Mapping[str, Any]]) -> None:
        for item in items:
            self.put(table, item)

    def query(self, plan: QueryPlan, start_key: Optional[Dict[str, Any]] = None) -> StorePage:
        with self._lock:
            rows = self._rows(plan.table)
            if plan.access_path is AccessPath.PRIMARY_KEY:
                item = rows.get(self._key_of(plan.table, plan.key))
                if item and all(evaluate(c, item) for c in plan.filter_conditions):
                    return StorePage(items=[copy.deepcopy(item)])
                return StorePage()

            candidates = [
                item
                for item in rows.values()
                if all(item.get(attr) == value for attr, value in plan.key_conditions)
            ]
            offset = int(start_key["offset"]) if start_key else 0
            window = candidates[offset : offset + self.page_size]
            next_offset = offset + len(window)
            items = [
                copy.deepcopy(item)
                for item in window
                if all(evaluate(c, item) for c in plan.filter_conditions)
            ]
            continuation = {"offset": next_offset} if next_offset < len(candidates) else None
            return StorePage(items=items, continuation=continuation)

    def get_by_key(self, table: str, key: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            item = self._rows(table).get(self._key_of(table, key))
            return copy.deepcopy(item) if item is not None else None

    def conditional_update(
        self,
        table: str,
        key: Mapping[str, Any],
        expected_version: Optional[int],
        fields: Mapping[str, Any],
        absent: Sequence[str] = (),
    ) -> Dict[str, Any]:
        current = expected_version or 0
        with self._lock:
            rows = self._rows(table)
            row_key = self._key_of(table, key)
            item = rows.get(row_key)
            if item is None:
                raise ConditionFailed("The conditional request failed", code="ConditionalCheckFailedException")
            if any(item.get(attr) is not None for attr in absent):
                raise ConditionFailed("The conditional request failed", code="ConditionalCheckFailedException")
            stored = item.get("version")
            if stored is not None and stored != current:
                raise ConditionFailed("The conditional request failed", code="ConditionalCheckFailedException")
            updated = {**item, **copy.deepcopy(dict(fields)), "version": current + 1}
            rows[row_key] = updated
            return copy.deepcopy(updated)


def build_store() -> CourseworkStore:
    """Construct the store selected by STORE_BACKEND."""
    if config.STORE_BACKEND == "memory":
        logger.info("Using in-memory coursework store")
        return InMemoryStore()
    logger.info(f"Using DynamoDB coursework store in {REGION}")
    return DynamoStore()
