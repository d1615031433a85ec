"""
Fakes and factories for story backend tests.

FakeDynamoTable understands exactly the subset of the DynamoDB Table API
used by DynamoDBIndex: conditional puts, SET/REMOVE updates, paginated
scans and key-condition queries on the author index.
"""

from __future__ import annotations

import copy
import re
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from thousand_core.domain.stories import CreateStoryInput


def make_input(**overrides) -> CreateStoryInput:
    """A valid CreateStoryInput with a fresh storage key."""
    data = {
        "title": "Digital Ghosts",
        "author_did": "did:plc:alice",
        "author_name": "Alice",
        "storage_key": f"stories/did-plc-alice/{uuid.uuid4()}.md",
        "word_count": 975,
        "excerpt": "A haunted server room at midnight.",
        "tags": ["fiction"],
    }
    data.update(overrides)
    return CreateStoryInput(**data)


def day(n: int) -> datetime:
    return datetime(2024, 1, n, 12, 0, tzinfo=timezone.utc)


def client_error(code: str, operation: str = "PutItem") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"fake {code}"}}, operation)


class FakeDynamoTable:
    def __init__(self, page_size: int | None = None):
        self.items: dict[tuple[str, str], dict[str, Any]] = {}
        self.page_size = page_size
        self.loaded = False
        self.calls: list[tuple[str, dict]] = []

    # -- table lifecycle --

    def load(self) -> None:
        self.loaded = True

    def wait_until_exists(self) -> None:
        pass

    # -- item operations --

    def put_item(self, Item: dict, ConditionExpression: str | None = None) -> dict:
        self.calls.append(("put_item", {"Item": Item, "ConditionExpression": ConditionExpression}))
        key = (Item["pk"], Item["sk"])
        if ConditionExpression == "attribute_not_exists(pk)" and key in self.items:
            raise client_error("ConditionalCheckFailedException", "PutItem")
        self.items[key] = copy.deepcopy(Item)
        return {}

    def get_item(self, Key: dict) -> dict:
        self.calls.append(("get_item", {"Key": Key}))
        item = self.items.get((Key["pk"], Key["sk"]))
        return {"Item": copy.deepcopy(item)} if item else {}

    def delete_item(self, Key: dict, ReturnValues: str = "NONE") -> dict:
        self.calls.append(("delete_item", {"Key": Key}))
        old = self.items.pop((Key["pk"], Key["sk"]), None)
        if old is not None and ReturnValues == "ALL_OLD":
            return {"Attributes": old}
        return {}

    def update_item(
        self,
        Key: dict,
        UpdateExpression: str,
        ExpressionAttributeNames: dict,
        ExpressionAttributeValues: dict,
        ConditionExpression: str | None = None,
        ReturnValues: str = "NONE",
    ) -> dict:
        self.calls.append(("update_item", {"Key": Key, "UpdateExpression": UpdateExpression}))
        key = (Key["pk"], Key["sk"])
        if ConditionExpression == "attribute_exists(pk)" and key not in self.items:
            raise client_error("ConditionalCheckFailedException", "UpdateItem")

        item = self.items.setdefault(key, dict(Key))
        match = re.fullmatch(r"SET (.+?)(?: REMOVE (.+))?", UpdateExpression)
        for assignment in match.group(1).split(", "):
            name, placeholder = assignment.split(" = ")
            item[ExpressionAttributeNames[name]] = copy.deepcopy(ExpressionAttributeValues[placeholder])
        if match.group(2):
            for name in match.group(2).split(", "):
                item.pop(ExpressionAttributeNames[name], None)

        return {"Attributes": copy.deepcopy(item)} if ReturnValues == "ALL_NEW" else {}

    # -- reads --

    def _page(self, items: list[dict], start_key: dict | None) -> dict:
        start = 0
        if start_key:
            keys = [(i["pk"], i["sk"]) for i in items]
            start = keys.index((start_key["pk"], start_key["sk"])) + 1
        end = len(items) if self.page_size is None else start + self.page_size
        page = items[start:end]
        response: dict[str, Any] = {"Items": copy.deepcopy(page), "Count": len(page)}
        if end < len(items):
            response["LastEvaluatedKey"] = {"pk": page[-1]["pk"], "sk": page[-1]["sk"]}
        return response

    def scan(self, ExclusiveStartKey: dict | None = None) -> dict:
        self.calls.append(("scan", {"ExclusiveStartKey": ExclusiveStartKey}))
        ordered = sorted(self.items.values(), key=lambda i: (i["pk"], i["sk"]))
        return self._page(ordered, ExclusiveStartKey)

    def query(
        self,
        IndexName: str,
        KeyConditionExpression: Any,
        Select: str | None = None,
        ExclusiveStartKey: dict | None = None,
    ) -> dict:
        self.calls.append(("query", {"IndexName": IndexName, "Select": Select}))
        expression = KeyConditionExpression.get_expression()
        attribute, value = expression["values"][0].name, expression["values"][1]
        matches = sorted(
            (i for i in self.items.values() if i.get(attribute) == value),
            key=lambda i: (i["gsi1sk"], i["pk"]),
        )
        response = self._page(matches, ExclusiveStartKey)
        if Select == "COUNT":
            response.pop("Items")
        return response


class FakeDynamoResource:
    """Stands in for a boto3 DynamoDB service resource."""

    def __init__(self, table: FakeDynamoTable | None = None, missing: bool = False):
        self.table = table or FakeDynamoTable()
        self.missing = missing
        self.created_with: dict | None = None
        self.meta = SimpleNamespace(client=MagicMock())

    def Table(self, name: str) -> FakeDynamoTable:
        if self.missing:
            missing_table = MagicMock()
            missing_table.load.side_effect = client_error("ResourceNotFoundException", "DescribeTable")
            return missing_table
        return self.table

    def create_table(self, **kwargs) -> FakeDynamoTable:
        self.created_with = kwargs
        self.missing = False
        return self.table
