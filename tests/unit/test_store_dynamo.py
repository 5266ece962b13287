"""
Unit tests for the DynamoDB store adapter
"""
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from src.coursework import config
from src.coursework.errors import (
    ConditionFailed,
    ResourceNotFound,
    StoreAccessDenied,
    StoreError,
    ThrottleExceeded,
)
from src.coursework.filters import AssignmentFilter
from src.coursework.planner import AccessPath, Condition, QueryPlan, plan_assignment_query
from src.coursework.principal import Role
from src.coursework.store import DynamoStore, build_store


def _client_error(code, operation="Query"):
    return ClientError({"Error": {"Code": code, "Message": f"{code} raised"}}, operation)


@pytest.fixture
def table():
    return MagicMock()


@pytest.fixture
def dynamo(table):
    resource = MagicMock()
    resource.Table.return_value = table
    return DynamoStore(resource=resource)


class TestDynamoQuery:
    """Test DynamoStore.query"""

    def test_index_query_expressions(self, dynamo, table):
        """Test key and filter conditions render with placeholders"""
        table.query.return_value = {"Items": [{"assignmentId": "a-1"}], "LastEvaluatedKey": {"assignmentId": "a-1"}}
        plan = QueryPlan(
            access_path=AccessPath.INDEX_QUERY,
            table=config.ASSIGNMENTS_TABLE,
            index_name=config.ASSIGNMENT_COURSE_INDEX,
            key_conditions=(("courseId", "c-1"), ("status", "published")),
            filter_conditions=(Condition("type", "in", ("quiz", "project")),),
        )

        page = dynamo.query(plan, {"assignmentId": "a-0"})

        kwargs = table.query.call_args.kwargs
        assert kwargs["IndexName"] == "CourseStatusIndex"
        assert kwargs["KeyConditionExpression"] == "#k0 = :k0 AND #k1 = :k1"
        assert kwargs["FilterExpression"] == "#f0 IN (:f0_0, :f0_1)"
        assert kwargs["ExpressionAttributeNames"] == {"#k0": "courseId", "#k1": "status", "#f0": "type"}
        assert kwargs["ExpressionAttributeValues"] == {
            ":k0": "c-1", ":k1": "published", ":f0_0": "quiz", ":f0_1": "project",
        }
        assert kwargs["ExclusiveStartKey"] == {"assignmentId": "a-0"}
        assert page.items == [{"assignmentId": "a-1"}]
        assert page.continuation == {"assignmentId": "a-1"}

    def test_restricted_course_query_filters_no_key_attribute(self, dynamo, table):
        """Test a student's course index query sends no FilterExpression on status"""
        table.query.return_value = {"Items": []}
        plan = plan_assignment_query(AssignmentFilter(course_id="c-1"), Role.RESTRICTED)

        dynamo.query(plan)

        kwargs = table.query.call_args.kwargs
        assert kwargs["IndexName"] == "CourseStatusIndex"
        assert kwargs["KeyConditionExpression"] == "#k0 = :k0"
        assert "FilterExpression" not in kwargs
        assert "status" not in kwargs["ExpressionAttributeNames"].values()

    def test_base_table_query_has_no_index(self, dynamo, table):
        """Test a partition query against the base table omits IndexName"""
        table.query.return_value = {"Items": []}
        plan = QueryPlan(
            access_path=AccessPath.INDEX_QUERY,
            table=config.SUBMISSIONS_TABLE,
            key_conditions=(("assignmentId", "a-1"),),
        )
        page = dynamo.query(plan)
        assert "IndexName" not in table.query.call_args.kwargs
        assert "ExclusiveStartKey" not in table.query.call_args.kwargs
        assert page.continuation is None

    def test_scan_with_exists_filter(self, dynamo, table):
        """Test scans render existence checks without values"""
        table.scan.return_value = {"Items": []}
        plan = QueryPlan(
            access_path=AccessPath.SCAN,
            table=config.SUBMISSIONS_TABLE,
            filter_conditions=(Condition("grade", "exists"),),
        )
        dynamo.query(plan)
        kwargs = table.scan.call_args.kwargs
        assert kwargs["FilterExpression"] == "attribute_exists(#f0)"
        assert kwargs["ExpressionAttributeNames"] == {"#f0": "grade"}
        assert "ExpressionAttributeValues" not in kwargs

    def test_unfiltered_scan(self, dynamo, table):
        """Test a bare scan passes no expressions"""
        table.scan.return_value = {"Items": [{"assignmentId": "a-1"}]}
        dynamo.query(QueryPlan(access_path=AccessPath.SCAN, table=config.ASSIGNMENTS_TABLE))
        assert table.scan.call_args.kwargs == {}

    def test_primary_key_applies_filters(self, dynamo, table):
        """Test point reads honour filter conditions"""
        table.get_item.return_value = {"Item": {"assignmentId": "a-1", "userId": "s-1", "courseId": "c-9"}}
        plan = QueryPlan(
            access_path=AccessPath.PRIMARY_KEY,
            table=config.SUBMISSIONS_TABLE,
            key_conditions=(("assignmentId", "a-1"), ("userId", "s-1")),
            filter_conditions=(Condition("courseId", "in", ("c-1",)),),
        )
        assert dynamo.query(plan).items == []
        table.get_item.assert_called_once_with(Key={"assignmentId": "a-1", "userId": "s-1"})

    @pytest.mark.parametrize(
        "code,expected",
        [
            ("ResourceNotFoundException", ResourceNotFound),
            ("AccessDeniedException", StoreAccessDenied),
            ("ProvisionedThroughputExceededException", ThrottleExceeded),
            ("ThrottlingException", ThrottleExceeded),
            ("InternalServerError", StoreError),
        ],
    )
    def test_client_errors_translated(self, dynamo, table, code, expected):
        """Test DynamoDB error codes map onto store errors"""
        table.scan.side_effect = _client_error(code, "Scan")
        with pytest.raises(expected) as exc_info:
            dynamo.query(QueryPlan(access_path=AccessPath.SCAN, table=config.ASSIGNMENTS_TABLE))
        assert exc_info.value.code == code

    def test_connection_error(self, dynamo, table):
        """Test botocore transport failures become StoreError"""
        table.get_item.side_effect = EndpointConnectionError(endpoint_url="http://localhost:4566")
        with pytest.raises(StoreError):
            dynamo.get_by_key(config.COURSES_TABLE, {"courseId": "c-1"})


class TestDynamoConditionalUpdate:
    """Test DynamoStore.conditional_update"""

    KEY = {"assignmentId": "a-1", "userId": "s-1"}

    def test_update_expression(self, dynamo, table):
        """Test the version guard and SET clause"""
        table.update_item.return_value = {"Attributes": {"version": 4, "grade": Decimal("85.5")}}

        result = dynamo.conditional_update(
            config.SUBMISSIONS_TABLE, self.KEY, 3, {"grade": 85.5, "feedback": "ok"}, ("grade",)
        )

        kwargs = table.update_item.call_args.kwargs
        assert kwargs["Key"] == self.KEY
        assert kwargs["UpdateExpression"] == "SET #version = :next, #u0 = :u0, #u1 = :u1"
        assert kwargs["ConditionExpression"] == (
            "attribute_exists(#pk) AND attribute_not_exists(#a0) AND "
            "(attribute_not_exists(#version) OR #version = :expected)"
        )
        assert kwargs["ExpressionAttributeNames"] == {
            "#version": "version", "#pk": "assignmentId", "#u0": "grade", "#u1": "feedback", "#a0": "grade",
        }
        values = kwargs["ExpressionAttributeValues"]
        assert values[":expected"] == 3
        assert values[":next"] == 4
        assert values[":u0"] == Decimal("85.5")
        assert kwargs["ReturnValues"] == "ALL_NEW"
        assert result["version"] == 4

    def test_unversioned_expectation(self, dynamo, table):
        """Test a missing version is written as version 1"""
        table.update_item.return_value = {"Attributes": {"version": 1}}
        dynamo.conditional_update(config.SUBMISSIONS_TABLE, self.KEY, None, {"grade": 90})
        values = table.update_item.call_args.kwargs["ExpressionAttributeValues"]
        assert values[":expected"] == 0
        assert values[":next"] == 1

    def test_condition_failure(self, dynamo, table):
        """Test a failed condition raises ConditionFailed"""
        table.update_item.side_effect = _client_error("ConditionalCheckFailedException", "UpdateItem")
        with pytest.raises(ConditionFailed):
            dynamo.conditional_update(config.SUBMISSIONS_TABLE, self.KEY, 1, {"grade": 90})


class TestBuildDynamoStore:
    """Test build_store for the DynamoDB backend"""

    @patch("src.coursework.store.dynamodb_resource")
    def test_dynamodb_backend(self, mock_resource, monkeypatch):
        """Test the default backend is DynamoDB"""
        monkeypatch.setattr(config, "STORE_BACKEND", "dynamodb")
        assert isinstance(build_store(), DynamoStore)
        mock_resource.assert_called_once()
