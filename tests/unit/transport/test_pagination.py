"""Tests for continuation-token pagination."""

from __future__ import annotations

import pytest

from strata.core.exceptions import MalformedResponseError
from strata.models.request import ApiCall
from strata.provisioning.cloudcontrol_backend import ListResourcesInput
from strata.transport.pagination import iter_pages, paginate
from tests.fakes.http import ScriptedTransport, json_response


class TestPaginate:
    @pytest.mark.asyncio
    async def test_three_pages_in_order(self, make_dispatcher):
        transport = ScriptedTransport(
            json_response(200, {"Items": [1, 2], "NextToken": "t1"}),
            json_response(200, {"Items": [3], "NextToken": "t2"}),
            json_response(200, {"Items": [4, 5]}),
        )
        call = ApiCall(service="dynamodb", region="us-east-1", action="Scan",
                       payload={"TableName": "t"})
        items = await paginate(make_dispatcher(transport), call, "Items")
        assert items == [1, 2, 3, 4, 5]
        assert transport.bodies() == [
            {"TableName": "t"},
            {"TableName": "t", "NextToken": "t1"},
            {"TableName": "t", "NextToken": "t2"},
        ]

    @pytest.mark.asyncio
    async def test_model_payload_and_distinct_input_key(self, make_dispatcher):
        transport = ScriptedTransport(
            json_response(200, {"ResourceDescriptions": [{"Identifier": "a"}], "NextToken": "n"}),
            json_response(200, {"ResourceDescriptions": [{"Identifier": "b"}]}),
        )
        call = ApiCall(service="cloudcontrolapi", region="us-east-1", action="ListResources",
                       payload=ListResourcesInput(type_name="AWS::S3::Bucket"))
        items = await paginate(make_dispatcher(transport), call, "ResourceDescriptions",
                               input_token_key="StartToken")
        assert [i["Identifier"] for i in items] == ["a", "b"]
        assert transport.bodies()[1] == {"TypeName": "AWS::S3::Bucket", "StartToken": "n"}

    @pytest.mark.asyncio
    async def test_single_page(self, make_dispatcher):
        transport = ScriptedTransport(json_response(200, {"Items": []}))
        call = ApiCall(service="dynamodb", region="us-east-1", action="Scan")
        pages = [page async for page in iter_pages(make_dispatcher(transport), call)]
        assert pages == [{"Items": []}]

    @pytest.mark.asyncio
    async def test_repeated_token_stops_with_error(self, make_dispatcher):
        transport = ScriptedTransport(
            json_response(200, {"Items": [1], "NextToken": "t1"}),
            json_response(200, {"Items": [2], "NextToken": "t2"}),
            json_response(200, {"Items": [3], "NextToken": "t1"}),
        )
        call = ApiCall(service="dynamodb", region="us-east-1", action="Scan")
        with pytest.raises(MalformedResponseError, match="t1"):
            await paginate(make_dispatcher(transport), call, "Items")
        assert len(transport.requests) == 3
