#!/usr/bin/env python3
"""
Test request construction, dispatch and response shaping in the invocation executor.
"""

import asyncio
import json
import time
import unittest
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlsplit

import requests

from odata_catalog_lib.errors import ConfigurationError, ExecutionError, ExecutionErrorKind, ValidationError
from odata_catalog_lib.executor import InvocationExecutor, PreparedCall, encode_query_params
from odata_catalog_lib.metadata_parser import MetadataParser
from odata_catalog_lib.models import OperationKind
from odata_catalog_lib.profile import SynthesisProfile
from odata_catalog_lib.synthesizer import CatalogSynthesizer
from metadata_fixtures import V2_METADATA, V4_METADATA, v4_document

BASE = "https://example.com/odata"

V4_CATALOG = CatalogSynthesizer(SynthesisProfile.development()).synthesize(
    MetadataParser().parse(V4_METADATA), service_identity=BASE)
V2_CATALOG = CatalogSynthesizer().synthesize(MetadataParser().parse(V2_METADATA), service_identity=BASE)
DOCUMENTS_CATALOG = CatalogSynthesizer().synthesize(MetadataParser().parse(v4_document(
    '<EntityType Name="Document"><Key><PropertyRef Name="ID"/></Key>'
    '<Property Name="ID" Type="Edm.Int32" Nullable="false"/>'
    '<Property Name="Title" Type="Edm.String"/>'
    '<Property Name="Content" Type="Edm.Binary"/></EntityType>',
    '<EntitySet Name="Documents" EntityType="Demo.Document"/>',
)), service_identity=BASE)


def make_response(status_code=200, payload=None, text=None, headers=None, reason="OK"):
    response = MagicMock()
    response.status_code = status_code
    response.reason = reason
    response.headers = headers or {}
    if payload is not None:
        text = json.dumps(payload)
        response.json.return_value = payload
    else:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    response.text = text or ""
    response.content = response.text.encode("utf-8")
    return response


def no_content(headers=None):
    return make_response(status_code=204, headers=headers, reason="No Content")


class ExecutorTestCase(unittest.TestCase):

    def setUp(self):
        self.executor = InvocationExecutor(request_timeout=30)

    def execute(self, name, params=None, catalog=V4_CATALOG, **kwargs):
        descriptor = catalog.get(name)
        self.assertIsNotNone(descriptor, f"{name} not in catalog")
        return asyncio.run(self.executor.execute(descriptor, params, BASE, catalog.model, **kwargs))

    def sent(self, mock_request, index=-1):
        """(method, url, kwargs) of a recorded request."""
        call = mock_request.call_args_list[index]
        return call.args[0], call.args[1], call.kwargs


class TestQueryEncoding(unittest.TestCase):
    """Query strings use %20 for spaces and keep '$' literal."""

    def test_spaces_are_percent_encoded(self):
        encoded = encode_query_params({"$filter": "Name eq 'A B'"})
        self.assertEqual(encoded, "$filter=Name%20eq%20%27A%20B%27")

    def test_prepared_call_sorts_options(self):
        call = PreparedCall("GET", f"{BASE}/Products", query=[("$top", 5), ("$filter", "x")])
        self.assertEqual(call.full_url, f"{BASE}/Products?$filter=x&$top=5")
        self.assertEqual(PreparedCall("GET", f"{BASE}/Products").full_url, f"{BASE}/Products")


class TestValidation(ExecutorTestCase):
    """Invalid parameters are rejected before any request is sent."""

    @patch("requests.Session.request")
    def test_missing_base_address(self, mock_request):
        descriptor = V4_CATALOG.get("GetProducts")
        with self.assertRaises(ConfigurationError):
            asyncio.run(self.executor.execute(descriptor, {"ProductID": 1}, "  ", V4_CATALOG.model))
        mock_request.assert_not_called()

    @patch("requests.Session.request")
    def test_missing_key(self, mock_request):
        with self.assertRaises(ValidationError) as ctx:
            self.execute("GetProducts", {})
        self.assertEqual(ctx.exception.parameter, "ProductID")
        mock_request.assert_not_called()

    @patch("requests.Session.request")
    def test_unknown_parameter(self, mock_request):
        with self.assertRaises(ValidationError) as ctx:
            self.execute("GetProducts", {"ProductID": 1, "Colour": "red"})
        self.assertEqual(ctx.exception.parameter, "Colour")
        mock_request.assert_not_called()

    @patch("requests.Session.request")
    def test_paging_bounds(self, mock_request):
        for params in ({"top": 0}, {"top": 5000}, {"top": "many"}, {"skip": -1}, {"top": True}):
            with self.subTest(params=params):
                with self.assertRaises(ValidationError):
                    self.execute("ListProducts", params)
        mock_request.assert_not_called()

    @patch("requests.Session.request")
    def test_key_of_wrong_type(self, mock_request):
        with self.assertRaises(ValidationError):
            self.execute("GetProducts", {"ProductID": "abc"})
        mock_request.assert_not_called()

    @patch("requests.Session.request")
    def test_related_key_missing_values(self, mock_request):
        with self.assertRaises(ValidationError) as ctx:
            self.execute("SetProductsCategory", {"ProductID": 1, "relatedEntityKey": {"Other": 1}})
        self.assertEqual(ctx.exception.parameter, "relatedEntityKey")
        mock_request.assert_not_called()


class TestV4Requests(ExecutorTestCase):
    """URLs, methods and bodies for OData v4 services."""

    @patch("requests.Session.request")
    def test_read_by_key(self, mock_request):
        mock_request.return_value = make_response(payload={
            "@odata.context": f"{BASE}/$metadata#Products/$entity",
            "ProductID": 7,
            "Name": "Widget",
        })
        result = self.execute("GetProducts", {"ProductID": 7})

        method, url, kwargs = self.sent(mock_request)
        self.assertEqual((method, url), ("GET", f"{BASE}/Products(7)"))
        self.assertEqual(kwargs["timeout"], 30)
        self.assertNotIn("json", kwargs)
        self.assertEqual(result.kind, OperationKind.READ)
        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.data, {"ProductID": 7, "Name": "Widget"})
        self.assertEqual(json.loads(result.to_json()), result.data)

    @patch("requests.Session.request")
    def test_read_composite_key(self, mock_request):
        mock_request.return_value = make_response(payload={"OrderID": "A1", "LineNo": 2})
        self.execute("GetOrderLines", {"LineNo": 2, "OrderID": "A1"})
        self.assertEqual(self.sent(mock_request)[1], f"{BASE}/OrderLines(OrderID='A1',LineNo=2)")

    @patch("requests.Session.request")
    def test_list_with_top(self, mock_request):
        mock_request.return_value = make_response(payload={
            "@odata.context": f"{BASE}/$metadata#Products",
            "value": [{"ProductID": 1, "@odata.etag": "W/\"1\""}],
        })
        result = self.execute("ListProducts", {"top": 5})
        self.assertEqual(self.sent(mock_request)[1], f"{BASE}/Products?$top=5")
        self.assertEqual(result.data, {"results": [{"ProductID": 1}]})

    @patch("requests.Session.request")
    def test_list_applies_default_page_size(self, mock_request):
        mock_request.return_value = make_response(payload={"value": []})
        self.execute("ListProducts", {})
        self.assertEqual(self.sent(mock_request)[1], f"{BASE}/Products?$top=50")

    @patch("requests.Session.request")
    def test_list_leaves_out_binary_properties_by_default(self, mock_request):
        mock_request.return_value = make_response(payload={"value": []})
        self.execute("ListDocuments", {}, catalog=DOCUMENTS_CATALOG)
        self.assertEqual(self.sent(mock_request)[1], f"{BASE}/Documents?$select=ID%2CTitle&$top=50")

    @patch("requests.Session.request")
    def test_explicit_select_replaces_default(self, mock_request):
        mock_request.return_value = make_response(payload={"value": []})
        self.execute("ListDocuments", {"select": "ID,Content"}, catalog=DOCUMENTS_CATALOG)
        self.assertEqual(self.sent(mock_request)[1], f"{BASE}/Documents?$select=ID%2CContent&$top=50")

    @patch("requests.Session.request")
    def test_list_query_options(self, mock_request):
        mock_request.return_value = make_response(payload={
            "@odata.count": 42,
            "@odata.nextLink": f"{BASE}/Products?$skiptoken=5",
            "value": [{"ProductID": 1}],
        })
        result = self.execute("ListProducts", {
            "filter": "Price gt 10", "orderby": "Name", "top": "5", "skip": 10, "count": "true",
        })
        self.assertEqual(
            self.sent(mock_request)[1],
            f"{BASE}/Products?$count=true&$filter=Price%20gt%2010&$orderby=Name&$skip=10&$top=5",
        )
        self.assertEqual(result.data, {
            "results": [{"ProductID": 1}],
            "count": 42,
            "next_link": f"{BASE}/Products?$skiptoken=5",
        })

    @patch("requests.Session.request")
    def test_search(self, mock_request):
        mock_request.return_value = make_response(payload={"value": []})
        self.execute("SearchProducts", {"search": "widget"})
        self.assertEqual(self.sent(mock_request)[1], f"{BASE}/Products?$search=widget&$top=50")

    @patch("requests.Session.request")
    def test_count(self, mock_request):
        mock_request.return_value = make_response(payload={"@odata.count": 12, "value": []})
        result = self.execute("CountProducts", {"filter": "Discontinued eq false"})
        self.assertEqual(self.sent(mock_request)[1],
                         f"{BASE}/Products?$count=true&$filter=Discontinued%20eq%20false&$top=0")
        self.assertEqual(result.data, {"count": 12})

    @patch("requests.Session.request")
    def test_count_missing_from_response(self, mock_request):
        mock_request.return_value = make_response(payload={"value": []})
        with self.assertRaises(ExecutionError) as ctx:
            self.execute("CountProducts", {})
        self.assertEqual(ctx.exception.kind, ExecutionErrorKind.MALFORMED_RESPONSE)

    @patch("requests.Session.request")
    def test_create(self, mock_request):
        mock_request.return_value = make_response(status_code=201, payload={"ProductID": 9, "Name": "Widget"})
        result = self.execute("CreateProducts", {"Name": "Widget", "Price": 9.5})
        method, url, kwargs = self.sent(mock_request)
        self.assertEqual((method, url), ("POST", f"{BASE}/Products"))
        self.assertEqual(kwargs["json"], {"Name": "Widget", "Price": 9.5})
        self.assertEqual(result.status_code, 201)
        self.assertEqual(result.data, {"ProductID": 9, "Name": "Widget"})

    @patch("requests.Session.request")
    def test_create_without_content_or_location(self, mock_request):
        mock_request.return_value = no_content()
        result = self.execute("CreateProducts", {"Name": "Widget"})
        self.assertEqual(mock_request.call_count, 1)
        self.assertIn("Entity created in Products", result.data["message"])

    @patch("requests.Session.request")
    def test_create_follows_entity_id_header(self, mock_request):
        mock_request.side_effect = [
            no_content(headers={"OData-EntityId": f"{BASE}/Products(9)"}),
            make_response(payload={"ProductID": 9, "Name": "Widget"}),
        ]
        result = self.execute("CreateProducts", {"Name": "Widget"})
        self.assertEqual(self.sent(mock_request)[:2], ("GET", f"{BASE}/Products(9)"))
        self.assertEqual(result.data, {"ProductID": 9, "Name": "Widget"})

    @patch("requests.Session.request")
    def test_update_reads_entity_after_no_content(self, mock_request):
        mock_request.side_effect = [
            no_content(),
            make_response(payload={"ProductID": 7, "Price": 12.0}),
        ]
        result = self.execute("UpdateProducts", {"ProductID": 7, "Price": 12.0})

        method, url, kwargs = self.sent(mock_request, 0)
        self.assertEqual((method, url), ("PATCH", f"{BASE}/Products(7)"))
        self.assertEqual(kwargs["json"], {"Price": 12.0})
        self.assertEqual(self.sent(mock_request, 1)[:2], ("GET", f"{BASE}/Products(7)"))
        self.assertEqual(result.data, {"ProductID": 7, "Price": 12.0})

    @patch("requests.Session.request")
    def test_failed_follow_up_read_is_reported(self, mock_request):
        mock_request.side_effect = [
            no_content(),
            make_response(status_code=500, text="boom", reason="Internal Server Error"),
        ]
        result = self.execute("UpdateProducts", {"ProductID": 7, "Price": 12.0})
        self.assertIn("succeeded", result.data["message"])
        self.assertEqual(result.data["follow_up_error"]["execution_kind"], "http")
        self.assertEqual(result.data["follow_up_error"]["status_code"], 500)

    @patch("requests.Session.request")
    def test_delete(self, mock_request):
        mock_request.return_value = no_content()
        result = self.execute("DeleteProducts", {"ProductID": 7})
        self.assertEqual(self.sent(mock_request)[:2], ("DELETE", f"{BASE}/Products(7)"))
        self.assertEqual(result.data, {
            "message": "Successfully deleted entity from Products with key {'ProductID': 7}.",
            "deleted": True,
        })

    @patch("requests.Session.request")
    def test_singleton(self, mock_request):
        mock_request.return_value = make_response(payload={"SupplierID": "x", "CompanyName": "Acme"})
        self.execute("GetMe", {})
        self.assertEqual(self.sent(mock_request)[1], f"{BASE}/Me")

    @patch("requests.Session.request")
    def test_navigate_single(self, mock_request):
        mock_request.return_value = make_response(payload={"CategoryID": 3, "Name": "Tools"})
        result = self.execute("GetProductsCategory", {"ProductID": 7})
        self.assertEqual(self.sent(mock_request)[1], f"{BASE}/Products(7)/Category")
        self.assertEqual(result.data, {"CategoryID": 3, "Name": "Tools"})

    @patch("requests.Session.request")
    def test_navigate_collection(self, mock_request):
        mock_request.return_value = make_response(payload={"value": [{"ProductID": 7}]})
        result = self.execute("GetCategoriesProducts", {"CategoryID": 3, "orderby": "Name"})
        self.assertEqual(self.sent(mock_request)[1], f"{BASE}/Categories(3)/Products?$orderby=Name&$top=25")
        self.assertEqual(result.data, {"results": [{"ProductID": 7}]})

    @patch("requests.Session.request")
    def test_set_single_navigation(self, mock_request):
        mock_request.return_value = no_content()
        result = self.execute("SetProductsCategory", {"ProductID": 7, "relatedEntityKey": 3})
        method, url, kwargs = self.sent(mock_request)
        self.assertEqual((method, url), ("PUT", f"{BASE}/Products(7)/Category/$ref"))
        self.assertEqual(kwargs["json"], {"@odata.id": f"{BASE}/Categories(3)"})
        self.assertEqual(result.data, {"message": "Relationship added to Products/Category.", "success": True})

    @patch("requests.Session.request")
    def test_add_to_collection_navigation(self, mock_request):
        mock_request.return_value = no_content()
        self.execute("AddToCategoriesProducts", {"CategoryID": 3, "relatedEntityKey": {"ProductID": 7}})
        method, url, kwargs = self.sent(mock_request)
        self.assertEqual((method, url), ("POST", f"{BASE}/Categories(3)/Products/$ref"))
        self.assertEqual(kwargs["json"], {"@odata.id": f"{BASE}/Products(7)"})

    @patch("requests.Session.request")
    def test_remove_from_collection_navigation(self, mock_request):
        mock_request.return_value = no_content()
        result = self.execute("RemoveFromCategoriesProducts", {"CategoryID": 3, "relatedEntityKey": 7})
        method, url, _ = self.sent(mock_request)
        parts = urlsplit(url)
        self.assertEqual(method, "DELETE")
        self.assertEqual(f"{parts.scheme}://{parts.netloc}{parts.path}", f"{BASE}/Categories(3)/Products/$ref")
        self.assertEqual(parse_qs(parts.query), {"$id": [f"{BASE}/Products(7)"]})
        self.assertTrue(result.data["success"])

    @patch("requests.Session.request")
    def test_unset_single_navigation(self, mock_request):
        mock_request.return_value = no_content()
        self.execute("UnsetProductsCategory", {"ProductID": 7})
        self.assertEqual(self.sent(mock_request)[:2], ("DELETE", f"{BASE}/Products(7)/Category/$ref"))

    @patch("requests.Session.request")
    def test_invoke_function(self, mock_request):
        mock_request.return_value = make_response(payload={"value": [{"ProductID": 1}]})
        result = self.execute("InvokeTopProducts", {"count": 3})
        self.assertEqual(self.sent(mock_request)[:2], ("GET", f"{BASE}/TopProducts(count=3)"))
        self.assertEqual(result.data, {"results": [{"ProductID": 1}]})

    @patch("requests.Session.request")
    def test_invoke_action(self, mock_request):
        mock_request.return_value = make_response(payload={"@odata.context": "x", "value": 4})
        result = self.execute("InvokeResetPrices", {"factor": 1.1})
        method, url, kwargs = self.sent(mock_request)
        self.assertEqual((method, url), ("POST", f"{BASE}/ResetPrices"))
        self.assertEqual(kwargs["json"], {"factor": 1.1})
        self.assertEqual(result.data, 4)

    @patch("requests.Session.request")
    def test_response_metadata_can_be_kept(self, mock_request):
        self.executor = InvocationExecutor(response_metadata=True)
        mock_request.return_value = make_response(payload={"@odata.etag": "W/\"1\"", "ProductID": 7})
        result = self.execute("GetProducts", {"ProductID": 7})
        self.assertEqual(result.data, {"@odata.etag": "W/\"1\"", "ProductID": 7})


class TestV2Requests(ExecutorTestCase):
    """OData v2 literals, verbs and envelopes."""

    @patch("requests.Session.request")
    def test_int64_key_literal(self, mock_request):
        mock_request.return_value = make_response(payload={"d": {"OrderID": "5"}})
        self.execute("GetOrders", {"OrderID": 5}, catalog=V2_CATALOG)
        self.assertEqual(self.sent(mock_request)[1], f"{BASE}/Orders(5L)")

    @patch("requests.Session.request")
    def test_update_uses_merge_and_strips_metadata(self, mock_request):
        mock_request.side_effect = [
            no_content(),
            make_response(payload={"d": {
                "__metadata": {"uri": f"{BASE}/Customers('ALFKI')", "type": "NorthwindModel.Customer"},
                "CustomerID": "ALFKI",
                "CompanyName": "Alfreds",
                "Orders": {"__deferred": {"uri": f"{BASE}/Customers('ALFKI')/Orders"}},
            }}),
        ]
        result = self.execute("UpdateCustomers", {"CustomerID": "ALFKI", "CompanyName": "Alfreds"},
                              catalog=V2_CATALOG)
        method, url, kwargs = self.sent(mock_request, 0)
        self.assertEqual((method, url), ("MERGE", f"{BASE}/Customers('ALFKI')"))
        self.assertEqual(kwargs["json"], {"CompanyName": "Alfreds"})
        self.assertEqual(result.data, {"CustomerID": "ALFKI", "CompanyName": "Alfreds"})

    @patch("requests.Session.request")
    def test_list_with_inline_count(self, mock_request):
        mock_request.return_value = make_response(payload={"d": {
            "results": [{"__metadata": {"type": "NorthwindModel.Order"}, "OrderID": "1"}],
            "__count": "10",
            "__next": f"{BASE}/Orders?$skiptoken=1",
        }})
        result = self.execute("ListOrders", {"top": 2, "count": True}, catalog=V2_CATALOG)
        self.assertEqual(self.sent(mock_request)[1], f"{BASE}/Orders?$inlinecount=allpages&$top=2")
        self.assertEqual(result.data, {
            "results": [{"OrderID": "1"}],
            "count": 10,
            "next_link": f"{BASE}/Orders?$skiptoken=1",
        })

    @patch("requests.Session.request")
    def test_count_uses_inline_count(self, mock_request):
        mock_request.return_value = make_response(payload={"d": {"results": [], "__count": "3"}})
        result = self.execute("CountOrders", {}, catalog=V2_CATALOG)
        self.assertEqual(self.sent(mock_request)[1], f"{BASE}/Orders?$inlinecount=allpages&$top=0")
        self.assertEqual(result.data, {"count": 3})

    @patch("requests.Session.request")
    def test_links_for_relationships(self, mock_request):
        mock_request.return_value = no_content()
        self.execute("AddToCustomersOrders", {"CustomerID": "ALFKI", "relatedEntityKey": 5}, catalog=V2_CATALOG)
        method, url, kwargs = self.sent(mock_request)
        self.assertEqual((method, url), ("POST", f"{BASE}/Customers('ALFKI')/$links/Orders"))
        self.assertEqual(kwargs["json"], {"uri": f"{BASE}/Orders(5L)"})

        self.execute("RemoveFromCustomersOrders", {"CustomerID": "ALFKI", "relatedEntityKey": 5},
                     catalog=V2_CATALOG)
        self.assertEqual(self.sent(mock_request)[:2], ("DELETE", f"{BASE}/Customers('ALFKI')/$links/Orders(5L)"))

    @patch("requests.Session.request")
    def test_function_import_parameters_in_query(self, mock_request):
        mock_request.return_value = make_response(payload={"d": {"results": []}})
        self.execute("InvokeGetOrdersByDate", {"from": "2024-01-01T00:00:00", "limit": 10}, catalog=V2_CATALOG)
        method, url, _ = self.sent(mock_request)
        parts = urlsplit(url)
        self.assertEqual(method, "GET")
        self.assertEqual(parts.path, "/odata/GetOrdersByDate")
        self.assertEqual(parse_qs(parts.query), {"from": ["datetime'2024-01-01T00:00:00'"], "limit": ["10"]})


class TestErrors(ExecutorTestCase):
    """Upstream failures surface as ExecutionError."""

    @patch("requests.Session.request")
    def test_http_error_with_odata_body(self, mock_request):
        body = {"error": {"code": "NotFound", "message": "No product with key 99"}}
        mock_request.return_value = make_response(status_code=404, payload=body, reason="Not Found")
        with self.assertRaises(ExecutionError) as ctx:
            self.execute("GetProducts", {"ProductID": 99})
        error = ctx.exception
        self.assertEqual(error.kind, ExecutionErrorKind.HTTP)
        self.assertEqual(error.status_code, 404)
        self.assertEqual(error.error_body, body)
        self.assertIn("NotFound: No product with key 99", str(error))

    @patch("requests.Session.request")
    def test_http_error_with_v2_message_object(self, mock_request):
        body = {"error": {"code": "SY/530", "message": {"lang": "en", "value": "Customer locked"}}}
        mock_request.return_value = make_response(status_code=400, payload=body, reason="Bad Request")
        with self.assertRaises(ExecutionError) as ctx:
            self.execute("GetCustomers", {"CustomerID": "ALFKI"}, catalog=V2_CATALOG)
        self.assertIn("SY/530: Customer locked", ctx.exception.message)

    @patch("requests.Session.request")
    def test_http_error_with_text_body(self, mock_request):
        mock_request.return_value = make_response(status_code=503, text="", reason="Service Unavailable")
        with self.assertRaises(ExecutionError) as ctx:
            self.execute("ListProducts", {})
        self.assertIn("HTTP 503: Service Unavailable", ctx.exception.message)
        self.assertIsNone(ctx.exception.error_body)

    @patch("requests.Session.request")
    def test_network_error(self, mock_request):
        mock_request.side_effect = requests.exceptions.ConnectionError("connection refused")
        with self.assertRaises(ExecutionError) as ctx:
            self.execute("ListProducts", {})
        self.assertEqual(ctx.exception.kind, ExecutionErrorKind.NETWORK)
        self.assertIsNone(ctx.exception.status_code)

    @patch("requests.Session.request")
    def test_malformed_body(self, mock_request):
        mock_request.return_value = make_response(text="<html>gateway</html>")
        with self.assertRaises(ExecutionError) as ctx:
            self.execute("ListProducts", {})
        self.assertEqual(ctx.exception.kind, ExecutionErrorKind.MALFORMED_RESPONSE)
        self.assertEqual(ctx.exception.status_code, 200)

    def test_error_to_dict(self):
        error = ExecutionError("failed", kind=ExecutionErrorKind.HTTP, status_code=500, error_body="x")
        self.assertEqual(error.to_dict(), {
            "kind": "execution_error",
            "message": "failed",
            "execution_kind": "http",
            "status_code": 500,
            "error_body": "x",
        })


class TestCancellation(ExecutorTestCase):
    """Cancellation and timeouts stop waiting for the service."""

    def slow_request(self, *args, **kwargs):
        time.sleep(0.5)
        return make_response(payload={"value": []})

    @patch("requests.Session.request")
    def test_cancelled_before_start(self, mock_request):
        async def run():
            event = asyncio.Event()
            event.set()
            return await self.executor.execute(V4_CATALOG.get("ListProducts"), {}, BASE, V4_CATALOG.model,
                                               cancel_event=event)

        with self.assertRaises(ExecutionError) as ctx:
            asyncio.run(run())
        self.assertTrue(ctx.exception.cancelled)
        mock_request.assert_not_called()

    @patch("requests.Session.request")
    def test_cancelled_in_flight(self, mock_request):
        mock_request.side_effect = self.slow_request

        async def run():
            event = asyncio.Event()
            asyncio.get_running_loop().call_later(0.05, event.set)
            return await self.executor.execute(V4_CATALOG.get("ListProducts"), {}, BASE, V4_CATALOG.model,
                                               cancel_event=event)

        started = time.monotonic()
        with self.assertRaises(ExecutionError) as ctx:
            asyncio.run(run())
        self.assertEqual(ctx.exception.kind, ExecutionErrorKind.CANCELLED)
        self.assertIn("was cancelled", ctx.exception.message)
        self.assertLess(time.monotonic() - started, 5)

    @patch("requests.Session.request")
    def test_timeout(self, mock_request):
        mock_request.side_effect = self.slow_request
        with self.assertRaises(ExecutionError) as ctx:
            self.execute("ListProducts", {}, timeout=0.05)
        self.assertTrue(ctx.exception.cancelled)
        self.assertIn("timed out", ctx.exception.message)


if __name__ == "__main__":
    unittest.main()
