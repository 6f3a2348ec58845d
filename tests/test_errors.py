from sqlalchemy.exc import OperationalError, ProgrammingError

from storefront.core.exceptions import (
    DatabaseError, ResourceNotFoundError, ServiceUnavailableError, ValidationError, fields_from_errors, wrap_db_error,
)
from storefront.core.responses import error_body, success_response


class FakeDiag:
    message_hint = "Create the table first"


class FakePgError(Exception):
    pgcode = "42P01"
    diag = FakeDiag()


def test_wrap_db_error_keeps_database_details():
    exc = ProgrammingError("SELECT 1", {}, FakePgError('relation "product_images" does not exist\nLINE 1: ...'))

    error = wrap_db_error(exc, "Failed to fetch products")

    assert isinstance(error, DatabaseError)
    assert error.status_code == 500
    assert error.to_dict() == {
        "message": 'Failed to fetch products: relation "product_images" does not exist',
        "code": "DATABASE_ERROR",
        "db_code": "42P01",
        "hint": "Create the table first",
    }


def test_wrap_db_error_detects_connectivity():
    exc = OperationalError("SELECT 1", {}, Exception("could not connect to server: Connection refused"))

    error = wrap_db_error(exc, "Failed to fetch products")

    assert isinstance(error, ServiceUnavailableError)
    assert error.status_code == 503
    assert error.message == "Failed to fetch products: database is unreachable"


def test_fields_from_errors():
    errors = [
        {"loc": ("body", "variants", 0, "color"), "msg": "Value error, Cannot be empty or just whitespace"},
        {"loc": ("body", "images"), "msg": "Value error, Add at least one image"},
        {"loc": ("body", "images"), "msg": "a second message is ignored"},
        {"loc": ("query", "limit"), "msg": "Input should be less than or equal to 100"},
        {"loc": ("body",), "msg": "Field required"},
    ]
    assert fields_from_errors(errors) == {
        "variants[0].color": "Cannot be empty or just whitespace",
        "images": "Add at least one image",
        "limit": "Input should be less than or equal to 100",
        "body": "Field required",
    }


def test_error_to_dict():
    assert ResourceNotFoundError("Order", 3).to_dict() == {"message": "Order with id 3 not found", "code": "NOT_FOUND"}
    assert ResourceNotFoundError("Payment").message == "Payment not found"
    assert ValidationError("Bad", {"x": "y"}).to_dict() == {"message": "Bad", "code": "VALIDATION_ERROR", "fields": {"x": "y"}}


def test_envelopes():
    assert success_response({"a": 1}) == {"success": True, "data": {"a": 1}}
    assert success_response([], meta={"has_more": False}) == {"success": True, "data": [], "meta": {"has_more": False}}
    assert error_body({"message": "x", "code": "Y"}) == {"success": False, "error": {"message": "x", "code": "Y"}}


def test_query_validation_uses_envelope(client):
    response = client.get("/api/products?limit=1000")
    assert response.status_code == 422
    assert response.json()["success"] is False
    assert response.json()["error"]["fields"]["limit"] == "Input should be less than or equal to 100"


def test_unknown_route_uses_envelope(client):
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": {"message": "Not Found", "code": "HTTP_404"}}


def test_health(client):
    assert client.get("/health").json() == {"success": True, "data": {"status": "healthy"}}
