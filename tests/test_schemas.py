import pytest
from pydantic import ValidationError

from sessionauth.api.schemas import (
    LoginRequest,
    RegisterRequest,
    ResendVerificationRequest,
    UpdateUserRequest,
)


def test_register_normalises_email():
    body = RegisterRequest(email="  Bob@Example.COM ", name="Bob", password="hunter22")
    assert body.email == "bob@example.com"


@pytest.mark.parametrize("model", [LoginRequest, ResendVerificationRequest])
def test_email_identifier_matches_registered_form(model):
    extra = {"password": "hunter22"} if model is LoginRequest else {}
    registered = RegisterRequest(email="Bob@Example.COM", name="Bob", password="hunter22").email

    body = model(identifier=" Bob@Example.COM ", **extra)

    assert body.identifier == registered


def test_username_identifier_keeps_case():
    assert LoginRequest(identifier="BobSmith", password="x").identifier == "BobSmith"


def test_register_rejects_bad_email():
    with pytest.raises(ValidationError):
        RegisterRequest(email="bob@localhost", name="Bob", password="hunter22")


def test_update_forbids_protected_fields():
    with pytest.raises(ValidationError):
        UpdateUserRequest(email="evil@example.com")
