# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/stormgate

"""
Form models for the registration and login pages.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, SecretStr, ValidationError, model_validator

MIN_PASSWORD_LENGTH = 8

FIELD_LABELS = {
    "given_name": "First name",
    "surname": "Last name",
    "email": "Email",
    "password": "Password",
    "password_confirm": "Password confirmation",
    "login": "Username or email",
}


class RegistrationForm(BaseModel):
    """
    Registration form submitted to the registration route.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    given_name: str = Field(..., min_length=1, max_length=255)
    surname: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: SecretStr = Field(..., min_length=MIN_PASSWORD_LENGTH)
    password_confirm: SecretStr

    @model_validator(mode="after")
    def passwords_match(self) -> "RegistrationForm":
        if self.password.get_secret_value() != self.password_confirm.get_secret_value():
            raise ValueError("Passwords do not match.")
        return self


class LoginForm(BaseModel):
    """
    Login form submitted to the login route.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    login: str = Field(..., min_length=1)
    password: SecretStr = Field(..., min_length=1)


def form_values(body: dict[str, Any], fields: tuple[str, ...]) -> dict[str, str]:
    """Picks string values of `fields` from a parsed body, ignoring nested or repeated entries."""
    return {name: value for name in fields if isinstance(value := body.get(name), str)}


def describe_errors(error: ValidationError) -> list[str]:
    """
    Turns a pydantic ValidationError into short messages fit for an HTML page.
    """
    messages: list[str] = []
    for item in error.errors():
        message = str(item.get("msg", "Invalid value"))
        message = message.removeprefix("Value error, ")
        loc = [part for part in item.get("loc", ()) if isinstance(part, str)]
        if loc:
            label = FIELD_LABELS.get(loc[0], loc[0])
            if item.get("type") == "missing":
                message = "is required"
            messages.append(f"{label}: {message}")
        else:
            messages.append(message)
    return messages
