"""
Account descriptors.

One validated, immutable model per credential shape, selected by the
``company`` field. Bad configuration is rejected when the file is loaded.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Annotated, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class _AccountBase(BaseModel, ABC):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    label: Optional[str] = Field(default=None, description="Friendly name for logs")

    @property
    @abstractmethod
    def login(self) -> str:
        """Non-secret login used to tell accounts of one company apart."""

    @property
    def key(self) -> str:
        """Stable per-account key for breakers and logs; never contains secrets."""
        return f"{self.company}:{self.login}"  # type: ignore[attr-defined]

    @property
    def display_name(self) -> str:
        return self.label or self.key

    @abstractmethod
    def credentials(self) -> Dict[str, str]:
        """Credentials in the shape the scraper expects, secrets revealed."""


class UsernamePasswordAccount(_AccountBase):
    company: Literal[
        "visaCal",
        "max",
        "leumi",
        "mizrahi",
        "otsarHahayal",
        "beinleumi",
        "massad",
        "yahav",
        "pagi",
        "oneZero",
    ]
    username: str = Field(min_length=1)
    password: SecretStr

    @property
    def login(self) -> str:
        return self.username

    def credentials(self) -> Dict[str, str]:
        return {"username": self.username, "password": self.password.get_secret_value()}


class UserCodeAccount(_AccountBase):
    company: Literal["hapoalim"]
    user_code: str = Field(alias="userCode", min_length=1)
    password: SecretStr

    @property
    def login(self) -> str:
        return self.user_code

    def credentials(self) -> Dict[str, str]:
        return {"userCode": self.user_code, "password": self.password.get_secret_value()}


class CardHolderAccount(_AccountBase):
    company: Literal["isracard", "amex"]
    national_id: str = Field(alias="id", min_length=1)
    card6_digits: str = Field(alias="card6Digits", pattern=r"^\d{6}$")
    password: SecretStr

    @property
    def login(self) -> str:
        return f"{self.national_id}/{self.card6_digits}"

    def credentials(self) -> Dict[str, str]:
        return {
            "id": self.national_id,
            "card6Digits": self.card6_digits,
            "password": self.password.get_secret_value(),
        }


class IdNumberAccount(_AccountBase):
    company: Literal["discount", "mercantile"]
    national_id: str = Field(alias="id", min_length=1)
    password: SecretStr
    num: str = Field(min_length=1)

    @property
    def login(self) -> str:
        return self.national_id

    def credentials(self) -> Dict[str, str]:
        return {
            "id": self.national_id,
            "password": self.password.get_secret_value(),
            "num": self.num,
        }


class MockAccount(_AccountBase):
    """Generated data for development; see MockSourceAdapter."""

    company: Literal["mock"]
    account_number: str = Field(default="0000", alias="accountNumber")
    seed: int = 0
    per_day: int = Field(default=1, ge=0, le=20)
    failure_rate: float = Field(default=0.0, ge=0.0, le=1.0)

    @property
    def login(self) -> str:
        return f"{self.account_number}-{self.seed}"

    def credentials(self) -> Dict[str, str]:
        return {}


AccountDescriptor = Annotated[
    Union[
        UsernamePasswordAccount,
        UserCodeAccount,
        CardHolderAccount,
        IdNumberAccount,
        MockAccount,
    ],
    Field(discriminator="company"),
]
