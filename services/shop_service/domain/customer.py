"""Customer and address value objects.

Addresses are embedded by value: an Order keeps its own copy of the customer
taken at checkout, so later profile edits never reach historical orders.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

GUEST_ID = 0


@dataclass
class Address:
    first_name: str = ""
    last_name: str = ""
    address: str = ""
    country: str = ""
    state: str = ""
    postcode: str = ""
    phone: str = ""
    email: str = ""

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = "address"
        return data

    @staticmethod
    def from_dict(data: Optional[dict[str, Any]]) -> "Address":
        """Rebuild an address, picking CompanyAddress when the data says so."""
        data = dict(data or {})
        kind = data.pop("type", None)
        if kind == "company" or data.get("company"):
            return CompanyAddress(**_known_fields(CompanyAddress, data))
        return Address(**_known_fields(Address, data))


@dataclass
class CompanyAddress(Address):
    company: str = ""
    vat_number: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = "company"
        return data


def _known_fields(cls, data: dict[str, Any]) -> dict[str, Any]:
    names = cls.__dataclass_fields__.keys()
    return {k: ("" if v is None else str(v)) for k, v in data.items() if k in names}


@dataclass
class Customer:
    id: int = GUEST_ID
    login: str = ""
    email: str = ""
    name: str = ""
    billing_address: Address = field(default_factory=Address)
    shipping_address: Address = field(default_factory=Address)

    @property
    def is_guest(self) -> bool:
        return self.id == GUEST_ID

    def snapshot(self) -> "Customer":
        """Independent deep copy, safe to embed in an order."""
        return copy.deepcopy(self)

    # Destination changes from the cart page only touch the shipping address.
    def set_country(self, country: str) -> None:
        self.shipping_address.country = country
        self.shipping_address.state = ""

    def set_state(self, state: str) -> None:
        self.shipping_address.state = state

    def set_postcode(self, postcode: str) -> None:
        self.shipping_address.postcode = postcode

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "login": self.login,
            "email": self.email,
            "name": self.name,
            "billing_address": self.billing_address.to_dict(),
            "shipping_address": self.shipping_address.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "Customer":
        data = data or {}
        return cls(
            id=int(data.get("id") or GUEST_ID),
            login=data.get("login") or "",
            email=data.get("email") or "",
            name=data.get("name") or "",
            billing_address=Address.from_dict(data.get("billing_address")),
            shipping_address=Address.from_dict(data.get("shipping_address")),
        )


def guest() -> Customer:
    return Customer(id=GUEST_ID, name="Guest")
