"""Typed payloads for staged employer rows, one per ingestion source.

Ingestion pipelines store their raw rows in PendingEmployer.raw. The shape
depends on where the row came from, so it is validated into one of the payload
models below (selected by the row's source) before the committer reads it.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter


def _coerce_optional_string(v: Any) -> str | None:
    """Coerce spreadsheet cells to trimmed strings.

    CSV readers hand back numbers for postcodes and phone numbers, and blank
    cells as empty strings. Both are normalised here.
    """
    if v is None:
        return None
    text = v.strip() if isinstance(v, str) else str(v)
    return text or None


OptionalText = Annotated[str | None, BeforeValidator(_coerce_optional_string)]


class _PayloadBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    external_id: OptionalText = Field(
        default=None,
        validation_alias=AliasChoices("external_id", "externalId", "companyId", "incolink_id"),
    )
    aliases: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("aliases", "tradingNames", "trading_names"),
    )
    """Other names the source lists for this employer."""

    def to_employer_fields(self) -> dict[str, Any]:
        raise NotImplementedError


class BciPayload(_PayloadBase):
    """Row from a BCI project export (camelCase columns)."""

    kind: Literal["bci"] = "bci"

    street: OptionalText = Field(default=None, validation_alias=AliasChoices("street", "companyStreet"))
    town: OptionalText = Field(default=None, validation_alias=AliasChoices("town", "companyTown"))
    state: OptionalText = Field(default=None, validation_alias=AliasChoices("state", "companyState"))
    postcode: OptionalText = Field(
        default=None, validation_alias=AliasChoices("postcode", "companyPostcode")
    )
    phone: OptionalText = Field(default=None, validation_alias=AliasChoices("phone", "companyPhone"))
    email: OptionalText = Field(default=None, validation_alias=AliasChoices("email", "companyEmail"))
    contact_first_name: OptionalText = Field(
        default=None, validation_alias=AliasChoices("contact_first_name", "contactFirstName")
    )
    contact_surname: OptionalText = Field(
        default=None, validation_alias=AliasChoices("contact_surname", "contactSurname")
    )

    def to_employer_fields(self) -> dict[str, Any]:
        contact = f"{self.contact_first_name or ''} {self.contact_surname or ''}".strip()
        return {
            "address_line_1": self.street,
            "suburb": self.town,
            "state": self.state,
            "postcode": self.postcode,
            "phone": self.phone,
            "email": self.email,
            "primary_contact_name": contact or None,
            "employer_type": "large_contractor",
            "external_id": self.external_id,
        }


class EbaPayload(_PayloadBase):
    """Row from an EBA tracking spreadsheet."""

    kind: Literal["eba"] = "eba"

    contact_name: OptionalText = None
    contact_email: OptionalText = None
    contact_phone: OptionalText = None
    sector: OptionalText = None
    eba_file_number: OptionalText = None

    def to_employer_fields(self) -> dict[str, Any]:
        return {
            "primary_contact_name": self.contact_name,
            "email": self.contact_email,
            "phone": self.contact_phone,
            "employer_type": "small_contractor",
            "enterprise_agreement_status": True,
            "external_id": self.external_id,
        }


class ScanPayload(_PayloadBase):
    """Employer parsed from a scanned mapping sheet."""

    kind: Literal["scan"] = "scan"

    address: OptionalText = None
    phone: OptionalText = None
    email: OptionalText = None
    contact_name: OptionalText = None
    trade: OptionalText = None

    def to_employer_fields(self) -> dict[str, Any]:
        return {
            "address_line_1": self.address,
            "phone": self.phone,
            "email": self.email,
            "primary_contact_name": self.contact_name,
            "external_id": self.external_id,
        }


class ManualPayload(_PayloadBase):
    """Anything else: only the generic fields are read."""

    kind: Literal["manual"] = "manual"

    address: OptionalText = None
    phone: OptionalText = None
    email: OptionalText = None

    def to_employer_fields(self) -> dict[str, Any]:
        return {
            "address_line_1": self.address,
            "phone": self.phone,
            "email": self.email,
            "external_id": self.external_id,
        }


Payload = Annotated[
    BciPayload | EbaPayload | ScanPayload | ManualPayload,
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter[Payload] = TypeAdapter(Payload)

# Source prefix → payload kind. First matching prefix wins.
_SOURCE_KINDS: tuple[tuple[str, str], ...] = (
    ("bci", "bci"),
    ("eba", "eba"),
    ("mapping_sheet", "scan"),
    ("scan", "scan"),
)


def payload_kind_for_source(source: str) -> str:
    """Map a PendingEmployer.source string to a payload kind."""
    source = (source or "").lower()
    for prefix, kind in _SOURCE_KINDS:
        if source.startswith(prefix):
            return kind
    return "manual"


def parse_payload(source: str, raw: dict[str, Any] | None) -> Payload:
    """Validate a raw staged row into its typed payload.

    Raises:
        pydantic.ValidationError: If the row does not fit the payload for its source.
    """
    data = dict(raw or {})
    data["kind"] = payload_kind_for_source(source)
    return _payload_adapter.validate_python(data)
