"""CSV row models for equipment imports (Pydantic v2)."""

from dataclasses import dataclass, field
from enum import Enum
from ipaddress import ip_address
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator
from pydantic_core import PydanticCustomError

from ..constants import FIELD_LABELS, FIRMWARE_MAX_LENGTH, NAME_MAX_LENGTH, TAG_DELIMITERS


class CellType(str, Enum):
    """Kinds of cell a site can contain."""

    PRODUCTION = "production"
    WAREHOUSE = "warehouse"
    TESTING = "testing"
    PACKAGING = "packaging"


class EquipmentType(str, Enum):
    """Kinds of equipment tracked in the inventory."""

    PLC = "plc"
    HMI = "hmi"
    ROBOT = "robot"
    SENSOR = "sensor"
    CONTROLLER = "controller"


@dataclass(frozen=True)
class RawRow:
    """
    One parsed CSV line before validation.

    Attributes:
        row_number: 1-based index of the data row (header excluded)
        values: Column name -> stripped cell value, None for empty cells
    """

    row_number: int
    values: dict[str, str | None] = field(default_factory=dict)

    def get(self, column: str) -> str | None:
        return self.values.get(column)


def strip_whitespace(v: Any) -> Any:
    """
    Strip whitespace from string values, turning blank strings into None.

    Spreadsheet exports routinely leave trailing spaces behind:
    "192.168.1.10 " breaks address parsing and " Main Factory" breaks
    name matching.

    Args:
        v: The value to process.

    Returns:
        Any: The stripped value, or None when nothing is left.
    """
    if isinstance(v, str):
        stripped = v.strip()
        return stripped or None
    return v


def validate_name_encoding(label: str, v: str) -> str:
    """
    Reject control characters and null bytes in name fields.

    Tab, newline and carriage return are allowed since quoted CSV cells may
    legitimately span lines.

    Args:
        label: Field label used in the error message.
        v: The value to validate.

    Returns:
        str: The original value if valid.

    Raises:
        PydanticCustomError: If the value contains control characters.
    """
    if "\x00" in v:
        raise PydanticCustomError(
            "name_encoding", "{label} contains null bytes", {"label": label}
        )

    allowed_control_chars = {"\t", "\n", "\r"}
    for char in v:
        if ord(char) < 32 and char not in allowed_control_chars:
            raise PydanticCustomError(
                "name_encoding",
                "{label} contains control character (ASCII {code})",
                {"label": label, "code": ord(char)},
            )
    return v


def split_tags(v: Any) -> tuple[str, ...]:
    """
    Split a delimited tags cell into a de-duplicated tuple.

    "robot, assembly;critical,robot" -> ("robot", "assembly", "critical")
    """
    if v is None:
        return ()
    if isinstance(v, (list, tuple)):
        parts = [str(p) for p in v]
    else:
        text = str(v)
        for delimiter in TAG_DELIMITERS[1:]:
            text = text.replace(delimiter, TAG_DELIMITERS[0])
        parts = text.split(TAG_DELIMITERS[0])

    seen: dict[str, None] = {}
    for part in parts:
        tag = part.strip()
        if tag and tag not in seen:
            seen[tag] = None
    return tuple(seen)


def _enum_choice(label: str, v: Any, enum_cls: type[Enum]) -> str | None:
    value = strip_whitespace(v)
    if value is None:
        return None
    normalized = str(value).lower()
    allowed = [member.value for member in enum_cls]
    if normalized not in allowed:
        raise PydanticCustomError(
            "enum_choice",
            "{label} must be one of: {allowed}",
            {"label": label, "allowed": ", ".join(allowed)},
        )
    return normalized


class EquipmentRow(BaseModel):
    """
    A validated import row.

    All columns are declared with safe defaults and validated with
    ``validate_default`` so a missing column reports the same
    "is required" message as an empty cell. Each field reports at most
    one error; every failing field is reported.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", validate_default=True)

    row_number: int = 0

    site_name: str = ""
    cell_name: str = ""
    cell_type: CellType | None = None
    equipment_name: str = ""
    equipment_type: EquipmentType | None = None
    tag_id: str = ""
    description: str = ""
    make: str = ""
    model: str = ""
    ip_address: str | None = None
    firmware_version: str | None = None
    tags: tuple[str, ...] = ()

    @field_validator(
        "site_name", "cell_name", "equipment_name", "tag_id", "make", "model", mode="before"
    )
    @classmethod
    def validate_required_name(cls, v: Any, info: ValidationInfo) -> str:
        label = FIELD_LABELS[info.field_name]
        value = strip_whitespace(v)
        if value is None:
            raise PydanticCustomError("required", "{label} is required", {"label": label})
        value = str(value)
        if len(value) > NAME_MAX_LENGTH:
            raise PydanticCustomError(
                "too_long",
                "{label} must be at most {limit} characters",
                {"label": label, "limit": NAME_MAX_LENGTH},
            )
        return validate_name_encoding(label, value)

    @field_validator("description", mode="before")
    @classmethod
    def validate_description(cls, v: Any) -> str:
        value = strip_whitespace(v)
        if value is None:
            raise PydanticCustomError("required", "Description is required")
        return str(value)

    @field_validator("cell_type", mode="before")
    @classmethod
    def validate_cell_type(cls, v: Any) -> str | None:
        return _enum_choice(FIELD_LABELS["cell_type"], v, CellType)

    @field_validator("equipment_type", mode="before")
    @classmethod
    def validate_equipment_type(cls, v: Any) -> str | None:
        return _enum_choice(FIELD_LABELS["equipment_type"], v, EquipmentType)

    @field_validator("ip_address", mode="before")
    @classmethod
    def validate_ip_address(cls, v: Any) -> str | None:
        """Accept IPv4/IPv6 literals and store their canonical text form."""
        value = strip_whitespace(v)
        if value is None:
            return None
        try:
            return str(ip_address(str(value)))
        except ValueError:
            raise PydanticCustomError("ip_address", "Invalid IP address format") from None

    @field_validator("firmware_version", mode="before")
    @classmethod
    def validate_firmware_version(cls, v: Any) -> str | None:
        value = strip_whitespace(v)
        if value is None:
            return None
        value = str(value)
        if len(value) > FIRMWARE_MAX_LENGTH:
            raise PydanticCustomError(
                "too_long",
                "Firmware version must be at most {limit} characters",
                {"limit": FIRMWARE_MAX_LENGTH},
            )
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> tuple[str, ...]:
        return split_tags(strip_whitespace(v))

    def equipment_fields(self) -> dict[str, Any]:
        """Return the equipment columns carried by this row."""
        return {
            "name": self.equipment_name,
            "equipment_type": self.equipment_type.value if self.equipment_type else None,
            "tag_id": self.tag_id,
            "description": self.description,
            "make": self.make,
            "model": self.model,
            "ip_address": self.ip_address,
            "firmware_version": self.firmware_version,
            "tags": self.tags,
        }
