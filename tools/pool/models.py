"""
Pool maintenance report data model.

Immutable snapshot of one maintenance visit, as consumed by the template
renderer and the document builder, plus the DocumentArtifact file entity
produced by the builder or the transfer engine.

Reports arrive as JSON from two places: the mobile form (camelCase keys,
photos as local file URIs) and the REST API (snake_case keys, photos as
URLs). Report.from_dict() accepts both shapes.

Usage:
    from tools.pool.models import Report, normalize_equipment

    report = Report.from_dict(json.loads(path.read_text()))
    for key, status in report.equipment.items():
        state = normalize_equipment(status)
"""

import logging
import math
import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger("pooldoc.models")


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PDF_SIGNATURE = b"%PDF"
PDF_EXTENSION = ".pdf"
PDF_MIME_TYPE = "application/pdf"

# (field, label, unit) -- fixed display order
PARAMETER_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("cl", "Cloro Libre", "ppm"),
    ("ph", "pH", ""),
    ("alk", "Alcalinidad", "ppm"),
    ("stabilizer", "Estabilizador", "ppm"),
    ("hardness", "Dureza", "ppm"),
    ("salt", "Sal", "ppm"),
    ("temperature", "Temperatura", "°C"),
)

# (field, label, unit)
CHEMICAL_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("tricloro", "Tricloro", "kg"),
    ("tabletas", "Tabletas", "unidades"),
    ("acido", "Ácido", "L"),
    ("soda", "Soda", "kg"),
    ("bicarbonato", "Bicarbonato", "kg"),
    ("sal", "Sal", "bolsas"),
    ("alguicida", "Alguicida", "L"),
    ("clarificador", "Clarificador", "L"),
    ("cloro_liquido", "Cloro Líquido", "L"),
)

# Accepted input spellings for each parameter
_PARAMETER_ALIASES = {
    "cl": ("cl", "chlorine", "cloro"),
    "ph": ("ph", "pH"),
    "alk": ("alk", "alkalinity", "alcalinidad"),
    "stabilizer": ("stabilizer", "estabilizador"),
    "hardness": ("hardness", "dureza"),
    "salt": ("salt", "sal"),
    "temperature": ("temperature", "temperatura", "temp"),
}


def format_number(value: float) -> str:
    """Render 2.0 as "2" and 7.25 as "7.25"."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def _to_number(name: str, value: Any) -> float:
    """Coerce a reading or dosage to a non-negative float.

    None and empty strings count as zero (an untouched form field).
    """
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise ValueError(f"{name} must be numeric, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be numeric, got {value!r}")
    if not math.isfinite(number):
        raise ValueError(f"{name} must be a finite number, got {value!r}")
    if number < 0:
        raise ValueError(f"{name} must be non-negative, got {number}")
    return number


def _first(data: dict, *keys: str, default: Any = None) -> Any:
    """Return the value of the first key present in data."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp. Unparseable values are logged and dropped."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Ignoring unparseable timestamp %r", value)
        return None


# ---------------------------------------------------------------------------
# Water chemistry and chemicals
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Parameters:
    """Seven water-chemistry readings. Always reported, even when zero."""
    cl: float = 0.0
    ph: float = 0.0
    alk: float = 0.0
    stabilizer: float = 0.0
    hardness: float = 0.0
    salt: float = 0.0
    temperature: float = 0.0

    def __post_init__(self):
        for name, _label, _unit in PARAMETER_FIELDS:
            object.__setattr__(self, name, _to_number(name, getattr(self, name)))

    def items(self) -> list[tuple[str, str, str, float]]:
        """(field, label, unit, value) in fixed display order."""
        return [(name, label, unit, getattr(self, name)) for name, label, unit in PARAMETER_FIELDS]

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Parameters":
        data = data or {}
        values = {}
        for name, aliases in _PARAMETER_ALIASES.items():
            values[name] = _first(data, *aliases, default=0)
        return cls(**values)


@dataclass(frozen=True)
class Chemicals:
    """Nine chemical dosages, each with a fixed unit (see CHEMICAL_FIELDS)."""
    tricloro: float = 0.0
    tabletas: float = 0.0
    acido: float = 0.0
    soda: float = 0.0
    bicarbonato: float = 0.0
    sal: float = 0.0
    alguicida: float = 0.0
    clarificador: float = 0.0
    cloro_liquido: float = 0.0

    def __post_init__(self):
        for name, _label, _unit in CHEMICAL_FIELDS:
            object.__setattr__(self, name, _to_number(name, getattr(self, name)))

    def applied(self) -> list[tuple[str, str, str, float]]:
        """(field, label, unit, dosage) for strictly positive dosages only."""
        return [
            (name, label, unit, getattr(self, name))
            for name, label, unit in CHEMICAL_FIELDS
            if getattr(self, name) > 0
        ]

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Chemicals":
        data = data or {}
        return cls(**{name: data.get(name, 0) for name, _label, _unit in CHEMICAL_FIELDS})


# ---------------------------------------------------------------------------
# Equipment check -- tagged union with a single normalization rule
# ---------------------------------------------------------------------------

class EquipmentState(Enum):
    """Display state of one piece of equipment: (glyph, label, css class)."""
    NOT_APPLICABLE = ("⊘", "No aplica", "not-applicable")
    WORKING = ("✅", "Funcionando", "working")
    FAILING = ("❌", "No funciona", "not-working")

    @property
    def glyph(self) -> str:
        return self.value[0]

    @property
    def label(self) -> str:
        return self.value[1]

    @property
    def css_class(self) -> str:
        return self.value[2]


@dataclass(frozen=True)
class LegacyStatus:
    """Older reports stored a bare boolean; it always applies."""
    working: bool


@dataclass(frozen=True)
class StructuredStatus:
    """Current shape: {aplica, working}. applies=False excludes pass/fail."""
    applies: bool
    working: bool


EquipmentStatus = Union[LegacyStatus, StructuredStatus]


def parse_equipment_status(value: Any) -> EquipmentStatus:
    """Build the tagged union from either stored shape."""
    if isinstance(value, (LegacyStatus, StructuredStatus)):
        return value
    if isinstance(value, bool):
        return LegacyStatus(working=value)
    if isinstance(value, dict):
        applies = _first(value, "aplica", "applies", default=True)
        working = _first(value, "working", "funciona", default=False)
        return StructuredStatus(applies=bool(applies), working=bool(working))
    raise ValueError(f"Unsupported equipment status: {value!r}")


def normalize_equipment(status: EquipmentStatus) -> EquipmentState:
    """The one place the legacy/structured distinction is resolved."""
    if isinstance(status, LegacyStatus):
        return EquipmentState.WORKING if status.working else EquipmentState.FAILING
    if not status.applies:
        return EquipmentState.NOT_APPLICABLE
    return EquipmentState.WORKING if status.working else EquipmentState.FAILING


def equipment_label(key: str) -> str:
    """bomba_filtro -> bomba filtro"""
    return key.replace("_", " ")


# ---------------------------------------------------------------------------
# Photo slots
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PhotoRole:
    """One of the four fixed photo slots and the keys it is stored under."""
    slot: str
    title: str
    input_keys: tuple[str, ...]
    applies_flag: str = ""          # Report attribute gating the requirement


PHOTO_ROLES: tuple[PhotoRole, ...] = (
    PhotoRole("cloro_ph", "Cloro/pH", ("photoCloroPh", "photo_cloro_ph", "cloroPh", "cloro_ph")),
    PhotoRole("alcalinidad", "Alcalinidad",
              ("photoAlcalinidad", "photo_alcalinidad", "alcalinidad")),
    PhotoRole("dureza", "Dureza", ("photoDureza", "photo_dureza", "dureza"),
              applies_flag="hardness_applies"),
    PhotoRole("estabilizador", "Estabilizador",
              ("photoEstabilizador", "photo_estabilizador", "estabilizador"),
              applies_flag="stabilizer_applies"),
)


@dataclass(frozen=True)
class PhotoSlots:
    """Photo references per slot. None means no photo."""
    cloro_ph: Optional[str] = None
    alcalinidad: Optional[str] = None
    dureza: Optional[str] = None
    estabilizador: Optional[str] = None

    def get(self, slot: str) -> Optional[str]:
        return getattr(self, slot)

    def present(self) -> dict[str, str]:
        """slot -> reference for slots holding something."""
        return {r.slot: self.get(r.slot) for r in PHOTO_ROLES if self.get(r.slot)}

    def with_resolved(self, resolved: dict[str, Optional[str]]) -> "PhotoSlots":
        """Copy with the given slots replaced (resolved or degraded to None)."""
        return replace(self, **resolved)

    @classmethod
    def from_dict(cls, data: dict) -> "PhotoSlots":
        nested = data.get("photos") if isinstance(data.get("photos"), dict) else {}
        values = {}
        for role in PHOTO_ROLES:
            ref = _first(nested, *role.input_keys) or _first(data, *role.input_keys)
            values[role.slot] = str(ref) if ref else None
        return cls(**values)


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Report:
    """One completed maintenance visit.

    Attributes:
        report_number:       Human report number, e.g. "#001".
        project_name:        Project / pool name.
        client_name:         Client name (shown when set, else project name).
        location:            Site address.
        technician:          Technician responsible.
        entry_time:          Arrival time.
        exit_time:           Departure time.
        parameters:          Water chemistry readings.
        chemicals:           Chemical dosages.
        equipment:           equipment-id -> EquipmentStatus, display order kept.
        photos:              The four photo slots.
        materials_delivered: Free text.
        observations:        Free text.
        hardness_applies:    dureza_aplica -- hardness photo required.
        stabilizer_applies:  estabilizador_aplica -- stabilizer photo required.
        received_by:         Person who received the service on site.
        client_phone:        Client phone number, used as share recipient.
        report_id:           Server-side id, needed to fetch the server PDF.
        created_at:          When the report was created.
    """
    report_number: str = ""
    project_name: str = ""
    client_name: str = ""
    location: str = ""
    technician: str = ""
    entry_time: Optional[datetime] = None
    exit_time: Optional[datetime] = None
    parameters: Parameters = field(default_factory=Parameters)
    chemicals: Chemicals = field(default_factory=Chemicals)
    equipment: dict[str, EquipmentStatus] = field(default_factory=dict)
    photos: PhotoSlots = field(default_factory=PhotoSlots)
    materials_delivered: str = ""
    observations: str = ""
    hardness_applies: bool = False
    stabilizer_applies: bool = False
    received_by: str = ""
    client_phone: str = ""
    report_id: str = ""
    created_at: Optional[datetime] = None

    @property
    def display_client(self) -> str:
        return self.client_name or self.project_name

    def photo_required(self, role: PhotoRole) -> bool:
        """Cloro/pH and alcalinidad always; the others only when flagged."""
        if not role.applies_flag:
            return True
        return bool(getattr(self, role.applies_flag))

    def with_photos(self, photos: PhotoSlots) -> "Report":
        return replace(self, photos=photos)

    @classmethod
    def from_dict(cls, data: dict) -> "Report":
        """Build a Report from mobile (camelCase) or API (snake_case) JSON."""
        raw_equipment = _first(data, "equipmentCheck", "equipment_check", "equipment", default={})
        if not isinstance(raw_equipment, dict):
            raise ValueError(f"equipmentCheck must be an object, got {type(raw_equipment).__name__}")
        equipment = {
            str(key): parse_equipment_status(value)
            for key, value in raw_equipment.items()
        }
        report_id = _first(data, "id", "report_id", "reportId", default="")
        return cls(
            report_number=str(_first(data, "reportNumber", "report_number", default="")),
            project_name=str(_first(data, "projectName", "project_name", default="")),
            client_name=str(_first(data, "clientName", "client_name", default="")),
            location=str(_first(data, "location", default="")),
            technician=str(_first(data, "technician", default="")),
            entry_time=_parse_timestamp(_first(data, "entryTime", "entry_time")),
            exit_time=_parse_timestamp(_first(data, "exitTime", "exit_time")),
            parameters=Parameters.from_dict(
                _first(data, "parametersBefore", "parameters_before", "parameters")
            ),
            chemicals=Chemicals.from_dict(_first(data, "chemicals")),
            equipment=equipment,
            photos=PhotoSlots.from_dict(data),
            materials_delivered=str(_first(data, "materialsDelivered", "materials_delivered", default="")),
            observations=str(_first(data, "observations", default="")),
            hardness_applies=bool(_first(data, "dureza_aplica", "durezaAplica", default=False)),
            stabilizer_applies=bool(
                _first(data, "estabilizador_aplica", "estabilizadorAplica", default=False)
            ),
            received_by=str(_first(data, "receivedBy", "received_by", default="")),
            client_phone=str(
                _first(data, "project_client_phone", "clientPhone", "client_phone", default="")
            ),
            report_id=str(report_id),
            created_at=_parse_timestamp(_first(data, "createdAt", "created_at")),
        )


# ---------------------------------------------------------------------------
# DocumentArtifact
# ---------------------------------------------------------------------------

def read_signature(path: str | Path, length: int = len(PDF_SIGNATURE)) -> bytes:
    """Return the first bytes of a file (b"" when unreadable)."""
    try:
        with open(path, "rb") as f:
            return f.read(length)
    except OSError:
        return b""


@dataclass(frozen=True)
class DocumentArtifact:
    """A produced document file on local storage."""
    path: Path
    size: int
    is_valid: bool
    modified_at: float              # epoch seconds

    @property
    def filename(self) -> str:
        return self.path.name

    def age_seconds(self, now: float | None = None) -> float:
        now = datetime.now(timezone.utc).timestamp() if now is None else now
        return now - self.modified_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "filename": self.filename,
            "size": self.size,
            "is_valid": self.is_valid,
            "modified_at": datetime.fromtimestamp(self.modified_at, tz=timezone.utc).isoformat(),
        }

    @classmethod
    def from_path(cls, path: str | Path) -> "DocumentArtifact":
        """Stat a file and check its signature. Raises OSError if missing."""
        resolved = Path(os.path.abspath(path))
        stat = resolved.stat()
        return cls(
            path=resolved,
            size=stat.st_size,
            is_valid=read_signature(resolved) == PDF_SIGNATURE,
            modified_at=stat.st_mtime,
        )
