"""Configuration records for optimisation and code generation."""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .errors import InvalidInputError
from .geometry import Rect


class Algorithm(Enum):
    GUILLOTINE = "guillotine"
    GENETIC = "genetic"


class PlungeStrategy(Enum):
    """How the tool descends into material at a cut entry."""
    STRAIGHT = "straight"  # Single vertical move
    RAMP = "ramp"  # Zig-zag descent along the entry edge
    HELIX = "helix"  # Circular descent


class CornerOvercut(Enum):
    """Relief motion at interior corners."""
    NONE = "none"
    DOGBONE = "dogbone"  # Along the corner bisector
    TBONE = "tbone"  # Along the incoming edge


@dataclass(frozen=True)
class ObjectiveWeights:
    """Relative importance of each layout objective."""
    waste: float = 1.0
    sheets: float = 0.5
    cut_length: float = 0.0
    job_time: float = 0.0

    def normalized(self) -> "ObjectiveWeights":
        """Scale weights to sum to 1; all-zero weights fall back to waste/sheets."""
        total = self.waste + self.sheets + self.cut_length + self.job_time
        if total <= 0:
            return ObjectiveWeights(waste=0.5, sheets=0.5, cut_length=0.0, job_time=0.0)
        return ObjectiveWeights(
            waste=self.waste / total,
            sheets=self.sheets / total,
            cut_length=self.cut_length / total,
            job_time=self.job_time / total,
        )


@dataclass(frozen=True)
class StockTabConfig:
    """Stock-holding tab zones reserved along the sheet edges."""
    enabled: bool = False
    advanced_mode: bool = False  # Use custom_zones instead of edge padding
    top_padding: float = 25.0  # mm, at the high-Y edge
    bottom_padding: float = 25.0
    left_padding: float = 25.0
    right_padding: float = 25.0
    custom_zones: tuple[Rect, ...] = ()

    def exclusion_zones(self, sheet_width: float, sheet_height: float) -> list[Rect]:
        """Rectangles on a sheet of the given size that must stay uncut."""
        if not self.enabled:
            return []
        if self.advanced_mode:
            return list(self.custom_zones)

        zones = []
        if self.bottom_padding > 0:
            zones.append(Rect(0.0, 0.0, sheet_width, self.bottom_padding))
        if self.top_padding > 0:
            zones.append(Rect(0.0, sheet_height - self.top_padding, sheet_width, self.top_padding))
        if self.left_padding > 0:
            zones.append(Rect(0.0, 0.0, self.left_padding, sheet_height))
        if self.right_padding > 0:
            zones.append(Rect(sheet_width - self.right_padding, 0.0, self.right_padding, sheet_height))
        return zones


@dataclass(frozen=True)
class ClampZone:
    """A fixture on the machine bed, in sheet coordinates."""
    label: str
    x: float
    y: float
    width: float
    height: float
    z_height: float  # mm above the stock surface; 0 for a flush fixture

    @property
    def rect(self) -> Rect:
        return Rect(self.x, self.y, self.width, self.height)


@dataclass(frozen=True)
class GeneticConfig:
    """Parameters for the population search."""
    population_size: Optional[int] = None  # None: 50, or 80 for more than 50 parts
    generations: Optional[int] = None  # None: 100, 150 (>20 parts) or 200 (>50 parts)
    mutation_rate: float = 0.15
    tournament_size: int = 3
    elite_count: int = 2
    plateau_window: int = 25  # Generations without improvement before stopping
    plateau_tolerance: float = 1e-9
    seed: Optional[int] = None
    workers: int = 0  # 0: os.cpu_count()
    time_limit: Optional[float] = None  # seconds

    def scaled(self, instance_count: int) -> tuple[int, int]:
        """Return (population, generations) for a problem of the given size."""
        population, generations = 50, 100
        if instance_count > 50:
            population, generations = 80, 200
        elif instance_count > 20:
            generations = 150
        if self.population_size is not None:
            population = self.population_size
        if self.generations is not None:
            generations = self.generations
        return population, generations


_NESTED = {
    "weights": ObjectiveWeights,
    "genetic": GeneticConfig,
}


@dataclass(frozen=True)
class Settings:
    """Everything consumed by one optimisation and emission pass."""
    # Packing
    algorithm: Algorithm = Algorithm.GUILLOTINE
    kerf_width: float = 3.2  # mm
    edge_trim: float = 10.0  # mm removed from every sheet edge
    guillotine_only: bool = True
    weights: ObjectiveWeights = field(default_factory=ObjectiveWeights)
    genetic: GeneticConfig = field(default_factory=GeneticConfig)

    # Machine
    tool_diameter: float = 6.0  # mm
    feed_rate: float = 1500.0  # mm/min
    plunge_rate: float = 500.0  # mm/min
    rapid_rate: float = 5000.0  # mm/min, used for time estimates
    spindle_speed: int = 18000  # RPM
    safe_z: float = 5.0  # mm
    cut_depth: float = 18.0  # mm, usually the stock thickness
    pass_depth: float = 6.0  # mm per pass

    # Entry and exit
    lead_in_radius: float = 0.0  # 0 disables
    lead_out_radius: float = 0.0
    lead_in_angle: float = 90.0  # degrees of arc
    lead_out_angle: float = 90.0
    plunge_strategy: PlungeStrategy = PlungeStrategy.STRAIGHT
    ramp_angle: float = 3.0  # degrees
    helix_diameter: float = 0.0  # 0: tool diameter
    helix_depth_per_rev: float = 0.0  # 0: half the pass depth

    # Corners and onion skin
    corner_overcut: CornerOvercut = CornerOvercut.NONE
    onion_skin_enabled: bool = False
    onion_skin_depth: float = 0.2  # mm left on the final pass
    onion_skin_cleanup: bool = False

    # Holding tabs and fixtures
    part_tab_width: float = 8.0
    part_tab_height: float = 2.0
    part_tabs_per_side: int = 0
    stock_tabs: StockTabConfig = field(default_factory=StockTabConfig)
    clamp_zones: tuple[ClampZone, ...] = ()

    # Dust shoe
    dust_shoe_enabled: bool = False
    dust_shoe_width: float = 100.0  # mm, diameter
    dust_shoe_clearance: float = 5.0

    # Cut ordering
    optimize_toolpath: bool = True
    structural_ordering: bool = False
    nesting_rotations: int = 2
    use_climb: bool = True

    setup_time: float = 2.0  # minutes per sheet
    gcode_profile: str = "Generic"

    def __post_init__(self):
        positive = {
            "tool_diameter": self.tool_diameter,
            "pass_depth": self.pass_depth,
            "feed_rate": self.feed_rate,
            "plunge_rate": self.plunge_rate,
            "rapid_rate": self.rapid_rate,
        }
        for name, value in positive.items():
            if value <= 0:
                raise InvalidInputError(f"{name} must be positive, got {value}")
        if self.kerf_width < 0 or self.edge_trim < 0:
            raise InvalidInputError("kerf_width and edge_trim must not be negative")
        if self.cut_depth < 0:
            raise InvalidInputError(f"cut_depth must not be negative, got {self.cut_depth}")
        if self.nesting_rotations < 1:
            raise InvalidInputError("nesting_rotations must be at least 1")

    @property
    def tool_radius(self) -> float:
        return self.tool_diameter / 2

    def replace(self, **changes) -> "Settings":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Plain dict record with enum values as strings."""
        def convert(value):
            if isinstance(value, Enum):
                return value.value
            if dataclasses.is_dataclass(value):
                return {f.name: convert(getattr(value, f.name)) for f in dataclasses.fields(value)}
            if isinstance(value, tuple):
                return [convert(v) for v in value]
            return value

        return convert(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        """Build settings from a dict record; missing keys keep their defaults."""
        known = {f.name: f for f in dataclasses.fields(cls)}
        unknown = set(data) - set(known)
        if unknown:
            raise InvalidInputError(f"Unknown settings: {', '.join(sorted(unknown))}")

        kwargs = {}
        try:
            for key, value in data.items():
                if key == "algorithm":
                    value = Algorithm(value)
                elif key == "plunge_strategy":
                    value = PlungeStrategy(value)
                elif key == "corner_overcut":
                    value = CornerOvercut(value)
                elif key in _NESTED:
                    value = _NESTED[key](**value)
                elif key == "stock_tabs":
                    value = dict(value)
                    zones = tuple(Rect(**z) for z in value.pop("custom_zones", ()))
                    value = StockTabConfig(custom_zones=zones, **value)
                elif key == "clamp_zones":
                    value = tuple(ClampZone(**z) for z in value)
                kwargs[key] = value
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Invalid settings record: {e}") from e
        return cls(**kwargs)
