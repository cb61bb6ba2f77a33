"""Cut list optimisation and CNC toolpath generation."""

from .errors import InvalidInputError, ProfileMismatchError, ZCutError
from .gcode import generate_all_code, generate_program, generate_sheet_code, parse_gcode
from .models import EdgeBanding, Grain, Offcut, OptimizationResult, Part, StockSheet
from .offcuts import detect_offcuts
from .optimizer import optimize
from .profiles import BUILTIN_PROFILES, GCodeProfile, ProfileStore, customize_profile
from .settings import Algorithm, ClampZone, CornerOvercut, PlungeStrategy, Settings
from .toolpaths import plan_toolpaths

__version__ = "0.1.0"
