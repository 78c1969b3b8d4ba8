from typing import Tuple


# --- Versions (core) ---
ENGINE_VERSION = "0.3.0"
COST_TABLE_FORMAT_VERSION = 2

# --- Matrix shapes ---
CHARACTER_LEVELS = 7  # upgrade rank 0..6
EQUIPMENT_LEVELS = 5  # upgrade rank 1..5
CHARACTER_LEVEL_MIN = 0
CHARACTER_LEVEL_MAX = 6
EQUIPMENT_LEVEL_MIN = 1
EQUIPMENT_LEVEL_MAX = 5

QUARTER_STEP = 0.25

# --- Cost table labels ---
CHARACTER_LEVEL_LABELS: Tuple[str, ...] = tuple(f"M{level}" for level in range(CHARACTER_LEVELS))
EQUIPMENT_LEVEL_LABELS: Tuple[str, ...] = tuple(f"P{level}" for level in range(1, EQUIPMENT_LEVELS + 1))
CHARACTERS_BANNER = "Characters"
EQUIPMENT_BANNER = "Light Cones"
METADATA_NAME_LABEL = "NAME"
METADATA_VERSION_LABEL = "VERSION"

DEFAULT_TEMPLATE_NAME = "My Preset"
DEFAULT_IMPORT_NAME = "Imported Preset"
NEW_PROFILE_ID = "NEW"
PROFILE_NAME_MAX_LEN = 40
UNRESOLVED_PREVIEW_LIMIT = 5

# --- Rulesets ---
RULESET_A_ID = "ruleset_a"
RULESET_B_ID = "ruleset_b"
LIMITED_EQUIPMENT_SCHEDULE: Tuple[float, ...] = (0.25, 0.25, 0.5, 0.5, 0.75)

# --- Default character/equipment tables (used when no profile is selected) ---
DEFAULT_FOUR_STAR_CHARACTER_COST = 0.5
DEFAULT_FIVE_STAR_CHARACTER_BASE = 1.0
DEFAULT_LIMITED_CHARACTER_BUMP_LEVELS: Tuple[int, ...] = (1, 2, 4, 6)
DEFAULT_LIMITED_CHARACTER_BUMP = 0.5
DEFAULT_STANDARD_CHARACTER_MAX_LEVEL_COST = 1.5
DEFAULT_STANDARD_EQUIPMENT_COST_FROM_LEVEL = 3
DEFAULT_STANDARD_EQUIPMENT_COST = 0.25

# --- Featured / match setup ---
FEATURED_RULE_NONE = "none"
FEATURED_RULE_GLOBAL_BAN = "globalBan"
FEATURED_RULE_GLOBAL_PICK = "globalPick"
FEATURED_RULES = (FEATURED_RULE_NONE, FEATURED_RULE_GLOBAL_BAN, FEATURED_RULE_GLOBAL_PICK)
FEATURED_KIND_CHARACTER = "character"
FEATURED_KIND_EQUIPMENT = "lightcone"
FEATURED_KINDS = (FEATURED_KIND_CHARACTER, FEATURED_KIND_EQUIPMENT)
MAX_FEATURED_ENTRIES = 15

DEFAULT_CYCLE_BREAKPOINT = 4

# --- Preset store policy ---
DEFAULT_MAX_PRESETS_PER_OWNER = 2
