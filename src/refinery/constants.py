"""
Shared constant values: workspace layout, branch conventions and role names.
"""

# Directory names within a town workspace.
DIR_MAYOR = "mayor"
DIR_REFINERY = "refinery"
DIR_RIG = "rig"
DIR_RUNTIME = ".runtime"
DIR_SETTINGS = "settings"
DIR_LOCKS = "locks"
DIR_MAIL = "mail"
DIR_ISSUES = "issues"

# File names for configuration and state.
FILE_RIGS_JSON = "rigs.json"
FILE_CONFIG_JSON = "config.json"
FILE_CHECKPOINT = "checkpoint.json"
FILE_EVENTS = "events.jsonl"
FILE_LEDGER = "ledger.json"

# Git branch names.
BRANCH_MAIN = "main"
BRANCH_POLECAT_PREFIX = "polecat/"
BRANCH_CREW_PREFIX = "crew/"
DEFAULT_REMOTE = "origin"

# Agent role names.
ROLE_MAYOR = "mayor"
ROLE_WITNESS = "witness"
ROLE_REFINERY = "refinery"
ROLE_POLECAT = "polecat"
ROLE_CREW = "crew"
ROLE_DEACON = "deacon"

# Default issue prefix when a rig has no beads configuration.
DEFAULT_ISSUE_PREFIX = "gt"


def merge_lock_key(rig: str) -> str:
    """Lock key guarding mutation of a rig's target branch."""
    return f"rig:{rig}:merge"

