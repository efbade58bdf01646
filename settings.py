"""
Runtime configuration: configured organizations (YAML) and environment-driven defaults.
"""

import logging
import os
from typing import List, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

ORGANIZATIONS_FILENAME = 'organizations.yaml'

# environment knobs; CLI flags take precedence where both exist
DATA_DIR = os.getenv('GITSTATUS_DATA_DIR', 'data')
MIN_RATE_REMAINING = int(os.getenv('GITSTATUS_MIN_RATE_REMAINING', '100'))
BATCH_SIZE = int(os.getenv('GITSTATUS_BATCH_SIZE', '5'))


class Organization:
    """
    A configured organization: its API name, a display name, and extra query tokens that refer to it.
    """

    def __init__(self, name: str, display_name: Optional[str] = None, aliases: Optional[List[str]] = None):
        self.name = name
        self.display_name = display_name or name
        self.aliases = tuple(a.lower() for a in (aliases or []) if a)

    def tokens(self) -> Tuple[str, ...]:
        return (self.name.lower(),) + self.aliases

    def __repr__(self):
        return f"Organization({self.name!r}, display_name={self.display_name!r})"


DEFAULT_ORGANIZATIONS = (
    Organization('macromill', 'Macromill'),
    Organization('macromill-mint', 'Macromill Mint', aliases=['mint']),
)


def _default_path() -> str:
    env_path = os.getenv('GITSTATUS_ORGANIZATIONS_FILE')
    if env_path:
        return env_path
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config', ORGANIZATIONS_FILENAME)


def _parse_organizations(doc) -> Tuple[Organization, ...]:
    entries = doc.get('organizations') if isinstance(doc, dict) else None
    if not isinstance(entries, list):
        return ()
    orgs = []
    for entry in entries:
        if isinstance(entry, str):
            orgs.append(Organization(entry))
        elif isinstance(entry, dict) and entry.get('name'):
            orgs.append(Organization(str(entry['name']), entry.get('display_name'), entry.get('aliases') or []))
    return tuple(orgs)


def load_organizations(path: Optional[str] = None) -> Tuple[Organization, ...]:
    """
    Load configured organizations from YAML, in file order.
    Falls back to DEFAULT_ORGANIZATIONS when the file is missing, unreadable or empty.
    """
    path = path or _default_path()
    if not os.path.exists(path):
        return DEFAULT_ORGANIZATIONS
    try:
        with open(path, 'r', encoding='utf-8') as f:
            doc = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as ex:
        logger.warning("Failed to read organizations file %s: %s", path, ex)
        return DEFAULT_ORGANIZATIONS
    orgs = _parse_organizations(doc)
    return orgs or DEFAULT_ORGANIZATIONS


def display_names(organizations) -> dict:
    return {o.name: o.display_name for o in organizations}


def resolve_token(cli_value: Optional[str] = None) -> str:
    """Return the API token from the CLI flag or the GITHUB_TOKEN environment variable (may be empty)."""
    return cli_value or os.getenv('GITHUB_TOKEN', '')
