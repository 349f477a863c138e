import logging
import platform
import re
from typing import Any, Dict, List, Mapping, Optional

log = logging.getLogger(__name__)


def get_os_name() -> str:
    """Gets the current OS name as used in version manifests ('windows', 'osx', 'linux')."""
    system = platform.system()
    if system == 'Windows': return 'windows'
    elif system == 'Darwin': return 'osx'
    elif system == 'Linux': return 'linux'
    else: raise OSError(f"Unsupported platform: {system}")


def get_arch_name() -> str:
    """Gets the current architecture name ('x64', 'x86', 'arm64', 'arm32')."""
    machine = platform.machine().lower()
    if machine in ['amd64', 'x86_64']: return 'x64'
    elif machine in ['i386', 'i686', 'x86']: return 'x86'
    elif machine in ['arm64', 'aarch64']: return 'arm64'
    elif machine.startswith('arm') and '64' not in machine: return 'arm32'
    else:
        log.warning(f"Unsupported architecture: {platform.machine()}. Falling back to 'x64'. This might cause issues.")
        return 'x64'


def _os_matches(os_rule: Mapping[str, Any]) -> bool:
    if 'name' in os_rule and os_rule['name'] != get_os_name():
        return False
    if 'arch' in os_rule and os_rule['arch'] != get_arch_name():
        return False
    if 'version' in os_rule:
        try:
            if not re.search(os_rule['version'], platform.release()):
                return False
        except re.error:
            log.warning(f"Invalid os.version pattern in rule: {os_rule['version']}")
            return False
    return True


def rule_applies(rule: Mapping[str, Any], features: Optional[Mapping[str, bool]] = None) -> bool:
    """Reports whether the conditions of a single rule match the current environment."""
    features = features or {}
    os_rule = rule.get('os')
    if isinstance(os_rule, dict) and not _os_matches(os_rule):
        return False
    feature_rule = rule.get('features')
    if isinstance(feature_rule, dict):
        for name, expected in feature_rule.items():
            if bool(features.get(name, False)) != bool(expected):
                return False
    return True


def check_item_rules(rules: Optional[List[Dict[str, Any]]],
                     features: Optional[Mapping[str, bool]] = None) -> bool:
    """
    Checks if an item (library/argument) should be included based on its rules array.

    With no rules the item is included. Otherwise it starts excluded and
    every rule whose conditions match sets the outcome to its action, so
    the last matching rule wins.
    """
    if not rules:
        return True

    allowed = False
    for rule in rules:
        if not isinstance(rule, dict):
            continue
        if rule_applies(rule, features):
            action = rule.get('action', 'allow')
            if action == 'allow':
                allowed = True
            elif action == 'disallow':
                allowed = False
            else:
                log.warning(f"Unknown rule action: {action}. Ignoring rule.")
    return allowed
