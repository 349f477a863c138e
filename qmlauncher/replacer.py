import logging
import re
from typing import Dict, Iterable, List, Set

log = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Za-z0-9_]+)\}")


def replace_text(value: str, replacements: dict) -> str:
    """
    Replaces all occurrences of specified substrings within a string.
    Does not use regular expressions.

    Args:
        value: The original string to perform replacements on.
        replacements: A dictionary where keys are the substrings
                      to find and values are the strings to
                      replace them with.

    Returns:
        The string with all specified replacements made.
        Returns the original value if it's not a string
        or if replacements is not a valid dictionary.
    """
    if not isinstance(value, str):
        log.debug("replace_text: Input 'value' is not a string. Returning original value.")
        return value

    if not isinstance(replacements, dict):
        log.warning("replace_text: Input 'replacements' is not a valid dictionary. Returning original value.")
        return value

    modified_value = value
    for search_string, replace_string in replacements.items():
        if isinstance(search_string, str) and isinstance(replace_string, str):
            modified_value = modified_value.replace(search_string, replace_string)
        else:
            log.warning(f"replace_text: Skipping replacement for key '{search_string}' as either key or value is not a string.")

    return modified_value


def substitute(template: str, values: Dict[str, str], missing: Set[str] = None) -> str:
    """
    Substitutes ``${name}`` placeholders of an argument template.

    Placeholders without a value are kept verbatim and their names are
    added to ``missing`` when a set is given.
    """
    def _sub(match: "re.Match") -> str:
        name = match.group(1)
        if name in values:
            return str(values[name])
        if missing is not None:
            missing.add(name)
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_sub, template)


def substitute_all(templates: Iterable[str], values: Dict[str, str]) -> List[str]:
    """Substitutes a list of templates, logging placeholders that had no value."""
    missing: Set[str] = set()
    result = [substitute(t, values, missing) for t in templates]
    if missing:
        log.debug(f"Unresolved argument placeholders: {', '.join(sorted(missing))}")
    return result
