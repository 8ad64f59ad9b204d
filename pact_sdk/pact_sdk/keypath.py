"""
Key path parsing and resolution.

A key path is a dot/bracket separated sequence of segments such as
"response.body.items[0].name". Parsing produces typed segments (str keys
and int indices). Resolution walks a tree of dicts and lists and returns
the concrete path that exists in the tree, matching keys case-insensitively
if requested. Resolution never raises; missing paths resolve to None.
"""

import re
from typing import Any, List, Optional, Union

Segment = Union[str, int]

_SEGMENT_PATTERN = re.compile(r'\.?([^\.\[\]]+)|\[(\d+)\]|\[["\']([^"\']+)["\']\]')

_MISSING = object()


def parse_key_path(path: Union[str, List[Segment], None]) -> List[Segment]:
    """
    Parse a key path into typed segments.

    Examples:
        >>> parse_key_path("request.headers.Authorization")
        ['request', 'headers', 'Authorization']
        >>> parse_key_path("body.items[1].name")
        ['body', 'items', 1, 'name']
    """
    if path is None:
        return []
    if isinstance(path, (list, tuple)):
        return list(path)

    segments: List[Segment] = []
    for match in _SEGMENT_PATTERN.finditer(path):
        key, index, quoted = match.groups()
        if index is not None:
            segments.append(int(index))
        elif quoted is not None:
            segments.append(quoted)
        else:
            segments.append(key)
    return segments


def format_key_path(segments: List[Segment]) -> str:
    """Format segments back into a dotted path string."""
    result = ""
    for segment in segments:
        if isinstance(segment, int):
            result += f"[{segment}]"
        else:
            result += f".{segment}" if result else str(segment)
    return result


def find_key(obj: dict, key: str, ignore_case: bool = True) -> Optional[str]:
    """Return the actual key of obj matching key, or None."""
    if key in obj:
        return key
    if not ignore_case:
        return None
    lowered = key.lower()
    for candidate in obj:
        if isinstance(candidate, str) and candidate.lower() == lowered:
            return candidate
    return None


def _step(current: Any, segment: Segment, ignore_case: bool) -> Optional[Segment]:
    if isinstance(current, dict):
        if isinstance(segment, int):
            segment = str(segment)
        return find_key(current, segment, ignore_case)
    if isinstance(current, list):
        if isinstance(segment, str):
            if not segment.isdigit():
                return None
            segment = int(segment)
        if 0 <= segment < len(current):
            return segment
    return None


def resolve_key_path(
    obj: Any,
    path: Union[str, List[Segment]],
    ignore_case: bool = True,
) -> Optional[List[Segment]]:
    """
    Resolve path against obj and return the concrete path, or None.

    The concrete path uses the actual keys found in obj, so it can be used
    with get_value/set_value/delete_value without further case handling.
    """
    segments = parse_key_path(path)
    if not segments:
        return None

    resolved: List[Segment] = []
    current = obj
    for segment in segments:
        actual = _step(current, segment, ignore_case)
        if actual is None:
            return None
        resolved.append(actual)
        current = current[actual]
    return resolved


def resolve_key_paths(
    obj: Any,
    path: Union[str, List[Segment]],
    ignore_case: bool = True,
) -> List[List[Segment]]:
    """
    Resolve path against obj, fanning out over lists.

    A str segment applied to a list is applied to every item of the list,
    so "body.users.password" resolves for each user of a users array.
    """
    segments = parse_key_path(path)
    if not segments:
        return []

    results: List[List[Segment]] = []

    def walk(current: Any, remaining: List[Segment], prefix: List[Segment]) -> None:
        if not remaining:
            results.append(prefix)
            return
        segment = remaining[0]
        if isinstance(current, list) and isinstance(segment, str) and not segment.isdigit():
            for index, item in enumerate(current):
                walk(item, remaining, prefix + [index])
            return
        actual = _step(current, segment, ignore_case)
        if actual is None:
            return
        walk(current[actual], remaining[1:], prefix + [actual])

    walk(obj, segments, [])
    return results


def find_key_paths(obj: Any, key: str, ignore_case: bool = True) -> List[List[Segment]]:
    """Return concrete paths of every occurrence of key at any depth of obj."""
    results: List[List[Segment]] = []
    wanted = key.lower() if ignore_case else key

    def walk(current: Any, prefix: List[Segment]) -> None:
        if isinstance(current, dict):
            for name, value in list(current.items()):
                compare = name.lower() if ignore_case and isinstance(name, str) else name
                if compare == wanted:
                    results.append(prefix + [name])
                else:
                    walk(value, prefix + [name])
        elif isinstance(current, list):
            for index, item in enumerate(current):
                walk(item, prefix + [index])

    walk(obj, [])
    return results


def get_value(
    obj: Any,
    path: Union[str, List[Segment]],
    default: Any = None,
    ignore_case: bool = True,
) -> Any:
    """Return the value at path, or default if the path does not exist."""
    resolved = resolve_key_path(obj, path, ignore_case)
    if resolved is None:
        return default
    current = obj
    for segment in resolved:
        current = current[segment]
    return current


def has_value(obj: Any, path: Union[str, List[Segment]], ignore_case: bool = True) -> bool:
    """Check if path exists in obj."""
    return get_value(obj, path, _MISSING, ignore_case) is not _MISSING


def set_value(obj: Any, resolved: List[Segment], value: Any) -> None:
    """Set value at an already resolved concrete path."""
    if not resolved:
        return
    current = obj
    for segment in resolved[:-1]:
        current = current[segment]
    current[resolved[-1]] = value


def delete_value(obj: Any, resolved: List[Segment]) -> None:
    """Delete the value at an already resolved concrete path."""
    if not resolved:
        return
    current = obj
    for segment in resolved[:-1]:
        current = current[segment]
    del current[resolved[-1]]
