"""
Obfuscation and removal of sensitive data in pact records.

The preprocessor runs on every record before it is saved and before it is
compared. It supports four transformations, applied in this order:

1. **pick**: keep only the listed keys
2. **regex_replace**: rewrite string values with "/pattern/replacement/flags"
3. **obfuscate**: replace values with a fixed pattern (default "****")
4. **ignore**: remove keys entirely

Key paths are dot/bracket separated and match keys case-insensitively by
default. "prefix..leaf" matches "leaf" at any depth below "prefix". Cookie
headers are addressed per cookie, e.g. "request.headers.cookie.XSRF-TOKEN"
or "response.headers.set-cookie.authorization". Non-existent paths are
skipped silently.

JSON schemas stored in "$body" are structural metadata and are never
obfuscated.
"""

import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pact_sdk.config import merge_options, preprocessor_options_from_env
from pact_sdk.keypath import (
    Segment,
    find_key,
    find_key_paths,
    format_key_path,
    get_value,
    parse_key_path,
    resolve_key_path,
    resolve_key_paths,
)

logger = logging.getLogger(__name__)

DEFAULT_OBFUSCATION_PATTERN = "****"

DEFAULT_IGNORE = [
    "request.headers.accept-encoding",
    "response.headers.cache-control",
    "response.headers.content-length",
    "response.headers.content-encoding",
    "response.headers.transfer-encoding",
    "response.headers.keep-alive",
]

DEFAULT_OBFUSCATE = [
    "request.headers.cookie.authorization",
    "request.headers.cookie.XSRF-TOKEN",
    "request.headers.authorization",
    "request.headers.X-XSRF-TOKEN",
    "response.headers.set-cookie.authorization",
    "response.headers.set-cookie.XSRF-TOKEN",
    "response.body.password",
    "response.body.users.password",
]

DEFAULT_OPTIONS: Dict[str, Any] = {
    "ignore": DEFAULT_IGNORE,
    "obfuscate": DEFAULT_OBFUSCATE,
    "obfuscation_pattern": DEFAULT_OBFUSCATION_PATTERN,
    "ignore_case": True,
}

# Top-level pact keys that are never targets themselves
RESERVED_KEYS = ("id", "pact", "info", "records")

SCHEMA_KEY = "$body"

_AUTH_VALUE = re.compile(r"^(Bearer|Basic)\s+(.+)$", re.IGNORECASE)
_REGEX_REPLACE = re.compile(r"^/(.+?)(?<!\\)/(.*?)(?<!\\)/([gimsuy]*)$")
_SET_COOKIE_SPLIT = re.compile(r",\s*(?=[^;,=\s]+=)")


@dataclass
class PreprocessorOptions:
    """
    Options of the preprocessor.

    Unset (None) options fall through to lower priority sources when merged.
    """
    ignore: Optional[List[str]] = None
    obfuscate: Optional[List[str]] = None
    obfuscation_pattern: Optional[str] = None
    ignore_case: Optional[bool] = None
    pick: Optional[Union[Dict[str, List[str]], List[str]]] = None
    regex_replace: Optional[Dict[str, Union[str, List[str]]]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "PreprocessorOptions":
        """Create options from a dict, accepting camelCase keys too."""
        data = dict(data or {})
        aliases = {
            "obfuscationPattern": "obfuscation_pattern",
            "ignoreCase": "ignore_case",
            "regexReplace": "regex_replace",
        }
        for alias, name in aliases.items():
            if alias in data and name not in data:
                data[name] = data.pop(alias)
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)

    def to_info(self) -> Dict[str, Any]:
        """camelCase form stored in pact info."""
        result = {}
        for key, value in self.to_dict().items():
            parts = key.split("_")
            result[parts[0] + "".join(p.title() for p in parts[1:])] = value
        return result


OptionsLike = Union[PreprocessorOptions, Mapping[str, Any], None]


def _as_dict(options: OptionsLike) -> Dict[str, Any]:
    if options is None:
        return {}
    if isinstance(options, PreprocessorOptions):
        return options.to_dict()
    return PreprocessorOptions.from_dict(options).to_dict()


class PactPreprocessor:
    """
    Applies ignore/obfuscate/pick/regex_replace options in place.

    Usage:
        preprocessor = PactPreprocessor({"obfuscate": ["response.body.secret"]})
        preprocessor.apply(record)
        preprocessor.apply(pact, {"ignore": ["request.headers.x-trace"]})
    """

    def __init__(self, options: OptionsLike = None):
        self.options = PreprocessorOptions.from_dict(_as_dict(options))

    def resolve_options(self, options: OptionsLike = None) -> PreprocessorOptions:
        """
        Merge option sources.

        Priority, highest first: per-call options, this instance's options,
        environment, built-in defaults.
        """
        return PreprocessorOptions.from_dict(merge_options(
            DEFAULT_OPTIONS,
            preprocessor_options_from_env(),
            self.options.to_dict(),
            _as_dict(options),
        ))

    def apply(self, obj: Any, options: OptionsLike = None) -> None:
        """
        Preprocess a live response dict, a record or a pact, in place.

        Pacts (objects or dicts with "records") are processed record by record.
        """
        if obj is None:
            return
        resolved = self.resolve_options(options)

        records = _records_of(obj)
        if records is not None:
            for record in records:
                self._apply_one(record, resolved)
            return
        self._apply_one(obj, resolved)

    def _apply_one(self, obj: Any, options: PreprocessorOptions) -> None:
        if isinstance(obj, dict):
            self._transform(obj, options)
            return

        # PactRecord like objects: work on a dict view and write back
        if hasattr(obj, "request") and hasattr(obj, "response"):
            view = {"request": obj.request, "response": obj.response}
            if getattr(obj, "auth", None) is not None:
                view["auth"] = obj.auth
            if getattr(obj, "options", None) is not None:
                view["options"] = obj.options
            self._transform(view, options)
            obj.request = view.get("request", {})
            obj.response = view.get("response", {})
            if hasattr(obj, "auth"):
                obj.auth = view.get("auth")
            if hasattr(obj, "options"):
                obj.options = view.get("options")

    def _transform(self, obj: Dict[str, Any], options: PreprocessorOptions) -> None:
        ignore_case = options.ignore_case is not False
        pattern = options.obfuscation_pattern
        if pattern is None:
            pattern = DEFAULT_OBFUSCATION_PATTERN

        if options.pick:
            _apply_pick(obj, options.pick, ignore_case)

        if options.regex_replace:
            for key, expressions in options.regex_replace.items():
                if isinstance(expressions, str):
                    expressions = [expressions]
                _apply_regex_replace(obj, key, expressions, ignore_case)

        for key in _valid_keys(options.obfuscate):
            obfuscate_key(obj, key, pattern, ignore_case)

        for key in _valid_keys(options.ignore):
            remove_key(obj, key, ignore_case)


def _records_of(obj: Any) -> Optional[list]:
    if isinstance(obj, dict):
        records = obj.get("records")
        return records if isinstance(records, list) else None
    records = getattr(obj, "records", None)
    return records if isinstance(records, list) else None


def _valid_keys(keys: Optional[List[str]]) -> List[str]:
    return [k for k in (keys or []) if k and k.lower() not in RESERVED_KEYS]


def _targets(obj: Any, key: str, ignore_case: bool) -> List[Tuple[Any, Segment]]:
    """Resolve key to (parent, key) pairs of existing values."""
    if ".." in key:
        prefix, leaf = key.split("..", 1)
        if not leaf:
            return []
        prefix_path: List[Segment] = []
        if prefix:
            resolved = resolve_key_path(obj, prefix, ignore_case)
            if resolved is None:
                return []
            prefix_path = resolved
        target = get_value(obj, prefix_path) if prefix_path else obj
        paths = [prefix_path + p for p in find_key_paths(target, leaf, ignore_case)]
    else:
        paths = resolve_key_paths(obj, key, ignore_case)

    targets = []
    for path in paths:
        if SCHEMA_KEY in path:
            continue
        parent = get_value(obj, path[:-1]) if len(path) > 1 else obj
        targets.append((parent, path[-1]))
    return targets


def _cookie_parts(key: str) -> Optional[Tuple[List[Segment], Optional[str], bool]]:
    """Split a cookie key path into (header path, cookie name, is set-cookie)."""
    segments = parse_key_path(key)
    lowered = [s.lower() if isinstance(s, str) else s for s in segments]
    for header in ("set-cookie", "cookie"):
        if header in lowered:
            index = lowered.index(header)
            name = segments[index + 1] if index + 1 < len(segments) else None
            return segments[:index + 1], name, header == "set-cookie"
    return None


def obfuscate_key(obj: Any, key: str, pattern: str = DEFAULT_OBFUSCATION_PATTERN,
                  ignore_case: bool = True) -> None:
    """Replace the value at key with pattern. Authorization keeps its scheme."""
    cookie = _cookie_parts(key)
    if cookie is not None:
        _update_cookies(obj, cookie, ignore_case, lambda name, value: pattern)
        return

    for parent, actual in _targets(obj, key, ignore_case):
        value = parent[actual]
        if value is None:
            continue
        match = _AUTH_VALUE.match(value) if isinstance(value, str) else None
        is_auth = isinstance(actual, str) and actual.lower() == "authorization"
        if is_auth and match and match.group(2).strip():
            parent[actual] = f"{match.group(1)} {pattern}"
        else:
            parent[actual] = pattern


def remove_key(obj: Any, key: str, ignore_case: bool = True) -> None:
    """Remove the value at key."""
    cookie = _cookie_parts(key)
    if cookie is not None:
        _update_cookies(obj, cookie, ignore_case, None)
        return

    # Delete from the back so list indices stay valid
    for parent, actual in reversed(_targets(obj, key, ignore_case)):
        del parent[actual]


def _update_cookies(
    obj: Any,
    cookie: Tuple[List[Segment], Optional[str], bool],
    ignore_case: bool,
    replace: Optional[Callable[[str, str], str]],
) -> None:
    """Obfuscate (replace given) or remove (replace None) cookies of a header."""
    header_path, name, is_set_cookie = cookie
    resolved = resolve_key_path(obj, header_path, ignore_case)
    if resolved is None:
        return
    parent = get_value(obj, resolved[:-1]) if len(resolved) > 1 else obj
    header_key = resolved[-1]
    header = parent[header_key]
    if not header:
        return

    if name is None:
        if replace is None:
            del parent[header_key]
            return
        wanted = None
    else:
        wanted = str(name).lower() if ignore_case else str(name)

    def matches(cookie_name: str) -> bool:
        if wanted is None:
            return True
        return (cookie_name.lower() if ignore_case else cookie_name) == wanted

    if is_set_cookie:
        values = header if isinstance(header, list) else _SET_COOKIE_SPLIT.split(str(header))
        result = []
        for entry in values:
            cookie_name, _, rest = str(entry).partition("=")
            cookie_name = cookie_name.strip()
            if not matches(cookie_name):
                result.append(entry)
                continue
            if replace is None:
                continue
            _, sep, attributes = rest.partition(";")
            result.append(f"{cookie_name}={replace(cookie_name, rest)}{sep}{attributes}")
        if not result:
            del parent[header_key]
        else:
            parent[header_key] = result if isinstance(header, list) else ", ".join(result)
        return

    pairs = []
    for part in str(header).split(";"):
        if not part.strip():
            continue
        cookie_name, _, value = part.strip().partition("=")
        if matches(cookie_name):
            if replace is None:
                continue
            value = replace(cookie_name, value)
        pairs.append(f"{cookie_name}={value}")
    if not pairs:
        del parent[header_key]
    else:
        parent[header_key] = "; ".join(pairs)


def parse_regex_replace(expression: str) -> Tuple[re.Pattern, str, int]:
    """
    Parse "/pattern/replacement/flags" into (regex, replacement, count).

    The "g" flag replaces every occurrence, otherwise only the first.
    "$1" style group references are accepted in the replacement.

    Raises:
        ValueError: If expression is not in the expected format
    """
    if not expression or not isinstance(expression, str):
        raise ValueError("Invalid replacement expression input. Regex must be a string.")
    match = _REGEX_REPLACE.match(expression)
    if not match:
        raise ValueError(f"Invalid replacement regular expression: {expression}")
    pattern, replacement, flags = match.groups()
    re_flags = 0
    if "i" in flags:
        re_flags |= re.IGNORECASE
    if "m" in flags:
        re_flags |= re.MULTILINE
    if "s" in flags:
        re_flags |= re.DOTALL
    replacement = re.sub(r"\$(\d+)", r"\\g<\1>", replacement)
    return re.compile(pattern, re_flags), replacement, 0 if "g" in flags else 1


def perform_regex_replace(value: Any, expressions: List[Tuple[re.Pattern, str, int]]) -> Any:
    """Apply parsed expressions to value, recursing into dicts and lists."""
    if isinstance(value, str):
        for regex, replacement, count in expressions:
            value = regex.sub(replacement, value, count=count)
        return value
    if isinstance(value, dict):
        return {k: perform_regex_replace(v, expressions) for k, v in value.items()}
    if isinstance(value, list):
        return [perform_regex_replace(v, expressions) for v in value]
    return value


def _apply_regex_replace(obj: Any, key: str, expressions: List[str], ignore_case: bool) -> None:
    parsed = []
    for expression in expressions:
        try:
            parsed.append(parse_regex_replace(expression))
        except (ValueError, re.error) as e:
            logger.warning(f"Skipping regex replace for {key}: {e}")
    if not parsed:
        return
    for parent, actual in _targets(obj, key, ignore_case):
        if parent[actual] is not None:
            parent[actual] = perform_regex_replace(parent[actual], parsed)


def _apply_pick(obj: Dict[str, Any], pick: Union[Dict[str, List[str]], List[str]],
                ignore_case: bool) -> None:
    if isinstance(pick, dict):
        keep_paths = []
        for parent, children in pick.items():
            if not children:
                keep_paths.append(parent)
            for child in children or []:
                keep_paths.append(f"{parent}.{child}")
        _filter_keep_paths(obj, keep_paths, ignore_case)
    elif isinstance(pick, (list, tuple)):
        keep = [k.lower() if ignore_case else k for k in pick]
        for key in list(obj.keys()):
            if (key.lower() if ignore_case else key) not in keep:
                del obj[key]


def _filter_keep_paths(obj: Any, keep_paths: List[str], ignore_case: bool) -> None:
    def prep(path: str) -> str:
        return path.lower() if ignore_case else path

    keep = [prep(format_key_path(parse_key_path(p))) for p in keep_paths]

    def should_keep(path: str) -> bool:
        path = prep(path)
        return any(k == path or k.startswith(f"{path}.") for k in keep)

    def walk(current: Any, prefix: str) -> None:
        if isinstance(current, list):
            for item in current:
                walk(item, prefix)
            return
        if not isinstance(current, dict):
            return
        for key in list(current.keys()):
            full = f"{prefix}.{key}" if prefix else str(key)
            if not should_keep(full):
                del current[key]
            elif prep(full) not in keep:
                walk(current[key], full)

    walk(obj, "")


def header_value(headers: Optional[Mapping[str, Any]], name: str) -> Any:
    """Case-insensitive header lookup."""
    if not headers:
        return None
    key = find_key(dict(headers), name, True)
    return headers[key] if key is not None else None
