# Copyright (c) 2025 Divengine. MIT LICENSE.
#
# Div Functions
# =============
#
# Standalone utility functions that plain Python leaves to every project:
# coercion with defaults, validation predicates, string and array helpers,
# and a small "by-example" structural mapping engine.
#
# Main utilities
# - map: project a record, or a list of records, into a new shape.
# - cop: copy the fields of one node onto another node, in place.
# - conquer: flatten a list of pieces, or fold them into a single value.
#
# Minor utilities
# - isnode, ismap, islist, isfunc: identify value kinds.
# - haskey, getprop, setprop, items: key/value access on maps and lists.
# - clone: copy a JSON-like data structure.
# - stringify: human-friendly string version of a value.
# - is_*: validators (dates, UUIDs, emails, URLs, colors, wallets).
# - boolean, string, int_or_*, float_or_*: coercion with defaults.
# - upper, lower, trimer, teaser, remove_accent: string processing.
# - string_array, pad, divide, search: array helpers.
# - uuidv4, random_hash, secure_random_hash: generators.


from typing import *
from datetime import datetime
from urllib.parse import urlsplit
import hashlib
import json
import math
import re
import secrets
import unicodedata
import uuid

import structlog
from dateutil import parser as dateparser
from dateutil import tz


logger = structlog.get_logger(__name__)


# Regex patterns for validators and coercion.
R_UUID = re.compile(r'[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}', re.I)
R_ISO8601 = re.compile(r'(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(\.\d+)?(Z|([+-])(\d{2}):(\d{2}))')
R_HEX_COLOR = re.compile(r'#([0-9A-F]{6}|[0-9A-F]{3})', re.I)
R_USDT = re.compile(r'T[A-Za-z0-9]{33}')
R_EMAIL = re.compile(
    r"[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]{1,64}(\.[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]+)*"
    r'@([A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?\.)+[A-Za-z]{2,63}'
)
R_URL_SCHEME = re.compile(r'[A-Za-z][A-Za-z0-9+.-]*')
R_NUMERIC = re.compile(r'[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?')
R_INTEGER = re.compile(r'-?\d+')
R_SPACE = re.compile(r'\s')
R_SPACES = re.compile(r'\s+')
R_TAG = re.compile(r'<[^>]*>')
R_NON_DIGIT = re.compile(r'\D', re.ASCII)
R_TEASER_TOKEN = re.compile(r'(https?://\S+|@\S+|#\S+)')

# Mapping spec syntax: "field:modifier,modifier".
S_CN = ':'
S_CM = ','

# General strings.
S_MT = ''
S_SP = ' '
S_true = 'true'
S_false = 'false'
S_GMAIL = '@gmail.com'
S_INVALID_DATETIME = 'Invalid datetime'
S_DATE_FORMAT = '%Y-%m-%d'

# Pad directions.
STR_PAD_LEFT = 0
STR_PAD_RIGHT = 1

# Boolean tokens.
TRUE_TOKENS = (S_true, '1', 't')
FALSE_TOKENS = (S_false, '0', 'f')

# The standard undefined value for this language.
UNDEF = None


class FunctionsError(Exception):
    """Base class for errors raised by this library."""


class ConfigurationError(FunctionsError, ValueError):
    """A mapping specification is malformed."""


class ModifierError(FunctionsError):
    """
    A modifier failed while mapping a field. The original failure is
    available as `__cause__`.
    """

    def __init__(self, field: str, modifier: str, value: Any) -> None:
        self.field = field
        self.modifier = modifier
        self.value = value
        super().__init__(
            f"Modifier {modifier} failed for field {field} "
            f"with value {stringify(value, 47)}"
        )


# Node helpers
# ============


def isnode(val: Any = UNDEF) -> bool:
    "Value is a node - a map (dict) or list."
    return isinstance(val, (dict, list))


def ismap(val: Any = UNDEF) -> bool:
    "Value is a map (dict)."
    return isinstance(val, dict)


def islist(val: Any = UNDEF) -> bool:
    "Value is a list. Tuples are read as lists, but are never mutated."
    return isinstance(val, (list, tuple))


def isfunc(val: Any = UNDEF) -> bool:
    "Value is a function."
    return callable(val)


def _index(key: Any) -> Optional[int]:
    # Integer list index from an int or a digit string, else None.
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    if isinstance(key, str) and key.isdigit():
        return int(key)
    return None


def haskey(val: Any = UNDEF, key: Any = UNDEF) -> bool:
    """
    Node val has a member at key. Membership, not truthiness: a key holding
    None, 0, '' or False is still present.
    """
    if ismap(val):
        return key in val
    if islist(val):
        index = _index(key)
        return index is not None and 0 <= index < len(val)
    return False


def getprop(val: Any = UNDEF, key: Any = UNDEF, alt: Any = UNDEF) -> Any:
    "Safely get a member of a node, or alt when it is not present."
    if haskey(val, key):
        return val[key] if ismap(val) else val[_index(key)]
    return alt


def setprop(parent: Any, key: Any, val: Any):
    """
    Safely set a member of a dictionary or list, returning the parent.
    - None is a value like any other, and is stored.
    - For lists, key >= len(list) pads with None and appends.
    - For lists, keys that are not non-negative integers are ignored.
    """
    if ismap(parent):
        parent[key] = val

    elif isinstance(parent, list):
        index = _index(key)
        if index is None or index < 0:
            return parent

        if index < len(parent):
            parent[index] = val
        else:
            parent.extend([UNDEF] * (index - len(parent)))
            parent.append(val)

    return parent


def items(val: Any = UNDEF):
    "List the entries of a map or list as (key, value) tuples, in order."
    if ismap(val):
        return list(val.items())
    elif islist(val):
        return list(enumerate(val))
    else:
        return []


def clone(val: Any = UNDEF):
    """
    Clone a JSON-like data structure.
    NOTE: function values and other opaque objects are copied by reference.
    """
    if ismap(val):
        return {k: clone(v) for k, v in val.items()}
    elif isinstance(val, list):
        return [clone(v) for v in val]
    elif isinstance(val, tuple):
        return tuple(clone(v) for v in val)
    return val


def stringify(val: Any, maxlen: int = UNDEF):
    "Safely stringify a value for printing (NOT JSON!)."

    valstr = S_MT

    if val is UNDEF:
        return 'None'

    if isinstance(val, str):
        valstr = val
    else:
        try:
            valstr = json.dumps(val, sort_keys=True, separators=(',', ':'))
            valstr = valstr.replace('"', '')
        except (TypeError, ValueError):
            valstr = str(val)

    if maxlen is not UNDEF:
        json_len = len(valstr)
        valstr = valstr[:maxlen]

        if 3 < maxlen < json_len:
            valstr = valstr[:maxlen - 3] + '...'

    return valstr


def _isblank(val: Any) -> bool:
    # Loosely empty: None, False, zero, '', '0', or an empty container.
    if val is None or val is False:
        return True
    if isinstance(val, str):
        return val == S_MT or val == '0'
    if isinstance(val, (int, float)):
        return val == 0
    if isinstance(val, (dict, list, tuple)):
        return len(val) == 0
    return False


def _iszero(val: Any) -> bool:
    # A literal zero: 0, 0.0 or '0', but never False.
    if isinstance(val, str):
        return val == '0'
    if isinstance(val, bool):
        return False
    return isinstance(val, (int, float)) and val == 0


def _isnumber(val: Any) -> bool:
    return isinstance(val, (int, float)) and not isinstance(val, bool)


def _isnumeric(val: Any) -> bool:
    if _isnumber(val):
        return True
    return isinstance(val, str) and R_NUMERIC.fullmatch(val.strip()) is not None


def _intval(val: Any) -> int:
    # Leading-number integer conversion; anything unparseable is 0.
    if isinstance(val, bool):
        return int(val)
    if isinstance(val, int):
        return val
    if isinstance(val, float):
        return int(val) if math.isfinite(val) else 0
    if isinstance(val, str):
        found = R_NUMERIC.match(val.strip())
        if found is None:
            return 0
        numstr = found.group(0)
        if R_INTEGER.fullmatch(numstr.lstrip('+')):
            return int(numstr)
        num = float(numstr)
        return int(num) if math.isfinite(num) else 0
    if isinstance(val, (dict, list, tuple)):
        return 1 if len(val) else 0
    return 0


def _floatval(val: Any) -> float:
    if isinstance(val, (bool, int, float)):
        return float(val)
    if isinstance(val, str):
        found = R_NUMERIC.match(val.strip())
        return float(found.group(0)) if found else 0.0
    if isinstance(val, (dict, list, tuple)):
        return 1.0 if len(val) else 0.0
    return 0.0


def _numstr(val: Union[int, float]) -> str:
    if isinstance(val, float) and val.is_integer():
        return str(int(val))
    return str(val)


# Checkers
# ========


def is_closure(var: Any) -> bool:
    return isfunc(var)


def is_not_closure(var: Any) -> bool:
    return not is_closure(var)


def is_valid_date(date: str, format: str = S_DATE_FORMAT) -> bool:
    """
    The string is a real calendar date written exactly in the given
    strftime format. '2023-02-30' fails, as does '2023-7-20' for '%Y-%m-%d'.
    """
    try:
        parsed = datetime.strptime(date, format)
    except (TypeError, ValueError):
        return False
    return parsed.strftime(format) == date


def is_uuid(value: str) -> bool:
    "Value looks like 'xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx', hex digits in any case."
    return isinstance(value, str) and R_UUID.fullmatch(value) is not None


def is_iso8601(date: str) -> bool:
    "Value is a full ISO 8601 timestamp with a 'Z' or '+hh:mm' zone designator."
    return isinstance(date, str) and R_ISO8601.fullmatch(date) is not None


def is_array_of_uuid(uuids: Optional[Sequence[Any]]) -> bool:
    if uuids is None or len(uuids) == 0:
        return False
    return all(is_uuid(value) for value in uuids)


def is_email(email: str) -> bool:
    return isinstance(email, str) and R_EMAIL.fullmatch(email) is not None


def is_hex_color(color: str) -> bool:
    "Value is a '#RGB' or '#RRGGBB' color."
    return isinstance(color, str) and R_HEX_COLOR.fullmatch(color) is not None


def is_usdt(value: str) -> bool:
    "Value is a TRON-style USDT wallet address: 'T' and 33 alphanumerics."
    return isinstance(value, str) and R_USDT.fullmatch(value) is not None


def is_boolean(value: Any) -> bool:
    "Value is a bool, or the string 'true' or 'false' in any case."
    if isinstance(value, bool):
        return True
    if isinstance(value, str):
        return lower(value) in (S_true, S_false)
    return False


def is_upper(value: str) -> bool:
    return value.isupper()


def is_lower(value: str) -> bool:
    return value.islower()


def is_url(url: str) -> bool:
    "Value is an absolute URL with a scheme and a host, and no whitespace."
    if not isinstance(url, str) or R_SPACE.search(url):
        return False
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return R_URL_SCHEME.fullmatch(parts.scheme) is not None and bool(parts.netloc)


def something_or_null(value: Any) -> Any:
    "The value, or None when it is empty. Zero counts as something."
    if _isblank(value) and not _iszero(value):
        return None
    return value


# Converters
# ==========


def boolean(value: Any) -> bool:
    """
    Convert a value to a bool. Recognises the tokens 'true', '1', 't' and
    'false', '0', 'f' (any case, surrounding whitespace ignored) and the
    integer 1; anything else falls back to Python truthiness.
    """
    if isinstance(value, bool):
        return value

    if isinstance(value, str):
        value = lower(value).strip()
        if value in TRUE_TOKENS:
            return True
        if value in FALSE_TOKENS:
            return False
        return bool(value)

    if _isnumber(value) and value == 1:
        return True

    return bool(value)


def string(value: Any, criteria: Any = None) -> Optional[str]:
    """
    Convert a value to its canonical string form.

    Strings pass through, numbers render as decimal digits, bools as 'true'
    or 'false', maps and lists as compact JSON, and None as ''. When
    criteria is given and is falsy, or is a callable that rejects the
    value, the result is None.
    """
    if criteria is not None:
        if isfunc(criteria):
            if not criteria(value):
                return None
        elif not criteria:
            return None

    if isinstance(value, str):
        return value

    if isinstance(value, bool):
        return S_true if value else S_false

    if _isnumber(value):
        return _numstr(value)

    if value is None:
        return S_MT

    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(',', ':'), default=str)

    return str(value)


def string_nullable(value: Any) -> Optional[str]:
    return string(value, not (_isblank(value) and not _iszero(value)))


# Strings
# =======


def upper(value: Any) -> str:
    "Uppercase string form of value; None gives ''."
    if value is None:
        return S_MT
    return string(value).upper()


def lower(value: Any) -> str:
    "Lowercase string form of value; None gives ''."
    if value is None:
        return S_MT
    return string(value).lower()


def upper_nullable(value: Any) -> Optional[str]:
    return None if value is None else upper(value)


def lower_nullable(value: Any) -> Optional[str]:
    return None if value is None else lower(value)


def str_safe_replace_sensitive(input: Any, search: Any, replace: Any) -> str:
    "Replace every occurrence of search, after coercing all arguments to strings."
    search = string(search)
    replace = string(replace)
    input = string(input)

    if search == S_MT:
        return input

    return input.replace(search, replace)


def str_safe_replace(input: Any, search: Any, replace: Any) -> str:
    "Case-insensitive version of str_safe_replace_sensitive."
    search = string(search)
    replace = string(replace)
    input = string(input)

    if search == S_MT:
        return input

    return re.sub(re.escape(search), lambda _m: replace, input, flags=re.I)


def contains_sensitive(string_: Optional[str], search: Optional[str]) -> bool:
    return (search or S_MT) in (string_ or S_MT)


def contains(string_: Optional[str], search: Optional[str]) -> bool:
    "Case-insensitive substring test. None reads as ''."
    return (search or S_MT).casefold() in (string_ or S_MT).casefold()


def remove_accent(value: str, include_n_tilde: bool = False) -> str:
    """
    Strip combining accents, e.g. 'Canción' -> 'Cancion'. The letter ñ is
    kept unless include_n_tilde is set.
    """
    out = []
    for ch in value:
        if not include_n_tilde and ch in 'ñÑ':
            out.append(ch)
            continue
        decomposed = unicodedata.normalize('NFD', ch)
        out.append(S_MT.join(c for c in decomposed if unicodedata.category(c) != 'Mn'))
    return unicodedata.normalize('NFC', S_MT.join(out))


def teaser(text: Any, limit: int) -> str:
    """
    Plain-text excerpt of at most limit characters, followed by '...'.

    Tags are stripped and whitespace collapsed first. The cut falls on the
    last word boundary, and never splits a URL, @mention or #hashtag that
    straddles the limit; such a token is dropped entirely.
    """
    text = R_TAG.sub(S_MT, string(text))
    text = R_SPACES.sub(S_SP, text).strip()

    if len(text) <= limit:
        return text

    cut = text[:limit]
    last_space = cut.rfind(S_SP)
    if last_space != -1:
        cut = cut[:last_space]

    for token in R_TEASER_TOKEN.finditer(text):
        if token.start() < limit < token.end():
            cut = text[:token.start()]
            break

    return cut.strip() + '...'


def teaser150(text: Any) -> str:
    return teaser(text, 150)


def teaser200(text: Any) -> str:
    return teaser(text, 200)


def teaser300(text: Any) -> str:
    return teaser(text, 300)


def teaser500(text: Any) -> str:
    return teaser(text, 500)


def trimer(value: str, chars: Optional[str] = None) -> str:
    "Unicode-aware trim of chars (default: whitespace) from both ends."
    return value.strip(chars)


def trim_or_null(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return null_if_empty(trimer(value))


def clean_email_address(email_address: str) -> str:
    """
    Normalise an email address: lowercase, no whitespace anywhere, and no
    dots in the local part of gmail.com addresses.
    """
    email_address = lower(email_address.strip())
    email_address = R_SPACES.sub(S_MT, email_address)

    if S_GMAIL in email_address:
        local, _, domain = email_address.partition('@')
        email_address = local.replace('.', S_MT) + '@' + domain

    return email_address


def clean_phone_number(value: Optional[str], length: int = 10) -> Optional[str]:
    "Digits of a phone number, truncated to length."
    if value is None:
        return None
    return R_NON_DIGIT.sub(S_MT, value)[:length]


def url_nullable(url: Optional[str]) -> Optional[str]:
    "The URL, with 'http://' prefixed when that makes it valid; None when nothing does."
    if url is None:
        return None

    if not is_url(url):
        url = 'http://' + url

    return url if is_url(url) else None


def first_not_empty(*values: Any) -> Optional[str]:
    "First value that is not empty once trimmed."
    for value in values:
        if value is None:
            continue
        value = trimer(string(value))
        if not _isblank(value):
            return value
    return None


def length(value: Any) -> int:
    """
    Length of a value: characters for strings, members for containers,
    digits for numbers (so 0 has length 1), and 1 for True.
    """
    if value is None:
        return 0

    if isinstance(value, str):
        return len(value)

    if isinstance(value, bool):
        return 1 if value else 0

    if _isnumber(value):
        return len(string(value))

    if hasattr(value, '__len__'):
        return len(value)

    return 0


# Arrays
# ======


def string_array(value: Optional[Sequence[Any]]) -> Optional[List[str]]:
    if not value:
        return None
    return [string(item) for item in value]


def string_array_nullable(value: Optional[Sequence[Any]]) -> Optional[List[Optional[str]]]:
    if not value:
        return None
    return [string_nullable(item) for item in value]


def _isstringable(item: Any) -> bool:
    if isinstance(item, (str, int, float)):
        return True
    if item is None or isinstance(item, (dict, list, tuple)):
        return False
    return type(item).__str__ is not object.__str__


def array_filter_stringable(value: Any) -> Any:
    """
    Keep only the members that have a natural string form (scalars, and
    objects that define __str__). Map keys are preserved. None when nothing
    is left.
    """
    if value is None:
        return None

    if ismap(value):
        out = {k: v for k, v in value.items() if _isstringable(v)}
    else:
        out = [v for v in value if _isstringable(v)]

    if not out:
        return None

    return out


def integer_array(array: Any) -> Any:
    if ismap(array):
        return {k: _intval(v) for k, v in array.items()}
    if not islist(array):
        return []
    return [_intval(item) for item in array]


def split_comma_separated_ints(value: Optional[str]) -> List[int]:
    "'1, 2,x' -> [1, 2, 0]."
    if _isblank(value):
        return []
    return [_intval(part.strip()) for part in value.split(S_CM)]


def array_replace_values(array: Any, search: Any, replace: Any) -> Any:
    "Copy of array with members equal to search replaced."
    out = dict(array) if ismap(array) else list(array)
    for key, value in items(array):
        if value == search:
            out[key] = replace
    return out


def array_replace_values_strict(array: Any, search: Any, replace: Any) -> Any:
    "Like array_replace_values, but members must also have the type of search."
    out = dict(array) if ismap(array) else list(array)
    for key, value in items(array):
        if value is search or (type(value) is type(search) and value == search):
            out[key] = replace
    return out


def pad(value: Any, length: int, pad_value: Any = S_SP, pad_type: int = STR_PAD_RIGHT) -> Any:
    """
    Pad a string, number or list to length with pad_value.

    Strings are padded per character and numbers per digit, and keep their
    type (a padded float is parsed back as a float). Bools, maps and other
    objects are returned unchanged, as is anything already long enough.
    """
    if _isblank(pad_value) and not _iszero(pad_value):
        return value

    if isinstance(value, bool) or not (isinstance(value, (str, int, float, list, tuple))):
        return value

    parts = list(value) if islist(value) else list(string(value))
    if len(parts) >= length:
        return value

    padding = [pad_value] * (length - len(parts))
    parts = padding + parts if pad_type == STR_PAD_LEFT else parts + padding

    if islist(value):
        return parts

    joined = S_MT.join(string(part) for part in parts)

    if isinstance(value, str):
        return joined

    return _floatval(joined) if isinstance(value, float) else _intval(joined)


def divide(value: Any) -> Any:
    "Split a value into its parts: characters, digits, members."
    if value is None:
        return []
    if isinstance(value, str):
        return list(value)
    if ismap(value):
        return dict(value)
    if islist(value):
        return list(value)
    if isinstance(value, bool):
        return [value]
    if _isnumber(value):
        return list(string(value))
    return []


def search(haystack: Any, needle: Any, offset: int = 0) -> Any:
    """
    Position of needle in haystack, or None when it is not there.

    Strings and numbers are searched as text. Lists are searched from
    offset for a member equal to needle with the same type, and give an
    index; maps give the key. Empty haystacks and needles never match.
    """
    if _isblank(haystack) or _isblank(needle):
        return None

    if isinstance(haystack, bool):
        return 0 if haystack is needle else None

    if _isnumber(haystack):
        haystack = string(haystack)

    if isinstance(haystack, str):
        pos = haystack.find(string(needle), offset)
        return None if pos == -1 else pos

    if ismap(haystack) or islist(haystack):
        for key, value in items(haystack)[offset:]:
            if value is needle or (type(value) is type(needle) and value == needle):
                return key

    return None


def is_in(haystack: Any, needle: Any) -> bool:
    return search(haystack, needle) is not None


def validate_required_fields_of_list(array: Sequence[Any], required_fields: Any) -> bool:
    "Every item has every required field; see validate_required_fields_of_item."
    for item in array:
        if not validate_required_fields_of_item(item, required_fields):
            return False
    return True


def validate_required_fields_of_item(record: Any, required_fields: Any) -> bool:
    """
    The record (a dict) has every required field, and each field passes its
    validator. required_fields maps field names to validator callables; a
    list of names, or integer keys, only require that the field exists.
    """
    if not ismap(record):
        return False

    for field, validator in items(required_fields):
        if _isnumber(field) and isinstance(validator, str):
            field = validator
            validator = _exists

        if field not in record or not validator(record[field]):
            return False

    return True


def _exists(_value: Any) -> bool:
    return True


# Numeric
# =======


def int_or_min(value: Any, min: int) -> int:
    "Integer value of value, but never less than min."
    num = _intval(value)
    return min if num < min else num


def int_or_max(value: Any, max: int) -> int:
    "Integer value of value, but never more than max."
    num = _intval(value)
    return max if num > max else num


def int_or_default(value: Any, default: Optional[int] = 0) -> Optional[int]:
    "Integer value of value, or default when value is empty. Zero is not empty."
    if _isblank(value) and not _iszero(value):
        return default
    return _intval(value)


def int_or_null(value: Any) -> Optional[int]:
    return int_or_default(value, None)


def non_zero_or_default(value: int, default: Optional[int] = -1) -> Optional[int]:
    return default if value == 0 else value


def non_zero_or_null(value: int) -> Optional[int]:
    return non_zero_or_default(value, None)


def numeric_or_default(value: Any, default: Optional[int] = 0) -> Optional[int]:
    "Integer value of a numeric value or numeric string, else default."
    return _intval(value) if _isnumeric(value) else default


def numeric_or_null(value: Any) -> Optional[int]:
    return numeric_or_default(value, None)


def float_or_default(value: Any, default: Optional[float] = 0.0) -> Optional[float]:
    "Float value of value, or default when value is empty. Zero is not empty."
    if _isblank(value) and not _iszero(value):
        return default
    return _floatval(value)


def float_or_null(value: Any) -> Optional[float]:
    return float_or_default(value, None)


def division(a: float, b: float) -> Optional[float]:
    "a / b, or None when b is zero."
    if b == 0:
        return None
    return a / b


# Processors
# ==========


def datetime_to_date(datetime_str: str) -> str:
    "Date part ('%Y-%m-%d') of a free-form datetime string."
    try:
        return dateparser.parse(datetime_str).strftime(S_DATE_FORMAT)
    except (TypeError, ValueError, OverflowError):
        return S_INVALID_DATETIME


def convert_utc_to_local_time(utc_date: str, timezone: str = 'America/New_York') -> str:
    """
    Convert a UTC datetime string to the given IANA timezone, formatted as
    '%Y-%m-%dT%H:%M:%S+hh:mm'. An explicit offset in utc_date wins over UTC.
    """
    zone = tz.gettz(timezone)
    if zone is None:
        raise ValueError(f"Unknown timezone: {timezone}")

    moment = dateparser.parse(utc_date)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=tz.UTC)

    return moment.astimezone(zone).isoformat(timespec='seconds')


def true(value: Any) -> bool:
    return boolean(value)


def false(value: Any) -> bool:
    return not boolean(value)


def not_(value: Any) -> bool:
    "Alias of false, for readable conditions."
    return false(value)


def is_true(value: Any) -> bool:
    return true(value)


def is_false(value: Any) -> bool:
    return false(value)


def record_or_null(value: Any) -> Optional[Dict[Any, Any]]:
    return value if ismap(value) else None


def null_if_empty(value: Any, value_to_return: Any = None) -> Any:
    """
    None when value is empty (zero is not empty). Otherwise value_to_return,
    called with value when it is a function, or value itself when it is None.
    """
    if _isblank(value) and not _iszero(value):
        return None

    if isfunc(value_to_return):
        return value_to_return(value)

    return value if value_to_return is None else value_to_return


# Generators
# ==========


def uuidv4() -> str:
    "Random (version 4) UUID string."
    return str(uuid.uuid4())


def random_hash(algorithm: str = 'md5') -> str:
    """
    Hex digest of 16 random bytes. Not for cryptographic use; see
    secure_random_hash. Unknown algorithms raise ValueError.
    """
    return hashlib.new(algorithm, secrets.token_bytes(16)).hexdigest()


def secure_random_hash() -> str:
    "64 hex characters from 32 cryptographically secure random bytes."
    return secrets.token_hex(32)


# Mapping
# =======


# Named modifiers available to "field:modifier,modifier" references.
MODIFIERS: Dict[str, Callable[[Any], Any]] = {
    'boolean': boolean,
    'clean_email': clean_email_address,
    'clean_phone': clean_phone_number,
    'date': datetime_to_date,
    'float': float_or_null,
    'int': int_or_null,
    'integer_array': integer_array,
    'lower': lower,
    'lower_nullable': lower_nullable,
    'remove_accent': remove_accent,
    'something_or_null': something_or_null,
    'string': string,
    'string_array': string_array,
    'string_nullable': string_nullable,
    'teaser150': teaser150,
    'teaser200': teaser200,
    'teaser300': teaser300,
    'teaser500': teaser500,
    'trim': trimer,
    'trim_or_null': trim_or_null,
    'upper': upper,
    'upper_nullable': upper_nullable,
    'url': url_nullable,
}


class Template:
    """
    Shape-by-example mapping spec. The template's fields are cloned as the
    initial target, then each field name is looked up in the source under
    the same name (absent fields become None).
    """

    def __init__(self, fields: Dict[str, Any]) -> None:
        self.fields = fields


class FieldRef:
    """
    Copy the source field `name`, then apply each modifier in order.
    Modifiers are functions, or names from the modifier table.
    """

    def __init__(self, name: str, *modifiers: Any) -> None:
        self.name = name
        self.modifiers = list(modifiers)


class Transform:
    "Set the target field to fn(source, current)."

    def __init__(self, fn: Callable[[Any, Any], Any]) -> None:
        self.fn = fn


class Literal:
    "Set the target field to a copy of value, even when value is a string."

    def __init__(self, value: Any) -> None:
        self.value = value


class Nested:
    "Map the source field `name` with its own spec."

    def __init__(self, name: str, spec: Any) -> None:
        self.name = name
        self.spec = spec


class _Plan:
    # Compiled mapping spec: template fields, and (target key, rule) pairs.
    def __init__(self, initial: Dict[str, Any], rules: List[Tuple[Any, Any]]) -> None:
        self.initial = initial
        self.rules = rules


def map(source: Any, spec: Any, modifiers: Optional[Dict[str, Callable]] = None) -> Any:
    """
    Map a record, or a list of records, to a new record shaped by spec.

    The spec is one of:
    - a function: the result is spec(source);
    - a Template: shape-by-example, see Template;
    - a dict from target key to rule, or a list of field names, where a
      positional entry 'name' is short for 'name': 'name'.

    Rules:
    - 'field' copies the source field, or None when the source lacks it;
    - 'field:upper,trim' also applies the named modifiers left to right
      (an absent field stays None and skips its modifiers);
    - a function is called as fn(source, current), where current is the
      source's value under the target key (None when absent);
    - FieldRef, Transform, Literal and Nested are the explicit forms;
    - any other value is copied into the target as a literal.

    The source is never modified and the result shares no containers with
    it. A malformed spec raises ConfigurationError before any field is
    read; a failing modifier raises ModifierError.
    """
    plan = _compile(spec, _modifier_table(modifiers))
    return _project(source, plan)


def _modifier_table(modifiers: Optional[Dict[str, Callable]]) -> Dict[str, Callable]:
    table = dict(MODIFIERS)
    if modifiers:
        table.update(modifiers)
    return table


def _compile(spec: Any, table: Dict[str, Callable]) -> Any:
    if isfunc(spec):
        return spec

    initial = {}
    plain = False

    if isinstance(spec, Template):
        if not ismap(spec.fields):
            raise ConfigurationError(
                f"Template fields must be a dict, found {type(spec.fields).__name__}"
            )
        initial = clone(spec.fields)
        entries = [(key, key) for key in spec.fields]
        plain = True
    elif ismap(spec):
        entries = items(spec)
    elif islist(spec):
        entries = items(spec)
    else:
        raise ConfigurationError(f"Unsupported mapping spec: {type(spec).__name__}")

    rules = []
    for key, value in entries:
        positional = _isnumber(key)
        if positional:
            if not isinstance(value, str):
                raise ConfigurationError(
                    f"Positional mapping entry {key} must be a field name, "
                    f"found {stringify(value, 47)}"
                )
            key = value

        if plain or positional:
            _plain_name(key)

        rules.append((key, _rule(key, value, table)))

    return _Plan(initial, rules)


def _plain_name(name: Any) -> str:
    if not isinstance(name, str) or name == S_MT:
        raise ConfigurationError(f"Field name must be a non-empty string, found {name!r}")
    if S_CN in name:
        raise ConfigurationError(
            f"Field name {name!r} contains the reserved delimiter {S_CN!r}"
        )
    return name


def _rule(key: Any, value: Any, table: Dict[str, Callable]) -> Any:
    if isinstance(value, FieldRef):
        rule = FieldRef(_plain_name(value.name))
        rule.modifiers = _resolve_modifiers(value.name, value.modifiers, table)
        return rule

    if isinstance(value, Nested):
        rule = Nested(_plain_name(value.name), _compile(value.spec, table))
        return rule

    if isinstance(value, Transform):
        if not isfunc(value.fn):
            raise ConfigurationError(
                f"Transform for mapping entry {key!r} must be a function, "
                f"found {stringify(value.fn, 47)}"
            )
        return value

    if isinstance(value, Literal):
        return value

    if isfunc(value):
        return Transform(value)

    if isinstance(value, str):
        name, sep, suffix = value.partition(S_CN)
        if name == S_MT:
            raise ConfigurationError(f"Empty field name in mapping entry {key!r}")
        rule = FieldRef(name)
        if sep:
            rule.modifiers = _resolve_modifiers(name, suffix.split(S_CM), table)
        return rule

    return Literal(value)


def _resolve_modifiers(
        field: str,
        modifiers: List[Any],
        table: Dict[str, Callable]
) -> List[Tuple[str, Callable]]:
    "Resolve modifier names to (name, function) pairs."
    resolved = []
    for modifier in modifiers:
        if isfunc(modifier):
            resolved.append((getattr(modifier, '__name__', repr(modifier)), modifier))
            continue

        if not isinstance(modifier, str) or modifier.strip() == S_MT:
            raise ConfigurationError(f"Empty or invalid modifier for field {field!r}")

        name = modifier.strip()
        if name not in table:
            raise ConfigurationError(f"Unknown modifier {name!r} for field {field!r}")

        resolved.append((name, table[name]))

    return resolved


def _project(source: Any, plan: Any) -> Any:
    if source is None:
        source = {}

    if islist(source):
        return [_project(item, plan) for item in source]

    if isfunc(plan):
        return clone(plan(source))

    target = clone(plan.initial)

    for key, rule in plan.rules:
        if isinstance(rule, FieldRef):
            # Absent fields are None, and are not passed through modifiers.
            if ismap(source) and haskey(source, rule.name):
                value = clone(source[rule.name])
                target[key] = _modify(rule.name, value, rule.modifiers)
            else:
                target[key] = UNDEF

        elif isinstance(rule, Transform):
            current = clone(getprop(source, key)) if ismap(source) else UNDEF
            target[key] = clone(rule.fn(source, current))

        elif isinstance(rule, Nested):
            value = clone(getprop(source, rule.name)) if ismap(source) else UNDEF
            target[key] = UNDEF if value is UNDEF else clone(_project(value, rule.spec))

        else:
            target[key] = clone(rule.value)

    return target


def _modify(field: str, value: Any, modifiers: List[Tuple[str, Callable]]) -> Any:
    out = value
    for name, modifier in modifiers:
        try:
            out = modifier(out)
        except Exception as err:
            logger.debug("modifier_failed", field=field, modifier=name, error=str(err))
            raise ModifierError(field, name, value) from err
    return out


def cop(target: Any, source: Any, strict: bool = False) -> Any:
    """
    Copy every member of source onto target, in place, and return target.

    Maps and lists mix freely: list members are keyed by index. In strict
    mode only keys that target already has are overwritten; otherwise new
    keys are added (a list target grows, padding with None). Values are
    cloned, so target never shares containers with source.

    When target is not a dict or list there is nothing to copy into, and a
    copy of source is returned in its place. When source is not a node,
    target is returned untouched.
    """
    if not isinstance(target, (dict, list)):
        return clone(source)

    if not (ismap(source) or islist(source)):
        return target

    for key, value in items(source):
        if strict and not haskey(target, key):
            continue

        if isinstance(target, list) and _index(key) is None:
            logger.debug("cop_key_skipped", key=key, reason="not a list index")
            continue

        setprop(target, key, clone(value))

    return target


def conquer(pieces: Any, recursive: bool = True) -> Any:
    """
    Flatten pieces. Without recursive, exactly one level of nested lists is
    spliced into the result list. With recursive (the default), all levels
    are flattened and the pieces are joined into one value: an int when
    every piece is an int, otherwise a string. None pieces render as ''
    and so vanish from the joined value.

    conquer([1, 2, 3]) -> 123
    conquer([[1, 'a'], [2]], recursive=False) -> [1, 'a', 2]
    conquer([]) -> ''
    """
    if not islist(pieces):
        pieces = [pieces]

    if not recursive:
        out = []
        for piece in pieces:
            if islist(piece):
                out.extend(piece)
            else:
                out.append(piece)
        return out

    flat = list(_flatten(pieces))
    joined = S_MT.join(string(piece) for piece in flat)

    if (
        flat
        and all(_isnumber(piece) and isinstance(piece, int) for piece in flat)
        and R_INTEGER.fullmatch(joined)
    ):
        return int(joined)

    return joined


def _flatten(pieces: Any):
    for piece in pieces:
        if islist(piece):
            yield from _flatten(piece)
        else:
            yield piece


# Create a FunctionsUtility class with all utility functions as attributes
class FunctionsUtility:
    def __init__(self):
        for name in __all__:
            value = globals()[name]
            if isfunc(value) and not isinstance(value, type):
                setattr(self, name, value)


__all__ = [
    'ConfigurationError',
    'FieldRef',
    'FunctionsError',
    'FunctionsUtility',
    'Literal',
    'MODIFIERS',
    'ModifierError',
    'Nested',
    'STR_PAD_LEFT',
    'STR_PAD_RIGHT',
    'Template',
    'Transform',
    'array_filter_stringable',
    'array_replace_values',
    'array_replace_values_strict',
    'boolean',
    'clean_email_address',
    'clean_phone_number',
    'clone',
    'conquer',
    'contains',
    'contains_sensitive',
    'convert_utc_to_local_time',
    'cop',
    'datetime_to_date',
    'divide',
    'division',
    'false',
    'first_not_empty',
    'float_or_default',
    'float_or_null',
    'getprop',
    'haskey',
    'int_or_default',
    'int_or_max',
    'int_or_min',
    'int_or_null',
    'integer_array',
    'is_array_of_uuid',
    'is_boolean',
    'is_closure',
    'is_email',
    'is_false',
    'is_hex_color',
    'is_in',
    'is_iso8601',
    'is_lower',
    'is_not_closure',
    'is_true',
    'is_upper',
    'is_url',
    'is_usdt',
    'is_uuid',
    'is_valid_date',
    'isfunc',
    'islist',
    'ismap',
    'isnode',
    'items',
    'length',
    'lower',
    'lower_nullable',
    'map',
    'non_zero_or_default',
    'non_zero_or_null',
    'not_',
    'null_if_empty',
    'numeric_or_default',
    'numeric_or_null',
    'pad',
    'random_hash',
    'record_or_null',
    'remove_accent',
    'search',
    'secure_random_hash',
    'setprop',
    'something_or_null',
    'split_comma_separated_ints',
    'str_safe_replace',
    'str_safe_replace_sensitive',
    'string',
    'string_array',
    'string_array_nullable',
    'string_nullable',
    'stringify',
    'teaser',
    'teaser150',
    'teaser200',
    'teaser300',
    'teaser500',
    'trim_or_null',
    'trimer',
    'true',
    'upper',
    'upper_nullable',
    'url_nullable',
    'uuidv4',
    'validate_required_fields_of_item',
    'validate_required_fields_of_list',
]
