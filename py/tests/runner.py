# Test runner that uses the test model in functions.json.

import os
import json
import re
import traceback
from typing import Any, Dict, Callable, TypedDict


UNDEFMARK = '__UNDEF__'  # Entry has no 'out': the expected result is None.


class RunPack(TypedDict):
    spec: Dict[str, Any]
    runset: Callable
    runsetflags: Callable
    subject: Callable
    utility: Any


def makeRunner(testfile: str, utility: Any):

    def runner(name: str) -> RunPack:
        spec = resolve_spec(name, testfile)
        subject = resolve_subject(name, utility)

        def runsetflags(testspec, flags, testsubject):
            flags = resolve_flags(flags)
            testsubject = testsubject or subject

            for entry in testspec['set']:
                try:
                    entry = resolve_entry(entry, flags)
                    args = resolve_args(entry, utility)

                    res = testsubject(*args)
                    entry['res'] = res
                    check_result(entry, res, flags)

                except Exception as err:
                    handle_error(entry, err, utility)

        def runset(testspec, testsubject):
            return runsetflags(testspec, {}, testsubject)

        runpack = {
            "spec": spec,
            "runset": runset,
            "runsetflags": runsetflags,
            "subject": subject,
            "utility": utility,
        }

        return runpack

    return runner


def resolve_spec(name: str, testfile: str) -> Dict[str, Any]:
    with open(os.path.join(os.path.dirname(__file__), testfile), 'r', encoding='utf-8') as f:
        alltests = json.load(f)

    if name in alltests:
        spec = alltests[name]
    else:
        spec = alltests

    return spec


def resolve_subject(name: str, utility: Any):
    return getattr(utility, name, None)


def resolve_flags(flags: Dict[str, Any] = None) -> Dict[str, bool]:
    if flags is None:
        flags = {}

    # Compare types as well as values, so that 1 and 1.0 and True differ.
    flags["strict"] = flags.get("strict", False)

    return flags


def resolve_entry(entry: Dict[str, Any], flags: Dict[str, bool]) -> Dict[str, Any]:
    # Set default output value for missing 'out' field
    if 'out' not in entry and 'err' not in entry:
        entry['out'] = UNDEFMARK

    return entry


def resolve_args(entry, utility):
    args = []

    if 'args' in entry:
        args = utility.clone(entry['args'])
    elif 'in' in entry:
        args = [utility.clone(entry['in'])]

    return args


def check_result(entry, res, flags):
    if 'err' in entry:
        raise AssertionError(
            f"Expected error: {entry['err']}, got: {res}\n"
            f"Entry: {json.dumps(entry, indent=2, default=jsonfallback)}"
        )

    out = entry.get('out')
    if UNDEFMARK == out:
        out = None

    if out == res and (not flags["strict"] or sametypes(out, res)):
        return

    raise AssertionError(
        f"Expected: {out!r}, got: {res!r}\n"
        f"Entry: {json.dumps(entry, indent=2, default=jsonfallback)}"
    )


def sametypes(out, res):
    if isinstance(out, dict) and isinstance(res, dict):
        return all(sametypes(out[k], res.get(k)) for k in out)
    if isinstance(out, list) and isinstance(res, list):
        return all(sametypes(o, r) for o, r in zip(out, res))
    return type(out) is type(res)


def handle_error(entry, err, utility):
    # Record the error in the entry
    entry['thrown'] = err
    entry_err = entry.get('err')

    # If the test expects an error
    if entry_err is not None and not isinstance(err, AssertionError):
        # If it's any error or matches expected pattern
        if entry_err is True or matchval(entry_err, str(err), utility):
            return True

        # Expected error didn't match the actual error
        raise AssertionError(
            f"ERROR MATCH: [{utility.stringify(entry_err)}] <=> [{str(err)}]"
        )
    # If the test doesn't expect an error
    elif isinstance(err, AssertionError):
        raise AssertionError(
            f"{str(err)}\n\nENTRY: {json.dumps(entry, indent=2, default=jsonfallback)}"
        )
    else:
        # For other errors, include the full error stack
        raise AssertionError(
            f"{traceback.format_exc()}\nENTRY: "+
            f"{json.dumps(entry, indent=2, default=jsonfallback)}"
        )


def jsonfallback(obj):
    return f"<non-serializable: {type(obj).__name__}>"


def matchval(check, base, utility):
    if check == base:
        return True

    # String-based pattern matching
    if isinstance(check, str):
        base_str = utility.stringify(base)

        # Check for regex pattern with /pattern/ syntax
        regex_match = re.match(r'^/(.+)/$', check)

        if regex_match:
            pattern = regex_match.group(1)
            return re.search(pattern, base_str) is not None
        else:
            # Case-insensitive substring check
            return check.lower() in base_str.lower()

    # No match
    return False


__all__ = [
    'UNDEFMARK',
    'makeRunner',
]
