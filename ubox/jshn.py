"""Shell helper that converts JSON to shell commands and back.

Parsing emits ``json_add_*`` commands for a shell library; formatting
rebuilds a JSON object from the variables that library keeps in the
environment.
"""

from __future__ import annotations

import getopt
import json
import math
import os
import re
import sys
from collections.abc import Iterator, Mapping
from typing import Any

from ubox.blobmsg import BlobmsgBuf
from ubox.blobmsg_json import add_object, format_json

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_USAGE = "Usage: %s [-n] [-i] -r <message>|-R <file>|-o <file>|-p <prefix>|-w\n"

_C_SPACE = "[ \t\n\v\f\r]*"
_INT_PREFIX = re.compile(_C_SPACE + r"([+-]?[0-9]+)")
_FLOAT_PREFIX = re.compile(
    _C_SPACE
    + r"([+-]?(?:(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|inf(?:inity)?|nan))",
    re.IGNORECASE,
)

_JSON_ESCAPES = {
    "\b": "\\b",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\f": "\\f",
    '"': '\\"',
    "\\": "\\\\",
    "/": "\\/",
}


class JshnError(Exception):
    """A failure, carrying the exit status the command reports for it."""

    def __init__(self, message: str, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code


def _clamp_int64(value: int) -> int:
    return max(_INT64_MIN, min(_INT64_MAX, value))


# -- JSON to shell ----------------------------------------------------


def _shell_key(key: str) -> str:
    return "".join(
        chr(b) if chr(b).isascii() and chr(b).isalnum() else "_"
        for b in key.encode("utf-8")
    )


def _shell_string(text: str) -> str:
    return text.split("\0", 1)[0].replace("'", "'\\''")


def _object_lines(obj: Mapping[str, Any]) -> Iterator[str]:
    for key, value in obj.items():
        yield from _element_lines(key, value)


def _element_lines(key: str, value: Any) -> Iterator[str]:
    name = _shell_key(key)
    if isinstance(value, dict):
        yield f"json_add_object '{name}';\n"
        yield from _object_lines(value)
        yield "json_close_object;\n"
    elif isinstance(value, list):
        yield f"json_add_array '{name}';\n"
        for index, item in enumerate(value):
            yield from _element_lines(str(index), item)
        yield "json_close_array;\n"
    elif isinstance(value, str):
        yield f"json_add_string '{name}' '{_shell_string(value)}';\n"
    elif isinstance(value, bool):
        yield f"json_add_boolean '{name}' {int(value)};\n"
    elif isinstance(value, int):
        yield f"json_add_int '{name}' {_clamp_int64(value)};\n"
    elif isinstance(value, float):
        yield f"json_add_double '{name}' {'%f' % value};\n"
    elif value is None:
        yield f"json_add_null '{name}';\n"


def parse_to_shell(text: str) -> str:
    """Turn a JSON object into the shell commands that rebuild it."""
    try:
        obj = json.loads(text)
    except (ValueError, RecursionError):
        obj = None
    if not isinstance(obj, dict):
        raise JshnError("Failed to parse message data", 1)
    return "json_init;\n" + "".join(_object_lines(obj))


def parse_file_to_shell(path: str | os.PathLike[str]) -> str:
    """Like :func:`parse_to_shell`, reading the JSON from a file."""
    try:
        with open(path, "rb") as handle:
            raw = handle.read()
    except OSError as exc:
        raise JshnError(f"Error opening {os.fspath(path)}", 3) from exc
    text = raw.split(b"\0", 1)[0].decode("utf-8", "replace")
    return parse_to_shell(text)


# -- environment to JSON ------------------------------------------------


def _atoll(text: str) -> int:
    match = _INT_PREFIX.match(text)
    return _clamp_int64(int(match.group(1))) if match else 0


def _strtod(text: str) -> float:
    match = _FLOAT_PREFIX.match(text)
    return float(match.group(1)) if match else 0.0


def _format_double(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    text = "%.17g" % value
    if not any(c in text for c in ".eE"):
        text += ".0"
    return text


def _json_string(text: str) -> str:
    out = []
    for ch in text:
        if ch in _JSON_ESCAPES:
            out.append(_JSON_ESCAPES[ch])
        elif ord(ch) < 0x20:
            out.append("\\u%04x" % ord(ch))
        else:
            out.append(ch)
    return '"' + "".join(out) + '"'


def _dump(value: Any) -> str:
    if isinstance(value, dict):
        if not value:
            return "{ }"
        members = ", ".join(f"{_json_string(k)}: {_dump(v)}" for k, v in value.items())
        return "{ " + members + " }"
    if isinstance(value, list):
        if not value:
            return "[ ]"
        return "[ " + ", ".join(_dump(v) for v in value) + " ]"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_double(value)
    if isinstance(value, str):
        return _json_string(value)
    return "null"


class _EnvReader:
    """Rebuilds JSON values from the shell library's variables."""

    def __init__(self, environ: Mapping[str, str], prefix: str) -> None:
        self.environ = environ
        self.prefix = prefix

    def get(self, key: str) -> str | None:
        return self.environ.get(key)

    def add_objects(self, container: dict | list, prefix: str, array: bool) -> None:
        keys = self.get(f"{self.prefix}K_{prefix}")
        if keys is None:
            return
        for key in keys.split(" "):
            if key:
                self.add_var(container, array, prefix, key)

    def add_var(self, container: dict | list, array: bool, prefix: str, name: str) -> None:
        var = self.get(f"{self.prefix}{prefix}_{name}")
        kind = self.get(f"{self.prefix}T_{prefix}_{name}")
        alias = self.get(f"{self.prefix}N_{prefix}_{name}")
        if alias is not None:
            name = alias
        if var is None or kind is None:
            return

        value: Any
        if kind == "array":
            value = []
            self.add_objects(value, var, True)
        elif kind == "object":
            value = {}
            self.add_objects(value, var, False)
        elif kind == "string":
            value = var
        elif kind == "int":
            value = _atoll(var)
        elif kind == "double":
            value = _strtod(var)
        elif kind == "boolean":
            value = bool(_atoll(var))
        elif kind == "null":
            value = None
        else:
            return

        if array:
            container.append(value)
        else:
            container[name] = value


def format_from_env(
    environ: Mapping[str, str],
    prefix: str = "",
    no_newline: bool = False,
    indent: bool = False,
) -> str:
    """Build the JSON text described by the shell library's variables."""
    obj: dict[str, Any] = {}
    _EnvReader(environ, prefix).add_objects(obj, "J_V", False)
    output = _dump(obj)

    if indent:
        buf = BlobmsgBuf()
        buf.init(0)
        if not add_object(buf, obj):
            raise JshnError("Failed to format message data", -1)
        formatted = format_json(buf.head, True, None, 0)
        if formatted is None:
            raise JshnError("Failed to format message data", -1)
        output = formatted

    return output + ("" if no_newline else "\n")


# -- command line -------------------------------------------------------


def _usage(progname: str) -> int:
    sys.stderr.write(_USAGE % progname)
    return 2


def _report(exc: JshnError) -> int:
    sys.stderr.write(f"{exc}\n")
    return exc.exit_code


def main(argv: list[str] | None = None) -> int:
    """Run the command line tool; return its exit status."""
    progname = "jshn"
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        opts, _ = getopt.gnu_getopt(args, "p:nir:R:o:w")
    except getopt.GetoptError:
        return _usage(progname)

    prefix = ""
    no_newline = False
    indent = False
    for opt, value in opts:
        try:
            if opt == "-p":
                prefix = value
            elif opt == "-n":
                no_newline = True
            elif opt == "-i":
                indent = True
            elif opt == "-r":
                sys.stdout.write(parse_to_shell(value))
                sys.stdout.flush()
                return 0
            elif opt == "-R":
                sys.stdout.write(parse_file_to_shell(value))
                sys.stdout.flush()
                return 0
            elif opt == "-w":
                sys.stdout.write(format_from_env(os.environ, prefix, no_newline, indent))
                return 0
            elif opt == "-o":
                try:
                    handle = open(value, "w", encoding="utf-8")
                except OSError:
                    sys.stderr.write(f"Error opening {value}\n")
                    return 3
                with handle:
                    handle.write(format_from_env(os.environ, prefix, no_newline, indent))
                return 0
        except JshnError as exc:
            return _report(exc)

    return _usage(progname)


if __name__ == "__main__":
    sys.exit(main())