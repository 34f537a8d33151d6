"""
builtins.py - Per-language allow-lists for the call resolution built-in filter.

A call site is BuiltinIgnored when:

- its name is a dunder special method (``__init__``, ``__len__`` ...), or
- it is a bare call to a built-in function / framework entry point, or
- its receiver root is a built-in object (``console``, ``Math``, ``os`` ...), or
- it calls a primitive / collection method on a receiver that is not an
  import binding.

Calls made directly on ``self`` / ``this`` / ``cls`` only honour the dunder
rule; everything else about them is left to local resolution.
"""

from __future__ import annotations

from typing import Iterable, Optional

SELF_RECEIVERS = frozenset({"self", "this", "cls", "super"})

# ---------------------------------------------------------------------------
# PYTHON
# ---------------------------------------------------------------------------

PYTHON_FUNCTIONS = frozenset({
    "print", "len", "str", "int", "float", "bool", "list", "dict", "tuple", "set",
    "range", "enumerate", "zip", "map", "filter", "sum", "max", "min", "abs",
    "round", "sorted", "reversed", "any", "all", "type", "isinstance", "hasattr",
    "getattr", "setattr", "delattr", "dir", "vars", "id", "hash", "repr",
    "open", "input", "format", "exec", "eval", "compile", "globals", "locals",
    "super", "iter", "next", "callable", "issubclass", "object", "frozenset",
    "bytes", "bytearray", "memoryview", "chr", "ord", "divmod", "pow", "bin",
    "hex", "oct", "staticmethod", "classmethod", "property", "slice", "complex",
    "ascii", "breakpoint", "help", "aiter", "anext",
    "Exception", "ValueError", "TypeError", "KeyError", "IndexError",
    "RuntimeError", "AttributeError", "NotImplementedError", "OSError",
    "StopIteration", "AssertionError", "ImportError", "FileNotFoundError",
})

PYTHON_METHODS = frozenset({
    "append", "extend", "insert", "pop", "remove", "clear", "copy", "sort",
    "reverse", "index", "count", "get", "items", "keys", "values", "update",
    "setdefault", "popitem", "add", "discard", "union", "intersection",
    "difference", "issubset", "issuperset", "join", "split", "rsplit", "strip",
    "lstrip", "rstrip", "replace", "lower", "upper", "startswith", "endswith",
    "find", "rfind", "format", "encode", "decode", "splitlines", "partition",
    "rpartition", "zfill", "isdigit", "isalpha", "isalnum", "isspace", "title",
    "capitalize", "read", "write", "readline", "readlines", "close", "seek",
    "flush", "debug", "info", "warning", "error", "exception", "critical",
})

PYTHON_RECEIVERS = frozenset({
    "os", "sys", "json", "re", "math", "logging", "time", "datetime", "random",
    "itertools", "functools", "collections", "subprocess", "shutil", "typing",
    "pathlib", "hashlib", "threading", "asyncio", "copy", "uuid", "tempfile",
    "str", "dict", "list", "int", "float", "bytes", "set", "tuple", "object",
})

# ---------------------------------------------------------------------------
# JAVASCRIPT / TYPESCRIPT
# ---------------------------------------------------------------------------

JS_FUNCTIONS = frozenset({
    "parseInt", "parseFloat", "isNaN", "isFinite", "setTimeout", "setInterval",
    "clearTimeout", "clearInterval", "setImmediate", "queueMicrotask",
    "structuredClone", "require", "fetch", "alert", "encodeURIComponent",
    "decodeURIComponent", "encodeURI", "decodeURI", "Number", "String",
    "Boolean", "Array", "Object", "Symbol", "BigInt", "Date", "Error",
    "TypeError", "RangeError", "SyntaxError", "Promise", "Map", "Set",
    "WeakMap", "WeakSet", "RegExp", "URL", "URLSearchParams", "Proxy",
})

JS_FRAMEWORK_ENTRY_POINTS = frozenset({
    # React
    "useState", "useEffect", "useContext", "useReducer", "useCallback",
    "useMemo", "useRef", "useLayoutEffect", "useImperativeHandle",
    "useDebugValue", "useId", "useTransition", "useDeferredValue",
    "createElement", "createContext", "forwardRef", "memo",
    # test runners
    "describe", "it", "test", "expect", "beforeEach", "afterEach",
    "beforeAll", "afterAll",
})

JS_METHODS = frozenset({
    "push", "pop", "shift", "unshift", "slice", "splice", "map", "filter",
    "reduce", "reduceRight", "forEach", "find", "findIndex", "some", "every",
    "includes", "indexOf", "lastIndexOf", "join", "concat", "sort", "reverse",
    "keys", "values", "entries", "flat", "flatMap", "fill", "then", "catch",
    "finally", "toString", "toFixed", "valueOf", "split", "replace",
    "replaceAll", "trim", "trimStart", "trimEnd", "toLowerCase", "toUpperCase",
    "startsWith", "endsWith", "substring", "substr", "charAt", "charCodeAt",
    "match", "matchAll", "test", "exec", "padStart", "padEnd", "repeat", "get",
    "set", "has", "delete", "add", "clear", "bind", "call", "apply",
    "hasOwnProperty", "addEventListener", "removeEventListener",
    "querySelector", "querySelectorAll", "getElementById", "preventDefault",
    "stopPropagation", "json", "text",
})

JS_RECEIVERS = frozenset({
    "console", "Math", "JSON", "Object", "Array", "Promise", "Number", "String",
    "Reflect", "Date", "Symbol", "Intl", "window", "document", "process",
    "Buffer", "navigator", "localStorage", "sessionStorage", "module",
    "exports", "globalThis", "React",
})

# ---------------------------------------------------------------------------
# JAVA
# ---------------------------------------------------------------------------

JAVA_FUNCTIONS = frozenset({
    # constructors of core library types
    "String", "StringBuilder", "StringBuffer", "Object", "ArrayList",
    "LinkedList", "HashMap", "LinkedHashMap", "TreeMap", "HashSet",
    "LinkedHashSet", "TreeSet", "Exception", "RuntimeException",
    "IllegalArgumentException", "IllegalStateException",
    "UnsupportedOperationException", "NullPointerException", "Thread",
    "Integer", "Long", "Double", "AtomicInteger", "AtomicLong",
})

JAVA_METHODS = frozenset({
    "println", "print", "printf", "equals", "hashCode", "toString", "getClass",
    "length", "size", "isEmpty", "get", "put", "add", "addAll", "remove",
    "contains", "containsKey", "containsValue", "stream", "map", "filter",
    "collect", "forEach", "append", "valueOf", "format", "substring", "charAt",
    "indexOf", "trim", "split", "toLowerCase", "toUpperCase", "iterator",
    "hasNext", "next", "close", "compareTo", "orElse", "orElseThrow",
    "isPresent", "ifPresent", "of", "ofNullable", "keySet", "entrySet",
    "getKey", "getValue", "debug", "info", "warn", "error", "trace",
})

JAVA_RECEIVERS = frozenset({
    "System", "Math", "String", "Integer", "Long", "Double", "Boolean",
    "Arrays", "Collections", "Objects", "List", "Map", "Set", "Optional",
    "Stream", "Collectors", "Thread", "LoggerFactory", "Files", "Paths",
})

BUILTIN_FUNCTIONS: dict[str, frozenset[str]] = {
    "python": PYTHON_FUNCTIONS,
    "javascript": JS_FUNCTIONS | JS_FRAMEWORK_ENTRY_POINTS,
    "typescript": JS_FUNCTIONS | JS_FRAMEWORK_ENTRY_POINTS,
    "tsx": JS_FUNCTIONS | JS_FRAMEWORK_ENTRY_POINTS,
    "java": JAVA_FUNCTIONS,
}

BUILTIN_METHODS: dict[str, frozenset[str]] = {
    "python": PYTHON_METHODS,
    "javascript": JS_METHODS,
    "typescript": JS_METHODS,
    "tsx": JS_METHODS,
    "java": JAVA_METHODS,
}

BUILTIN_RECEIVERS: dict[str, frozenset[str]] = {
    "python": PYTHON_RECEIVERS,
    "javascript": JS_RECEIVERS,
    "typescript": JS_RECEIVERS,
    "tsx": JS_RECEIVERS,
    "java": JAVA_RECEIVERS,
}


def is_dunder(name: str) -> bool:
    return len(name) > 4 and name.startswith("__") and name.endswith("__")


class BuiltinFilter:
    """Built-in classifier, optionally extended per language from config."""

    def __init__(self, extra: Optional[dict[str, Iterable[str]]] = None) -> None:
        self._extra: dict[str, frozenset[str]] = {
            lang: frozenset(names) for lang, names in (extra or {}).items()
        }

    def is_builtin(
        self,
        language: str,
        name: str,
        receiver: Optional[str] = None,
        receiver_is_import: bool = False,
    ) -> bool:
        if is_dunder(name):
            return True
        if receiver in SELF_RECEIVERS:
            return False
        extra = self._extra.get(language, frozenset())
        if receiver is None:
            return name in BUILTIN_FUNCTIONS.get(language, frozenset()) or name in extra
        root = receiver.split(".", 1)[0].split("(", 1)[0].strip()
        if root in BUILTIN_RECEIVERS.get(language, frozenset()) or root in extra:
            return True
        if receiver_is_import:
            return False
        return name in BUILTIN_METHODS.get(language, frozenset()) or name in extra
