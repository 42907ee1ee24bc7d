"""Coarse classification of C# types.

The detector only needs to know whether writing through a storage location
can touch the containing struct. Types declared in the analyzed compilation
unit are classified from their declarations; everything else is classified
from a fixed catalog of predefined and framework types. Anything left over
is UNKNOWN and treated like a mutable value type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
import re

from structscope.syntax.declarations import TypeRef, iter_type_declarations
from structscope.syntax.source import SourceTree


class TypeCategory(StrEnum):
    VALUE = "value"
    READONLY_VALUE = "readonly-value"
    REFERENCE = "reference"
    ARRAY = "array"
    POINTER = "pointer"
    UNKNOWN = "unknown"

    @property
    def writes_stay_inside(self) -> bool:
        """Whether a write through a location of this type lands in the location itself."""
        return self in (TypeCategory.VALUE, TypeCategory.READONLY_VALUE, TypeCategory.UNKNOWN)

    @property
    def calls_may_mutate(self) -> bool:
        return self in (TypeCategory.VALUE, TypeCategory.UNKNOWN)


# Predefined value types have no mutating instance members.
_PREDEFINED_VALUE = frozenset(
    {
        "bool",
        "byte",
        "sbyte",
        "char",
        "decimal",
        "double",
        "float",
        "int",
        "uint",
        "long",
        "ulong",
        "short",
        "ushort",
        "nint",
        "nuint",
    }
)
_PREDEFINED_REFERENCE = frozenset({"string", "object", "dynamic"})

_FRAMEWORK_READONLY_VALUE = frozenset(
    {
        "Boolean",
        "Byte",
        "SByte",
        "Char",
        "Decimal",
        "Double",
        "Single",
        "Int16",
        "Int32",
        "Int64",
        "Int128",
        "UInt16",
        "UInt32",
        "UInt64",
        "UInt128",
        "IntPtr",
        "UIntPtr",
        "Half",
        "DateTime",
        "DateTimeOffset",
        "DateOnly",
        "TimeOnly",
        "TimeSpan",
        "Guid",
        "CancellationToken",
        "ReadOnlySpan",
        "Span",
        "ReadOnlyMemory",
        "Memory",
        "ImmutableArray",
        "Index",
        "Range",
        "Rune",
        "ValueTask",
    }
)
_FRAMEWORK_VALUE = frozenset(
    {
        "KeyValuePair",
        "Nullable",
        "ValueTuple",
        "ArraySegment",
        "Vector2",
        "Vector3",
        "Vector4",
        "Matrix4x4",
        "Quaternion",
        "BigInteger",
        "Complex",
        "SpinLock",
        "GCHandle",
    }
)
_FRAMEWORK_REFERENCE = frozenset(
    {
        "Action",
        "Array",
        "ArrayList",
        "BlockingCollection",
        "CancellationTokenSource",
        "ConcurrentBag",
        "ConcurrentDictionary",
        "ConcurrentQueue",
        "ConcurrentStack",
        "CultureInfo",
        "Delegate",
        "Dictionary",
        "Encoding",
        "EventArgs",
        "EventHandler",
        "Exception",
        "Func",
        "HashSet",
        "Hashtable",
        "HttpClient",
        "Lazy",
        "LinkedList",
        "List",
        "MemoryStream",
        "Object",
        "Predicate",
        "Queue",
        "Random",
        "Regex",
        "SemaphoreSlim",
        "SortedDictionary",
        "SortedList",
        "SortedSet",
        "Stack",
        "Stream",
        "StreamReader",
        "StreamWriter",
        "String",
        "StringBuilder",
        "StringWriter",
        "Task",
        "TextReader",
        "TextWriter",
        "Thread",
        "Tuple",
        "Type",
        "Uri",
        "Version",
        "WeakReference",
    }
)
_INTERFACE_NAME = re.compile(r"^I[A-Z]")


@dataclass(frozen=True)
class TypeCatalog:
    """Categories of the types declared in one compilation unit."""

    declared: dict[str, TypeCategory] = field(default_factory=dict)

    @classmethod
    def from_source(cls, source: SourceTree) -> "TypeCatalog":
        declared: dict[str, TypeCategory] = {}
        for declaration in iter_type_declarations(source):
            match declaration.keyword:
                case "struct":
                    category = (
                        TypeCategory.READONLY_VALUE
                        if declaration.has_modifier("readonly")
                        else TypeCategory.VALUE
                    )
                case "enum":
                    category = TypeCategory.READONLY_VALUE
                case "class" | "interface" | "delegate":
                    category = TypeCategory.REFERENCE
                case _:
                    category = TypeCategory.UNKNOWN
            previous = declared.get(declaration.name)
            # Same simple name declared twice (different namespaces or
            # arities): keep the weaker guarantee.
            if previous is not None and previous is not category:
                category = _weaker(previous, category)
            declared[declaration.name] = category
        return cls(declared=declared)

    def categorize(self, type_ref: TypeRef | None) -> TypeCategory:
        if type_ref is None:
            return TypeCategory.UNKNOWN
        if type_ref.is_pointer:
            return TypeCategory.POINTER
        if type_ref.is_array:
            return TypeCategory.ARRAY
        if type_ref.is_tuple:
            return TypeCategory.VALUE
        name = type_ref.name
        if name in _PREDEFINED_REFERENCE:
            return TypeCategory.REFERENCE
        if name in _PREDEFINED_VALUE:
            return TypeCategory.READONLY_VALUE
        if name in self.declared:
            return self.declared[name]
        if name in _FRAMEWORK_READONLY_VALUE:
            return TypeCategory.READONLY_VALUE
        if name in _FRAMEWORK_VALUE:
            return TypeCategory.VALUE
        if name in _FRAMEWORK_REFERENCE or _INTERFACE_NAME.match(name):
            return TypeCategory.REFERENCE
        return TypeCategory.UNKNOWN


def _weaker(left: TypeCategory, right: TypeCategory) -> TypeCategory:
    if TypeCategory.UNKNOWN in (left, right):
        return TypeCategory.UNKNOWN
    if left.writes_stay_inside or right.writes_stay_inside:
        if TypeCategory.VALUE in (left, right):
            return TypeCategory.VALUE
        if left.writes_stay_inside and right.writes_stay_inside:
            return TypeCategory.READONLY_VALUE
        return TypeCategory.UNKNOWN
    return left
