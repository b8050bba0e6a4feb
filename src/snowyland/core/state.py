"""
Hierarchical containers for the prognostic state (Y) and the cache of
auxiliary quantities (p).
"""

import numpy as np


class FieldTree:
    """
    Nested mapping from names to Fields, tuples of Fields, or further
    FieldTrees. Entries can be read either as ``tree["soil"]`` or as
    ``tree.soil``.
    """

    def __init__(self, **entries):
        object.__setattr__(self, "_entries", {})
        for key, value in entries.items():
            self._entries[key] = value

    def __getattr__(self, name):
        try:
            return self.__dict__["_entries"][name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name, value):
        self._entries[name] = value

    def __getitem__(self, key):
        return self._entries[key]

    def __setitem__(self, key, value):
        self._entries[key] = value

    def __contains__(self, key):
        return key in self._entries

    def __iter__(self):
        return iter(self._entries)

    def keys(self):
        return self._entries.keys()

    def items(self):
        return self._entries.items()

    def __repr__(self):
        return f"{type(self).__name__}({', '.join(self._entries)})"

    def leaves(self, prefix=()):
        """
        Yield ``(path, array)`` for every array in the tree, depth first, in
        insertion order. Tuple entries contribute one leaf per element.
        """
        for key, value in self._entries.items():
            path = prefix + (key,)
            if isinstance(value, FieldTree):
                yield from value.leaves(path)
            elif isinstance(value, tuple):
                for i, element in enumerate(value):
                    yield path + (i,), element
            elif isinstance(value, np.ndarray):
                yield path, value

    def copy(self):
        """Deep copy; arrays are copied, everything else is shared."""
        new = type(self).__new__(type(self))
        object.__setattr__(new, "_entries", {})
        for key, value in self._entries.items():
            if isinstance(value, FieldTree):
                new[key] = value.copy()
            elif isinstance(value, tuple):
                new[key] = tuple(element.copy() for element in value)
            elif isinstance(value, np.ndarray):
                new[key] = value.copy()
            else:
                new[key] = value
        return new

    def zeros_like(self):
        new = self.copy()
        for _, array in new.leaves():
            array[...] = 0
        return new

    def assign(self, other):
        """Copy the values of ``other`` into this tree in place."""
        for (_, dst), (_, src) in zip(self.leaves(), other.leaves()):
            dst[...] = src
        return self

    def axpy(self, a, other):
        """In place ``self += a * other``."""
        for (_, dst), (_, src) in zip(self.leaves(), other.leaves()):
            dst += a * src
        return self

    def array_equal(self, other):
        """True if both trees have the same layout and identical values."""
        mine = list(self.leaves())
        theirs = list(other.leaves())
        if [path for path, _ in mine] != [path for path, _ in theirs]:
            return False
        return all(np.array_equal(a, b) for (_, a), (_, b) in zip(mine, theirs))

    def all_finite(self):
        return all(np.all(np.isfinite(array)) for _, array in self.leaves())


class StateVector(FieldTree):
    """The prognostic state Y, keyed by submodel name."""


class Cache(FieldTree):
    """
    Auxiliary quantities p, recomputed from the state at each evaluation.
    ``initialized`` records whether the initial-cache step has run.
    """

    def __init__(self, **entries):
        super().__init__(**entries)
        object.__setattr__(self, "initialized", False)

    def copy(self):
        new = super().copy()
        object.__setattr__(new, "initialized", self.initialized)
        return new

    def mark_initialized(self):
        object.__setattr__(self, "initialized", True)
