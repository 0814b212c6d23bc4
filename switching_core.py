"""
switching_core.py

Core data structures and operations for the parameters of a boolean
switching network node.

The dynamics of a node with n in-edges and m out-edges are discretized as a
monotone map from the boolean hypercube {0,1}^n to the output levels
{0,1,...,m}:
- Vertices of the hypercube are integers in [0, 2^n); bit i is input i "up"
- A Factorization records the sum-of-products shape of the node's logic
- A ConstraintSet carries extra ordering requirements derived from wiring
- A MonotoneMap holds one output level per vertex and can check whether it
  is monotone and realizable, and list its adjacent maps

Maps are immutable values. Adjacent maps ("neighbors") are built by copying
the data with one vertex changed, never by editing a shared buffer.
"""

import re
import sys
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from functools import lru_cache

from tqdm import tqdm


# ============================================================================
# SECTION 0: ERRORS AND CONFIGURATION
# ============================================================================

class InvalidShape(ValueError):
    """Sizes of n, m, factorization, constraints or data do not agree."""


class UnsupportedFactorization(NotImplementedError):
    """
    No realizability algorithm is known for a factorization shape.

    This is not a negative answer: the map may or may not be realizable.
    Callers building a parameter graph should stop or skip the node.
    """

    def __init__(self, factorization):
        self.factorization = factorization
        super().__init__(
            f"Realizability condition unknown for logic ({factorization.to_string()})"
        )


class SymbolCountMismatch(ValueError):
    """Symbol lists handed to pretty_print do not match n or m."""


# Number of threads used to evaluate neighbor candidates (module-level)
_default_workers = 1


def get_default_workers():
    """Get the default number of worker threads for neighbor generation."""
    return _default_workers


def set_default_workers(workers):
    """Set the default number of worker threads for neighbor generation."""
    global _default_workers
    if workers < 1:
        raise ValueError(f"Worker count must be positive, got {workers}")
    _default_workers = workers


def reset_default_workers():
    """Reset to serial neighbor generation."""
    global _default_workers
    _default_workers = 1


# ============================================================================
# SECTION 1: FACTORIZATION AND CONSTRAINTS
# ============================================================================

class FactorizationShape(Enum):
    """Closed set of logic shapes the realizability check dispatches on."""
    ALL_SUM = "all-sum"
    ALL_PRODUCT = "all-product"
    SUM_PRODUCT_2_1 = "(2,1)"
    SUM_PRODUCT_1_2 = "(1,2)"
    SUM_PRODUCT_2_2 = "(2,2)"
    UNSUPPORTED = "unsupported"


@lru_cache(maxsize=256)
def classify_factorization(sizes):
    """
    Classify a tuple of factor sizes.

    Args:
        sizes: tuple of positive ints, e.g. (2, 1) for (a+b)c

    Returns:
        FactorizationShape
    """
    if len(sizes) == 1:
        return FactorizationShape.ALL_SUM
    if max(sizes) == 1:
        return FactorizationShape.ALL_PRODUCT
    if sizes == (2, 1):
        return FactorizationShape.SUM_PRODUCT_2_1
    if sizes == (1, 2):
        return FactorizationShape.SUM_PRODUCT_1_2
    if sizes == (2, 2):
        return FactorizationShape.SUM_PRODUCT_2_2
    return FactorizationShape.UNSUPPORTED


class Factorization:
    """
    Sum-of-products shape of a node's logic.

    An expression of the form (a+b+c)(d+e)f is encoded as the sizes 3,2,1
    (the number of summands in each factor). Input k of the node is vertex
    bit k: the first factor holds the first inputs, the second factor the
    following ones, and so on. Up- and down-regulation are not recorded
    here; they show up as constraints.
    """

    def __init__(self, sizes):
        """
        Create a factorization.

        Args:
            sizes: iterable of positive ints (summands per factor)
        """
        sizes = tuple(sizes)
        if not sizes:
            raise InvalidShape("Factorization needs at least one factor")
        for size in sizes:
            if not isinstance(size, int) or size < 1:
                raise InvalidShape(f"Factor sizes must be positive ints, got {list(sizes)}")
        self._sizes = sizes

    @classmethod
    def all_sum(cls, n):
        """Single factor of size n: a+b+...+z."""
        return cls((n,))

    @classmethod
    def all_product(cls, n):
        """n factors of size 1: ab...z."""
        return cls((1,) * n)

    @property
    def sizes(self):
        return self._sizes

    @property
    def n(self):
        """Total number of inputs."""
        return sum(self._sizes)

    @property
    def shape(self):
        """FactorizationShape used to pick the realizability algorithm."""
        return classify_factorization(self._sizes)

    def factor_bits(self):
        """
        Return the vertex bits belonging to each factor.

        Returns:
            list of tuples of bit indices, one tuple per factor
        """
        result = []
        count = 0
        for size in self._sizes:
            result.append(tuple(range(count, count + size)))
            count += size
        return result

    def __len__(self):
        return len(self._sizes)

    def __iter__(self):
        return iter(self._sizes)

    def __getitem__(self, index):
        return self._sizes[index]

    def __hash__(self):
        return hash(self._sizes)

    def __eq__(self, other):
        if not isinstance(other, Factorization):
            return False
        return self._sizes == other._sizes

    def __repr__(self):
        return f"Factorization({self.to_string()})"

    def to_string(self):
        """Convert to string: '2,1'"""
        return ",".join(str(size) for size in self._sizes)


Constraint = namedtuple("Constraint", ["mask", "x", "y"])
Constraint.__doc__ = """
Ordering requirement (mask, x, y) between two classes of vertices.

For vertices a, b agreeing outside mask with a & mask == x and
b & mask == y, the map must satisfy value(a) <= value(b).
"""


class ConstraintSet:
    """Immutable, ordered collection of Constraints."""

    def __init__(self, constraints=()):
        """
        Create a constraint set.

        Args:
            constraints: iterable of Constraint or (mask, x, y) triples
        """
        items = []
        for item in constraints:
            if len(item) != 3:
                raise InvalidShape(f"Constraint must be a (mask, x, y) triple, got {item!r}")
            items.append(Constraint(*item))
        self._constraints = tuple(items)

    def check(self, n):
        """
        Validate every constraint against an n-input hypercube.

        Raises:
            InvalidShape: if a pattern lies outside [0, 2^n) or x/y leave the mask
        """
        size = 1 << n
        for constraint in self._constraints:
            mask, x, y = constraint
            if not all(0 <= value < size for value in constraint):
                raise InvalidShape(f"Constraint {tuple(constraint)} out of range for n={n}")
            if (x & ~mask) or (y & ~mask):
                raise InvalidShape(f"Constraint {tuple(constraint)} has x or y outside its mask")

    def __len__(self):
        return len(self._constraints)

    def __iter__(self):
        return iter(self._constraints)

    def __bool__(self):
        return bool(self._constraints)

    def __hash__(self):
        return hash(self._constraints)

    def __eq__(self, other):
        if not isinstance(other, ConstraintSet):
            return False
        return self._constraints == other._constraints

    def __repr__(self):
        return f"ConstraintSet({[tuple(c) for c in self._constraints]})"


# ============================================================================
# SECTION 2: MONOTONE MAP
# ============================================================================

class MonotoneMap:
    """
    A map from {0,1,...,2^n-1} to {0,1,...,m} describing one node's dynamics.

    Equality and hashing only look at (n, m, data). Two maps with the same
    outputs but different logic or constraints compare equal.
    """

    def __init__(self, n, m, factorization=None, constraints=None, data=None):
        """
        Create a monotone map.

        Args:
            n: number of in-edges (domain is {0,...,2^n-1})
            m: number of out-edges (codomain is {0,...,m})
            factorization: Factorization or sequence of factor sizes (default all-sum)
            constraints: ConstraintSet or iterable of (mask, x, y) triples
            data: sequence of 2^n ints in [0, m] (default all zero)

        Raises:
            InvalidShape: if any of the above disagree
        """
        if n < 1:
            raise InvalidShape(f"Need at least one input, got n={n}")
        if m < 0:
            raise InvalidShape(f"Output count must be non-negative, got m={m}")

        if factorization is None:
            factorization = Factorization.all_sum(n)
        elif not isinstance(factorization, Factorization):
            factorization = Factorization(factorization)
        if factorization.n != n:
            raise InvalidShape(
                f"Factorization ({factorization.to_string()}) sums to {factorization.n}, not n={n}"
            )

        if constraints is None:
            constraints = ConstraintSet()
        elif not isinstance(constraints, ConstraintSet):
            constraints = ConstraintSet(constraints)
        constraints.check(n)

        if data is None:
            data = (0,) * (1 << n)
        else:
            data = _checked_data(data, n, m)

        self._n = n
        self._m = m
        self._factorization = factorization
        self._constraints = constraints
        self._data = data

    def _derive(self, data):
        """Copy of this map with new (already validated) data."""
        derived = MonotoneMap.__new__(MonotoneMap)
        derived._n = self._n
        derived._m = self._m
        derived._factorization = self._factorization
        derived._constraints = self._constraints
        derived._data = data
        return derived

    @property
    def n(self):
        return self._n

    @property
    def m(self):
        return self._m

    @property
    def factorization(self):
        return self._factorization

    @property
    def constraints(self):
        return self._constraints

    @property
    def data(self):
        """Output level of each vertex, as a tuple."""
        return self._data

    def __getitem__(self, vertex):
        return self._data[vertex]

    def __len__(self):
        return len(self._data)

    def with_value(self, vertex, value):
        """
        Return a copy with data[vertex] replaced by value.

        Raises:
            InvalidShape: if vertex is outside [0, 2^n) or value outside [0, m]
        """
        if not isinstance(vertex, int) or not 0 <= vertex < len(self._data):
            raise InvalidShape(f"Vertex {vertex!r} is outside [0, {len(self._data)})")
        if not isinstance(value, int) or not 0 <= value <= self._m:
            raise InvalidShape(f"Value {value!r} is outside [0, {self._m}]")
        data = list(self._data)
        data[vertex] = value
        return self._derive(tuple(data))

    def with_data(self, data):
        """
        Return a copy with the same n, m, logic and constraints but new data.

        Raises:
            InvalidShape: if data has the wrong length or values
        """
        return self._derive(_checked_data(data, self._n, self._m))

    def monotonic(self):
        """Return True if outputs never decrease as inputs turn on."""
        return is_monotonic(self)

    def realizable(self):
        """Return True if the map is realizable for its logic and constraints."""
        return is_realizable(self)

    def neighbors(self, workers=None, verbose=False):
        """Return the set of adjacent monotone, realizable maps."""
        return neighbors(self, workers=workers, verbose=verbose)

    def pretty_print(self, symbol, input_symbols, output_symbols):
        """Return the inequality listing of this map."""
        return pretty_print(self, symbol, input_symbols, output_symbols)

    def __hash__(self):
        return hash((self._n, self._m, self._data))

    def __eq__(self, other):
        if not isinstance(other, MonotoneMap):
            return False
        return self._n == other._n and self._m == other._m and self._data == other._data

    def __repr__(self):
        return f"MonotoneMap({self.to_string()})"

    def __str__(self):
        return self.to_string()

    def to_string(self):
        """Convert to string: '{(In,Out)=(2, 1), Logic=(2), Data=(0,0,0,1)}'"""
        logic = self._factorization.to_string()
        data = ",".join(str(value) for value in self._data)
        return f"{{(In,Out)=({self._n}, {self._m}), Logic=({logic}), Data=({data})}}"

    @classmethod
    def from_string(cls, string, constraints=None):
        """
        Parse from the to_string() form.

        Constraints are not part of the text and may be supplied separately.
        """
        match = _MAP_PATTERN.fullmatch(string.strip())
        if match is None:
            raise ValueError(f"Invalid MonotoneMap format: {string}")
        n, m, logic, data = match.groups()
        return cls(int(n), int(m),
                   factorization=_parse_int_list(logic),
                   constraints=constraints,
                   data=_parse_int_list(data))


def _checked_data(data, n, m):
    """Validate a data sequence for an (n, m) map and return it as a tuple."""
    data = tuple(data)
    size = 1 << n
    if len(data) != size:
        raise InvalidShape(f"Data has {len(data)} entries, expected 2^{n} = {size}")
    for vertex, value in enumerate(data):
        if not isinstance(value, int):
            raise InvalidShape(f"data[{vertex}] = {value!r} is not an int")
        if not 0 <= value <= m:
            raise InvalidShape(f"data[{vertex}] = {value} is outside [0, {m}]")
    return data


_MAP_PATTERN = re.compile(
    r"\{\(In,Out\)=\(\s*(\d+)\s*,\s*(\d+)\s*\),\s*Logic=\(([\d,\s]*)\),\s*Data=\(([\d,\s]*)\)\}"
)


def _parse_int_list(string):
    return [int(part) for part in string.split(",") if part.strip()]


# ============================================================================
# SECTION 3: HYPERCUBE HELPERS
# ============================================================================

def submasks(mask):
    """
    Yield every bit pattern contained in mask (mask itself first, 0 last).

    Args:
        mask: non-negative int

    Yields:
        int
    """
    sub = mask
    while True:
        yield sub
        if sub == 0:
            return
        sub = (sub - 1) & mask


def covers(vertex, n):
    """Return the vertices obtained by turning on one unset bit of vertex."""
    return [vertex | (1 << pos) for pos in range(n) if not vertex & (1 << pos)]


# ============================================================================
# SECTION 4: MONOTONICITY
# ============================================================================

def is_monotonic(mmap):
    """
    Check data[i] <= data[i | bit] for every vertex i and unset bit.

    Args:
        mmap: MonotoneMap

    Returns:
        bool
    """
    data = mmap.data
    for vertex in range(len(data)):
        for child in covers(vertex, mmap.n):
            if data[child] < data[vertex]:
                return False
    return True


# ============================================================================
# SECTION 5: REALIZABILITY
# ============================================================================

def is_realizable(mmap):
    """
    Check realizability: the constraint phase, then the shape phase.

    Both phases always run; passing the constraints says nothing about the
    logic-shape conditions, and vice versa.

    Args:
        mmap: MonotoneMap

    Returns:
        bool

    Raises:
        UnsupportedFactorization: if the logic shape has no known algorithm
    """
    shape_check = shape_checker(mmap.factorization)

    if not satisfies_constraints(mmap):
        return False

    return shape_check(mmap.data)


def shape_checker(factorization):
    """
    Pick the realizability algorithm for a factorization.

    Args:
        factorization: Factorization

    Returns:
        function data -> bool

    Raises:
        UnsupportedFactorization: for any shape without a known algorithm
    """
    shape = factorization.shape
    if shape in (FactorizationShape.ALL_SUM, FactorizationShape.ALL_PRODUCT):
        return _realizable_sum_or_product
    elif shape is FactorizationShape.SUM_PRODUCT_2_1:
        return _realizable_2_1
    elif shape is FactorizationShape.SUM_PRODUCT_1_2:
        return _realizable_1_2
    elif shape is FactorizationShape.SUM_PRODUCT_2_2:
        return _realizable_2_2
    else:
        raise UnsupportedFactorization(factorization)


def satisfies_constraints(mmap):
    """
    Check data[a] <= data[b] for every pair (a, b) singled out by a constraint.

    The pairs of a constraint (mask, x, y) share their bits r outside mask,
    so a = r | x and b = r | y for every r disjoint from mask.
    """
    data = mmap.data
    full = len(data) - 1
    for mask, x, y in mmap.constraints:
        for rest in submasks(full & ~mask):
            if data[rest | x] > data[rest | y]:
                return False
    return True


def _realizable_sum_or_product(data):
    """
    All-sum case (n) and all-product case (1,1,...,1).

    For every set I of fixed inputs and every two assignments a, b of I,
    the free inputs c must not make a|c below b|c in one place and above
    it in another.
    """
    full = len(data) - 1
    for fixed in range(full + 1):
        inside = list(submasks(fixed))
        outside = list(submasks(full & ~fixed))
        for a in inside:
            for b in inside:
                less = False
                greater = False
                for c in outside:
                    x = data[a | c]
                    y = data[b | c]
                    if x < y:
                        less = True
                    if x > y:
                        greater = True
                    if less and greater:
                        return False
    return True


def _realizable_2_1(data):
    """
    Case (2,1): (a+b)c with D_xyz the value at bits x=2, y=1, z=0.

    Rules A and B, and both directions of rule C:
      010 < 001 implies 110 <= 101
      100 < 001 implies 110 <= 011
      010 > 100 implies 011 >= 101
      010 < 100 implies 011 <= 101
    """
    d001, d010, d011 = data[1], data[2], data[3]
    d100, d101, d110 = data[4], data[5], data[6]

    if d010 < d001 and not d110 <= d101:
        return False
    if d100 < d001 and not d110 <= d011:
        return False
    if d010 > d100 and not d011 >= d101:
        return False
    if d010 < d100 and not d011 <= d101:
        return False
    return True


def _realizable_1_2(data):
    """Case (1,2): case (2,1) with the bits rotated."""
    d001, d010, d011 = data[1], data[2], data[3]
    d100, d101, d110 = data[4], data[5], data[6]

    if d001 < d100 and not d011 <= d110:
        return False
    if d010 < d100 and not d011 <= d101:
        return False
    if d001 > d010 and not d101 >= d110:
        return False
    if d001 < d010 and not d101 <= d110:
        return False
    return True


_CROSS_SLICES = (0b1100, 0b0011, 0b1011, 0b0111, 0b1101, 0b1110)
_FACTOR_SLICES = (0b1100, 0b0011)


def _realizable_2_2(data):
    """Case (2,2): (a+b)(c+d). Slice conditions, then the promotion condition."""
    return slice_conditions_hold(data) and promotion_condition_holds(data)


def slice_conditions_hold(data):
    """
    Slice conditions of case (2,2).

    For each slice s, exchanging the bits outside s must not raise the
    value under one setting of s and lower it under another.
    """
    for s in _CROSS_SLICES:
        for x in range(16):
            for v in range(16):
                y = (x & s) | (v & ~s)
                u = (x & ~s) | (v & s)
                if data[x] < data[y] and not data[u] <= data[v]:
                    return False
    return True


def promotion_condition_holds(data):
    """
    Promotion condition of case (2,2).

    When data[x] < data[y] although one factor alone ranks x above y,
    turning on a bit of that factor unset in both must keep x|bit at or
    below y|bit.
    """
    for x in range(16):
        for y in range(16):
            if data[x] >= data[y]:
                continue
            for s in _FACTOR_SLICES:
                # Skip slices where the factor alone never ranks x above y
                if not any(data[(x & s) | (z & ~s)] > data[(y & s) | (z & ~s)]
                           for z in range(16)):
                    continue
                for pos in range(4):
                    bit = 1 << pos
                    if not s & bit or (x | y) & bit:
                        continue
                    if data[x | bit] > data[y | bit]:
                        return False
    return True


# ============================================================================
# SECTION 6: NEIGHBORS
# ============================================================================

def _admissible(mmap):
    return is_monotonic(mmap) and is_realizable(mmap)


def neighbor_candidates(mmap):
    """
    List every map differing from mmap by +1 or -1 at a single vertex.

    Each candidate is an independent copy; nothing is shared with mmap
    except its (immutable) factorization and constraints.
    """
    candidates = []
    for vertex, value in enumerate(mmap.data):
        if value > 0:
            candidates.append(mmap.with_value(vertex, value - 1))
        if value < mmap.m:
            candidates.append(mmap.with_value(vertex, value + 1))
    return candidates


def neighbors(mmap, workers=None, verbose=False):
    """
    Return the adjacent monotone, realizable maps.

    Args:
        mmap: MonotoneMap
        workers: number of threads evaluating candidates
            (default: get_default_workers())
        verbose: If True, print progress to stderr

    Returns:
        set of MonotoneMap (never contains mmap itself)

    Raises:
        UnsupportedFactorization: if the logic shape has no known algorithm
    """
    # Unsupported shapes fail here, not per candidate
    shape_checker(mmap.factorization)
    if workers is None:
        workers = get_default_workers()

    candidates = neighbor_candidates(mmap)
    if verbose:
        print(f"Checking {len(candidates)} candidates of {mmap.to_string()}...",
              file=sys.stderr)

    if workers > 1 and len(candidates) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            verdicts = list(pool.map(_admissible, candidates))
    else:
        verdicts = [_admissible(c) for c in tqdm(candidates, disable=not verbose)]

    result = {c for c, ok in zip(candidates, verdicts) if ok}

    if verbose:
        print(f"Admitted {len(result)} neighbors", file=sys.stderr)

    return result


# ============================================================================
# SECTION 7: PRETTY PRINTING
# ============================================================================

def pretty_print(mmap, symbol, input_symbols, output_symbols):
    """
    Render the map as one inequality per vertex.

    A vertex with output level k lies between thresholds k and k+1 of the
    node, e.g. for n=1, m=1 and data (0, 1):

        (L(x, s)) <= THETA(s, y);
        THETA(s, y) <= (U(x, s));

    Args:
        mmap: MonotoneMap
        symbol: name of the node
        input_symbols: n names, one per input (input k is vertex bit k)
        output_symbols: m names, one per out-edge threshold

    Returns:
        str

    Raises:
        SymbolCountMismatch: if the symbol lists have the wrong length
    """
    if len(input_symbols) != mmap.n:
        raise SymbolCountMismatch(
            f"{len(input_symbols)} input symbols {list(input_symbols)} for n={mmap.n} "
            f"(logic {mmap.factorization.to_string()})"
        )
    if len(output_symbols) != mmap.m:
        raise SymbolCountMismatch(
            f"{len(output_symbols)} output symbols {list(output_symbols)} for m={mmap.m}"
        )

    lines = []
    for vertex, level in enumerate(mmap.data):
        parts = []
        if level > 0:
            parts.append(f"THETA({symbol}, {output_symbols[level - 1]}) <= ")
        for bits in mmap.factorization.factor_bits():
            terms = []
            for bit in bits:
                side = "U" if vertex & (1 << bit) else "L"
                terms.append(f"{side}({input_symbols[bit]}, {symbol})")
            parts.append("(" + " + ".join(terms) + ")")
        if level < mmap.m:
            parts.append(f" <= THETA({symbol}, {output_symbols[level]})")
        lines.append("".join(parts) + ";\n")
    return "".join(lines)
