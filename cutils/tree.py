"""
The construct arena.

Every construct registered in an App lives in one Tree, keyed by its path
string ("Stack/Bucket/Policy"). Parent/child links are plain path lists, and
all graph questions (ancestry, stack membership, dependency reachability) are
answered by walking those lists instead of chasing live objects.
"""
from .errors import ConstructError, ValidationError, AmbiguousDependencyCycle

__all__ = 'Tree', 'SEPARATOR'

SEPARATOR = '/'


class Tree:
    def __init__(self):
        self.nodes = {}
        self.parents = {}
        self.children = {}
        # Construction order, also the order finalize walks things in
        self.order = []
        self.edges = []
        self._edge_set = set()
        # Policy binders, in the order they were created
        self.binders = []
        # Set up by iamsynth on first use
        self.resolver = None
        self.manifest = None

    def add(self, construct, parent):
        """
        Register a construct under the given parent, returning its path.
        """
        name = construct.name
        if parent is None:
            path = ''
        else:
            if not name or SEPARATOR in name:
                raise ValidationError(
                    f"Construct name {name!r} must be non-empty and not contain {SEPARATOR!r}",
                    parent,
                )
            path = f"{parent.path}{SEPARATOR}{name}" if parent.path else name
            if path in self.nodes:
                raise ValidationError(
                    f"There is already a construct named {name!r}", parent,
                )
        self.nodes[path] = construct
        self.parents[path] = None if parent is None else parent.path
        self.children[path] = []
        if parent is not None:
            self.children[parent.path].append(path)
        self.order.append(path)
        return path

    def get(self, path):
        return self.nodes[path]

    def parent_of(self, path):
        parent = self.parents.get(_path(path))
        return None if parent is None else self.nodes[parent]

    def children_of(self, path):
        return [self.nodes[p] for p in self.children[_path(path)]]

    def ancestors(self, path):
        """
        Yields the paths above the given one, nearest first.

        The walk is bounded by the size of the arena, so a corrupted parent
        table fails loudly instead of looping.
        """
        path = _path(path)
        for _ in range(len(self.nodes) + 1):
            path = self.parents.get(path)
            if path is None:
                return
            yield path
        raise ConstructError(f"Parent chain of {path!r} does not terminate")

    def is_ancestor(self, ancestor, path):
        """
        True if `ancestor` is strictly above `path` in the tree.
        """
        ancestor = _path(ancestor)
        return any(p == ancestor for p in self.ancestors(path))

    def overlaps(self, a, b):
        """
        True if one of the two subtrees contains the other.
        """
        a, b = _path(a), _path(b)
        return a == b or self.is_ancestor(a, b) or self.is_ancestor(b, a)

    def stack_of(self, path):
        """
        The nearest stack at or above the given construct, or None.
        """
        path = _path(path)
        for p in (path, *self.ancestors(path)):
            if getattr(self.nodes[p], 'is_stack', False):
                return self.nodes[p]
        return None

    def depends_on(self, source, target):
        """
        True if `source` (or anything in its subtree) already has a chain of
        dependency edges leading into `target`'s subtree.

        Edges declared on an ancestor apply to all of its descendants, and an
        edge into a construct orders against everything beneath it.
        """
        source, target = _path(source), _path(target)
        seen = set()
        pending = [source]
        while pending:
            current = pending.pop()
            if current in seen:
                continue
            seen.add(current)
            for frm, to in self.edges:
                if not self.overlaps(frm, current):
                    continue
                if self.overlaps(to, target):
                    return True
                pending.append(to)
        return False

    def would_cycle(self, source, target):
        source, target = _path(source), _path(target)
        return self.overlaps(source, target) or self.depends_on(target, source)

    def add_dependency(self, source, target, check_cycles=False):
        """
        Record that `source` must be created after `target`.

        Returns False if the edge already existed. With check_cycles, raises
        AmbiguousDependencyCycle instead of adding an edge that closes a cycle.
        """
        edge = (_path(source), _path(target))
        if edge in self._edge_set:
            return False
        if check_cycles and self.would_cycle(*edge):
            raise AmbiguousDependencyCycle(
                f"Making {edge[0]!r} depend on {edge[1]!r} would create a cycle",
            )
        self._edge_set.add(edge)
        self.edges.append(edge)
        return True

    def dependencies_of(self, path):
        path = _path(path)
        return [to for frm, to in self.edges if frm == path]


def _path(thing):
    if isinstance(thing, str):
        return thing
    return thing.path
