"""
Values that are only known once the tree is finalized.

Attributes such as ARNs are handed out as Deferred objects while the tree is
being built. Nothing is evaluated until a ResolveContext walks them during the
finalize pass, which is also the point where a reference is known to cross a
stack boundary or not.
"""
from .errors import ValidationError

__all__ = (
    'Deferred', 'Reference', 'Lazy', 'Derived', 'Pseudo', 'Lookup', 'ResolveContext',
    'resolve_value', 'is_deferred', 'value_key', 'leaves_of',
)


class Deferred:
    """
    Base for deferred values.
    """
    #: Stable identity used for de-duplication, or None if there is none
    identity = None
    #: Construct the value belongs to, if any
    owner = None

    def resolve(self, context):
        raise NotImplementedError

    def leaves(self):
        """
        The References and Lazy values this one is computed from.
        """
        yield self

    def apply(self, func):
        """
        Eventually call the given function with the eventual value.
        """
        return Derived(func, self)

    def __getitem__(self, key):
        """
        Shortcut to index the eventual value.
        """
        return self.apply(lambda value: value[key])

    def __iter__(self):
        raise TypeError("Deferred values are not iterable")

    def __str__(self):
        raise TypeError(
            "Deferred values cannot be turned into strings while building; "
            "use .apply() or Deferred.concat()"
        )

    @staticmethod
    def all(*values):
        """
        Combine several values (deferred or not) into one deferred list.
        """
        return Derived(lambda *resolved: list(resolved), *values)

    @staticmethod
    def concat(*parts):
        """
        Deferred string concatenation, like f-strings for deferred values.
        """
        return Concat(*parts)

    @staticmethod
    def lazy(func, key=None, construct=None):
        return Lazy(func, key=key, construct=construct)


class Reference(Deferred):
    """
    An attribute of a construct, e.g. a bucket's ARN.
    """
    def __init__(self, construct, attribute):
        self.construct = construct
        self.attribute = attribute

    def __repr__(self):
        return f"<Reference {self.construct.path}.{self.attribute}>"

    @property
    def identity(self):
        return ('ref', self.construct.path, self.attribute)

    @property
    def owner(self):
        return self.construct

    def expression(self):
        return f"${{{self.construct.resource_type}.{self.construct.logical_id}.{self.attribute}}}"

    def resolve(self, context):
        return context.reference(self)


class Lazy(Deferred):
    """
    A value computed by a function at finalize time.

    Only Lazy values with a key have an identity, and only those can be
    exported to another stack.
    """
    def __init__(self, func, key=None, construct=None):
        self.func = func
        self.key = key
        self.construct = construct

    def __repr__(self):
        return f"<Lazy {self.key or self.func!r}>"

    @property
    def identity(self):
        if self.key is None or self.construct is None:
            return None
        return ('lazy', self.construct.path, self.key)

    @property
    def owner(self):
        return self.construct

    def resolve(self, context):
        return context.lazy(self)


class Derived(Deferred):
    """
    A function applied to some other values.
    """
    def __init__(self, func, *sources):
        self.func = func
        self.sources = sources

    def leaves(self):
        for source in self.sources:
            if isinstance(source, Deferred):
                yield from source.leaves()

    def resolve(self, context):
        values = [resolve_value(source, context) for source in self.sources]
        return context.combine(values, self.func)


class Concat(Derived):
    def __init__(self, *parts):
        super().__init__(_join, *parts)

    @property
    def identity(self):
        return ('concat',) + tuple(value_key(part) for part in self.sources)


class Pseudo(Deferred):
    """
    A value every stack can look up for itself, such as its account or
    partition.

    It resolves against the stack it is rendered in, falling back to the one
    it was taken from, so it never has to be exported to another stack.
    Outside of any stack that knows it, `default` is used.
    """
    def __init__(self, name, stack=None, default=None):
        self.name = name
        self.stack = stack
        self.default = default

    def __repr__(self):
        return f"<Pseudo {self.name}>"

    @property
    def identity(self):
        return ('pseudo', self.name)

    def leaves(self):
        return iter(())

    def resolve(self, context):
        for stack in (context.stack, self.stack):
            value = stack.pseudo(self.name) if stack is not None else None
            if value is not None:
                return resolve_value(value, context)
        if self.default is None:
            raise ValidationError(f"No stack to look up {self.name} in")
        return self.default


class Lookup(Deferred):
    """
    An entry of a static table, picked by a key that may only be known at
    deploy time (e.g. an account id per region).
    """
    def __init__(self, name, table, key):
        self.name = name
        self.table = dict(table)
        self.key = key

    def __repr__(self):
        return f"<Lookup {self.name}>"

    @property
    def identity(self):
        return ('lookup', self.name, value_key(self.key))

    def leaves(self):
        yield from leaves_of(self.key)

    def resolve(self, context):
        return context.lookup(self)


def _join(*parts):
    return ''.join(str(part) for part in parts)


class ResolveContext:
    """
    Turns deferred values into concrete ones for a consuming stack.

    This default renders references as interpolation expressions; subclasses
    redirect references coming from other stacks, or produce values for a
    specific deployment engine.
    """
    def __init__(self, stack=None):
        self.stack = stack

    def reference(self, ref):
        return ref.expression()

    def lazy(self, lazy):
        return resolve_value(lazy.func(), self)

    def lookup(self, lookup):
        key = resolve_value(lookup.key, self)
        if key in lookup.table:
            return lookup.table[key]
        if not (isinstance(key, str) and key.startswith('${') and key.endswith('}')):
            raise ValidationError(f"{lookup.name} has no entry for {key!r}")
        return f"${{lookup(local.{lookup.name}, {key[2:-1]})}}"

    def combine(self, values, func):
        return func(*values)


def resolve_value(value, context):
    """
    Resolve a value, descending into lists and dicts.
    """
    if isinstance(value, Deferred):
        return value.resolve(context)
    elif isinstance(value, dict):
        return {k: resolve_value(v, context) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [resolve_value(v, context) for v in value]
    else:
        return value


def is_deferred(value):
    return isinstance(value, Deferred)


def value_key(value):
    """
    A hashable stand-in for a value, used to compare values while building.
    """
    if isinstance(value, Deferred):
        return value.identity or ('object', id(value))
    elif isinstance(value, dict):
        return tuple((k, value_key(v)) for k, v in value.items())
    elif isinstance(value, (list, tuple)):
        return tuple(value_key(v) for v in value)
    return value


def leaves_of(value):
    """
    All deferred leaves inside a (possibly nested) value.
    """
    if isinstance(value, Deferred):
        yield from value.leaves()
    elif isinstance(value, dict):
        for v in value.values():
            yield from leaves_of(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from leaves_of(v)
