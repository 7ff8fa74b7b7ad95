from .component import ConstructOptions, opts, Construct, component, App, Stack
from .deferred import (
    Deferred, Reference, Lazy, Pseudo, Lookup, ResolveContext, resolve_value, is_deferred,
)
from .errors import ConstructError, ValidationError, AmbiguousDependencyCycle
from .tree import Tree
