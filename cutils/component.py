"""
Base classes and boilerplate helpers for constructs.

A construct is declared the same way whether it is a class or a decorated
function:

>>> class Thing(Construct):
...     def set_up(self, name, *, size, __opts__):
...         ...
>>> Thing('thing', size=3, **opts(parent=stack))
"""
import hashlib

import pulumi

from .errors import ValidationError
from .tree import Tree, SEPARATOR

__all__ = 'ConstructOptions', 'opts', 'Construct', 'component', 'App', 'Stack'


class ConstructOptions:
    def __init__(self, parent=None, depends_on=()):
        self.parent = parent
        self.depends_on = list(depends_on)


def opts(**kwargs):
    """
    Defines an __opts__ for constructs.

    Usage:
    >>> Resource(..., **opts(parent=stack, depends_on=[other]))
    """
    return {
        '__opts__': ConstructOptions(**kwargs)
    }


class Construct:
    __namespace__ = 'cutils:Construct'
    # Wire-format type of the resource this construct stands for, if any
    resource_type = None
    is_stack = False

    def __init__(self, __name__, *pargs, __opts__=None, **kwargs):
        if __opts__ is None or __opts__.parent is None:
            raise ValidationError(
                f"{type(self).__name__} {__name__!r} must be created with a parent"
            )
        parent = __opts__.parent
        self.name = __name__
        self.tree = parent.tree
        self.path = self.tree.add(self, parent)
        for dep in __opts__.depends_on:
            self.tree.add_dependency(self, dep)

        outs = self.set_up(__name__, *pargs, __opts__=__opts__, **kwargs)
        if outs:
            vars(self).update(outs)

    def set_up(self, name, *pargs, __opts__, **kwargs):
        pass

    def __repr__(self):
        return f"<{type(self).__name__} {self.path}>"

    @property
    def parent(self):
        return self.tree.parent_of(self)

    @property
    def children(self):
        return self.tree.children_of(self)

    @property
    def stack(self):
        return self.tree.stack_of(self)

    @property
    def logical_id(self):
        """
        Stable identifier of this construct within its stack.

        Made of the path below the stack plus a short hash of the full path,
        so that two constructs with the same local names never collide.
        """
        stack = self.stack
        if stack is None or stack is self:
            parts = self.path.split(SEPARATOR)
        else:
            parts = self.path[len(stack.path) + 1:].split(SEPARATOR)
        digest = hashlib.sha3_256(self.path.encode('utf-8')).hexdigest()
        return f"{'_'.join(parts)}_{digest[:8].upper()}"

    def add_dependency(self, *targets):
        for target in targets:
            self.tree.add_dependency(self, target)


def component(namespace=None, resource_type=None):
    """
    Turns a set_up-style function into a Construct subclass.

    The function body becomes set_up(); whatever dict it returns is stored
    as attributes on the construct. The namespace defaults to
    "<module path>:<function name>".

    @component('iamsynth:aws:Thing', resource_type='aws_thing')
    def Thing(self, name, *, size, __opts__):
        return {'arn': Reference(self, 'arn')}
    """
    def wrap(func):
        attrs = {
            '__doc__': func.__doc__,
            '__module__': func.__module__,
            '__qualname__': func.__qualname__,
            '__namespace__': namespace or f"{func.__module__.replace('.', ':')}:{func.__name__}",
            'set_up': func,
            'resource_type': resource_type,
        }
        return type(func.__name__, (Construct,), attrs)

    return wrap


class App(Construct):
    """
    Root of a construct tree. Owns the arena.
    """
    __namespace__ = 'cutils:App'

    def __init__(self, __name__='App'):
        self.name = __name__
        self.tree = Tree()
        self.path = self.tree.add(self, None)

    @property
    def stacks(self):
        return [c for c in self.children if c.is_stack]


class Stack(Construct):
    """
    An independently deployable unit.

    References between stacks are never direct; see iamsynth.crossstack.
    """
    __namespace__ = 'cutils:Stack'
    is_stack = True

    def set_up(self, name, *, __opts__):
        if not isinstance(__opts__.parent, App):
            raise ValidationError(f"Stack {name!r} must be a direct child of an App")
        # output key -> construct exporting it
        self.outputs = {}
        # producing stack path -> remote state construct reading it
        self.remote_states = {}
        # lookup table name -> {key: value}, for values picked at deploy time
        self.lookups = {}
        pulumi.debug(f"Registered stack {name}")

    @classmethod
    def of(cls, construct):
        """
        The stack a construct is defined in. Fails if there is none.
        """
        stack = construct.tree.stack_of(construct)
        if stack is None:
            raise ValidationError(
                f"{type(construct).__name__} should be created in the scope of a Stack, but no Stack found",
                construct,
            )
        return stack

    def pseudo(self, name):
        """
        The value behind a pseudo value such as 'account', or None if this
        kind of stack doesn't know it.
        """
        return None

    @property
    def dependencies(self):
        """
        Stacks this one reads outputs from.
        """
        return [self.tree.get(path) for path in self.remote_states]
